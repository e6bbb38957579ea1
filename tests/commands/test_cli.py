"""Tests for the ``envcascade`` command line."""

import json

import pytest
from click.testing import CliRunner

from envcascade._token import TOKEN_ENV_VAR
from envcascade.commands.cli import envcascade_group

TOKEN = "svc_token_0123456789"


@pytest.fixture
def project(tmp_path, monkeypatch):
    monkeypatch.delenv(TOKEN_ENV_VAR, raising=False)
    monkeypatch.setenv("ENVCASCADE_SWEEP_INTERVAL", "1h")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".env").write_text("CLI_DATABASE_URL=postgres://db/app\nCLI_BLANK=\n")
    return tmp_path


def _invoke(*args):
    return CliRunner().invoke(envcascade_group, list(args))


class TestCheck:
    def test_all_present(self, project):
        result = _invoke("check", "--root", str(project), "--env", "dev", "--no-remote", "CLI_DATABASE_URL")
        assert result.exit_code == 0, result.output
        assert "All 1 keys present" in result.output

    def test_missing_exits_nonzero(self, project):
        result = _invoke(
            "check", "--root", str(project), "--env", "dev", "--no-remote",
            "CLI_DATABASE_URL", "CLI_BLANK", "CLI_NOT_DEFINED_ANYWHERE",
        )
        assert result.exit_code == 1
        assert "Missing: CLI_BLANK, CLI_NOT_DEFINED_ANYWHERE" in result.output

    def test_requires_keys(self, project):
        result = _invoke("check", "--root", str(project))
        assert result.exit_code == 2


class TestDiagnose:
    def test_json_report(self, project):
        result = _invoke("diagnose", "--root", str(project), "--env", "dev", "--app", "Shop", "--no-remote", "--json")
        assert result.exit_code == 0, result.output

        report = json.loads(result.stdout)
        assert report["summary"].startswith("App: Shop, Environment: dev")
        assert report["details"]["loaded_files"] == [str(project / ".env")]

    def test_text_report_hides_values(self, project):
        result = _invoke("diagnose", "--root", str(project), "--env", "dev", "--app", "Shop", "--no-remote")
        assert result.exit_code == 0, result.output
        assert f"loaded {project / '.env'}" in result.output
        assert "postgres://db/app" not in result.output


class TestTokens:
    def test_marks_active_source(self, project):
        (project / ".env.local").write_text(f"{TOKEN_ENV_VAR}={TOKEN}\n")
        result = _invoke("tokens", "--root", str(project))

        assert result.exit_code == 0, result.output
        active = [line for line in result.output.splitlines() if line.startswith("*")]
        assert len(active) == 1
        assert "local_env_local" in active[0]
        assert TOKEN not in result.output
