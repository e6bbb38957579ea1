"""Tests for _dotenv.py: single-key scans and full file loads."""

from envcascade._dotenv import file_exists, read_env_file, read_key


def _write(path, text):
    path.write_text(text, encoding="utf-8")
    return path


class TestReadKey:
    def test_plain_value(self, tmp_path):
        env = _write(tmp_path / ".env", "TOKEN=abc123\n")
        assert read_key(env, "TOKEN") == "abc123"

    def test_comments_and_blank_lines_ignored(self, tmp_path):
        env = _write(tmp_path / ".env", "# TOKEN=commented\n\n   \nOTHER=1\n")
        assert read_key(env, "TOKEN") is None

    def test_double_and_single_quotes_stripped(self, tmp_path):
        double = _write(tmp_path / "a.env", 'TOKEN="abc"\n')
        single = _write(tmp_path / "b.env", "TOKEN='abc'\n")
        assert read_key(double, "TOKEN") == "abc"
        assert read_key(single, "TOKEN") == "abc"

    def test_whitespace_trimmed(self, tmp_path):
        env = _write(tmp_path / ".env", "TOKEN=   spaced   \n")
        assert read_key(env, "TOKEN") == "spaced"

    def test_empty_value_is_absent_and_scan_continues(self, tmp_path):
        env = _write(tmp_path / ".env", 'TOKEN=\nTOKEN=""\nTOKEN=second\n')
        assert read_key(env, "TOKEN") == "second"

    def test_first_non_empty_wins(self, tmp_path):
        env = _write(tmp_path / ".env", "TOKEN=first\nTOKEN=second\n")
        assert read_key(env, "TOKEN") == "first"

    def test_export_prefix(self, tmp_path):
        env = _write(tmp_path / ".env", "export TOKEN=exported\n")
        assert read_key(env, "TOKEN") == "exported"

    def test_unmatched_quote_kept_literally(self, tmp_path):
        env = _write(tmp_path / ".env", 'TOKEN="abc123\nOTHER=1\n')
        assert read_key(env, "TOKEN") == '"abc123'
        assert read_key(env, "OTHER") == "1"

    def test_invalid_utf8_elsewhere_does_not_hide_key(self, tmp_path):
        env = tmp_path / ".env"
        env.write_bytes(b"NOTE=caf\xe9\nTOKEN=abc123\n")
        assert read_key(env, "TOKEN") == "abc123"

    def test_missing_file(self, tmp_path):
        assert read_key(tmp_path / "nope.env", "TOKEN") is None

    def test_directory_counts_as_absent(self, tmp_path):
        assert read_key(tmp_path, "TOKEN") is None


class TestReadEnvFile:
    def test_missing_file(self, tmp_path):
        content = read_env_file(tmp_path / ".env")
        assert content.exists is False
        assert content.variables == {}
        assert content.errors == []

    def test_loads_bindings_in_order(self, tmp_path):
        env = _write(tmp_path / ".env", "A=1\nB='two'\n# C=3\n")
        content = read_env_file(env)
        assert content.exists and content.readable
        assert content.variables == {"A": "1", "B": "two"}

    def test_expands_against_context_and_earlier_lines(self, tmp_path):
        env = _write(
            tmp_path / ".env",
            "HOST=db\nURL=postgres://${USER}@${HOST}/${NAME:-app}\n",
        )
        content = read_env_file(env, context={"USER": "admin"})
        assert content.variables["URL"] == "postgres://admin@db/app"

    def test_expansion_can_be_disabled(self, tmp_path):
        env = _write(tmp_path / ".env", "URL=${HOST}/x\n")
        assert read_env_file(env, expand=False).variables["URL"] == "${HOST}/x"

    def test_malformed_line_recorded_and_skipped(self, tmp_path):
        env = _write(tmp_path / ".env", "A=1\nthis is not valid\nB=2\n")
        content = read_env_file(env)
        assert content.variables == {"A": "1", "B": "2"}
        assert len(content.errors) == 1
        line, message = content.errors[0]
        assert line == 2
        assert "could not parse" in message
        assert content.readable

    def test_invalid_utf8_recorded_per_line(self, tmp_path):
        env = tmp_path / ".env"
        env.write_bytes(b"A=1\nB=\xff\nC=3\n")
        content = read_env_file(env)
        assert content.readable
        assert content.variables["A"] == "1"
        assert content.variables["C"] == "3"
        assert content.variables["B"] == "\ufffd"
        (line, message), = content.errors
        assert line == 2
        assert "invalid UTF-8" in message

    def test_unreadable_path_recorded(self, tmp_path):
        content = read_env_file(tmp_path)
        assert content.exists is True
        assert content.readable is False
        assert content.errors[0][0] is None


class TestFileExists:
    def test_file_and_directory(self, tmp_path):
        env = _write(tmp_path / ".env", "")
        assert file_exists(env) is True
        assert file_exists(tmp_path) is False
        assert file_exists(tmp_path / "missing") is False
