"""``envcascade`` command line: inspect what configuration would resolve to."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

import click

from .._models import ConfigResult
from .._report import get_diagnostic_info, validate_config
from .._resolver import create_resolver
from .._token import TokenResolver


def _resolve(
    *,
    app_name: str | None,
    environment: str | None,
    root: Path | None,
    remote: bool,
) -> ConfigResult:
    with create_resolver() as resolver:
        return resolver.resolve_sync(
            app_name=app_name,
            environment=environment,
            root_path=root,
            enable_remote=remote,
        )


def _resolve_options(func: Any) -> Any:
    func = click.option(
        "--remote/--no-remote",
        default=True,
        help="Consult the secrets service (default: True)",
    )(func)
    func = click.option(
        "--root",
        type=click.Path(exists=True, file_okay=False, path_type=Path),
        default=None,
        help="Project directory (default: current directory)",
    )(func)
    func = click.option("--env", "environment", default=None, help="Environment name")(func)
    func = click.option("--app", "app_name", default=None, help="App name in the secrets service")(func)
    return func


@click.group("envcascade")
@click.option("-v", "--verbose", is_flag=True, help="Log resolution steps to stderr")
def envcascade_group(verbose: bool) -> None:
    """Layered configuration and secrets resolution."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


@envcascade_group.command("diagnose")
@_resolve_options
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
def diagnose_cli(
    app_name: str | None,
    environment: str | None,
    root: Path | None,
    remote: bool,
    as_json: bool,
) -> None:
    """Resolve configuration and report where it came from.

    Variable values are never printed.
    """
    result = _resolve(app_name=app_name, environment=environment, root=root, remote=remote)
    info = get_diagnostic_info(result)

    if as_json:
        click.echo(json.dumps(info.model_dump(mode="json"), indent=2))
        return

    click.secho(info.summary, bold=True)
    for path in result.loaded_files:
        click.echo(f"  loaded {path}")
    error = result.diagnostics.classified_error
    if error is not None:
        click.secho(f"  secrets service: {error.code.value} ({error.fallback_strategy.value})", fg="yellow")
    for file_error in result.diagnostics.file_errors:
        click.secho(f"  {file_error.file}:{file_error.line or '-'} {file_error.error}", fg="yellow")
    if info.recommendations:
        click.echo("Recommendations:")
        for recommendation in info.recommendations:
            click.echo(f"  - {recommendation}")


@envcascade_group.command("check")
@_resolve_options
@click.argument("keys", nargs=-1, required=True)
def check_cli(
    app_name: str | None,
    environment: str | None,
    root: Path | None,
    remote: bool,
    keys: tuple[str, ...],
) -> None:
    """Exit with status 1 unless every KEY resolves to a non-blank value.

    Examples:\n
        envcascade check DATABASE_URL REDIS_URL\n
        envcascade check --env production --no-remote SECRET_KEY\n
    """
    result = _resolve(app_name=app_name, environment=environment, root=root, remote=remote)
    report = validate_config(result, keys)

    for warning in report.warnings:
        click.secho(f"warning: {warning}", fg="yellow", err=True)

    if not report.is_valid:
        click.secho(f"Missing: {', '.join(report.missing)}", fg="red")
        sys.exit(1)
    click.secho(f"All {len(keys)} keys present", fg="green")


@envcascade_group.command("tokens")
@click.option(
    "--root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Project directory (default: current directory)",
)
def tokens_cli(root: Path | None) -> None:
    """List every token source in precedence order and which one is active."""
    resolver = TokenResolver()
    for diagnostic in resolver.get_diagnostics(base_dir=root):
        marker = "*" if diagnostic.is_active else " "
        location = diagnostic.path or resolver.env_var
        state = "token" if diagnostic.has_token else ("present" if diagnostic.exists else "missing")
        click.echo(f"{marker} {diagnostic.origin.value:<16} {state:<8} {location}")


def main() -> None:
    envcascade_group(prog_name="envcascade")


if __name__ == "__main__":
    main()
