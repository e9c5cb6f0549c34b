from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import typer

from .runner import format_capture_report, run_capture
from .workflows.browser_capture import CaptureError, load_config_from_env
from .workflows.capture_config import DEFAULT_TARGET_URL, IMPORT_FETCH_MODES
from .workflows.doctor import build_doctor_report, format_doctor_report

app = typer.Typer(add_help_option=False, no_args_is_help=False)

_COMMANDS = {"capture", "doctor"}
_ROOT_FLAGS = {"--help", "-h", "--help-full"}


def _minimal_help() -> str:
    return f"""csscapture

Usage:
  csscapture [capture] [URL] [--out <DIR>] [--timeout-ms <N>] [--headed]
                             [--import-fetch browser|http] [--json] [--summary <FILE>]
  csscapture doctor

URL defaults to {DEFAULT_TARGET_URL}

Common options:
  --out <DIR>         Write stylesheets under this directory (default: out/css).
  --timeout-ms <N>    Navigation ceiling in milliseconds (default: 60000).
  --headed            Show the browser window.
  --import-fetch      Fetch @import targets via the page (browser) or aiohttp (http).
  --json              Print the run summary JSON to stdout only.
  --summary <FILE>    Also write the run summary JSON to FILE.
  --help-full         Expanded help + env vars + artifacts.
"""


def _help_full() -> str:
    return """csscapture CLI

Commands:
  capture   Render a page in Chromium and save every stylesheet it loads.
  doctor    Print environment and dependency diagnostics.

Artifacts (under --out):
  <host>/<path>.css          External and @import-ed stylesheets.
  <host>/<path>.inline.css   Inline <style> blocks of the page, labelled by index.

Other artifacts:
  --summary <FILE>           Stable JSON summary for the run (only when requested).

Env vars:
  CSSCAPTURE_OUT_DIR
  CSSCAPTURE_NAV_TIMEOUT_MS
  CSSCAPTURE_HEADED
  CSSCAPTURE_IMPORT_FETCH
  CSSCAPTURE_IMPORT_CONCURRENCY
  CSSCAPTURE_IMPORT_TIMEOUT
  CSSCAPTURE_USER_AGENT

Exit codes:
  0  capture completed (skipped resources are listed, not fatal)
  2  invalid arguments or configuration
  3  browser launch or navigation failed
"""


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    help: bool = typer.Option(False, "--help", "-h", is_eager=True, help="Show minimal help."),
    help_full: bool = typer.Option(False, "--help-full", is_eager=True, help="Show expanded help."),
) -> None:
    if help_full:
        typer.echo(_help_full())
        raise typer.Exit(code=0)
    if help or ctx.invoked_subcommand is None:
        typer.echo(_minimal_help())
        raise typer.Exit(code=0)


@app.command("doctor", add_help_option=True)
def doctor_cmd(
    out: Optional[Path] = typer.Option(None, "--out", help="Output directory to check for writability."),
) -> None:
    """Print environment and dependency diagnostics."""
    report = build_doctor_report(out_dir=out)
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.ok else 2)


@app.command("capture", add_help_option=True)
def capture_cmd(
    url: str = typer.Argument(DEFAULT_TARGET_URL, help="Page to render."),
    out: Optional[Path] = typer.Option(None, "--out", help="Write stylesheets under this directory."),
    timeout_ms: Optional[int] = typer.Option(None, "--timeout-ms", help="Navigation timeout in milliseconds."),
    headed: bool = typer.Option(False, "--headed", help="Show the browser window."),
    import_fetch: Optional[str] = typer.Option(None, "--import-fetch", help="browser or http."),
    json_out: bool = typer.Option(False, "--json", help="Print summary JSON to stdout only."),
    summary_path: Optional[Path] = typer.Option(None, "--summary", help="Also write the run summary JSON to this file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Save every stylesheet URL loads (external, @import and inline)."""
    if import_fetch is not None and import_fetch not in IMPORT_FETCH_MODES:
        raise typer.BadParameter(f"--import-fetch must be one of {', '.join(IMPORT_FETCH_MODES)}")
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        stream=sys.stderr if json_out else sys.stdout,
    )
    try:
        config = load_config_from_env(
            target_url=url,
            out_dir=out,
            navigation_timeout_ms=timeout_ms,
            headless=False if headed else None,
            import_fetch=import_fetch,
        )
    except ValueError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)
    try:
        summary, exit_code = run_capture(config, summary_path=summary_path)
    except CaptureError as exc:
        typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=3)
    if json_out:
        sys.stdout.write(json.dumps(summary, ensure_ascii=False) + "\n")
    else:
        typer.echo(format_capture_report(summary))
    raise typer.Exit(code=exit_code)


def _normalize_argv(argv: Sequence[str]) -> List[str]:
    """Treat ``csscapture URL`` (or no args) as ``csscapture capture URL``."""

    args = list(argv)
    if not args or (args[0] not in _COMMANDS and args[0] not in _ROOT_FLAGS):
        args.insert(0, "capture")
    return args


def main(argv: Optional[Sequence[str]] = None) -> None:
    app(args=_normalize_argv(sys.argv[1:] if argv is None else argv), prog_name="csscapture")


if __name__ == "__main__":
    main()
