from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

from .consumer import GrabReport, RootFetchError, run_grabber
from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.grabber_config import GrabberConfig, build_config

app = typer.Typer(add_help_option=False, no_args_is_help=False)

RULE = "-" * 57


def _minimal_help() -> str:
    return """Source Grabber

Usage:
  source-grabber grab <url> [--output <DIR>] [--force] [--timeout <MS>] [--retries <N>] [--concurrency <N>] [--debug] [--json]
  source-grabber doctor

Common options:
  -o, --output <DIR>       Output root (default: current directory).
  -f, --force              Ignore the ledger and redownload everything.
  -t, --timeout <MS>       Request timeout in milliseconds (default: 30000).
  -r, --retries <N>        Retries after the first attempt (default: 3).
  -c, --concurrency <N>    Maximum concurrent requests (default: 5).
  -d, --debug              Verbose logging.
  --json                   Print the run summary JSON to stdout only.

Discoverability:
  --help-full     Expanded help + env vars + artifacts.
  --find <query>  Search commands, flags, env vars, artifacts.
  --doctor        Run environment diagnostics and exit.
"""


def _help_full() -> str:
    return """Source Grabber CLI

Commands:
  grab     Mirror one page (HTML, CSS, JS, media) and rebuild sources from source maps.
  doctor   Print environment and dependency diagnostics.

Artifacts (under <output>/output/<YYYY-MM-DD>/<domain>/, or <output>/output/<domain>/ with --force):
  dist/                   Mirrored build output; the page itself is dist/index.html.
  dist/**/*.map           Source maps saved next to the asset they describe.
  src/                    Original sources recovered from sourcesContent.
  downloaded_urls.json    Ledger of URLs already downloaded (skipped on the next run).

Important env vars (.env is loaded first):
  SOURCE_GRABBER_TIMEOUT_MS
  SOURCE_GRABBER_RETRIES
  SOURCE_GRABBER_CONCURRENCY
  SOURCE_GRABBER_BACKOFF_INITIAL
  SOURCE_GRABBER_USER_AGENT

Exit codes:
  0  Run completed (individual asset failures are listed, not fatal).
  1  The target page could not be downloaded.
  2  Invalid configuration.
  3  Unexpected error.
"""


_FIND_INDEX = [
    ("command", "grab", "Mirror one page and rebuild sources from source maps."),
    ("command", "doctor", "Print environment and dependency diagnostics."),
    ("flag", "--output", "Output root directory."),
    ("flag", "--force", "Ignore the ledger and redownload everything."),
    ("flag", "--timeout", "Request timeout in milliseconds."),
    ("flag", "--retries", "Retries after the first attempt."),
    ("flag", "--concurrency", "Maximum concurrent requests."),
    ("flag", "--debug", "Verbose logging."),
    ("flag", "--json", "Print summary JSON to stdout only."),
    ("flag", "--help-full", "Expanded help, env vars, artifacts."),
    ("flag", "--find", "Search commands, flags, env vars, artifacts."),
    ("flag", "--doctor", "Run environment diagnostics and exit."),
    ("env", "SOURCE_GRABBER_TIMEOUT_MS", "Default request timeout (ms)."),
    ("env", "SOURCE_GRABBER_RETRIES", "Default retry count."),
    ("env", "SOURCE_GRABBER_CONCURRENCY", "Default concurrency limit."),
    ("env", "SOURCE_GRABBER_BACKOFF_INITIAL", "First retry delay in seconds."),
    ("env", "SOURCE_GRABBER_USER_AGENT", "Override the User-Agent header."),
    ("artifact", "dist/", "Mirrored build output."),
    ("artifact", "src/", "Recovered original sources."),
    ("artifact", "downloaded_urls.json", "Ledger of downloaded URLs."),
]


def _run_find(query: str) -> str:
    needle = (query or "").strip().lower()
    if not needle:
        return ""
    lines = []
    for category, name, desc in _FIND_INDEX:
        haystack = f"{category} {name} {desc}".lower()
        if needle in haystack:
            lines.append(f"{category} {name} - {desc}")
    return "\n".join(lines)


def _banner(config: GrabberConfig) -> str:
    lines = [
        RULE,
        "Source Grabber",
        RULE,
        f"Target:      {config.target_url}",
        f"Output:      {config.output_root_dir}",
        f"Timeout:     {config.timeout_ms} ms",
        f"Retries:     {config.retries}",
        f"Concurrency: {config.concurrency}",
    ]
    if config.force:
        lines.append("Force:       redownloading all files")
    lines.append(RULE)
    return "\n".join(lines)


def _completion(report: GrabReport) -> str:
    lines = [
        "",
        RULE,
        f"Download completed in {report.duration_seconds:.2f} seconds",
        f"Downloaded {report.fetched} resources ({report.skipped} skipped)",
        f"Files have been saved to {report.output_root / 'dist'}",
        f"Original source code has been saved to {report.output_root / 'src'}",
        f"List of downloaded URLs has been saved to {report.ledger_path}",
    ]
    if report.failed_urls:
        lines.append(f"Failed to download {len(report.failed_urls)} resources:")
        lines.extend(f"  - {url}" for url in report.failed_urls)
    lines.append(RULE)
    return "\n".join(lines)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    help: bool = typer.Option(False, "--help", "-h", is_eager=True, help="Show minimal help."),
    help_full: bool = typer.Option(False, "--help-full", is_eager=True, help="Show expanded help."),
    find: Optional[str] = typer.Option(None, "--find", is_eager=True, help="Search commands, flags, env vars, artifacts."),
    doctor: bool = typer.Option(False, "--doctor", is_eager=True, help="Run environment diagnostics and exit."),
) -> None:
    if help_full:
        typer.echo(_help_full())
        raise typer.Exit(code=0)
    if find is not None:
        output = _run_find(find)
        if output:
            typer.echo(output)
        raise typer.Exit(code=0)
    if doctor:
        report = build_doctor_report()
        typer.echo(format_doctor_report(report))
        raise typer.Exit(code=0 if report.get("ok", True) else 2)
    if help or ctx.invoked_subcommand is None:
        typer.echo(_minimal_help())
        raise typer.Exit(code=0)


@app.command("doctor", add_help_option=True)
def doctor_cmd(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output root to check."),
) -> None:
    """Print environment and dependency diagnostics."""
    load_dotenv()
    report = build_doctor_report(output_dir=output)
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


@app.command("grab", add_help_option=True)
def grab(
    url: str = typer.Argument(..., help="Page URL to mirror."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output root (default: current directory)."),
    force: bool = typer.Option(False, "--force", "-f", help="Ignore the ledger and redownload everything."),
    timeout: Optional[int] = typer.Option(None, "--timeout", "-t", help="Request timeout in milliseconds."),
    retries: Optional[int] = typer.Option(None, "--retries", "-r", help="Retries after the first attempt."),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-c", help="Maximum concurrent requests."),
    debug: bool = typer.Option(False, "--debug", "-d", help="Verbose logging."),
    json_out: bool = typer.Option(False, "--json", help="Print summary JSON to stdout only."),
) -> None:
    """Mirror one page and rebuild its sources from source maps."""
    load_dotenv()
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format="%(message)s")
    try:
        config = build_config(
            url,
            output_dir=output,
            force=force,
            timeout_ms=timeout,
            retries=retries,
            concurrency=concurrency,
            debug=debug,
        )
    except ValueError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)

    if not json_out:
        typer.echo(_banner(config))
    try:
        report = run_grabber(config)
    except RootFetchError as exc:
        typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=3)

    if json_out:
        sys.stdout.write(json.dumps(report.to_dict(), ensure_ascii=False) + "\n")
    else:
        typer.echo(_completion(report))
    raise typer.Exit(code=0)
