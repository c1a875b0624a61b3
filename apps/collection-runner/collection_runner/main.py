"""CLI entrypoint for the collection runner."""

from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer

from .console_reporter import ConsoleReporter
from .errors import InvalidCollection
from .logging_utils import configure_logging
from .output_config import get_output_format, get_timeout, log_format_for
from .reporting import ReportFormat
from .runner import RunConfig
from .suites import (
    EXIT_ERROR,
    SuiteDefinition,
    SuiteOutcome,
    SuiteRegistry,
    cleanup_old_reports,
    exit_code_for,
    run_suite,
    run_suites,
)

app = typer.Typer(help="Run declarative API test collections and archive their reports.")

DEFAULT_OUTPUT_DIR = Path("reports")
DEFAULT_REPORTERS = "cli,json,html"
DEFAULT_RETENTION_DAYS = 7


def _parse_reporters(value: str) -> list[ReportFormat]:
    formats: list[ReportFormat] = []
    for item in value.split(","):
        name = item.strip().lower()
        if not name:
            continue
        try:
            formats.append(ReportFormat(name))
        except ValueError as exc:
            choices = ", ".join(fmt.value for fmt in ReportFormat)
            raise typer.BadParameter(f"Unknown reporter '{name}' (choose from {choices})") from exc
    if not formats:
        raise typer.BadParameter("Provide at least one reporter")
    return formats


def _parse_vars(pairs: list[str]) -> dict[str, str]:
    result: dict[str, str] = {}
    for item in pairs:
        if "=" not in item:
            raise typer.BadParameter("Variable overrides must be in key=value format")
        key, value = item.split("=", 1)
        key = key.strip()
        if not key:
            raise typer.BadParameter("Variable name cannot be empty")
        result[key] = value
    return result


def _run_config(timeout: Optional[float], retries: int, retry_delay: float, fail_fast: bool) -> RunConfig:
    try:
        return RunConfig(
            timeout=get_timeout(timeout),
            fail_fast=fail_fast,
            retries=retries,
            retry_delay=retry_delay,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _console(output_format: Optional[str], log_level: str, log_file: Optional[Path]) -> ConsoleReporter:
    fmt = get_output_format(output_format)
    configure_logging(log_level, log_format_for(fmt), log_file)
    return ConsoleReporter(output_format=fmt)


@contextmanager
def _cancel_on_interrupt(cancel_event: threading.Event) -> Iterator[None]:
    """First Ctrl-C cancels between steps; a second one interrupts immediately."""

    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = signal.getsignal(signal.SIGINT)

    def _handler(signum, frame) -> None:
        if cancel_event.is_set():
            signal.signal(signal.SIGINT, previous)
            raise KeyboardInterrupt
        cancel_event.set()

    signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _report_outcome(console: ConsoleReporter, outcome: SuiteOutcome) -> None:
    if outcome.error:
        console.print_error(outcome.error)
    for report_format, path in outcome.reports.items():
        console.print_info(f"{report_format.value} report -> {path}")


@app.command()
def run(
    collection: Path = typer.Argument(..., help="Collection YAML/JSON file."),
    environment: Optional[Path] = typer.Option(
        None, "--environment", "-e", help="Environment YAML/JSON file with seed values."
    ),
    var: list[str] = typer.Option([], "--var", help="Variable override as key=value (repeatable)."),
    reporter: str = typer.Option(
        DEFAULT_REPORTERS, "--reporter", "-r", help="Comma separated reporters: cli, json, html, junit."
    ),
    output_dir: Path = typer.Option(DEFAULT_OUTPUT_DIR, help="Directory for report artifacts."),
    timeout: Optional[float] = typer.Option(None, help="Per-request timeout in seconds."),
    retries: int = typer.Option(0, min=0, help="Retries for network errors and timeouts."),
    retry_delay: float = typer.Option(0.0, min=0.0, help="Seconds to wait between retries."),
    fail_fast: bool = typer.Option(False, "--fail-fast", help="Skip remaining steps after the first failure."),
    run_id: Optional[str] = typer.Option(None, help="Run identifier used in report file names."),
    output_format: Optional[str] = typer.Option(
        None, "--output-format", help="Console output: auto, rich, plain or json."
    ),
    log_level: str = typer.Option("warning", help="Log level for structured logs."),
    log_file: Optional[Path] = typer.Option(None, help="Also write logs to this file."),
) -> None:
    """Run a single collection."""

    formats = _parse_reporters(reporter)
    overrides = _parse_vars(var)
    config = _run_config(timeout, retries, retry_delay, fail_fast)
    console = _console(output_format, log_level, log_file)

    cancel_event = threading.Event()
    with _cancel_on_interrupt(cancel_event):
        outcome = run_suite(
            collection.stem,
            SuiteDefinition(collection=collection, environment=environment),
            config,
            output_dir=output_dir,
            formats=formats,
            overrides=overrides,
            reporter=console if ReportFormat.CLI in formats else None,
            cancel_event=cancel_event,
            run_id=run_id,
        )
    _report_outcome(console, outcome)
    raise typer.Exit(code=exit_code_for([outcome]))


@app.command("run-suites")
def run_suites_command(
    registry: Path = typer.Option(Path("suites.yaml"), help="Suite registry YAML file."),
    suite: list[str] = typer.Option([], "--suite", "-s", help="Suite name to run (repeatable, default all)."),
    parallel: int = typer.Option(1, min=1, help="Number of suites to run concurrently."),
    retention_days: float = typer.Option(
        DEFAULT_RETENTION_DAYS, min=0, help="Delete reports older than this many days first (0 disables)."
    ),
    var: list[str] = typer.Option([], "--var", help="Variable override as key=value (repeatable)."),
    reporter: str = typer.Option(
        DEFAULT_REPORTERS, "--reporter", "-r", help="Comma separated reporters: cli, json, html, junit."
    ),
    output_dir: Path = typer.Option(DEFAULT_OUTPUT_DIR, help="Directory for report artifacts."),
    timeout: Optional[float] = typer.Option(None, help="Per-request timeout in seconds."),
    retries: int = typer.Option(0, min=0, help="Retries for network errors and timeouts."),
    retry_delay: float = typer.Option(0.0, min=0.0, help="Seconds to wait between retries."),
    fail_fast: bool = typer.Option(False, "--fail-fast", help="Skip remaining steps after the first failure."),
    output_format: Optional[str] = typer.Option(
        None, "--output-format", help="Console output: auto, rich, plain or json."
    ),
    log_level: str = typer.Option("warning", help="Log level for structured logs."),
    log_file: Optional[Path] = typer.Option(None, help="Also write logs to this file."),
) -> None:
    """Run every suite (or the selected ones) from a registry file."""

    formats = _parse_reporters(reporter)
    overrides = _parse_vars(var)
    config = _run_config(timeout, retries, retry_delay, fail_fast)
    console = _console(output_format, log_level, log_file)

    try:
        selected = SuiteRegistry.from_file(registry).select(suite)
    except (FileNotFoundError, InvalidCollection) as exc:
        console.print_error(str(exc))
        raise typer.Exit(code=EXIT_ERROR) from exc
    except KeyError as exc:
        console.print_error(str(exc.args[0]))
        raise typer.Exit(code=EXIT_ERROR) from exc

    removed = cleanup_old_reports(output_dir, retention_days)
    if removed:
        console.print_info(f"Removed {len(removed)} report file(s) older than {retention_days:g} days")

    live_console = ReportFormat.CLI in formats and parallel <= 1
    cancel_event = threading.Event()
    with _cancel_on_interrupt(cancel_event):
        outcomes = run_suites(
            selected,
            config,
            output_dir=output_dir,
            formats=formats,
            overrides=overrides,
            parallel=parallel,
            reporter_factory=(lambda: console) if live_console else (lambda: None),
            cancel_event=cancel_event,
        )

    for outcome in outcomes:
        _report_outcome(console, outcome)
    console.print_suite_summary(outcomes)
    raise typer.Exit(code=exit_code_for(outcomes))


@app.command()
def cleanup(
    output_dir: Path = typer.Option(DEFAULT_OUTPUT_DIR, help="Directory holding report artifacts."),
    retention_days: float = typer.Option(DEFAULT_RETENTION_DAYS, min=0, help="Maximum report age in days."),
) -> None:
    """Delete report and log files older than the retention window."""

    removed = cleanup_old_reports(output_dir, retention_days)
    typer.secho(f"Removed {len(removed)} file(s) from {output_dir}", fg=typer.colors.GREEN)


def run_cli() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run_cli()
