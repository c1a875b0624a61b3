"""Console reporter with intelligent environment detection for run output."""

from __future__ import annotations

import json
import os
import sys
from typing import TYPE_CHECKING, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TextColumn, TimeRemainingColumn
from rich.table import Table
from rich.text import Text

from .models import RunResult, StepResult
from .output_config import OutputFormat

if TYPE_CHECKING:
    from .suites import SuiteOutcome


class ConsoleReporter:
    """
    Smart console reporter that adapts to environment.

    Automatically detects:
    - Interactive terminals (use rich with progress bars)
    - CI/CD environments (use plain text)
    - Pipe/redirect scenarios (use plain text)

    ``OutputFormat.JSON`` emits one JSON document per line instead.
    """

    def __init__(self, output_format: OutputFormat = OutputFormat.AUTO):
        self.output_format = output_format
        self._detect_environment()

        if self.use_rich:
            self.console = Console()
            self._setup_rich_components()
        else:
            self.console = None

    def _detect_environment(self) -> None:
        """Detect if we should use rich output or plain text."""
        if self.output_format == OutputFormat.RICH:
            self.use_rich = True
        elif self.output_format in (OutputFormat.PLAIN, OutputFormat.JSON):
            self.use_rich = False
        else:  # AUTO
            # Use rich only if stdout is a terminal and we are not on CI
            is_terminal = sys.stdout.isatty()
            is_ci = any([
                'CI' in os.environ,
                'GITHUB_ACTIONS' in os.environ,
                'JENKINS_HOME' in os.environ,
                'GITLAB_CI' in os.environ,
                'TRAVIS' in os.environ,
            ])
            self.use_rich = is_terminal and not is_ci

    @property
    def emit_json(self) -> bool:
        return self.output_format == OutputFormat.JSON

    def _setup_rich_components(self) -> None:
        """Setup rich progress bar and live components."""
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeRemainingColumn(),
            console=self.console,
        )
        self.progress_task: Optional[TaskID] = None
        self.live: Optional[Live] = None
        self.results_table: Optional[Table] = None

    def start_run(self, collection_name: str, total_steps: int) -> None:
        """Initialize collection run display."""
        if self.use_rich:
            self.results_table = Table(show_header=True, header_style="bold cyan")
            self.results_table.add_column("Step", style="dim", width=8)
            self.results_table.add_column("Request", width=48)
            self.results_table.add_column("Status", width=10)
            self.results_table.add_column("Latency", justify="right", width=10)

            self.progress_task = self.progress.add_task(
                f"[cyan]Running {escape(collection_name)}",
                total=total_steps,
            )
            self.live = Live(
                Group(self.progress, self.results_table),
                console=self.console,
                refresh_per_second=4,
            )
            self.live.start()
        elif self.emit_json:
            self._emit({"event": "run_started", "collection": collection_name, "total_steps": total_steps})
        else:
            print(f"Running collection: {collection_name}")
            print(f"Total steps: {total_steps}")
            print("-" * 80)

    def report_step_start(self, index: int, method: str, url: str) -> None:
        """Report that a step is starting."""
        if not self.use_rich and not self.emit_json:
            print(f"[{index}] {method} {url} ... ", end="", flush=True)

    def report_step_result(self, result: StepResult) -> None:
        """Report a step result."""
        latency = result.response.latency_ms if result.response else result.duration_ms
        failures = result.failure_messages()

        if self.use_rich:
            style = {"passed": "green", "failed": "red"}.get(result.status.value, "yellow")
            icon = {"passed": "✓", "failed": "✗"}.get(result.status.value, "-")
            request_label = f"{result.request.method} {result.request.url}" if result.request else result.name
            self.results_table.add_row(
                f"{result.index}",
                Text(request_label),
                Text(f"{icon} {result.status.value.upper()}", style=style),
                f"{latency:.0f}ms",
            )
            for message in failures:
                self.results_table.add_row("", Text(message, style="red"), "", "")
            self.progress.update(self.progress_task, advance=1)
        elif self.emit_json:
            self._emit(
                {
                    "event": "step_finished",
                    "index": result.index,
                    "name": result.name,
                    "status": result.status.value,
                    "latency_ms": latency,
                    "failures": failures,
                }
            )
        else:
            if result.status.value == "skipped":
                print(f"[{result.index}] {result.name} - SKIPPED")
                return
            if result.passed:
                print(f"✓ PASS ({latency:.0f}ms)")
            else:
                print(f"✗ FAIL ({latency:.0f}ms)")
                for message in failures:
                    print(f"  Error: {message}")

    def finish_run(self, result: RunResult) -> None:
        """Display final run summary."""
        if self.use_rich:
            if self.live:
                self.live.stop()

            summary_text = Text()
            summary_text.append(f"Total: {result.total}  ", style="bold")
            summary_text.append(f"Passed: {result.passed}  ", style="bold green")
            summary_text.append(f"Failed: {result.failed}  ", style="bold red" if result.failed else "bold green")
            if result.skipped:
                summary_text.append(f"Skipped: {result.skipped}  ", style="bold yellow")
            summary_text.append(f"Duration: {result.duration_ms:.0f}ms", style="bold cyan")

            ok = result.all_passed
            status = "✓ ALL STEPS PASSED" if ok else "✗ SOME STEPS FAILED"
            self.console.print()
            self.console.print(Panel(
                summary_text,
                title=Text(status, style="bold green" if ok else "bold red"),
                border_style="green" if ok else "red",
            ))
        elif self.emit_json:
            self._emit(
                {
                    "event": "run_finished",
                    "collection": result.collection,
                    "run_id": result.run_id,
                    "total": result.total,
                    "passed": result.passed,
                    "failed": result.failed,
                    "skipped": result.skipped,
                    "duration_ms": result.duration_ms,
                }
            )
        else:
            print("-" * 80)
            print(
                f"Total: {result.total} | Passed: {result.passed} | Failed: {result.failed} | "
                f"Skipped: {result.skipped} | Duration: {result.duration_ms:.0f}ms"
            )
            if result.all_passed:
                print("✓ ALL STEPS PASSED")
            else:
                print("✗ SOME STEPS FAILED")

    def print_suite_summary(self, outcomes: list["SuiteOutcome"]) -> None:
        """Summary table across several suites."""
        if self.use_rich:
            table = Table(title="Execution summary", show_header=True, header_style="bold cyan")
            table.add_column("Suite")
            table.add_column("Status")
            table.add_column("Passed", justify="right")
            table.add_column("Failed", justify="right")
            table.add_column("Duration", justify="right")
            for outcome in outcomes:
                result = outcome.result
                table.add_row(
                    Text(outcome.name),
                    Text(outcome.status.upper(), style="green" if outcome.status == "passed" else "red"),
                    str(result.passed) if result else "-",
                    str(result.failed) if result else "-",
                    f"{result.duration_ms:.0f}ms" if result else "-",
                )
            self.console.print(table)
            for outcome in outcomes:
                if outcome.error:
                    self.console.print(f"[bold red]{escape(outcome.name)}:[/] {escape(outcome.error)}")
        elif self.emit_json:
            self._emit({"event": "suites_finished", "suites": [outcome.summary() for outcome in outcomes]})
        else:
            print("=" * 80)
            print("EXECUTION SUMMARY")
            print("=" * 80)
            for outcome in outcomes:
                result = outcome.result
                counts = f"passed={result.passed} failed={result.failed}" if result else outcome.error
                print(f"{outcome.name:<20} {outcome.status.upper():<8} {counts}")
            passed = sum(1 for outcome in outcomes if outcome.status == "passed")
            print(f"Suites: {len(outcomes)} | Passed: {passed} | Failed: {len(outcomes) - passed}")

    def print_error(self, message: str) -> None:
        """Print an error message."""
        if self.use_rich:
            self.console.print(f"[bold red]Error:[/] {escape(message)}")
        elif self.emit_json:
            self._emit({"event": "error", "message": message})
        else:
            print(f"Error: {message}")

    def print_info(self, message: str) -> None:
        """Print an info message."""
        if self.use_rich:
            self.console.print(f"[cyan]{escape(message)}[/]")
        elif self.emit_json:
            self._emit({"event": "info", "message": message})
        else:
            print(message)

    @staticmethod
    def _emit(payload: dict) -> None:
        print(json.dumps(payload, default=str), flush=True)
