"""Collection execution engine."""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import structlog

from .assertions import AssertionEngine
from .console_reporter import ConsoleReporter
from .errors import NetworkError, TemplateResolutionError, Timeout
from .extractor import Extractor
from .http_executor import DEFAULT_TIMEOUT, HttpStepExecutor, StepExecutor
from .models import (
    AssertionOutcome,
    Collection,
    ExtractionOutcome,
    HttpRequest,
    HttpResponse,
    RunResult,
    RunState,
    Step,
    StepResult,
    StepStatus,
)
from .request_builder import build_request
from .variables import VariableStore

LOGGER = structlog.get_logger("collection_runner")

STEP_ERRORS = (TemplateResolutionError, NetworkError, Timeout)


@dataclass(frozen=True)
class RunConfig:
    """Immutable per-run policy."""

    timeout: float = DEFAULT_TIMEOUT
    fail_fast: bool = False
    retries: int = 0
    retry_delay: float = 0.0

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.retries < 0:
            raise ValueError("retries cannot be negative")
        if self.retry_delay < 0:
            raise ValueError("retry_delay cannot be negative")


def new_run_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"{stamp}-{uuid.uuid4().hex[:6]}"


class CollectionRunner:
    """Runs the steps of one collection strictly in order.

    A runner owns the variable store of exactly one run; create a new runner
    per collection run.
    """

    def __init__(
        self,
        config: RunConfig = RunConfig(),
        *,
        executor: StepExecutor | None = None,
        reporter: ConsoleReporter | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.config = config
        self._executor = executor or HttpStepExecutor(timeout=config.timeout)
        self._reporter = reporter
        self._cancel_event = cancel_event or threading.Event()
        self._assertions = AssertionEngine()
        self._extractor = Extractor()
        self.state = RunState.PENDING
        self.variables = VariableStore()

    def cancel(self) -> None:
        """Request cooperative cancellation; checked between steps."""

        self._cancel_event.set()

    def run(
        self,
        collection: Collection,
        seed: Mapping[str, Any] | None = None,
        *,
        run_id: str | None = None,
    ) -> RunResult:
        if self.state != RunState.PENDING:
            raise RuntimeError("CollectionRunner instances execute a single run")
        self.state = RunState.RUNNING
        run_id = run_id or new_run_id()
        logger = LOGGER.bind(collection=collection.name, run_id=run_id)

        self.variables = VariableStore(collection.variables)
        self.variables.update(seed or {})

        run_start = datetime.now(timezone.utc)
        timer = time.perf_counter()
        logger.info("run_started", total_steps=len(collection.steps), fail_fast=self.config.fail_fast)
        if self._reporter:
            self._reporter.start_run(collection.name, len(collection.steps))

        step_results: list[StepResult] = []
        skip_reason: Optional[str] = None
        cancelled = False

        for index, step in enumerate(collection.steps, start=1):
            if skip_reason is None and self._cancel_event.is_set():
                cancelled = True
                skip_reason = "run cancelled"
                logger.warning("run_cancelled", next_step=index)
            if skip_reason is not None:
                result = _skipped_result(index, step, skip_reason)
            else:
                if self._reporter:
                    self._reporter.report_step_start(index, step.method, step.url)
                result = self._execute_step(index, step, logger)
                if self.config.fail_fast and result.status == StepStatus.FAILED:
                    skip_reason = f"fail-fast after step {index} '{step.name}'"
            step_results.append(result)
            if self._reporter:
                self._reporter.report_step_result(result)

        duration_ms = (time.perf_counter() - timer) * 1000
        self.state = RunState.COMPLETED
        summary = _build_summary(
            run_id=run_id,
            collection=collection,
            started_at=run_start,
            finished_at=datetime.now(timezone.utc),
            duration_ms=duration_ms,
            step_results=step_results,
            cancelled=cancelled,
        )
        logger.info(
            "run_finished",
            total=summary.total,
            passed=summary.passed,
            failed=summary.failed,
            skipped=summary.skipped,
            duration_ms=summary.duration_ms,
        )
        if self._reporter:
            self._reporter.finish_run(summary)
        return summary

    def _execute_step(self, index: int, step: Step, logger: Any) -> StepResult:
        step_logger = logger.bind(step=step.name, step_index=index)
        started_at = datetime.now(timezone.utc)
        timer = time.perf_counter()
        # Assertions and templates only ever see bindings from earlier steps
        snapshot = self.variables.snapshot()

        http_request: HttpRequest | None = None
        response: HttpResponse | None = None
        outcomes: list[AssertionOutcome] = []
        extractions: list[ExtractionOutcome] = []
        error_text: str | None = None
        error_type: str | None = None
        attempts = 0

        try:
            http_request = build_request(step, snapshot)
            while True:
                attempts += 1
                try:
                    response = self._executor.execute(http_request)
                    break
                except (NetworkError, Timeout) as exc:
                    if attempts > self.config.retries:
                        raise
                    step_logger.warning("step_retry", attempt=attempts, error=str(exc))
                    if self.config.retry_delay:
                        time.sleep(self.config.retry_delay)
            outcomes = self._assertions.evaluate(step.assertions, response, snapshot)
            extractions = self._extractor.apply(step.extract, response, self.variables).outcomes
        except STEP_ERRORS as exc:
            error_text = str(exc)
            error_type = type(exc).__name__
        except Exception as exc:
            step_logger.exception("step_crashed")
            error_text = f"{type(exc).__name__}: {exc}"
            error_type = type(exc).__name__

        passed = (
            error_text is None
            and all(outcome.passed for outcome in outcomes)
            and all(outcome.found for outcome in extractions)
        )
        duration_ms = (time.perf_counter() - timer) * 1000
        result = StepResult(
            index=index,
            name=step.name,
            status=StepStatus.PASSED if passed else StepStatus.FAILED,
            request=http_request,
            response=response,
            assertions=outcomes,
            extractions=extractions,
            error=error_text,
            error_type=error_type,
            attempts=attempts,
            started_at=started_at,
            duration_ms=round(duration_ms, 3),
        )
        if passed:
            step_logger.info("step_passed", status_code=response.status_code, duration_ms=result.duration_ms)
        else:
            step_logger.warning(
                "step_failed",
                error_type=error_type,
                failures=len(result.failure_messages()),
                duration_ms=result.duration_ms,
            )
        return result


def _skipped_result(index: int, step: Step, reason: str) -> StepResult:
    return StepResult(
        index=index,
        name=step.name,
        status=StepStatus.SKIPPED,
        error=f"skipped: {reason}",
        started_at=datetime.now(timezone.utc),
    )


def _build_summary(
    *,
    run_id: str,
    collection: Collection,
    started_at: datetime,
    finished_at: datetime,
    duration_ms: float,
    step_results: list[StepResult],
    cancelled: bool,
) -> RunResult:
    passed = sum(1 for result in step_results if result.status == StepStatus.PASSED)
    failed = sum(1 for result in step_results if result.status == StepStatus.FAILED)
    skipped = sum(1 for result in step_results if result.status == StepStatus.SKIPPED)
    return RunResult(
        run_id=run_id,
        collection=collection.name,
        state=RunState.COMPLETED,
        cancelled=cancelled,
        started_at=started_at,
        finished_at=finished_at,
        duration_ms=round(duration_ms, 3),
        total=len(step_results),
        passed=passed,
        failed=failed,
        skipped=skipped,
        steps=step_results,
    )
