"""Suite registry: named collection/environment pairs run as one batch."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .console_reporter import ConsoleReporter
from .errors import InvalidCollection, ReportWriteError
from .loader import load_collection, load_environment, load_yaml
from .models import Environment, RunResult
from .reporting import ReportFormat, ReportGenerator
from .runner import CollectionRunner, RunConfig

LOGGER = structlog.get_logger("collection_runner.suites")

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_ERROR = 2

REPORT_SUFFIXES = (".html", ".json", ".xml", ".log")


class SuiteDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    collection: Path
    environment: Optional[Path] = None


class SuiteRegistry(BaseModel):
    """Mapping of suite name to its collection and environment files."""

    model_config = ConfigDict(extra="forbid")

    suites: dict[str, SuiteDefinition] = Field(default_factory=dict)

    @classmethod
    def from_file(cls, path: Path) -> "SuiteRegistry":
        if not path.exists():
            raise FileNotFoundError(f"Suite registry not found: {path}")
        try:
            raw = load_yaml(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise InvalidCollection(str(path), [f"not valid YAML/JSON: {exc}"]) from exc
        try:
            registry = cls.model_validate(raw)
        except ValidationError as exc:
            errors = [
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
            ]
            raise InvalidCollection(str(path), errors) from exc
        base_dir = path.parent
        return cls(
            suites={
                name: SuiteDefinition(
                    collection=_relative_to(base_dir, definition.collection),
                    environment=_relative_to(base_dir, definition.environment) if definition.environment else None,
                )
                for name, definition in registry.suites.items()
            }
        )

    def select(self, names: Iterable[str]) -> dict[str, SuiteDefinition]:
        wanted = list(names)
        if not wanted:
            return dict(self.suites)
        unknown = [name for name in wanted if name not in self.suites]
        if unknown:
            raise KeyError(f"Unknown suite(s): {', '.join(unknown)}")
        return {name: self.suites[name] for name in wanted}


def _relative_to(base_dir: Path, path: Path) -> Path:
    return path if path.is_absolute() else base_dir / path


@dataclass
class SuiteOutcome:
    name: str
    status: str
    result: RunResult | None = None
    reports: dict[ReportFormat, Path] = field(default_factory=dict)
    error: str | None = None

    def summary(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"suite": self.name, "status": self.status, "error": self.error}
        if self.result is not None:
            payload.update(
                run_id=self.result.run_id,
                total=self.result.total,
                passed=self.result.passed,
                failed=self.result.failed,
                skipped=self.result.skipped,
                duration_ms=self.result.duration_ms,
            )
        payload["reports"] = {fmt.value: str(path) for fmt, path in self.reports.items()}
        return payload


def seed_variables(environment: Environment | None, overrides: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Environment values overlaid with explicit overrides."""

    seed: dict[str, Any] = dict(environment.values) if environment else {}
    seed.update(overrides or {})
    return seed


def run_suite(
    name: str,
    definition: SuiteDefinition,
    config: RunConfig,
    *,
    output_dir: Path,
    formats: Iterable[ReportFormat],
    overrides: Mapping[str, Any] | None = None,
    reporter: ConsoleReporter | None = None,
    cancel_event: threading.Event | None = None,
    run_id: str | None = None,
) -> SuiteOutcome:
    """Load, run and report one suite; operational problems become an ``error`` outcome."""

    logger = LOGGER.bind(suite=name)
    missing = [
        str(path) for path in (definition.collection, definition.environment) if path is not None and not path.exists()
    ]
    if missing:
        logger.error("suite_files_missing", missing=missing)
        return SuiteOutcome(name=name, status="error", error=f"Missing files: {', '.join(missing)}")

    try:
        collection = load_collection(definition.collection)
        environment = load_environment(definition.environment) if definition.environment else None
    except InvalidCollection as exc:
        logger.error("suite_invalid", errors=exc.errors)
        return SuiteOutcome(name=name, status="error", error=str(exc))

    runner = CollectionRunner(config, reporter=reporter, cancel_event=cancel_event)
    result = runner.run(collection, seed_variables(environment, overrides), run_id=run_id)

    try:
        reports = ReportGenerator(output_dir).write(result, formats)
    except ReportWriteError as exc:
        logger.error("suite_report_failed", error=str(exc))
        return SuiteOutcome(name=name, status="error", result=result, error=str(exc))

    status = "passed" if result.all_passed else "failed"
    logger.info("suite_finished", status=status, run_id=result.run_id)
    return SuiteOutcome(name=name, status=status, result=result, reports=reports)


def run_suites(
    suites: Mapping[str, SuiteDefinition],
    config: RunConfig,
    *,
    output_dir: Path,
    formats: Iterable[ReportFormat],
    overrides: Mapping[str, Any] | None = None,
    parallel: int = 1,
    reporter_factory: Callable[[], ConsoleReporter | None] = lambda: None,
    cancel_event: threading.Event | None = None,
) -> list[SuiteOutcome]:
    """Run suites in registry order, optionally across a thread pool.

    Suites share nothing but the cancel event, so running them concurrently
    is safe; results come back in the requested order.
    """

    formats = list(formats)

    def _run(item: tuple[str, SuiteDefinition]) -> SuiteOutcome:
        name, definition = item
        return run_suite(
            name,
            definition,
            config,
            output_dir=output_dir,
            formats=formats,
            overrides=overrides,
            reporter=reporter_factory(),
            cancel_event=cancel_event,
        )

    items = list(suites.items())
    if parallel <= 1 or len(items) <= 1:
        return [_run(item) for item in items]
    with ThreadPoolExecutor(max_workers=parallel, thread_name_prefix="suite") as pool:
        return list(pool.map(_run, items))


def exit_code_for(outcomes: Iterable[SuiteOutcome]) -> int:
    statuses = {outcome.status for outcome in outcomes}
    if "error" in statuses:
        return EXIT_ERROR
    if "failed" in statuses:
        return EXIT_FAILURES
    return EXIT_OK


def cleanup_old_reports(directory: Path, max_age_days: float, *, now: float | None = None) -> list[Path]:
    """Delete report and log files older than ``max_age_days``."""

    if max_age_days <= 0 or not directory.exists():
        return []
    cutoff = (now if now is not None else time.time()) - max_age_days * 86400
    removed: list[Path] = []
    for path in sorted(directory.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in REPORT_SUFFIXES:
            continue
        if path.stat().st_mtime < cutoff:
            path.unlink()
            removed.append(path)
    if removed:
        LOGGER.info("reports_cleaned", directory=str(directory), removed=len(removed))
    return removed
