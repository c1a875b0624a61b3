"""Error taxonomy for collection runs.

Only ``InvalidCollection`` and ``ReportWriteError`` are fatal to a run. Every
other error is step-local and ends up recorded inside a ``StepResult``.
"""

from __future__ import annotations

from typing import Iterable


class CollectionRunnerError(RuntimeError):
    """Base class for all runner errors."""


class InvalidCollection(CollectionRunnerError):
    """Raised when a collection or environment source is structurally invalid."""

    def __init__(self, source: str, errors: Iterable[str]) -> None:
        self.source = source
        self.errors = list(errors)
        details = "\n".join(f"  - {error}" for error in self.errors)
        super().__init__(f"Invalid collection source {source}:\n{details}")


class UnresolvedVariable(CollectionRunnerError):
    """Raised when a template references variables with no bound value."""

    def __init__(self, names: Iterable[str], template: str) -> None:
        self.names = list(names)
        self.template = template
        joined = ", ".join(self.names)
        super().__init__(f"Unresolved variable(s) {joined} in template {template!r}")


class TemplateResolutionError(CollectionRunnerError):
    """Raised when a step's request cannot be built from its templates."""

    def __init__(self, step_name: str, field: str, cause: UnresolvedVariable) -> None:
        self.step_name = step_name
        self.field = field
        self.cause = cause
        super().__init__(f"Step '{step_name}' could not resolve {field}: {cause}")


class NetworkError(CollectionRunnerError):
    """Connection, DNS or TLS failure while performing a request."""


class Timeout(CollectionRunnerError):
    """The request did not complete within the configured timeout."""


class TypeMismatch(CollectionRunnerError):
    """A numeric comparator received a non-numeric operand."""


class ExtractionNotFound(CollectionRunnerError):
    """An extraction source was absent from the response."""


class ReportWriteError(CollectionRunnerError):
    """Report artifacts could not be written."""
