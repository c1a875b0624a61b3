"""Collection, environment and runtime result models."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Scalar = Union[str, int, float, bool]

AssertionTarget = Literal["status", "header", "body", "latency"]
Comparator = Literal["equals", "lessThan", "greaterThan", "matches", "exists"]
ExtractionSource = Literal["body", "header"]


def _iso_dates(value: Any) -> Any:
    """Replace date/datetime leaves with ISO strings, recursively."""

    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _iso_dates(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_iso_dates(item) for item in value]
    return value


class Assertion(BaseModel):
    """Declared expectation about a response."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    target: AssertionTarget
    path: Optional[str] = None
    comparator: Comparator
    expected: Any = None

    @field_validator("expected", mode="before")
    @classmethod
    def _normalize_expected(cls, value: Any) -> Any:
        return _iso_dates(value)

    @model_validator(mode="after")
    def _check_operands(self) -> "Assertion":
        if self.target in ("header", "body") and not self.path:
            raise ValueError(f"target '{self.target}' requires a path")
        if self.comparator != "exists" and "expected" not in self.model_fields_set:
            raise ValueError(f"comparator '{self.comparator}' requires an expected value")
        return self

    def describe(self) -> str:
        if self.path:
            return f"{self.target} {self.path}"
        return self.target


class Extraction(BaseModel):
    """Rule deriving a variable from a response for later steps."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    source: ExtractionSource
    path: str
    variable: str = Field(min_length=1)


class Step(BaseModel):
    """One declarative HTTP exchange."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    name: str
    description: Optional[str] = None
    method: str = "GET"
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None
    json_body: Any = Field(default=None, alias="json")
    assertions: list[Assertion] = Field(default_factory=list)
    extract: list[Extraction] = Field(default_factory=list)

    @field_validator("method")
    @classmethod
    def _normalize_method(cls, value: str) -> str:
        method = value.strip().upper()
        if not method:
            raise ValueError("method cannot be empty")
        return method

    @field_validator("json_body", mode="before")
    @classmethod
    def _normalize_json_body(cls, value: Any) -> Any:
        return _iso_dates(value)

    @model_validator(mode="after")
    def _check_body(self) -> "Step":
        if self.body is not None and self.json_body is not None:
            raise ValueError("'body' and 'json' are mutually exclusive")
        return self


class Collection(BaseModel):
    """Ordered, immutable sequence of steps."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(min_length=1)
    description: Optional[str] = None
    variables: dict[str, Scalar] = Field(default_factory=dict)
    steps: list[Step] = Field(default_factory=list)


class Environment(BaseModel):
    """Seed values for a run.

    ``values`` accepts a plain mapping or the Postman environment list form
    ``[{"key": ..., "value": ..., "enabled": ...}]``.
    """

    model_config = ConfigDict(extra="ignore")

    name: str = "environment"
    values: dict[str, Scalar] = Field(default_factory=dict)

    @field_validator("values", mode="before")
    @classmethod
    def _flatten_entries(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        flattened: dict[str, Any] = {}
        for entry in value:
            if not isinstance(entry, dict) or "key" not in entry:
                raise ValueError("environment entries must be mappings with a 'key'")
            if entry.get("enabled", True) is False:
                continue
            flattened[str(entry["key"])] = entry.get("value", "")
        return flattened


class HttpRequest(BaseModel):
    """Concrete request produced from a step and a variable snapshot."""

    model_config = ConfigDict(frozen=True)

    method: str
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None


class HttpResponse(BaseModel):
    """Captured response of one request."""

    model_config = ConfigDict(frozen=True)

    status_code: int
    headers: dict[str, str] = Field(default_factory=dict)
    body: str = ""
    latency_ms: float

    def header(self, name: str) -> Optional[str]:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


class AssertionOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    target: str
    comparator: str
    expected: Any = None
    actual: Any = None
    found: bool = True
    passed: bool
    message: str


class ExtractionOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    variable: str
    source: str
    path: str
    found: bool
    value: Any = None
    message: Optional[str] = None


class StepStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"


class StepResult(BaseModel):
    """Runtime result for one step."""

    model_config = ConfigDict(frozen=True)

    index: int
    name: str
    status: StepStatus
    request: Optional[HttpRequest] = None
    response: Optional[HttpResponse] = None
    assertions: list[AssertionOutcome] = Field(default_factory=list)
    extractions: list[ExtractionOutcome] = Field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None
    attempts: int = 0
    started_at: datetime
    duration_ms: float = 0.0

    @property
    def passed(self) -> bool:
        return self.status == StepStatus.PASSED

    def failure_messages(self) -> list[str]:
        messages: list[str] = []
        if self.error:
            messages.append(self.error)
        messages.extend(outcome.message for outcome in self.assertions if not outcome.passed)
        messages.extend(
            outcome.message or f"extraction of {outcome.variable} failed"
            for outcome in self.extractions
            if not outcome.found
        )
        return messages


class RunResult(BaseModel):
    """Aggregated, immutable result of one collection run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    collection: str
    state: RunState = RunState.COMPLETED
    cancelled: bool = False
    started_at: datetime
    finished_at: datetime
    duration_ms: float
    total: int
    passed: int
    failed: int
    skipped: int
    steps: list[StepResult] = Field(default_factory=list)

    @property
    def all_passed(self) -> bool:
        return self.failed == 0 and self.skipped == 0 and not self.cancelled
