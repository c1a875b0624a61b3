"""Variable extraction from responses."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from .errors import ExtractionNotFound
from .models import Extraction, ExtractionOutcome, HttpResponse
from .selectors import select_body, select_header
from .variables import MISSING, VariableStore


@dataclass
class ExtractionReport:
    outcomes: list[ExtractionOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.found)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.succeeded


def _storable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)):
        return value
    return json.dumps(value, sort_keys=True)


class Extractor:
    """Applies extraction rules best-effort: a missing source never stops the rest."""

    def apply(
        self,
        extractions: list[Extraction],
        response: HttpResponse,
        store: VariableStore,
    ) -> ExtractionReport:
        report = ExtractionReport()
        for extraction in extractions:
            try:
                value = self._locate(extraction, response)
            except ExtractionNotFound as exc:
                report.outcomes.append(
                    ExtractionOutcome(
                        variable=extraction.variable,
                        source=extraction.source,
                        path=extraction.path,
                        found=False,
                        message=f"ExtractionNotFound: {exc}",
                    )
                )
                continue
            stored = _storable(value)
            store.set(extraction.variable, stored)
            report.outcomes.append(
                ExtractionOutcome(
                    variable=extraction.variable,
                    source=extraction.source,
                    path=extraction.path,
                    found=True,
                    value=stored,
                )
            )
        return report

    @staticmethod
    def _locate(extraction: Extraction, response: HttpResponse) -> Any:
        if extraction.source == "header":
            value = select_header(response, extraction.path)
        else:
            value = select_body(response, extraction.path)
        if value is MISSING:
            raise ExtractionNotFound(
                f"{extraction.source} {extraction.path!r} not found for variable {extraction.variable!r}"
            )
        return value
