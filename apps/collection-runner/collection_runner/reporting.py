"""Report artifacts rendered from a finished run."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from enum import Enum
from pathlib import Path
from typing import Iterable

import structlog
from jinja2 import BaseLoader, Environment, select_autoescape

from .errors import ReportWriteError
from .models import RunResult, StepStatus

LOGGER = structlog.get_logger("collection_runner.reporting")


class ReportFormat(str, Enum):
    CLI = "cli"
    JSON = "json"
    HTML = "html"
    JUNIT = "junit"


FILE_SUFFIXES = {
    ReportFormat.JSON: ".json",
    ReportFormat.HTML: ".html",
    ReportFormat.JUNIT: ".junit.xml",
}

_HTML_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{{ result.collection }} · {{ result.run_id }}</title>
<style>
  body { font-family: -apple-system, "Segoe UI", Roboto, sans-serif; margin: 2rem; color: #111; }
  table { border-collapse: collapse; width: 100%; margin-top: 1rem; }
  th, td { border: 1px solid #ddd; padding: .4rem .6rem; text-align: left; vertical-align: top; }
  th { background: #f3f4f6; }
  .passed { color: #15803d; font-weight: 600; }
  .failed { color: #b91c1c; font-weight: 600; }
  .skipped { color: #a16207; font-weight: 600; }
  .summary span { margin-right: 1.5rem; }
  ul.failures { margin: 0; padding-left: 1.2rem; color: #b91c1c; }
  code { font-size: .85em; }
</style>
</head>
<body>
<h1>{{ result.collection }}</h1>
<p>Run <code>{{ result.run_id }}</code> started {{ result.started_at.isoformat() }}{% if result.cancelled %} (cancelled){% endif %}</p>
<p class="summary">
  <span>Total: <strong>{{ result.total }}</strong></span>
  <span class="passed">Passed: {{ result.passed }}</span>
  <span class="failed">Failed: {{ result.failed }}</span>
  <span class="skipped">Skipped: {{ result.skipped }}</span>
  <span>Duration: {{ "%.0f"|format(result.duration_ms) }} ms</span>
</p>
<table>
  <thead>
    <tr><th>#</th><th>Step</th><th>Request</th><th>Status</th><th>HTTP</th><th>Latency</th><th>Checks</th></tr>
  </thead>
  <tbody>
  {% for step in result.steps %}
    <tr>
      <td>{{ step.index }}</td>
      <td>{{ step.name }}</td>
      <td>{% if step.request %}<code>{{ step.request.method }} {{ step.request.url }}</code>{% else %}-{% endif %}</td>
      <td class="{{ step.status.value }}">{{ step.status.value | upper }}</td>
      <td>{{ step.response.status_code if step.response else "-" }}</td>
      <td>{% if step.response %}{{ "%.0f"|format(step.response.latency_ms) }} ms{% else %}-{% endif %}</td>
      <td>
        {{ step.assertions | selectattr("passed") | list | length }}/{{ step.assertions | length }} assertions passed
        {% set failures = step.failure_messages() %}
        {% if failures and step.status.value != "skipped" %}
        <ul class="failures">
          {% for message in failures %}<li>{{ message }}</li>{% endfor %}
        </ul>
        {% elif step.status.value == "skipped" %}
        <div class="skipped">{{ step.error }}</div>
        {% endif %}
      </td>
    </tr>
  {% endfor %}
  </tbody>
</table>
{% set failed_steps = result.steps | selectattr("status.value", "equalto", "failed") | list %}
{% if failed_steps %}
<h2>Failure details</h2>
{% for step in failed_steps %}
<h3>{{ step.index }}. {{ step.name }}</h3>
{% if step.error %}<p class="failed">{{ step.error_type }}: {{ step.error }}</p>{% endif %}
<table>
  <thead><tr><th>Target</th><th>Comparator</th><th>Expected</th><th>Actual</th><th>Message</th></tr></thead>
  <tbody>
  {% for outcome in step.assertions if not outcome.passed %}
    <tr>
      <td>{{ outcome.target }}</td>
      <td>{{ outcome.comparator }}</td>
      <td><code>{{ outcome.expected }}</code></td>
      <td><code>{{ outcome.actual if outcome.found else "<missing>" }}</code></td>
      <td>{{ outcome.message }}</td>
    </tr>
  {% endfor %}
  {% for outcome in step.extractions if not outcome.found %}
    <tr>
      <td>{{ outcome.source }} {{ outcome.path }}</td>
      <td>extract</td>
      <td><code>{{ outcome.variable }}</code></td>
      <td><code>&lt;missing&gt;</code></td>
      <td>{{ outcome.message }}</td>
    </tr>
  {% endfor %}
  </tbody>
</table>
{% endfor %}
{% endif %}
</body>
</html>
"""

_env = Environment(
    loader=BaseLoader(),
    autoescape=select_autoescape(enabled_extensions=("html", "xml"), default_for_string=True),
)


def slug(value: str) -> str:
    return re.sub(r"[^a-z0-9_-]+", "-", value.lower()).strip("-") or "collection"


def load_run_result(text: str) -> RunResult:
    """Rebuild a RunResult from its structured JSON report."""

    return RunResult.model_validate_json(text)


class ReportGenerator:
    """Renders read-only views of a RunResult and writes them to disk."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir

    def render_json(self, result: RunResult) -> str:
        return result.model_dump_json(indent=2)

    def render_html(self, result: RunResult) -> str:
        return _env.from_string(_HTML_TEMPLATE).render(result=result)

    def render_junit(self, result: RunResult) -> str:
        suite = ET.Element(
            "testsuite",
            attrib={
                "name": result.collection,
                "tests": str(result.total),
                "failures": str(result.failed),
                "skipped": str(result.skipped),
                "time": f"{result.duration_ms / 1000:.3f}",
                "timestamp": result.started_at.isoformat(),
            },
        )
        for step in result.steps:
            case = ET.SubElement(
                suite,
                "testcase",
                attrib={
                    "classname": result.collection,
                    "name": step.name,
                    "time": f"{step.duration_ms / 1000:.3f}",
                },
            )
            if step.status == StepStatus.SKIPPED:
                ET.SubElement(case, "skipped", attrib={"message": step.error or "skipped"})
            elif step.status == StepStatus.FAILED:
                messages = step.failure_messages()
                failure = ET.SubElement(
                    case,
                    "failure",
                    attrib={
                        "message": messages[0] if messages else "Step failed",
                        "type": step.error_type or "AssertionFailure",
                    },
                )
                failure.text = "\n".join(messages)
        ET.indent(suite)
        body = ET.tostring(suite, encoding="unicode")
        return f'<?xml version="1.0" encoding="utf-8"?>\n{body}\n'

    def artifact_path(self, result: RunResult, report_format: ReportFormat) -> Path:
        return self.output_dir / f"{slug(result.collection)}-{result.run_id}{FILE_SUFFIXES[report_format]}"

    def write(self, result: RunResult, formats: Iterable[ReportFormat]) -> dict[ReportFormat, Path]:
        """Write every file-backed format; ``cli`` is rendered live and skipped here."""

        renderers = {
            ReportFormat.JSON: self.render_json,
            ReportFormat.HTML: self.render_html,
            ReportFormat.JUNIT: self.render_junit,
        }
        written: dict[ReportFormat, Path] = {}
        for report_format in dict.fromkeys(formats):
            if report_format not in renderers:
                continue
            destination = self.artifact_path(result, report_format)
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                destination.write_text(renderers[report_format](result), encoding="utf-8")
            except OSError as exc:
                raise ReportWriteError(f"Cannot write {report_format.value} report to {destination}: {exc}") from exc
            LOGGER.info("report_written", format=report_format.value, path=str(destination))
            written[report_format] = destination
        return written
