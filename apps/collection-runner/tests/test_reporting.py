from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import date
from pathlib import Path

import pytest

from collection_runner.errors import ReportWriteError
from collection_runner.models import Collection, RunResult
from collection_runner.reporting import ReportFormat, ReportGenerator, load_run_result
from collection_runner.runner import CollectionRunner, RunConfig

from conftest import ScriptedExecutor, respond


@pytest.fixture
def run_result() -> RunResult:
    collection = Collection.model_validate(
        {
            "name": "Hotel Booking",
            "steps": [
                {
                    "name": "create booking",
                    "method": "POST",
                    "url": "http://api/booking",
                    "json": {"firstname": "Jim"},
                    "assertions": [
                        {"target": "status", "comparator": "equals", "expected": 200},
                        {"target": "body", "path": "booking.firstname", "comparator": "equals", "expected": "Jim"},
                    ],
                    "extract": [{"source": "body", "path": "bookingid", "variable": "booking_id"}],
                },
                {
                    "name": "get booking",
                    "url": "http://api/booking/${booking_id}",
                    "assertions": [{"target": "status", "comparator": "equals", "expected": 200}],
                },
                {
                    "name": "delete booking",
                    "method": "DELETE",
                    "url": "http://api/booking/${booking_id}",
                    "assertions": [{"target": "status", "comparator": "equals", "expected": 201}],
                },
            ],
        }
    )
    executor = ScriptedExecutor(
        respond(200, {"bookingid": 5, "booking": {"firstname": "Jim"}}, headers={"X-Powered-By": "Express"}),
        respond(404, "Not Found"),
    )
    return CollectionRunner(RunConfig(fail_fast=True), executor=executor).run(collection, run_id="20240101_120000-abc123")


def test_structured_report_round_trips(run_result: RunResult) -> None:
    generator = ReportGenerator(Path("unused"))

    rebuilt = load_run_result(generator.render_json(run_result))

    assert rebuilt == run_result
    assert rebuilt.steps[0].assertions == run_result.steps[0].assertions
    assert rebuilt.steps[0].response == run_result.steps[0].response


def test_structured_report_is_idempotent(run_result: RunResult) -> None:
    generator = ReportGenerator(Path("unused"))
    before = run_result.model_copy(deep=True)

    first = generator.render_json(run_result)
    generator.render_html(run_result)
    generator.render_junit(run_result)
    second = generator.render_json(run_result)

    assert first == second
    assert run_result == before


def test_html_report_summarizes_counts_latency_and_failures(run_result: RunResult) -> None:
    html = ReportGenerator(Path("unused")).render_html(run_result)

    assert "Hotel Booking" in html
    assert "Passed: 1" in html
    assert "Failed: 1" in html
    assert "Skipped: 1" in html
    assert "5 ms" in html
    assert "status: expected equals 200, got 404" in html
    assert "fail-fast after step 2" in html


def test_junit_report_marks_failures_and_skips(run_result: RunResult) -> None:
    xml_text = ReportGenerator(Path("unused")).render_junit(run_result)

    suite = ET.fromstring(xml_text.split("\n", 1)[1])
    assert suite.attrib["tests"] == "3"
    assert suite.attrib["failures"] == "1"
    assert suite.attrib["skipped"] == "1"
    cases = suite.findall("testcase")
    assert cases[0].find("failure") is None
    assert cases[1].find("failure").attrib["message"] == "status: expected equals 200, got 404"
    assert cases[2].find("skipped") is not None


def test_write_uses_collection_slug_and_run_id(tmp_path: Path, run_result: RunResult) -> None:
    generator = ReportGenerator(tmp_path / "reports")

    written = generator.write(run_result, [ReportFormat.CLI, ReportFormat.JSON, ReportFormat.HTML, ReportFormat.JUNIT])

    assert set(written) == {ReportFormat.JSON, ReportFormat.HTML, ReportFormat.JUNIT}
    assert written[ReportFormat.JSON].name == "hotel-booking-20240101_120000-abc123.json"
    assert written[ReportFormat.HTML].name == "hotel-booking-20240101_120000-abc123.html"
    assert written[ReportFormat.JUNIT].name == "hotel-booking-20240101_120000-abc123.junit.xml"
    assert load_run_result(written[ReportFormat.JSON].read_text(encoding="utf-8")) == run_result


def test_write_failure_raises_report_write_error(tmp_path: Path, run_result: RunResult) -> None:
    blocker = tmp_path / "reports"
    blocker.write_text("not a directory", encoding="utf-8")

    with pytest.raises(ReportWriteError):
        ReportGenerator(blocker).write(run_result, [ReportFormat.JSON])


def test_round_trip_survives_date_values() -> None:
    collection = Collection.model_validate(
        {
            "name": "Bookings",
            "steps": [
                {
                    "name": "fetch booking",
                    "url": "http://api/booking/1",
                    "assertions": [
                        {"target": "body", "path": "checkin", "comparator": "exists", "expected": date(2025, 1, 1)},
                        {"target": "body", "path": "checkin", "comparator": "equals", "expected": date(2025, 1, 1)},
                    ],
                }
            ],
        }
    )
    executor = ScriptedExecutor(respond(200, {"checkin": "2025-01-01"}))
    result = CollectionRunner(executor=executor).run(collection, run_id="dates")

    rebuilt = load_run_result(ReportGenerator(Path("unused")).render_json(result))

    assert result.steps[0].assertions[1].passed
    assert rebuilt == result
