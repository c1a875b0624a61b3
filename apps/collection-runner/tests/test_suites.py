from __future__ import annotations

import os
import time
from pathlib import Path

import pytest
import yaml

from collection_runner.errors import InvalidCollection
from collection_runner.models import Environment
from collection_runner.reporting import ReportFormat
from collection_runner.runner import RunConfig
from collection_runner.suites import (
    EXIT_ERROR,
    EXIT_FAILURES,
    EXIT_OK,
    SuiteOutcome,
    SuiteRegistry,
    cleanup_old_reports,
    exit_code_for,
    run_suites,
    seed_variables,
)


def _write_suite(directory: Path, name: str, path: str, status: int = 200) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    collection = {
        "name": name,
        "steps": [
            {
                "name": f"{name} ping",
                "url": "${base_url}" + path,
                "assertions": [{"target": "status", "comparator": "equals", "expected": status}],
            }
        ],
    }
    (directory / f"{name}.yaml").write_text(yaml.safe_dump(collection), encoding="utf-8")
    (directory / f"{name}-env.yaml").write_text(yaml.safe_dump({"name": name, "values": {}}), encoding="utf-8")


def _registry(tmp_path: Path, suites: dict) -> Path:
    path = tmp_path / "suites.yaml"
    path.write_text(yaml.safe_dump({"suites": suites}), encoding="utf-8")
    return path


def test_registry_resolves_paths_relative_to_its_file(tmp_path: Path) -> None:
    registry_path = _registry(
        tmp_path,
        {"hotel": {"collection": "collections/hotel.yaml", "environment": "collections/hotel-env.yaml"}},
    )

    registry = SuiteRegistry.from_file(registry_path)

    assert registry.suites["hotel"].collection == tmp_path / "collections" / "hotel.yaml"
    assert registry.suites["hotel"].environment == tmp_path / "collections" / "hotel-env.yaml"


def test_registry_selection_rejects_unknown_names(tmp_path: Path) -> None:
    registry = SuiteRegistry.from_file(_registry(tmp_path, {"hotel": {"collection": "hotel.yaml"}}))

    assert list(registry.select([])) == ["hotel"]
    with pytest.raises(KeyError):
        registry.select(["trello"])


def test_registry_schema_errors_are_invalid_collection(tmp_path: Path) -> None:
    with pytest.raises(InvalidCollection):
        SuiteRegistry.from_file(_registry(tmp_path, {"hotel": {"collections": "typo.yaml"}}))


def test_run_suites_in_parallel_keeps_order_and_reports_missing_files(tmp_path: Path, mock_backend) -> None:
    mock_backend.add("GET", "/hotel", status=200)
    mock_backend.add("GET", "/trello", status=200)
    collections = tmp_path / "collections"
    _write_suite(collections, "hotel", "/hotel")
    _write_suite(collections, "trello", "/trello", status=201)
    registry = SuiteRegistry.from_file(
        _registry(
            tmp_path,
            {
                "hotel": {"collection": "collections/hotel.yaml", "environment": "collections/hotel-env.yaml"},
                "trello": {"collection": "collections/trello.yaml", "environment": "collections/trello-env.yaml"},
                "ghost": {"collection": "collections/ghost.yaml"},
            },
        )
    )

    outcomes = run_suites(
        registry.suites,
        RunConfig(timeout=5),
        output_dir=tmp_path / "reports",
        formats=[ReportFormat.JSON],
        overrides={"base_url": mock_backend.base_url},
        parallel=3,
    )

    assert [outcome.name for outcome in outcomes] == ["hotel", "trello", "ghost"]
    assert [outcome.status for outcome in outcomes] == ["passed", "failed", "error"]
    assert "ghost.yaml" in outcomes[2].error
    assert outcomes[0].reports[ReportFormat.JSON].exists()
    assert exit_code_for(outcomes) == EXIT_ERROR


def test_exit_codes_distinguish_failures_from_errors() -> None:
    assert exit_code_for([]) == EXIT_OK
    assert exit_code_for([SuiteOutcome(name="a", status="passed")]) == EXIT_OK
    assert exit_code_for([SuiteOutcome(name="a", status="passed"), SuiteOutcome(name="b", status="failed")]) == EXIT_FAILURES
    assert exit_code_for([SuiteOutcome(name="a", status="failed"), SuiteOutcome(name="b", status="error")]) == EXIT_ERROR


def test_seed_variables_prefers_overrides() -> None:
    environment = Environment(name="env", values={"base_url": "http://env", "user": "admin"})

    assert seed_variables(environment, {"base_url": "http://cli"}) == {"base_url": "http://cli", "user": "admin"}
    assert seed_variables(None) == {}


def test_cleanup_removes_only_old_report_files(tmp_path: Path) -> None:
    reports = tmp_path / "reports"
    reports.mkdir()
    old_json = reports / "hotel-old.json"
    old_txt = reports / "notes.txt"
    fresh_html = reports / "hotel-new.html"
    for path in (old_json, old_txt, fresh_html):
        path.write_text("x", encoding="utf-8")
    ten_days_ago = time.time() - 10 * 86400
    os.utime(old_json, (ten_days_ago, ten_days_ago))
    os.utime(old_txt, (ten_days_ago, ten_days_ago))

    removed = cleanup_old_reports(reports, 7)

    assert removed == [old_json]
    assert not old_json.exists()
    assert old_txt.exists()
    assert fresh_html.exists()
    assert cleanup_old_reports(reports, 0) == []
