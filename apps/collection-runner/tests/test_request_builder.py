from __future__ import annotations

import json
from datetime import date

import pytest

from collection_runner.errors import TemplateResolutionError, UnresolvedVariable
from collection_runner.models import Step
from collection_runner.request_builder import build_request


def _step(**overrides: object) -> Step:
    payload = {"name": "step", "method": "GET", "url": "${base_url}/items"}
    payload.update(overrides)
    return Step.model_validate(payload)


def test_resolves_url_and_headers() -> None:
    step = _step(url="${base_url}/items/${id}", headers={"Authorization": "Bearer ${token}"})

    request = build_request(step, {"base_url": "http://api", "id": 7, "token": "t0k"})

    assert request.method == "GET"
    assert request.url == "http://api/items/7"
    assert request.headers == {"Authorization": "Bearer t0k"}
    assert request.body is None


def test_raw_body_is_resolved_as_text() -> None:
    step = _step(method="POST", body="name=${name}")

    request = build_request(step, {"base_url": "http://api", "name": "Jim"})

    assert request.body == "name=Jim"
    assert "Content-Type" not in request.headers


def test_json_body_keeps_types_for_whole_placeholders() -> None:
    step = _step(
        method="PUT",
        json={"id": "${id}", "label": "item-${id}", "tags": ["${tag}"], "paid": True},
    )

    request = build_request(step, {"base_url": "http://api", "id": 42, "tag": "vip"})

    assert json.loads(request.body) == {"id": 42, "label": "item-42", "tags": ["vip"], "paid": True}
    assert request.headers["Content-Type"] == "application/json"


def test_declared_content_type_is_kept() -> None:
    step = _step(method="POST", json={"a": 1}, headers={"content-type": "application/vnd.api+json"})

    request = build_request(step, {"base_url": "http://api"})

    assert request.headers == {"content-type": "application/vnd.api+json"}


def test_unbound_variable_raises_template_resolution_error() -> None:
    step = _step(url="${base_url}/items/${missing_id}")

    with pytest.raises(TemplateResolutionError) as excinfo:
        build_request(step, {"base_url": "http://api"})

    assert isinstance(excinfo.value.cause, UnresolvedVariable)
    assert excinfo.value.cause.names == ["missing_id"]
    assert excinfo.value.field == "url"


def test_unbound_variable_in_json_body_is_reported() -> None:
    step = _step(method="POST", json={"nested": {"value": "${ghost}"}})

    with pytest.raises(TemplateResolutionError, match="ghost"):
        build_request(step, {"base_url": "http://api"})


def test_date_values_in_json_body_are_sent_as_iso_text() -> None:
    step = _step(method="POST", json={"bookingdates": {"checkin": date(2025, 1, 1)}, "nights": [date(2025, 1, 2)]})

    http_request = build_request(step, {"base_url": "http://api"})

    assert json.loads(http_request.body) == {"bookingdates": {"checkin": "2025-01-01"}, "nights": ["2025-01-02"]}
