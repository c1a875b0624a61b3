"""Turns declarative steps into concrete requests."""

from __future__ import annotations

import json
from typing import Any, Mapping

from .errors import TemplateResolutionError, UnresolvedVariable
from .models import HttpRequest, Step
from .variables import render_template, single_placeholder

JSON_CONTENT_TYPE = "application/json"


def build_request(step: Step, variables: Mapping[str, Any]) -> HttpRequest:
    """Resolve URL, headers and body of ``step`` against a variable snapshot."""

    url = _resolve(step, "url", step.url, variables)
    headers = {
        _resolve(step, f"header name {name!r}", name, variables): _resolve(
            step, f"header {name!r}", value, variables
        )
        for name, value in step.headers.items()
    }

    body: str | None = None
    if step.body is not None:
        body = _resolve(step, "body", step.body, variables)
    elif step.json_body is not None:
        body = json.dumps(_resolve_json(step, step.json_body, variables))
        if not any(name.lower() == "content-type" for name in headers):
            headers["Content-Type"] = JSON_CONTENT_TYPE

    return HttpRequest(method=step.method, url=url, headers=headers, body=body)


def _resolve(step: Step, field: str, template: str, variables: Mapping[str, Any]) -> str:
    try:
        return render_template(template, variables)
    except UnresolvedVariable as exc:
        raise TemplateResolutionError(step.name, field, exc) from exc


def _resolve_json(step: Step, value: Any, variables: Mapping[str, Any]) -> Any:
    if isinstance(value, dict):
        return {
            _resolve(step, "json key", str(key), variables): _resolve_json(step, item, variables)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_resolve_json(step, item, variables) for item in value]
    if isinstance(value, str):
        name = single_placeholder(value)
        if name is not None and name in variables:
            return variables[name]
        return _resolve(step, "json body", value, variables)
    return value
