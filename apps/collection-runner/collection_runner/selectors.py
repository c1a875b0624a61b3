"""Value lookup inside responses shared by assertions and extractions."""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Any

from jsonpath_ng import parse
from jsonpath_ng.exceptions import JSONPathError

from .models import HttpResponse
from .variables import MISSING


def normalize_path(path: str) -> str:
    text = path.strip()
    if text.startswith("$"):
        return text
    return f"$.{text}"


@lru_cache(maxsize=256)
def compile_path(path: str):
    """Compile a JSONPath; ``$.`` is implied when the path has no root."""

    return parse(normalize_path(path))


def path_error(path: str) -> str | None:
    """Return a syntax error message for ``path`` or ``None`` when it compiles."""

    try:
        compile_path(path)
    except JSONPathError as exc:
        return f"invalid JSONPath '{path}': {exc}"
    return None


def parse_body(response: HttpResponse) -> Any:
    if not response.body:
        return MISSING
    try:
        return json.loads(response.body)
    except ValueError:
        return MISSING


def select_body(response: HttpResponse, path: str) -> Any:
    """First JSONPath match in the parsed body, ``MISSING`` otherwise."""

    document = parse_body(response)
    if document is MISSING:
        return MISSING
    matches = compile_path(path).find(document)
    if not matches:
        return MISSING
    return matches[0].value


def select_header(response: HttpResponse, name: str) -> Any:
    value = response.header(name)
    return MISSING if value is None else value
