"""Collection and environment loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError

from .errors import InvalidCollection
from .models import Collection, Environment
from .selectors import path_error

SUPPORTED_SUFFIXES = {".yaml", ".yml", ".json"}

_TIMESTAMP_TAG = "tag:yaml.org,2002:timestamp"


class SourceLoader(yaml.SafeLoader):
    """SafeLoader that leaves unquoted dates and timestamps as strings."""


SourceLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != _TIMESTAMP_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def load_yaml(text: str) -> Any:
    return yaml.load(text, Loader=SourceLoader)


def load_collection(path: Path) -> Collection:
    """Load and validate a collection YAML/JSON file."""

    data = _read_mapping(path)
    errors = _jsonpath_errors(data)
    return _validate(Collection, data, path, errors)


def load_environment(path: Path) -> Environment:
    """Load and validate an environment YAML/JSON file."""

    data = _read_mapping(path)
    return _validate(Environment, data, path, [])


def _read_mapping(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Source file not found: {path}")
    if path.suffix.lower() not in SUPPORTED_SUFFIXES:
        raise InvalidCollection(str(path), [f"unsupported file type '{path.suffix}'"])
    try:
        data = load_yaml(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise InvalidCollection(str(path), [f"not valid YAML/JSON: {exc}"]) from exc
    if not isinstance(data, dict):
        raise InvalidCollection(str(path), ["document root must be a mapping"])
    return data


def _validate(model: type[BaseModel], data: dict[str, Any], path: Path, errors: list[str]):
    try:
        instance = model.model_validate(data)
    except ValidationError as exc:
        errors = [*errors, *(_format_error(error) for error in exc.errors())]
        raise InvalidCollection(str(path), errors) from exc
    if errors:
        raise InvalidCollection(str(path), errors)
    return instance


def _format_error(error: dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ())) or "<root>"
    return f"{location}: {error.get('msg', 'invalid value')}"


def _jsonpath_errors(data: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    steps = data.get("steps")
    if not isinstance(steps, list):
        return errors
    for step_index, step in enumerate(steps):
        if not isinstance(step, dict):
            continue
        for key, source_key in (("assertions", "target"), ("extract", "source")):
            entries = step.get(key)
            if not isinstance(entries, list):
                continue
            for entry_index, entry in enumerate(entries):
                if not isinstance(entry, dict) or entry.get(source_key) != "body":
                    continue
                body_path = entry.get("path")
                if not isinstance(body_path, str) or not body_path:
                    continue
                problem = path_error(body_path)
                if problem:
                    errors.append(f"steps.{step_index}.{key}.{entry_index}.path: {problem}")
    return errors
