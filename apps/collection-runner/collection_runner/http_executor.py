"""Executes resolved requests over HTTP."""

from __future__ import annotations

import time
from http.client import HTTPException
from typing import Iterable, Protocol
from urllib import error, request

import structlog

from .errors import NetworkError, Timeout
from .models import HttpRequest, HttpResponse

DEFAULT_TIMEOUT = 10.0
DEFAULT_HEADERS = {"Accept": "application/json"}

LOGGER = structlog.get_logger("collection_runner.http")


def merge_headers(items: Iterable[tuple[str, str]]) -> dict[str, str]:
    """Fold repeated header fields into one comma-separated value."""

    merged: dict[str, str] = {}
    names: dict[str, str] = {}
    for name, value in items:
        key = names.setdefault(name.lower(), name)
        merged[key] = f"{merged[key]}, {value}" if key in merged else value
    return merged


class StepExecutor(Protocol):
    def execute(self, http_request: HttpRequest) -> HttpResponse: ...


class HttpStepExecutor:
    """Sends requests with ``urllib`` and measures wall-clock latency.

    Error statuses are returned as responses. Only transport failures raise.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._timeout = timeout or DEFAULT_TIMEOUT

    @property
    def timeout(self) -> float:
        return self._timeout

    def execute(self, http_request: HttpRequest) -> HttpResponse:
        overridden = {name.lower() for name in http_request.headers}
        headers = {name: value for name, value in DEFAULT_HEADERS.items() if name.lower() not in overridden}
        headers.update(http_request.headers)
        body = http_request.body.encode("utf-8") if http_request.body is not None else None

        status, response_headers, payload, elapsed_ms = self._perform_request(
            http_request.method, http_request.url, headers, body
        )
        LOGGER.debug(
            "http_exchange",
            method=http_request.method,
            url=http_request.url,
            status=status,
            latency_ms=round(elapsed_ms, 3),
        )
        return HttpResponse(
            status_code=status,
            headers=response_headers,
            body=payload,
            latency_ms=round(elapsed_ms, 3),
        )

    def _perform_request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
    ) -> tuple[int, dict[str, str], str, float]:
        try:
            req = request.Request(url, data=body, headers=headers, method=method)
        except ValueError as exc:
            raise NetworkError(f"Cannot send {method} {url}: {exc}") from exc
        start = time.perf_counter()
        try:
            with request.urlopen(req, timeout=self._timeout) as response:
                payload = response.read().decode("utf-8", errors="replace")
                status = response.getcode()
                response_headers = merge_headers(response.headers.items())
        except error.HTTPError as exc:
            payload = exc.read().decode("utf-8", errors="replace")
            status = exc.code
            response_headers = merge_headers(exc.headers.items()) if exc.headers else {}
        except error.URLError as exc:
            if isinstance(exc.reason, TimeoutError):
                raise Timeout(f"{method} {url} timed out after {self._timeout}s") from exc
            raise NetworkError(f"HTTP request failed for {method} {url}: {exc.reason}") from exc
        except TimeoutError as exc:
            raise Timeout(f"{method} {url} timed out after {self._timeout}s") from exc
        except (OSError, HTTPException, ValueError) as exc:
            raise NetworkError(f"HTTP request failed for {method} {url}: {exc}") from exc
        elapsed_ms = (time.perf_counter() - start) * 1000
        return status, response_headers, payload, elapsed_ms
