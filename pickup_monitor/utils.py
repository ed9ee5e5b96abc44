"""Helper utilities.

This module centralises common helper functions such as creating a
configured HTTP session, applying retry policies to network calls and
the wall clock used by time-based rules.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict

import requests
from requests import Response
from tenacity import (after_log, retry, retry_if_exception_type,
                      stop_after_attempt, wait_exponential)


logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


def get_http_session() -> requests.Session:
    """Return a new HTTP session with sensible defaults.

    The session sets a realistic User‑Agent header.  Caller is
    responsible for closing the session or letting it be garbage
    collected.
    """
    session = requests.Session()
    session.headers.update(
        {
            "User-Agent": BROWSER_USER_AGENT,
            "Accept": "application/json",
            "Accept-Language": "en-SG,en;q=0.9",
        }
    )
    return session


class HTTPError(Exception):
    """Raised when an HTTP request fails after retries."""


class _ServerError(HTTPError):
    """5xx response; retried before surfacing as `HTTPError`."""


def _raise_for_status(resp: Response) -> None:
    try:
        resp.raise_for_status()
    except requests.RequestException as e:
        raise HTTPError(str(e)) from e


def retryable_request(method: Callable[[requests.Session, str, Dict[str, Any]], Response]) -> Callable[..., Response]:
    """Decorator factory to apply retry logic to HTTP calls.

    The decorated function must accept a `requests.Session` as its first
    argument, followed by URL and optional kwargs, and return a
    `requests.Response`.  Network errors and server errors (status >= 500)
    are retried; client errors are raised immediately as `HTTPError`.
    A maximum of 3 attempts are made with exponential back‑off between
    1 and 4 seconds so a cycle stays well inside one check interval.
    """

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        retry=(
            retry_if_exception_type(requests.RequestException)
            | retry_if_exception_type(_ServerError)
        ),
        after=after_log(logger, logging.WARNING),
    )
    def _attempt(session: requests.Session, url: str, **kwargs: Any) -> Response:
        response = method(session, url, **kwargs)
        if response.status_code >= 500:
            raise _ServerError(f"Server returned status {response.status_code}")
        _raise_for_status(response)
        return response

    def wrapper(session: requests.Session, url: str, **kwargs: Any) -> Response:
        try:
            return _attempt(session, url, **kwargs)
        except requests.RequestException as e:
            raise HTTPError(str(e)) from e

    return wrapper


class SystemClock:
    """Local wall clock. Swapped for a fake in tests."""

    def now(self) -> datetime:
        return datetime.now()


__all__ = ["get_http_session", "retryable_request", "HTTPError", "SystemClock", "BROWSER_USER_AGENT"]
