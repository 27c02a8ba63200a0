#!/usr/bin/env python3
"""
clients.py

Authenticated HTTP sessions for the Personas Profile API and the SendGrid
Marketing API, plus the shared rule for turning HTTP statuses into error kinds.
"""

import logging
from typing import Any, Dict, Optional

import requests

from . import __version__
from .errors import ErrorKind, FatalError, RetryableError

logger = logging.getLogger(__name__)

USER_AGENT = f"Profile-Contact-Sync/{__version__}"


def _base_session() -> requests.Session:
    session = requests.Session()
    session.headers.update({
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
    })
    return session


def destination_session(api_key: str) -> requests.Session:
    """SendGrid session (bearer token)"""
    session = _base_session()
    session.headers["Authorization"] = f"Bearer {api_key}"
    return session


def profile_session(api_key: str) -> requests.Session:
    """Personas Profile API session (basic auth, key as username, empty password)"""
    session = _base_session()
    session.auth = (api_key, "")
    return session


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def classify_status(status_code: int) -> ErrorKind:
    """Rate limits and server errors are worth retrying. Everything else is not."""
    if status_code >= 500 or status_code == 429:
        return ErrorKind.RETRYABLE
    return ErrorKind.FATAL


def response_body(response) -> str:
    """Response text for logs, tolerant of bodies that cannot be read"""
    try:
        return response.text
    except (AttributeError, ValueError):
        return ""


def json_body(response, api: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Parse a 2xx JSON object body. An unreadable body (e.g. a proxy error page)
    is RetryableError; JSON that is not an object is FatalError.
    """
    details = dict(details or {}, status_code=response.status_code)
    try:
        body = response.json()
    except ValueError as e:
        details["response"] = response_body(response)
        logger.error(f"{api} returned a non-JSON body: Status {response.status_code}")
        logger.error(f"Response: {details['response']}")
        raise RetryableError(f"{api} returned a non-JSON body: {e}", details) from e

    if body is None:
        return {}
    if not isinstance(body, dict):
        details["response"] = response_body(response)
        logger.error(f"{api} returned unexpected JSON: {body!r}")
        raise FatalError(f"{api} returned unexpected JSON of type {type(body).__name__}", details)
    return body
