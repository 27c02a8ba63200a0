#!/usr/bin/env python3
"""
field_schema.py

Pulls the SendGrid custom field definitions. Custom fields are created by
users in the SendGrid UI, so the schema is fetched fresh for every batch.
"""

import logging
from typing import Any, Dict, Optional

import requests

from . import config
from .clients import classify_status, destination_session, is_success, json_body, response_body
from .errors import ErrorKind, FatalError, RetryableError
from .notifications import notify_warning

logger = logging.getLogger(__name__)


def fetch_field_schema(settings: Dict[str, Any],
                       session: Optional[requests.Session] = None) -> Dict[str, str]:
    """
    Fetch SendGrid custom fields.
    Returns {custom_field_name: custom_field_id}.
    """
    session = session or destination_session(settings["destination_api_key"])
    url = f"{config.DESTINATION_API_BASE_URL}/marketing/field_definitions"

    logger.debug(f"Fetching SendGrid field definitions from: {url}")
    try:
        response = session.get(url, timeout=config.REQUEST_TIMEOUT)
    except requests.exceptions.RequestException as e:
        logger.error(f"SendGrid get custom fields request failed: {e}")
        raise RetryableError(f"SendGrid get custom fields retryable error: {e}",
                             {"url": url}) from e

    if not is_success(response.status_code):
        body = response_body(response)
        logger.error(f"Failed to fetch SendGrid field definitions: Status {response.status_code}")
        logger.error(f"Response: {body}")
        details = {"url": url, "status_code": response.status_code, "response": body}
        if classify_status(response.status_code) is ErrorKind.RETRYABLE:
            raise RetryableError(
                f"SendGrid get custom fields retryable error: {response.status_code}", details)
        raise FatalError(
            f"SendGrid get custom fields non-retryable error: {response.status_code} "
            f"{getattr(response, 'reason', '')}".rstrip(),
            details)

    data = json_body(response, "SendGrid get custom fields", {"url": url})
    fields = {}
    for field in data.get("custom_fields") or []:
        name, field_id = (field.get("name"), field.get("id")) if isinstance(field, dict) else (None, None)
        if not name or not field_id:
            notify_warning("Skipping malformed custom field definition", {"field": field})
            continue
        fields[name] = field_id

    logger.info(f"SendGrid custom fields available: {sorted(fields)}")
    return fields
