#!/usr/bin/env python3
"""
contacts.py

Sends reconciled contacts to SendGrid as one upsert request.

SendGrid answers 202 (accepted) with a job_id, or an error. A 400 also
carries a job_id and the per-contact errors; it is never retried.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import requests

from . import config
from .clients import classify_status, destination_session, is_success, json_body, response_body
from .errors import ErrorKind, FatalError, RetryableError, ValidationError

logger = logging.getLogger(__name__)


def submit_contacts(records: List[Dict[str, Any]], settings: Dict[str, Any],
                    session: Optional[requests.Session] = None) -> Optional[str]:
    """
    Upsert contacts into SendGrid Marketing Contacts.
    Returns the SendGrid job_id.
    """
    session = session or destination_session(settings["destination_api_key"])
    url = f"{config.DESTINATION_API_BASE_URL}/marketing/contacts"
    contact_count = len(records)
    request_body = {"contacts": records}
    request_json = json.dumps(request_body)

    logger.debug(f"SendGrid contact update request body: {request_json}")
    try:
        response = session.put(url, json=request_body, timeout=config.REQUEST_TIMEOUT)
    except requests.exceptions.RequestException as e:
        logger.error(f"SendGrid contact update request failed: {e}. Contacts sent: {contact_count}")
        raise RetryableError(
            f"SendGrid contact update error: {e}. Function will be retried.",
            {"contacts": contact_count}) from e

    status = response.status_code
    if is_success(status):
        job_id = json_body(response, "SendGrid contact update", {"contacts": contact_count}).get("job_id")
        logger.info(
            f"SendGrid contact update request OK. {status}"
            f"\nSendGrid job_id: {job_id}"
            f"\nContacts sent: {contact_count}"
        )
        return job_id

    context = (f"{status} {getattr(response, 'reason', '')}".rstrip()
               + f"\nSendGrid contact update request body: {request_json}"
               + f"\nContacts sent: {contact_count}")
    details = {"status_code": status, "contacts": contact_count}

    if classify_status(status) is ErrorKind.RETRYABLE:
        message = f"SendGrid contact update error: rate limit or outage. Function will be retried. {context}"
        logger.error(message)
        raise RetryableError(message, details)

    if status == 400:
        try:
            error_body = response.json()
        except ValueError:
            error_body = {}
        if not isinstance(error_body, dict):
            error_body = {}
        job_id = error_body.get("job_id")
        details.update({"job_id": job_id, "errors": error_body.get("errors", [])})
        message = (f"SendGrid contacts endpoint error. Function will not be retried. {context}"
                   f"\nSendGrid job_id: {job_id}")
        logger.error(message)
        logger.error(f"Response: {response_body(response)}")
        raise ValidationError(message, details)

    details["response"] = response_body(response)
    message = f"SendGrid contacts endpoint error. Function will not be retried. {context}"
    logger.error(message)
    logger.error(f"Response: {details['response']}")
    raise FatalError(message, details)
