#!/usr/bin/env python3
"""
profile_traits.py

Pulls a user's traits from the Personas Profile API for one identify() event
and appends the audience that triggered the event, if any.
"""

import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

import requests

from . import config
from .clients import classify_status, is_success, json_body, profile_session, response_body
from .errors import ErrorKind, FatalError, RetryableError, ValidationError

logger = logging.getLogger(__name__)


def resolve_identifier(event: Dict[str, Any]) -> Tuple[str, str]:
    """
    Pick the profile lookup key for an event: userId when present, email otherwise.
    Returns (prefix, identifier), e.g. ("user_id:", "u-123") or ("email:", "a@b.com").
    """
    user_id = event.get("userId")
    if user_id not in (None, ""):
        return "user_id:", str(user_id)

    email = (event.get("traits") or {}).get("email")
    if email:
        return "email:", str(email)

    details = {"event_type": event.get("type"), "messageId": event.get("messageId")}
    logger.error(f"Event has neither userId nor traits.email - cannot look up profile: {details}")
    raise ValidationError("Event has neither userId nor traits.email - cannot look up profile", details)


def active_audience(event: Dict[str, Any]) -> Optional[str]:
    """Name of the audience whose computation produced this event, if any"""
    personas = (event.get("context") or {}).get("personas") or {}
    if personas.get("computation_class") == "audience" and personas.get("computation_key"):
        return personas["computation_key"]
    return None


def fetch_traits(event: Dict[str, Any], settings: Dict[str, Any],
                 session: Optional[requests.Session] = None) -> Dict[str, Any]:
    """Fetch traits for the event's user. Returns {trait_name: value}."""
    session = session or profile_session(settings["profile_api_key"])
    prefix, identifier = resolve_identifier(event)
    user = f"{prefix}{identifier}"
    url = (f"{config.PROFILE_API_BASE_URL}/spaces/{settings['profile_space_id']}"
           f"/collections/users/profiles/{prefix}{quote(identifier, safe='@')}/traits")

    try:
        response = session.get(url, params={"limit": config.TRAITS_PAGE_LIMIT},
                               timeout=config.REQUEST_TIMEOUT)
    except requests.exceptions.RequestException as e:
        logger.error(f"Personas Profile API (/traits) request failed for user {user}: {e}")
        raise RetryableError(
            f"Personas Profile API (/traits) error. Function will be retried. User {user}: {e}",
            {"user": user}) from e

    if not is_success(response.status_code):
        details = {"user": user, "status_code": response.status_code,
                   "response": response_body(response)}
        if classify_status(response.status_code) is ErrorKind.RETRYABLE:
            message = (f"Personas Profile API (/traits) error. Function will be retried. "
                       f"Status: {response.status_code}. User {user}")
            logger.error(message)
            logger.error(f"Response: {details['response']}")
            raise RetryableError(message, details)
        message = (f"Personas Profile API (/traits) error, exiting. "
                   f"Status: {response.status_code}. User {user}")
        logger.error(message)
        logger.error(f"Response: {details['response']}")
        raise FatalError(message, details)

    body = json_body(response, "Personas Profile API (/traits)", {"user": user})
    traits = body.get("traits") or {}
    if not isinstance(traits, dict):
        logger.error(f"Personas Profile API (/traits) returned traits of type {type(traits).__name__} for user {user}")
        raise FatalError(f"Personas Profile API (/traits) returned malformed traits for user {user}",
                         {"user": user, "traits": traits})
    traits = dict(traits)
    logger.debug(f"Fetched {len(traits)} traits for user {user}")

    audience_name = active_audience(event)
    if audience_name:
        # Value stays None when the user has left the audience
        traits["audience"] = {audience_name: traits.get(audience_name)}
        logger.debug(f"User {user} event triggered by audience '{audience_name}'")

    return traits
