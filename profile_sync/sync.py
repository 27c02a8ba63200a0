#!/usr/bin/env python3
"""
Personas → SendGrid Profile Sync

Handles batches of identify() events: pulls SendGrid's custom fields once,
pulls every user's Personas traits in parallel, maps the traits onto custom
fields and upserts all contacts in a single SendGrid request.

A batch is all-or-nothing. Any failure aborts it, and the error kind tells the
host whether to re-run it (RETRYABLE) or alert an operator (everything else).
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, List, Optional

import requests
from tqdm import tqdm

from . import config
from .clients import destination_session, profile_session
from .contacts import submit_contacts
from .errors import EventNotSupportedError, SyncError, ValidationError
from .field_schema import fetch_field_schema
from .notifications import (
    get_notifier, initialize_notifier, notify_error, notify_info, reset_session,
    send_final_notification,
)
from .profile_traits import fetch_traits
from .reconcile import normalize_synced_traits, reconcile

logger = logging.getLogger(__name__)


def fetch_all_traits(events: List[Dict[str, Any]], settings: Dict[str, Any],
                     session: Optional[requests.Session] = None) -> List[Dict[str, Any]]:
    """
    Fetch traits for every event on a bounded thread pool.
    Results keep event order. The first failure cancels lookups not yet started.

    Without an injected session each worker thread opens its own Profile API
    session, since requests.Session is not guaranteed thread-safe.
    """
    workers = max(1, min(config.MAX_CONCURRENT_FETCHES, len(events)))
    results: List[Optional[Dict[str, Any]]] = [None] * len(events)
    local = threading.local()
    opened: List[requests.Session] = []

    def fetch(event: Dict[str, Any]) -> Dict[str, Any]:
        if session is not None:
            return fetch_traits(event, settings, session)
        if not hasattr(local, "session"):
            local.session = profile_session(settings["profile_api_key"])
            opened.append(local.session)
        return fetch_traits(event, settings, local.session)

    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="profile-traits")
    try:
        futures = {
            executor.submit(fetch, event): index
            for index, event in enumerate(events)
        }
        with tqdm(as_completed(futures), total=len(futures), desc="Fetching traits",
                  unit="profile", disable=not config.SHOW_PROGRESS) as pbar:
            for future in pbar:
                results[futures[future]] = future.result()
    finally:
        executor.shutdown(wait=True, cancel_futures=True)
        for worker_session in opened:
            worker_session.close()

    return results


def process_batch(events: List[Dict[str, Any]], settings: Dict[str, Any],
                  destination: Optional[requests.Session] = None,
                  profiles: Optional[requests.Session] = None) -> Optional[str]:
    """
    Sync a batch of identify() events into SendGrid.
    Returns the SendGrid job_id, or None for an empty batch.
    """
    if not events:
        logger.info("Empty batch - nothing to sync")
        return None

    started = time.monotonic()
    synced = normalize_synced_traits(settings.get("synced_traits"))
    destination = destination or destination_session(settings["destination_api_key"])

    # Pull the list of all available custom fields ONCE
    schema = fetch_field_schema(settings, destination)

    user_traits = fetch_all_traits(events, settings, profiles)

    contacts = [
        reconcile(traits, schema, config.RESERVED_FIELDS, synced)
        for traits in user_traits
    ]

    job_id = submit_contacts(contacts, settings, destination)
    logger.info(f"Batch of {len(events)} events synced in {time.monotonic() - started:.2f}s (job_id {job_id})")
    return job_id


# ─── EVENT HANDLERS ───────────────────────────────────────────────────────────

def on_batch(events: List[Dict[str, Any]], settings: Dict[str, Any]) -> Optional[str]:
    return process_batch(events, config.settings_from_mapping(settings))


def on_identify(event: Dict[str, Any], settings: Dict[str, Any]) -> Optional[str]:
    return on_batch([event], settings)


def on_group(event, settings):
    raise EventNotSupportedError("Group event is not supported")


def on_page(event, settings):
    raise EventNotSupportedError("Page event is not supported")


def on_screen(event, settings):
    raise EventNotSupportedError("Screen event is not supported")


def on_alias(event, settings):
    raise EventNotSupportedError("Alias event is not supported")


def on_delete(event, settings):
    raise EventNotSupportedError("Delete request is not supported")


def on_track(event, settings):
    raise EventNotSupportedError("Track request is not supported")


EVENT_HANDLERS = {
    "identify": on_identify,
    "track": on_track,
    "page": on_page,
    "screen": on_screen,
    "group": on_group,
    "alias": on_alias,
    "delete": on_delete,
}


def handle_event(event: Dict[str, Any], settings: Dict[str, Any]) -> Optional[str]:
    """Route a single event to its handler by event type"""
    event_type = event.get("type")
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        raise EventNotSupportedError(f"Event type {event_type!r} is not supported")
    return handler(event, settings)


# ─── HOST ENTRY POINT ─────────────────────────────────────────────────────────

def run_batch(events: List[Dict[str, Any]],
              settings: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Run one batch for the host and report the outcome instead of raising.

    Returns {"status", "retryable", "message", "contacts", "job_id", "details"}
    where status is "success" or an ErrorKind value. "contacts" counts the
    contacts upserted, so it stays 0 for a failed batch.
    """
    config.setup_logging()
    settings = config.load_settings() if settings is None else config.settings_from_mapping(settings)

    if config.TEAMS_WEBHOOK_URL and get_notifier() is None:
        initialize_notifier(config.TEAMS_WEBHOOK_URL)
    reset_session()

    result = {
        "status": "success",
        "retryable": False,
        "message": "",
        "contacts": 0,
        "job_id": None,
        "details": {},
    }

    try:
        missing = config.validate_settings(settings)
        if missing:
            raise ValidationError(f"Missing required settings: {', '.join(missing)}",
                                  {"missing_settings": missing})
        for event in events:
            if event.get("type", "identify") != "identify":
                handle_event(event, settings)
        result["job_id"] = process_batch(events, settings)
        result["contacts"] = len(events)
        notify_info(f"✅ Synced {len(events)} contacts to SendGrid (job_id {result['job_id']})")
    except SyncError as e:
        result.update({
            "status": e.kind.value,
            "retryable": e.retryable,
            "message": e.message,
            "details": e.details,
        })
        if e.retryable:
            logger.warning(f"Batch of {len(events)} events will be retried: {e.message}")
        else:
            notify_error(f"Profile sync batch failed ({e.kind.value}): {e.message}",
                         {"events": len(events), **e.details})
        send_final_notification("Profile Sync Failed")

    return result
