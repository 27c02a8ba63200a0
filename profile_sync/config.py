#!/usr/bin/env python3
"""
🎯 PERSONAS → SENDGRID PROFILE SYNC - CONFIGURATION
===================================================

Everything the sync reads from the environment lives here. Values come from
the process environment or a local .env file.

🚀 FLOW:
========
   1. Pull SendGrid custom field definitions (once per batch)
   2. Pull each user's traits from the Personas Profile API
   3. Keep reserved fields, synced traits and the active audience trait
   4. Upsert the resulting contacts into SendGrid Marketing Contacts

⚙️ REQUIRED SETTINGS:
====================
   PERSONAS_PROFILE_API_KEY   Personas Profile API access token
   PERSONAS_SPACE_ID          Personas space id
   SENDGRID_API_KEY           SendGrid API key (Marketing scope)

🏷️ SYNCED TRAITS:
=================
   SYNCED_TRAITS="plan, Account Type, lifetime_value"
   ↳ normalized to: plan, account_type, lifetime_value
   ↳ each one MUST exist as a custom field in SendGrid or the batch fails
"""

import logging
import os
from typing import Any, Dict, List, Optional, Union

from dotenv import load_dotenv

load_dotenv(override=True)

# =============================================================================
# 🔐 API CREDENTIALS
# =============================================================================

# Personas Profile API (source)
PROFILE_API_KEY = os.getenv("PERSONAS_PROFILE_API_KEY", "").strip()
PROFILE_SPACE_ID = os.getenv("PERSONAS_SPACE_ID", "").strip()

# SendGrid Marketing API (destination)
DESTINATION_API_KEY = os.getenv("SENDGRID_API_KEY", "").strip()

# Teams notification webhook URL (empty = notifications disabled)
TEAMS_WEBHOOK_URL = os.getenv("TEAMS_WEBHOOK_URL", "").strip()

# =============================================================================
# 🏷️ TRAIT SELECTION
# =============================================================================

# Traits to sync along with the audience, comma-separated
SYNCED_TRAITS = os.getenv("SYNCED_TRAITS", "")

# SendGrid reserved fields - accepted natively, never looked up as custom fields
RESERVED_FIELDS = frozenset([
    "first_name",
    "last_name",
    "email",
    "alternate_emails",
    "address_line_1",
    "address_line_2",
    "city",
    "state_province_region",
    "postal_code",
    "country",
    "phone_number",
    "whatsapp",
    "line",
    "facebook",
    "unique_name",
    "lists",
    "created_at",
    "updated_at",
    "last_emailed",
    "last_clicked",
    "last_opened",
])

# =============================================================================
# 🌐 ENDPOINTS
# =============================================================================

PROFILE_API_BASE_URL = os.getenv("PROFILE_API_BASE_URL", "https://profiles.segment.com/v1").rstrip("/")
DESTINATION_API_BASE_URL = os.getenv("DESTINATION_API_BASE_URL", "https://api.sendgrid.com/v3").rstrip("/")

# =============================================================================
# ⚙️ SYNC PARAMETERS
# =============================================================================

TRAITS_PAGE_LIMIT = int(os.getenv("TRAITS_PAGE_LIMIT", 200))          # traits per profile lookup
MAX_CONCURRENT_FETCHES = int(os.getenv("MAX_CONCURRENT_FETCHES", 10))  # parallel profile lookups
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", 30))              # seconds per HTTP request
SHOW_PROGRESS = os.getenv("SHOW_PROGRESS", "false").lower() == "true"

# =============================================================================
# 🗂️ LOGGING
# =============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR", "logs")

# =============================================================================
# 🔇 NOTIFICATION CONTROLS
# =============================================================================

# Messages to ignore for Teams notifications (still logged locally)
IGNORED_WARNING_MESSAGES = [
    "Skipping malformed custom field definition",
]

# Host setting names → internal setting names
HOST_SETTING_NAMES = {
    "syncedTraits": "synced_traits",
    "personasProfileApiKey": "profile_api_key",
    "personasSpaceId": "profile_space_id",
    "sendgridApiKey": "destination_api_key",
}

REQUIRED_SETTINGS = ["profile_api_key", "profile_space_id", "destination_api_key"]


def _split_traits(value: Union[str, List[str], None]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [name for name in value.split(",") if name.strip()]
    return list(value)


def load_settings() -> Dict[str, Any]:
    """Build batch settings from the environment"""
    return {
        "synced_traits": _split_traits(SYNCED_TRAITS),
        "profile_api_key": PROFILE_API_KEY,
        "profile_space_id": PROFILE_SPACE_ID,
        "destination_api_key": DESTINATION_API_KEY,
    }


def settings_from_mapping(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Accept settings as the host delivers them (syncedTraits, personasProfileApiKey,
    personasSpaceId, sendgridApiKey) or already in internal form.
    """
    settings = {}
    for key, value in raw.items():
        settings[HOST_SETTING_NAMES.get(key, key)] = value
    settings["synced_traits"] = _split_traits(settings.get("synced_traits"))
    return settings


def validate_settings(settings: Dict[str, Any]) -> List[str]:
    """Return the names of required settings that are missing or blank."""
    missing = []
    for name in REQUIRED_SETTINGS:
        value = settings.get(name)
        if not isinstance(value, str) or not value.strip():
            missing.append(name)
    return missing


_logging_configured = False


def setup_logging(log_dir: Optional[str] = None) -> None:
    """Configure root logging: console plus logs/sync.log. Runs once per process."""
    global _logging_configured
    if _logging_configured:
        return
    _logging_configured = True

    log_dir = LOG_DIR if log_dir is None else log_dir
    handlers = [logging.StreamHandler()]
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(os.path.join(log_dir, "sync.log")))

    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )

    # Quiet noisy libs
    logging.getLogger("urllib3").setLevel(logging.INFO)
    logging.getLogger("requests").setLevel(logging.INFO)
