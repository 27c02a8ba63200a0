#!/usr/bin/env python3
"""
notifications.py

Teams notifications for profile sync batches.
Failures that need an operator (unmapped traits, rejected contacts, auth
problems) are collected during a run and posted as one MessageCard.
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

import requests

logger = logging.getLogger(__name__)


class NotificationLevel(Enum):
    """Notification severity levels"""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class TeamsNotifier:
    """Collects issues for one sync session and posts them to a Teams webhook"""

    def __init__(self, webhook_url: str):
        self.webhook_url = webhook_url
        self.session_warnings = []
        self.session_errors = []

    def _entry(self, message: str, details: Optional[Dict]) -> Dict:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "message": message,
            "details": details or {},
        }

    def add_warning(self, message: str, details: Optional[Dict] = None):
        self.session_warnings.append(self._entry(message, details))
        logger.debug(f"📨 NOTIFICATION TRACKED: {message}")

    def add_error(self, message: str, details: Optional[Dict] = None):
        self.session_errors.append(self._entry(message, details))
        logger.debug(f"📨 NOTIFICATION TRACKED: {message}")

    def should_send_notification(self) -> bool:
        """Only warnings and errors are worth a Teams message"""
        return len(self.session_warnings) > 0 or len(self.session_errors) > 0

    def get_notification_level(self) -> NotificationLevel:
        if self.session_errors:
            return NotificationLevel.ERROR
        elif self.session_warnings:
            return NotificationLevel.WARNING
        return NotificationLevel.INFO

    def _section(self, title: str, entries) -> Dict:
        text = ""
        for i, entry in enumerate(entries[-5:], 1):  # last 5 only
            text += f"**{i}.** {entry['message']}\n"
            if entry["details"]:
                text += f"   *Details:* {json.dumps(entry['details'], indent=2, default=str)}\n"
            text += f"   *Time:* {entry['timestamp']}\n\n"
        return {
            "activityTitle": title,
            "text": text[:1000] + ("..." if len(text) > 1000 else ""),
        }

    def build_card(self, title: str) -> Dict:
        """Build the Teams MessageCard for the current session"""
        level = self.get_notification_level()
        sections = []
        if self.session_errors:
            sections.append(self._section("❌ Errors", self.session_errors))
        if self.session_warnings:
            sections.append(self._section("⚠️ Warnings", self.session_warnings))

        return {
            "@type": "MessageCard",
            "@context": "http://schema.org/extensions",
            "themeColor": self._get_theme_color(level),
            "summary": title,
            "sections": [
                {
                    "activityTitle": title,
                    "facts": [
                        {"name": "Timestamp", "value": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")},
                        {"name": "Severity", "value": level.value.upper()},
                        {"name": "Errors", "value": str(len(self.session_errors))},
                        {"name": "Warnings", "value": str(len(self.session_warnings))},
                    ],
                }
            ] + sections,
        }

    def send_notification(self, title: str = "Profile Sync Alert") -> bool:
        """Post collected issues to Teams. Returns True when nothing needed sending."""
        if not self.should_send_notification():
            logger.debug("No issues to report - skipping notification")
            return True

        level = self.get_notification_level()
        card = self.build_card(title)
        try:
            response = requests.post(
                self.webhook_url,
                headers={"Content-Type": "application/json"},
                json=card,
                timeout=30,
            )
            if response.status_code in (200, 202):  # Teams often returns 202
                logger.info(f"✅ Teams notification sent ({level.value.upper()})")
                return True
            logger.error(f"❌ Teams notification failed: {response.status_code} - {response.text}")
        except requests.exceptions.RequestException as e:
            logger.error(f"❌ Error sending Teams notification: {e}")

        self._fallback_to_console(title, level)
        return False

    def _fallback_to_console(self, title: str, level: NotificationLevel):
        """Print the session when the webhook is unavailable"""
        print(f"\n{'='*60}")
        print(f"📨 NOTIFICATION FALLBACK - {level.value.upper()}")
        print(f"📋 {title}")
        print(f"{'='*60}")
        for label, entries in (("❌ ERRORS", self.session_errors), ("⚠️  WARNINGS", self.session_warnings)):
            if entries:
                print(f"\n{label} ({len(entries)}):")
                for i, entry in enumerate(entries[-5:], 1):
                    print(f"   {i}. {entry['message']}")
                    if entry.get("details"):
                        print(f"      Details: {entry['details']}")
        print(f"{'='*60}\n")

    def _get_theme_color(self, level: NotificationLevel) -> str:
        colors = {
            NotificationLevel.INFO: "28a745",     # Green
            NotificationLevel.WARNING: "ffc107",  # Yellow
            NotificationLevel.ERROR: "dc3545",    # Red
        }
        return colors.get(level, "17a2b8")

    def clear_session(self):
        self.session_warnings.clear()
        self.session_errors.clear()


# Global notifier instance
_notifier: Optional[TeamsNotifier] = None


def initialize_notifier(webhook_url: str) -> TeamsNotifier:
    """Initialize global notification system"""
    global _notifier
    _notifier = TeamsNotifier(webhook_url)
    logger.info("📨 Teams notification system initialized")
    return _notifier


def get_notifier() -> Optional[TeamsNotifier]:
    return _notifier


def _should_suppress_message(message: str) -> bool:
    from . import config
    return message in config.IGNORED_WARNING_MESSAGES


def notify_warning(message: str, details: Optional[Dict] = None):
    logger.warning(message)  # Always log locally
    if _notifier and not _should_suppress_message(message):
        _notifier.add_warning(message, details)


def notify_error(message: str, details: Optional[Dict] = None):
    logger.error(message)  # Always log locally
    if _notifier:
        _notifier.add_error(message, details)


def notify_info(message: str):
    logger.info(message)  # Successful runs are never posted


def send_final_notification(title: str = "Profile Sync Completed") -> bool:
    """Send final notification if any issues were tracked"""
    if _notifier:
        return _notifier.send_notification(title)
    return False


def reset_session():
    if _notifier:
        _notifier.clear_session()
