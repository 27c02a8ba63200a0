import json
import os
import sys
from unittest.mock import Mock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from profile_sync import config, notifications


def fake_response(status_code=200, body=None, reason="OK"):
    """Mock of a requests.Response"""
    return Mock(
        status_code=status_code,
        reason=reason,
        json=lambda: body,
        text=json.dumps(body) if body is not None else "",
    )


@pytest.fixture
def settings():
    return {
        "synced_traits": ["plan"],
        "profile_api_key": "personas-key",
        "profile_space_id": "spa_123",
        "destination_api_key": "SG.key",
    }


@pytest.fixture(autouse=True)
def quiet_environment(monkeypatch):
    monkeypatch.setattr(config, "TEAMS_WEBHOOK_URL", "")
    monkeypatch.setattr(config, "SHOW_PROGRESS", False)
    monkeypatch.setattr(notifications, "_notifier", None)
    # run_batch configures logging; keep the test run's handlers and cwd untouched
    monkeypatch.setattr(config, "_logging_configured", True)


def non_json_response(status_code=200, text="<html>502 Bad Gateway</html>"):
    """Mock of a 2xx requests.Response whose body is not JSON"""
    return Mock(
        status_code=status_code,
        reason="OK",
        json=Mock(side_effect=ValueError("Expecting value: line 1 column 1 (char 0)")),
        text=text,
    )
