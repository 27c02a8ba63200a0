import threading
from unittest.mock import Mock, patch

import pytest

from conftest import fake_response, non_json_response
from profile_sync import config, sync
from profile_sync.errors import (
    EventNotSupportedError, FatalError, RetryableError, UnmappedFieldError, ValidationError,
)


def identify(user_id=None, email=None, audience=None):
    event = {"type": "identify", "traits": {}, "context": {}}
    if user_id:
        event["userId"] = user_id
    if email:
        event["traits"]["email"] = email
    if audience:
        event["context"]["personas"] = {"computation_class": "audience", "computation_key": audience}
    return event


def profiles_returning(traits_by_user):
    """Profile API session answering per user_id:/email: path segment"""
    def get(url, params=None, timeout=None):
        for user, traits in traits_by_user.items():
            if f"/profiles/{user}/traits" in url:
                if isinstance(traits, int):
                    return fake_response(traits, {"error": "failed"})
                return fake_response(200, {"traits": traits})
        return fake_response(404, {"error": "not found"})

    session = Mock()
    session.get.side_effect = get
    return session


def destination_with(fields, put_response=None):
    session = Mock()
    session.get.return_value = fake_response(200, {
        "custom_fields": [{"name": name, "id": field_id} for name, field_id in fields.items()],
    })
    session.put.return_value = put_response or fake_response(202, {"job_id": "job-1"})
    return session


def test_batch_upserts_all_contacts_in_event_order(settings):
    destination = destination_with({"plan": "f1"})
    profiles = profiles_returning({
        "user_id:u-1": {"email": "One@Example.com", "plan": "gold", "secret": "x"},
        "email:two@example.com": {"email": "two@example.com", "plan": "silver"},
        "user_id:u-3": {"email": "three@example.com", "plan": "bronze"},
    })
    events = [identify("u-1"), identify(email="two@example.com"), identify("u-3")]

    job_id = sync.process_batch(events, settings, destination, profiles)

    assert job_id == "job-1"
    assert destination.get.call_count == 1
    assert profiles.get.call_count == 3
    assert destination.put.call_args[1]["json"] == {"contacts": [
        {"email": "one@example.com", "custom_fields": {"f1": "gold"}},
        {"email": "two@example.com", "custom_fields": {"f1": "silver"}},
        {"email": "three@example.com", "custom_fields": {"f1": "bronze"}},
    ]}


def test_concurrency_is_bounded(settings, monkeypatch):
    monkeypatch.setattr(config, "MAX_CONCURRENT_FETCHES", 2)
    destination = destination_with({"plan": "f1"})
    profiles = profiles_returning({f"user_id:u-{i}": {"plan": str(i)} for i in range(6)})

    with patch("profile_sync.sync.ThreadPoolExecutor", wraps=sync.ThreadPoolExecutor) as pool:
        sync.process_batch([identify(f"u-{i}") for i in range(6)], settings, destination, profiles)

    assert pool.call_args[1]["max_workers"] == 2
    contacts = destination.put.call_args[1]["json"]["contacts"]
    assert [c["custom_fields"]["f1"] for c in contacts] == [str(i) for i in range(6)]


def test_audience_event_syncs_membership(settings):
    settings["synced_traits"] = []
    destination = destination_with({"vip_shoppers": "f7"})
    profiles = profiles_returning({"user_id:u-1": {"email": "a@b.com", "vip_shoppers": True}})

    sync.process_batch([identify("u-1", audience="vip_shoppers")], settings, destination, profiles)

    assert destination.put.call_args[1]["json"]["contacts"] == [
        {"email": "a@b.com", "custom_fields": {"f7": "true"}},
    ]


def test_schema_outage_stops_before_any_trait_fetch(settings):
    destination = Mock()
    destination.get.return_value = fake_response(503, {"errors": []})
    profiles = profiles_returning({"user_id:u-1": {"plan": "gold"}})

    with pytest.raises(RetryableError):
        sync.process_batch([identify("u-1")], settings, destination, profiles)

    profiles.get.assert_not_called()
    destination.put.assert_not_called()


def test_one_failed_lookup_fails_the_whole_batch(settings):
    destination = destination_with({"plan": "f1"})
    profiles = profiles_returning({"user_id:u-1": {"plan": "gold"}, "user_id:u-2": 500})

    with pytest.raises(RetryableError):
        sync.process_batch([identify("u-1"), identify("u-2")], settings, destination, profiles)

    destination.put.assert_not_called()


def test_unknown_user_is_fatal(settings):
    destination = destination_with({"plan": "f1"})
    profiles = profiles_returning({})

    with pytest.raises(FatalError):
        sync.process_batch([identify("ghost")], settings, destination, profiles)


def test_unmapped_trait_aborts_the_batch(settings):
    destination = destination_with({})
    profiles = profiles_returning({"user_id:u-1": {"plan": "gold"}})

    with pytest.raises(UnmappedFieldError) as excinfo:
        sync.process_batch([identify("u-1")], settings, destination, profiles)

    assert "plan" in excinfo.value.missing_fields
    destination.put.assert_not_called()


def test_empty_batch_makes_no_requests(settings):
    destination, profiles = Mock(), Mock()
    assert sync.process_batch([], settings, destination, profiles) is None
    destination.get.assert_not_called()
    profiles.get.assert_not_called()


@pytest.mark.parametrize("handler", [
    sync.on_track, sync.on_page, sync.on_screen, sync.on_group, sync.on_alias, sync.on_delete,
])
def test_unsupported_event_handlers(handler, settings):
    with pytest.raises(EventNotSupportedError):
        handler({}, settings)


def test_handle_event_rejects_unknown_types(settings):
    with pytest.raises(EventNotSupportedError):
        sync.handle_event({"type": "mystery"}, settings)


def test_on_identify_runs_a_single_event_batch(settings):
    with patch.object(sync, "process_batch", return_value="job-9") as process:
        assert sync.handle_event(identify("u-1"), settings) == "job-9"
    events, passed_settings = process.call_args[0]
    assert events == [identify("u-1")]
    assert passed_settings["destination_api_key"] == "SG.key"


def test_on_identify_accepts_host_setting_names():
    host_settings = {
        "syncedTraits": ["Plan"],
        "personasProfileApiKey": "pk",
        "personasSpaceId": "spa",
        "sendgridApiKey": "sk",
    }
    with patch.object(sync, "process_batch", return_value=None) as process:
        sync.on_identify(identify("u-1"), host_settings)
    passed = process.call_args[0][1]
    assert passed["synced_traits"] == ["Plan"]
    assert passed["profile_space_id"] == "spa"


def test_run_batch_reports_success(settings):
    with patch.object(sync, "process_batch", return_value="job-1"):
        result = sync.run_batch([identify("u-1")], settings)
    assert result["status"] == "success"
    assert result["job_id"] == "job-1"
    assert result["retryable"] is False
    assert result["contacts"] == 1


def test_run_batch_tags_retryable_failures(settings):
    with patch.object(sync, "process_batch", side_effect=RetryableError("SendGrid 503")):
        result = sync.run_batch([identify("u-1")], settings)
    assert result["status"] == "retryable"
    assert result["retryable"] is True
    assert result["message"] == "SendGrid 503"
    assert result["contacts"] == 0


def test_run_batch_tags_unmapped_fields(settings):
    with patch.object(sync, "process_batch", side_effect=UnmappedFieldError({"plan": "gold"})):
        result = sync.run_batch([identify("u-1")], settings)
    assert result["status"] == "unmapped_field"
    assert result["retryable"] is False


def test_run_batch_rejects_unsupported_events(settings):
    with patch.object(sync, "process_batch") as process:
        result = sync.run_batch([{"type": "track", "event": "Clicked"}], settings)
    assert result["status"] == "event_not_supported"
    process.assert_not_called()


def test_run_batch_reports_missing_settings():
    result = sync.run_batch([identify("u-1")], {"syncedTraits": ["plan"]})
    assert result["status"] == "validation"
    assert "destination_api_key" in result["details"]["missing_settings"]


def test_run_batch_notifies_operator_on_failure(settings, monkeypatch):
    monkeypatch.setattr(config, "TEAMS_WEBHOOK_URL", "https://teams.example.com/hook")
    with patch.object(sync, "process_batch", side_effect=ValidationError("bad contact")), \
         patch("profile_sync.notifications.requests.post",
               return_value=fake_response(202, {})) as post:
        result = sync.run_batch([identify("u-1")], settings)

    assert result["status"] == "validation"
    card = post.call_args[1]["json"]
    assert card["summary"] == "Profile Sync Failed"
    assert "bad contact" in card["sections"][1]["text"]


def test_run_batch_configures_logging(settings, monkeypatch):
    setup_logging = Mock()
    monkeypatch.setattr(config, "setup_logging", setup_logging)
    with patch.object(sync, "process_batch", return_value="job-1"):
        sync.run_batch([identify("u-1")], settings)
    setup_logging.assert_called_once_with()


def test_run_batch_reports_non_json_schema_as_retryable(settings):
    destination = Mock()
    destination.get.return_value = non_json_response()
    with patch.object(sync, "destination_session", return_value=destination):
        result = sync.run_batch([identify("u-1")], settings)
    assert result["status"] == "retryable"
    assert result["contacts"] == 0
    assert result["details"]["response"] == "<html>502 Bad Gateway</html>"
    destination.put.assert_not_called()


def test_each_worker_thread_gets_its_own_profile_session(settings, monkeypatch):
    monkeypatch.setattr(config, "MAX_CONCURRENT_FETCHES", 3)
    opened = []

    def new_session(api_key):
        session = profiles_returning({f"user_id:u-{i}": {"plan": str(i)} for i in range(6)})
        session.used_by = set()
        original_get = session.get.side_effect

        def get(url, params=None, timeout=None):
            session.used_by.add(threading.get_ident())
            return original_get(url, params=params, timeout=timeout)

        session.get.side_effect = get
        opened.append(session)
        return session

    with patch.object(sync, "profile_session", side_effect=new_session):
        traits = sync.fetch_all_traits([identify(f"u-{i}") for i in range(6)], settings)

    assert [t["plan"] for t in traits] == [str(i) for i in range(6)]
    assert 1 <= len(opened) <= 3
    assert all(len(session.used_by) == 1 for session in opened)
    assert len({ident for session in opened for ident in session.used_by}) == len(opened)
    for session in opened:
        session.close.assert_called_once_with()
