import json

import pytest
import requests

from fitmatch.backend import rest
from fitmatch.backend.codec import activity_to_record, message_to_record
from fitmatch.backend.rest import RestBackend
from fitmatch.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from fitmatch.models import Message

from conftest import NOW, make_activity


class FakeResp:
    def __init__(self, status_code=200, data=None, text=None, headers=None):
        self.status_code = status_code
        self._data = data
        self._text = text
        self.headers = headers or {}
        self.url = "http://backend.test"

    def json(self):
        if isinstance(self._data, Exception):  # force JSON error
            raise self._data
        return self._data

    @property
    def text(self):
        if self._text is not None:
            return self._text
        return json.dumps(self._data) if self._data is not None else ""

    @property
    def content(self):
        return self.text.encode("utf-8")


class FakeSession:
    """Replays scripted responses and records every request."""

    def __init__(self, *responses):
        self._responses = list(responses)
        self.calls = []

    def request(self, method, url, headers=None, params=None, json=None, timeout=None):
        self.calls.append(
            {"method": method, "url": url, "headers": headers, "params": params, "json": json}
        )
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr(rest.time, "sleep", lambda s: sleeps.append(s))
    return sleeps


def _backend(*responses, max_retries=3):
    session = FakeSession(*responses)
    return RestBackend("http://backend.test/api/", session=session, max_retries=max_retries), session


def test_fetch_activities_decodes_records():
    record = activity_to_record(make_activity(participants=("c", "a")))
    backend, session = _backend(FakeResp(200, [record]))

    activities = backend.fetch_activities()

    assert activities == [make_activity(participants=("c", "a"))]
    assert session.calls[0]["method"] == "GET"
    assert session.calls[0]["url"] == "http://backend.test/api/activities"


def test_join_sends_idempotency_key_and_decodes_chat():
    activity = make_activity(participants=("c", "a"))
    notice = Message(
        id="m1", sender_id=None, text="A has joined the activity!", timestamp=NOW, is_system=True
    )
    payload = {
        "activity": activity_to_record(activity),
        "chat_created": True,
        "system_message": message_to_record(notice),
        "chat": {
            "activity_id": "act-1",
            "members": ["c", "a"],
            "messages": [message_to_record(notice)],
        },
    }
    backend, session = _backend(FakeResp(201, payload))

    result = backend.join_activity("act-1", "a", "key-123")

    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"].endswith("/activities/act-1/participants")
    assert call["headers"] == {"Idempotency-Key": "key-123"}
    assert call["json"] == {"user_id": "a"}
    assert result.chat_created
    assert result.activity.participants == ("c", "a")
    assert result.chat.messages[0].is_system
    assert result.chat.messages[0].sender_id is None


@pytest.mark.parametrize(
    "status, error",
    [
        (400, ValidationError),
        (403, AuthorizationError),
        (404, NotFoundError),
        (409, ConflictError),
        (410, ConflictError),
        (418, TransportError),
    ],
)
def test_status_codes_map_to_errors(status, error):
    backend, _ = _backend(FakeResp(status, {"message": "nope"}))
    with pytest.raises(error):
        backend.fetch_activity("act-1")


def test_validation_errors_carry_field_messages():
    body = {"message": "Invalid", "errors": [{"field": "title", "message": "Title is required."}]}
    backend, _ = _backend(FakeResp(422, body))
    with pytest.raises(ValidationError) as info:
        backend.create_activity({"title": ""}, "a", "key-1")
    assert info.value.errors == {"title": "Title is required."}


def test_conflict_message_comes_from_server():
    backend, _ = _backend(FakeResp(409, {"detail": "This activity is full"}))
    with pytest.raises(ConflictError, match="This activity is full"):
        backend.join_activity("act-1", "b", "key-1")


def test_server_errors_are_retried_with_backoff(no_sleep):
    record = activity_to_record(make_activity())
    backend, session = _backend(
        FakeResp(503, text="unavailable"), FakeResp(429, {}), FakeResp(200, record)
    )

    assert backend.fetch_activity("act-1").id == "act-1"
    assert len(session.calls) == 3
    assert no_sleep == [1.0, 2.0]


def test_retries_reuse_the_same_idempotency_key():
    backend, session = _backend(
        requests.ConnectionError("reset"), FakeResp(204, None)
    )
    backend.delete_activity("act-1", "c", "key-9")
    assert [c["headers"]["Idempotency-Key"] for c in session.calls] == ["key-9", "key-9"]
    assert session.calls[0]["params"] == {"actor_id": "c"}


def test_network_errors_exhaust_into_transport_error():
    backend, session = _backend(
        requests.Timeout("slow"), requests.Timeout("slow"), max_retries=2
    )
    with pytest.raises(TransportError):
        backend.fetch_users()
    assert len(session.calls) == 2


def test_last_server_error_is_transport_error():
    backend, _ = _backend(FakeResp(500, text="boom"), FakeResp(502, text="boom"), max_retries=2)
    with pytest.raises(TransportError, match="status 502"):
        backend.fetch_chats()


def test_non_json_body_is_transport_error():
    backend, _ = _backend(FakeResp(200, ValueError("bad json"), text="<html>"))
    with pytest.raises(TransportError):
        backend.fetch_users()


def test_post_message_uses_client_id_as_key():
    confirmed = Message(id="m9", sender_id="a", text="hi", timestamp=NOW, client_id="cid-1")
    backend, session = _backend(FakeResp(201, message_to_record(confirmed)))

    message = backend.post_message("act-1", "a", "hi", "cid-1")

    assert message == confirmed
    assert session.calls[0]["headers"] == {"Idempotency-Key": "cid-1"}
    assert session.calls[0]["json"]["client_id"] == "cid-1"


def test_profile_update_encodes_view_radius():
    backend, session = _backend(
        FakeResp(200, {"id": "a", "name": "A", "view_radius": 7.5})
    )
    user = backend.update_user("a", {"view_radius_km": 7.5})
    assert session.calls[0]["json"] == {"view_radius": 7.5}
    assert user.view_radius_km == 7.5
