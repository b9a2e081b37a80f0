import asyncio

import httpx
import pytest

from copilot_chat.domain.exceptions import (
    ChatRequestError,
    MalformedResponseError,
    NetworkError,
    SessionCreationError,
)
from copilot_chat.providers.copilot_client import CopilotClient, resolve_time_zone


class SettingsStub:
    copilot_endpoint = "https://copilot.example.com/beta/copilot/"
    copilot_subscription_key = None
    http_timeout = 1.0
    time_zone = "Europe/Paris"


class Resp:
    def __init__(self, status_code=200, payload=None, text="", reason_phrase="OK"):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.reason_phrase = reason_phrase

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload


def fake_async_client(monkeypatch, resp, captured=None):
    class Client:
        def __init__(self, *a, **kw):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *a):
            return False

        async def post(self, url, json=None, headers=None, **_):
            if captured is not None:
                captured.append({"url": url, "json": json, "headers": headers})
            if isinstance(resp, Exception):
                raise resp
            return resp

    monkeypatch.setattr("httpx.AsyncClient", Client)


def test_create_conversation_returns_id(monkeypatch):
    captured = []
    fake_async_client(monkeypatch, Resp(201, {"id": "abc"}), captured)
    cid = asyncio.run(CopilotClient(SettingsStub()).create_conversation("tok"))
    assert cid == "abc"
    assert captured[0]["url"] == "https://copilot.example.com/beta/copilot/conversations"
    assert captured[0]["json"] == {}
    assert captured[0]["headers"]["Authorization"] == "Bearer tok"
    assert "Ocp-Apim-Subscription-Key" not in captured[0]["headers"]


def test_create_conversation_conversation_id_fallback_and_subscription_key(monkeypatch):
    class KeyedSettings(SettingsStub):
        copilot_subscription_key = "sub-key"

    captured = []
    fake_async_client(monkeypatch, Resp(200, {"conversationId": "c-2"}), captured)
    cid = asyncio.run(CopilotClient(KeyedSettings()).create_conversation("tok"))
    assert cid == "c-2"
    assert captured[0]["headers"]["Ocp-Apim-Subscription-Key"] == "sub-key"


def test_create_conversation_without_id_fails(monkeypatch):
    fake_async_client(monkeypatch, Resp(200, {"state": "active"}))
    with pytest.raises(SessionCreationError) as exc:
        asyncio.run(CopilotClient(SettingsStub()).create_conversation("tok"))
    assert "no conversation ID" in exc.value.message


def test_create_conversation_http_error(monkeypatch):
    fake_async_client(monkeypatch, Resp(403, {"error": {"code": "Forbidden"}}, reason_phrase="Forbidden"))
    with pytest.raises(SessionCreationError) as exc:
        asyncio.run(CopilotClient(SettingsStub()).create_conversation("tok"))
    assert exc.value.http_status == 403
    assert '"code": "Forbidden"' in exc.value.message


def test_create_conversation_non_json_body(monkeypatch):
    fake_async_client(monkeypatch, Resp(200, None, text="<html>"))
    with pytest.raises(MalformedResponseError):
        asyncio.run(CopilotClient(SettingsStub()).create_conversation("tok"))


def test_chat_payload(monkeypatch):
    captured = []
    fake_async_client(monkeypatch, Resp(200, {"id": "abc", "messages": []}), captured)
    data = asyncio.run(CopilotClient(SettingsStub()).chat("tok", "abc", "Hello"))
    assert data == {"id": "abc", "messages": []}
    assert captured[0]["url"].endswith("/conversations/abc/chat")
    assert captured[0]["json"] == {
        "message": {"text": "Hello"},
        "locationHint": {"timeZone": "Europe/Paris"},
    }


def test_chat_http_error_with_text_detail(monkeypatch):
    fake_async_client(monkeypatch, Resp(500, None, text="boom", reason_phrase="Internal Server Error"))
    with pytest.raises(ChatRequestError) as exc:
        asyncio.run(CopilotClient(SettingsStub()).chat("tok", "abc", "Hello"))
    assert exc.value.status == 500
    assert exc.value.detail == "boom"
    assert exc.value.message == "Copilot chat request failed (500 Internal Server Error): boom"


def test_chat_http_error_with_json_detail(monkeypatch):
    fake_async_client(monkeypatch, Resp(429, {"error": "slow down"}, reason_phrase="Too Many Requests"))
    with pytest.raises(ChatRequestError) as exc:
        asyncio.run(CopilotClient(SettingsStub()).chat("tok", "abc", "Hello"))
    assert exc.value.status == 429
    assert exc.value.detail == '{"error": "slow down"}'


def test_chat_non_json_success_is_empty(monkeypatch):
    fake_async_client(monkeypatch, Resp(200, None, text=""))
    assert asyncio.run(CopilotClient(SettingsStub()).chat("tok", "abc", "Hello")) == {}


def test_network_error(monkeypatch):
    fake_async_client(monkeypatch, httpx.ConnectError("connection refused"))
    with pytest.raises(NetworkError) as exc:
        asyncio.run(CopilotClient(SettingsStub()).chat("tok", "abc", "Hello"))
    assert exc.value.code == "NETWORK_ERROR"


def test_resolve_time_zone_order(monkeypatch):
    assert resolve_time_zone("Asia/Tokyo") == "Asia/Tokyo"
    monkeypatch.setenv("TZ", "America/New_York")
    assert resolve_time_zone(None) == "America/New_York"
    monkeypatch.setenv("TZ", ":Europe/Berlin")
    assert resolve_time_zone(None) == "Europe/Berlin"
