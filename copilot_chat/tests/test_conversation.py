from datetime import datetime, timezone

import pytest

from copilot_chat.domain.conversation import (
    ConversationSession,
    PendingQueue,
    ProcessedIdSet,
    ReconcileBatch,
)
from copilot_chat.domain.exceptions import ValidationError
from copilot_chat.domain.models import (
    ChatMessage,
    PartsContent,
    RemoteMessage,
    TextContent,
    TurnResponse,
    parse_timestamp,
)


def _msg(mid, role="user", content="x", remote=None):
    return ChatMessage(
        id=mid,
        role=role,
        content=content,
        created_at=datetime.now(timezone.utc),
        remote_message_id=remote,
    )


def test_pending_queue_match_consumes_once():
    q = PendingQueue()
    q.enqueue("u1", "  Hello  ")
    entry = q.match_and_consume("Hello")
    assert entry is not None and entry.local_id == "u1"
    assert q.match_and_consume("Hello") is None
    assert len(q) == 0


def test_pending_queue_rejects_duplicate_local_id():
    q = PendingQueue()
    q.enqueue("u1", "a")
    with pytest.raises(ValidationError):
        q.enqueue("u1", "a")
    assert len(q) == 1


def test_pending_queue_rollback_any_position():
    q = PendingQueue()
    q.enqueue("u1", "a")
    q.enqueue("u2", "b")
    q.enqueue("u3", "c")
    assert q.rollback("u2") is True
    assert [e.local_id for e in q] == ["u1", "u3"]
    assert q.rollback("missing") is False


def test_pending_queue_first_match_wins_known_limitation():
    # 两条不同的提交规范化后文本相同：总是匹配最早的一条（已知限制）
    q = PendingQueue()
    q.enqueue("u1", "same")
    q.enqueue("u2", "same ")
    assert q.match_and_consume("same").local_id == "u1"
    assert q.match_and_consume("same").local_id == "u2"


def test_processed_id_set():
    s = ProcessedIdSet()
    s.add("m1")
    s.add("m1")
    assert "m1" in s
    assert len(s) == 1
    s.clear()
    assert "m1" not in s


def test_session_apply_backfills_and_appends():
    session = ConversationSession()
    session.append(_msg("u1"))
    batch = ReconcileBatch(backfills=[("u1", "m1")], appended=[_msg("assistant-m2", role="assistant", remote="m2")])
    session.apply(batch)
    messages = session.messages
    assert [m.id for m in messages] == ["u1", "assistant-m2"]
    assert messages[0].remote_message_id == "m1"


def test_session_never_overwrites_remote_id():
    session = ConversationSession()
    session.append(_msg("u1", remote="m1"))
    session.apply(ReconcileBatch(backfills=[("u1", "m9")]))
    assert session.get("u1").remote_message_id == "m1"


def test_session_reset():
    session = ConversationSession()
    session.session_id = "abc"
    session.append(_msg("u1"))
    session.reset()
    assert session.session_id is None
    assert session.messages == []


def test_remote_message_content_variants():
    assert RemoteMessage.from_payload({"id": "a", "text": "hi", "content": "ignored"}).content == TextContent("hi")
    assert RemoteMessage.from_payload({"id": "a", "text": "  ", "content": "c"}).content == TextContent("c")
    parts = RemoteMessage.from_payload(
        {"id": "a", "content": [{"type": "text", "text": "one"}, {"value": ""}, {"content": "two"}, 5]}
    ).content
    assert isinstance(parts, PartsContent)
    assert parts.as_text() == "one\ntwo"
    assert RemoteMessage.from_payload({"id": "a"}).content.as_text() == ""


def test_remote_message_attributions():
    msg = RemoteMessage.from_payload(
        {
            "id": "a",
            "text": "x",
            "attributions": [{"providerDisplayName": " Docs ", "seeMoreWebUrl": "https://d"}, "bad"],
        }
    )
    assert len(msg.attributions) == 1
    assert msg.attributions[0].title == "Docs"


def test_turn_response_conversation_id_fallback():
    assert TurnResponse.from_payload({"conversationId": "c2", "messages": []}).conversation_id == "c2"
    assert TurnResponse.from_payload({"id": "c1", "conversationId": "c2"}).conversation_id == "c1"
    empty = TurnResponse.from_payload(["not", "a", "dict"])
    assert empty.conversation_id is None and empty.entries == []


def test_parse_timestamp():
    ts = parse_timestamp("2024-05-01T10:00:00.1234567Z")
    assert ts == datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None
