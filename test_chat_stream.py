"""
Tests for the relay state machine, driven without an HTTP server.
"""
import asyncio
import json

import httpx
import pytest

from conftest import delta, mock_provider, sse_record
from app.database import SessionLocal
from app.models.chat_message import ChatMessage
from app.models.token_usage import TokenUsage
from app.services import chat_service
from app.services.chat_stream import ChatStream, StreamPhase, format_sse


def prepare(db, message="Hi there"):
    chat_service.upsert_credential(db, "user-1", api_key="sk-test", model="deepseek-chat")
    return chat_service.prepare_exchange(db, "user-1", None, message)


def collect(stream, limit=None):
    async def run():
        records = []
        agen = stream.events()
        try:
            async for record in agen:
                records.append(json.loads(record[len("data: "):]))
                if limit is not None and len(records) >= limit:
                    break
        finally:
            await agen.aclose()
        return records

    return asyncio.run(run())


def disconnect_after(checks):
    calls = {"n": 0}

    async def probe():
        calls["n"] += 1
        return calls["n"] > checks

    return probe


def test_format_sse():
    assert format_sse({"type": "content", "content": "é"}) == 'data: {"type": "content", "content": "é"}\n\n'


def test_completed_stream_finalizes_once(db):
    exchange = prepare(db)
    provider = mock_provider([
        sse_record(delta("Hel")),
        sse_record(delta("lo")) + sse_record({"choices": [], "usage": {"total_tokens": 12}}),
        sse_record("[DONE]"),
    ])
    stream = ChatStream(exchange, ai_service=provider, session_factory=SessionLocal)

    events = collect(stream)

    assert [e["type"] for e in events] == ["user", "content", "content", "done"]
    assert events[0]["message"]["id"] == exchange.user_message["id"]
    assert events[-1]["message"]["content"] == "Hello"
    assert events[-1]["message"]["tokens"] == 12
    assert stream.phase is StreamPhase.COMPLETED
    assert stream.finalize_calls == 1
    assert db.query(TokenUsage).count() == 1


def test_body_close_without_terminator_still_completes(db):
    exchange = prepare(db)
    stream = ChatStream(exchange, ai_service=mock_provider([sse_record(delta("partial"))]), session_factory=SessionLocal)

    events = collect(stream)

    assert events[-1]["type"] == "done"
    assert events[-1]["message"]["content"] == "partial"


def test_finalize_twice_is_rejected(db):
    exchange = prepare(db)
    stream = ChatStream(exchange, ai_service=mock_provider([]), session_factory=SessionLocal)
    stream._finalize()

    with pytest.raises(RuntimeError):
        stream._finalize()


def test_disconnect_stops_relay_without_persisting(db):
    exchange = prepare(db)
    provider = mock_provider([
        sse_record(delta("one")),
        sse_record(delta("two")),
        sse_record(delta("three")),
        sse_record("[DONE]"),
    ])
    stream = ChatStream(
        exchange,
        ai_service=provider,
        session_factory=SessionLocal,
        is_disconnected=disconnect_after(1),
    )

    events = collect(stream)

    assert [e["type"] for e in events] == ["user", "content"]
    assert stream.phase is StreamPhase.CANCELLED
    assert stream.finalize_calls == 0
    # Only the user's own message was stored
    roles = [m.role for m in db.query(ChatMessage).all()]
    assert roles == ["user"]


def test_consumer_closing_generator_cancels(db):
    exchange = prepare(db)
    provider = mock_provider([sse_record(delta("a")), sse_record(delta("b")), sse_record("[DONE]")])
    stream = ChatStream(exchange, ai_service=provider, session_factory=SessionLocal)

    events = collect(stream, limit=2)

    assert [e["type"] for e in events] == ["user", "content"]
    assert stream.phase is StreamPhase.CANCELLED
    assert stream.finalize_calls == 0


def test_upstream_error_becomes_error_event(db, caplog):
    exchange = prepare(db)
    provider = mock_provider(status_code=401, body=b'{"error": "invalid api key sk-secret"}')
    stream = ChatStream(exchange, ai_service=provider, session_factory=SessionLocal)

    events = collect(stream)

    assert [e["type"] for e in events] == ["user", "error"]
    assert "sk-secret" not in events[-1]["error"]
    assert stream.phase is StreamPhase.FAILED
    assert "invalid api key" in caplog.text


def test_finalizer_failure_reports_error_instead_of_done(db):
    exchange = prepare(db)

    def broken_factory():
        raise RuntimeError("database unavailable")

    stream = ChatStream(
        exchange,
        ai_service=mock_provider([sse_record(delta("x")), sse_record("[DONE]")]),
        session_factory=broken_factory,
    )

    events = collect(stream)

    assert [e["type"] for e in events] == ["user", "content", "error"]
    assert stream.phase is StreamPhase.FAILED


def test_wrongly_shaped_record_does_not_abort_stream(db):
    exchange = prepare(db)
    provider = mock_provider([
        sse_record(delta("one ")),
        sse_record({"choices": 5}),
        sse_record(delta("two")),
        sse_record("[DONE]"),
    ])
    stream = ChatStream(exchange, ai_service=provider, session_factory=SessionLocal)

    events = collect(stream)

    assert [e["type"] for e in events] == ["user", "content", "content", "done"]
    assert events[-1]["message"]["content"] == "one two"
    assert stream.phase is StreamPhase.COMPLETED


def test_no_content_response_reports_error(db):
    exchange = prepare(db)
    stream = ChatStream(exchange, ai_service=mock_provider(status_code=204), session_factory=SessionLocal)

    events = collect(stream)

    assert [e["type"] for e in events] == ["user", "error"]
    assert stream.phase is StreamPhase.FAILED
    assert db.query(ChatMessage).filter(ChatMessage.role == "assistant").count() == 0


def test_transport_failure_reports_generic_error(db, caplog):
    exchange = prepare(db)
    provider = mock_provider(error=httpx.ConnectError("connection refused by 10.0.0.7"))
    stream = ChatStream(exchange, ai_service=provider, session_factory=SessionLocal)

    events = collect(stream)

    assert [e["type"] for e in events] == ["user", "error"]
    assert "10.0.0.7" not in json.dumps(events[-1])
    assert "10.0.0.7" in caplog.text
    assert stream.phase is StreamPhase.FAILED
    assert db.query(ChatMessage).filter(ChatMessage.role == "assistant").count() == 0
