"""
Streaming relay between the AI provider and the browser.

One `ChatStream` serves one send request. Its `events()` generator is
handed to a StreamingResponse and produces server-sent event records:

    user -> (content | thinking)* -> done
                                  \\-> error

Upstream frames are read, demultiplexed and pushed one at a time, so a
slow client slows the upstream read as well. The accounting finalizer runs
exactly once, on the transition to `completed`, before `done` is sent.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional
import asyncio
import json
import logging

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session, sessionmaker

from app.services import chat_service
from app.services.ai_service import AIService
from app.services.chat_service import PendingExchange
from app.services.stream_demux import StreamState, process_frame

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}

STREAM_ERROR_MESSAGE = "AI streaming failed"


def format_sse(event: Dict[str, Any]) -> str:
    """Serialize one normalized event as a `data:` record."""
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


class StreamPhase(str, Enum):
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ChatStream:
    """Relay for a single chat send: upstream read, demux, push, finalize."""

    def __init__(
        self,
        exchange: PendingExchange,
        ai_service: AIService,
        session_factory: sessionmaker,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ):
        self.exchange = exchange
        self.ai_service = ai_service
        self.session_factory = session_factory
        self.is_disconnected = is_disconnected
        self.state = StreamState()
        self.phase = StreamPhase.STREAMING
        self.finalize_calls = 0

    async def _client_gone(self) -> bool:
        if self.is_disconnected is None:
            return False
        return await self.is_disconnected()

    def _cancel(self) -> None:
        if self.phase is StreamPhase.STREAMING:
            self.phase = StreamPhase.CANCELLED
            logger.info(f"Client disconnected, abandoning stream for session {self.exchange.session_id}")

    def _finalize(self) -> Dict[str, Any]:
        """Persist the exchange. Only valid once, while still streaming."""
        if self.phase is not StreamPhase.STREAMING or self.finalize_calls:
            raise RuntimeError(f"finalize called in phase {self.phase.value}")
        self.finalize_calls += 1

        db: Session = self.session_factory()
        try:
            message = chat_service.finalize_exchange(db, self.exchange, self.state)
            return chat_service.serialize_message(message)
        finally:
            db.close()

    async def events(self) -> AsyncIterator[str]:
        yield format_sse({"type": "user", "message": self.exchange.user_message})

        try:
            async with self.ai_service.stream_chat(
                self.exchange.api_key,
                self.exchange.model,
                self.exchange.history,
            ) as frames:
                async for frame in frames:
                    if await self._client_gone():
                        self._cancel()
                        return
                    for event in process_frame(self.state, frame):
                        yield format_sse(event)
                    if self.state.finished:
                        break

            assistant_message = await run_in_threadpool(self._finalize)
        except (asyncio.CancelledError, GeneratorExit):
            self._cancel()
            raise
        except Exception as e:
            self.phase = StreamPhase.FAILED
            logger.error(f"Error streaming AI reply: {str(e)}", exc_info=True)
            yield format_sse({"type": "error", "error": STREAM_ERROR_MESSAGE})
            return

        self.phase = StreamPhase.COMPLETED
        yield format_sse({"type": "done", "message": assistant_message})
