"""
Demultiplexer for the AI provider's streaming chat completion protocol.

The provider sends newline-delimited `data: <json>` records terminated by
`data: [DONE]`. Content deltas may carry an inline reasoning segment
wrapped in `<think>...</think>`; that text is kept apart from the visible
answer and surfaced to the client once, when the segment closes.

Everything here is pure: a `StreamState` is threaded through the
functions and the normalized downstream events are returned as dicts.
A tag is assumed to arrive whole inside a single delta. A tag split
across two deltas is treated as ordinary text.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


@dataclass
class StreamState:
    """Accumulated result of one in-flight chat completion."""

    answer: str = ""
    thinking: str = ""  # every segment of the reply, in order
    segment: str = ""  # the open segment only
    in_thinking: bool = False
    total_tokens: int = 0
    finished: bool = False  # terminator record seen


def content_event(delta: str) -> Dict[str, Any]:
    return {"type": "content", "content": delta}


def thinking_event(text: str) -> Dict[str, Any]:
    return {"type": "thinking", "content": text}


def split_delta(state: StreamState, delta: str) -> List[Dict[str, Any]]:
    """
    Route one content delta into the answer or the thinking accumulator.

    Returns the events to push downstream: a `content` event for every
    non-empty slice of visible answer text and a `thinking` event carrying
    the text between the open and close tag whenever a segment closes.
    """
    events: List[Dict[str, Any]] = []
    remaining = delta

    while remaining:
        if state.in_thinking:
            end = remaining.find(THINK_CLOSE)
            if end == -1:
                state.thinking += remaining
                state.segment += remaining
                break
            state.thinking += remaining[:end]
            state.segment += remaining[:end]
            state.in_thinking = False
            events.append(thinking_event(state.segment))
            state.segment = ""
            remaining = remaining[end + len(THINK_CLOSE):]
        else:
            start = remaining.find(THINK_OPEN)
            visible = remaining if start == -1 else remaining[:start]
            if visible:
                state.answer += visible
                events.append(content_event(visible))
            if start == -1:
                break
            state.in_thinking = True
            remaining = remaining[start + len(THINK_OPEN):]

    return events


def process_record(state: StreamState, payload: Any) -> List[Dict[str, Any]]:
    """Apply one decoded JSON record (content delta and/or usage) to the state."""
    if not isinstance(payload, dict):
        logger.warning("Skipping non-object stream record: %r", payload)
        return []

    events: List[Dict[str, Any]] = []

    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        delta = choices[0].get("delta") or {}
        content = delta.get("content") if isinstance(delta, dict) else None
        if isinstance(content, str) and content:
            events.extend(split_delta(state, content))

    usage = payload.get("usage")
    if isinstance(usage, dict):
        # Provider reports cumulative totals, so the last value wins
        total = usage.get("total_tokens")
        state.total_tokens = total if isinstance(total, int) else 0

    return events


def process_frame(state: StreamState, frame: str) -> List[Dict[str, Any]]:
    """
    Demultiplex one raw text frame received from the provider.

    Blank lines and lines without the `data:` prefix are ignored. A record
    that fails to parse, or parses into an unexpected shape, is logged and
    skipped; the stream carries on.
    On the terminator the rest of the frame is dropped and
    `state.finished` is set.
    """
    events: List[Dict[str, Any]] = []

    for raw_line in frame.split("\n"):
        line = raw_line.strip()
        if not line.startswith(DATA_PREFIX):
            continue

        data = line[len(DATA_PREFIX):].strip()
        if data == DONE_SENTINEL:
            state.finished = True
            break

        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse stream record, skipping: {str(e)}")
            continue

        try:
            events.extend(process_record(state, payload))
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(f"Unexpected stream record shape, skipping: {type(e).__name__}: {str(e)}")

    return events
