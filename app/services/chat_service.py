"""
Chat session store, exchange preparation and the accounting finalizer.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import ConfigurationMissing, SessionNotFound
from app.models.ai_config import AIConfig
from app.models.chat_message import ChatMessage
from app.models.chat_session import ChatSession, utcnow
from app.models.token_usage import TokenUsage
from app.services.stream_demux import StreamState

logger = logging.getLogger(__name__)


def serialize_message(message: ChatMessage) -> Dict[str, Any]:
    """JSON-ready representation of a chat message for API and stream payloads."""
    return {
        "id": message.id,
        "session_id": message.session_id,
        "role": message.role,
        "content": message.content,
        "model": message.model,
        "tokens": message.tokens,
        "created_at": message.created_at.isoformat() if message.created_at else "",
    }


def derive_title(message: str) -> str:
    """First characters of the user's message, ellipsis-suffixed when cut."""
    limit = settings.session_title_max_length
    if len(message) > limit:
        return message[:limit] + "..."
    return message


@dataclass
class PendingExchange:
    """Everything the relay needs once the user message has been saved."""

    session_id: str
    user_id: str
    model: str
    api_key: str
    message: str
    user_message: Dict[str, Any]
    history: List[Dict[str, str]] = field(default_factory=list)
    # Session had no messages and still carried the placeholder title
    derive_title: bool = False


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------

def get_credential(db: Session, user_id: str) -> Optional[AIConfig]:
    return db.query(AIConfig).filter(AIConfig.user_id == user_id).first()


def upsert_credential(
    db: Session,
    user_id: str,
    api_key: str,
    model: str,
    provider: Optional[str] = None,
) -> AIConfig:
    config = get_credential(db, user_id)
    if config is None:
        config = AIConfig(user_id=user_id)
    config.provider = provider or settings.ai_default_provider
    config.api_key = api_key
    config.model = model
    db.add(config)
    db.commit()
    db.refresh(config)
    return config


def delete_credential(db: Session, user_id: str) -> bool:
    config = get_credential(db, user_id)
    if config is None:
        return False
    db.delete(config)
    db.commit()
    return True


# ---------------------------------------------------------------------------
# Session store
# ---------------------------------------------------------------------------

def find_session(db: Session, session_id: str, user_id: str) -> Optional[ChatSession]:
    """Session owned by `user_id`, with its ordered messages reachable via `.messages`."""
    return (
        db.query(ChatSession)
        .filter(ChatSession.id == session_id, ChatSession.user_id == user_id)
        .first()
    )


def list_sessions(db: Session, user_id: str, session_type: Optional[str] = None):
    """
    List a user's sessions, most recently active first.

    Args:
        session_type: "normal" for sessions without a scenario, "scenario"
            for sessions bound to one, anything else for all of them

    Returns:
        List of (ChatSession, message_count) tuples
    """
    message_count = (
        db.query(func.count(ChatMessage.id))
        .filter(ChatMessage.session_id == ChatSession.id)
        .correlate(ChatSession)
        .scalar_subquery()
    )
    query = db.query(ChatSession, message_count).filter(ChatSession.user_id == user_id)

    if session_type == "normal":
        query = query.filter(ChatSession.scenario_dialog_id.is_(None))
    elif session_type == "scenario":
        query = query.filter(ChatSession.scenario_dialog_id.isnot(None))

    return [(s, count or 0) for s, count in query.order_by(desc(ChatSession.updated_at)).all()]


def create_session(
    db: Session,
    user_id: str,
    title: Optional[str] = None,
    scenario_dialog_id: Optional[str] = None,
    commit: bool = True,
) -> ChatSession:
    session = ChatSession(
        user_id=user_id,
        title=title or settings.default_session_title,
        scenario_dialog_id=scenario_dialog_id or None,
    )
    db.add(session)
    if commit:
        db.commit()
        db.refresh(session)
    else:
        db.flush()  # populate session.id without committing
    return session


def update_session(
    db: Session,
    session: ChatSession,
    title: Optional[str] = None,
    model: Optional[str] = None,
) -> ChatSession:
    """Rename a session and/or pin its model. An empty model string clears the pin."""
    if title is not None:
        session.title = title.strip() or session.title
    if model is not None:
        session.model = model or None

    db.add(session)
    db.commit()
    db.refresh(session)
    return session


def delete_session(db: Session, session: ChatSession) -> None:
    db.delete(session)
    db.commit()


def create_message(
    db: Session,
    session_id: str,
    user_id: str,
    role: str,
    content: str,
    model: Optional[str],
    tokens: Optional[int] = None,
) -> ChatMessage:
    """Stage a message on the session; the caller commits."""
    message = ChatMessage(
        session_id=session_id,
        user_id=user_id,
        role=role,
        content=content,
        model=model,
        tokens=tokens,
    )
    db.add(message)
    db.flush()
    return message


def append_token_usage(db: Session, user_id: str, model: str, total_tokens: int) -> TokenUsage:
    """Stage one ledger row; prompt/completion are not reported on the streaming path."""
    usage = TokenUsage(
        user_id=user_id,
        model=model,
        prompt_tokens=0,
        completion_tokens=0,
        total_tokens=total_tokens,
    )
    db.add(usage)
    return usage


# ---------------------------------------------------------------------------
# Chat exchange
# ---------------------------------------------------------------------------

def prepare_exchange(
    db: Session,
    user_id: str,
    session_id: Optional[str],
    message: str,
    model: Optional[str] = None,
) -> PendingExchange:
    """
    Validate a send request and persist the user's message.

    Runs before any upstream call so configuration and ownership problems
    fail the HTTP request itself. When `session_id` is None a session is
    created on demand.

    Raises:
        ConfigurationMissing: the user has no AI credential on file
        SessionNotFound: the session is missing or owned by someone else
    """
    config = get_credential(db, user_id)
    if config is None:
        raise ConfigurationMissing()

    if session_id:
        session = find_session(db, session_id, user_id)
        if session is None:
            raise SessionNotFound()
    else:
        session = create_session(db, user_id, commit=False)
        logger.info(f"Created chat session {session.id} on first message")

    selected_model = model or session.model or config.model

    # Snapshot the history before the new message joins it
    history = [{"role": m.role, "content": m.content} for m in session.messages]
    should_derive_title = not history and session.title == settings.default_session_title

    user_message = create_message(db, session.id, user_id, "user", message, selected_model)
    db.commit()
    db.refresh(user_message)

    history.append({"role": "user", "content": message})

    return PendingExchange(
        session_id=session.id,
        user_id=user_id,
        model=selected_model,
        api_key=config.api_key,
        message=message,
        user_message=serialize_message(user_message),
        history=history,
        derive_title=should_derive_title,
    )


def finalize_exchange(db: Session, exchange: PendingExchange, state: StreamState) -> ChatMessage:
    """
    Durably record the outcome of a completed stream.

    Writes the assistant message, a token usage row when the provider
    reported usage, bumps the session's `updated_at` and derives the title
    for a first exchange. All of it commits together or not at all.
    """
    try:
        assistant_message = create_message(
            db,
            exchange.session_id,
            exchange.user_id,
            "assistant",
            state.answer or settings.fallback_answer,
            exchange.model,
            tokens=state.total_tokens,
        )

        if state.total_tokens > 0:
            append_token_usage(db, exchange.user_id, exchange.model, state.total_tokens)

        session = db.get(ChatSession, exchange.session_id)
        if session is not None:
            session.updated_at = utcnow()
            if exchange.derive_title:
                session.title = derive_title(exchange.message)
            db.add(session)

        db.commit()
        db.refresh(assistant_message)
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Persisted assistant reply for session %s (%d tokens)",
        exchange.session_id,
        state.total_tokens,
    )
    return assistant_message


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def token_stats(db: Session, user_id: str, days: int) -> Dict[str, Any]:
    """Aggregate the user's token ledger over the last `days` days."""
    start = datetime.now(timezone.utc) - timedelta(days=days)

    usages = (
        db.query(TokenUsage)
        .filter(TokenUsage.user_id == user_id, TokenUsage.created_at >= start)
        .order_by(desc(TokenUsage.created_at))
        .all()
    )

    total = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}
    by_model: Dict[str, Dict[str, int]] = {}
    by_day: Dict[str, Dict[str, int]] = {}

    for usage in usages:
        total["prompt_tokens"] += usage.prompt_tokens
        total["completion_tokens"] += usage.completion_tokens
        total["total_tokens"] += usage.total_tokens

        model_totals = by_model.setdefault(
            usage.model,
            {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0, "count": 0},
        )
        model_totals["prompt_tokens"] += usage.prompt_tokens
        model_totals["completion_tokens"] += usage.completion_tokens
        model_totals["total_tokens"] += usage.total_tokens
        model_totals["count"] += 1

        day = usage.created_at.date().isoformat()
        day_totals = by_day.setdefault(day, {"total_tokens": 0, "count": 0})
        day_totals["total_tokens"] += usage.total_tokens
        day_totals["count"] += 1

    details = [
        {
            "id": u.id,
            "model": u.model,
            "prompt_tokens": u.prompt_tokens,
            "completion_tokens": u.completion_tokens,
            "total_tokens": u.total_tokens,
            "created_at": u.created_at.isoformat() if u.created_at else "",
        }
        for u in usages
    ]

    return {"total": total, "by_model": by_model, "by_day": by_day, "details": details}
