"""
AI chat API endpoints.
"""
from fastapi import APIRouter, HTTPException, Depends, Header, Query, Request, Response
from fastapi.responses import StreamingResponse
from typing import Dict, Optional, List
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from app.database import get_db, get_session_factory
from app.models.chat_session import ChatSession
from app.services import chat_service
from app.services.ai_service import AIService, get_ai_service
from app.services.chat_stream import ChatStream, SSE_HEADERS
from jose import jwt, JWTError
from app.config import settings
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


class ChatRequest(BaseModel):
    """Chat message request model."""
    message: str = Field(..., min_length=1)
    session_id: Optional[str] = None
    model: Optional[str] = None


class ChatMessageOut(BaseModel):
    """Chat message payload returned to frontend."""

    id: str
    session_id: str
    role: str
    content: str
    model: Optional[str] = None
    tokens: Optional[int] = None
    created_at: str


class ChatSessionOut(BaseModel):
    """Chat session summary for sidebar listing."""

    id: str
    user_id: str
    title: str
    scenario_dialog_id: Optional[str] = None
    model: Optional[str] = None
    created_at: str
    updated_at: str
    message_count: int = 0


class ChatSessionDetail(ChatSessionOut):
    """Chat session with its full ordered history."""

    messages: List[ChatMessageOut] = []


class ChatSessionCreateRequest(BaseModel):
    title: Optional[str] = None
    scenario_dialog_id: Optional[str] = None


class ChatSessionUpdateRequest(BaseModel):
    """Update payload for chat session: rename and/or pin a model."""

    title: Optional[str] = None
    model: Optional[str] = None


class TokenTotals(BaseModel):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class ModelTokenTotals(TokenTotals):
    count: int


class DayTokenTotals(BaseModel):
    total_tokens: int
    count: int


class TokenUsageOut(TokenTotals):
    id: str
    model: str
    created_at: str


class TokenStatsResponse(BaseModel):
    total: TokenTotals
    by_model: Dict[str, ModelTokenTotals]
    by_day: Dict[str, DayTokenTotals]
    details: List[TokenUsageOut]


async def verify_token(authorization: Optional[str] = Header(None)):
    """Verify the bearer JWT issued by the auth service."""
    if not authorization:
        logger.warning("Authorization header missing")
        raise HTTPException(status_code=401, detail="Authorization header missing")

    try:
        token = authorization.replace("Bearer ", "")
        if not token or token == "Bearer":
            logger.warning("Empty token received")
            raise HTTPException(status_code=401, detail="Token is empty")

        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])

        if not payload.get("userId"):
            logger.warning(f"Token missing user info: {payload.keys()}")
            raise HTTPException(status_code=401, detail="Invalid token: missing user information")
        return payload
    except jwt.ExpiredSignatureError:
        logger.warning("Token expired")
        raise HTTPException(status_code=401, detail="Token expired")
    except JWTError as e:
        logger.warning(f"Token verification failed: {str(e)}")
        raise HTTPException(status_code=401, detail="Invalid token")


def _session_out(session: ChatSession, message_count: int) -> ChatSessionOut:
    return ChatSessionOut(
        id=session.id,
        user_id=session.user_id,
        title=session.title,
        scenario_dialog_id=session.scenario_dialog_id,
        model=session.model,
        created_at=session.created_at.isoformat() if session.created_at else "",
        updated_at=session.updated_at.isoformat() if session.updated_at else "",
        message_count=message_count,
    )


def _get_owned_session(db: Session, session_id: str, user_id: str) -> ChatSession:
    session = chat_service.find_session(db, session_id, user_id)
    if not session:
        raise HTTPException(status_code=404, detail="Chat session not found.")
    return session


@router.post("/ai/chat")
async def send_chat_message(
    payload: ChatRequest,
    request: Request,
    token: dict = Depends(verify_token),
    db: Session = Depends(get_db),
    ai_service: AIService = Depends(get_ai_service),
    session_factory=Depends(get_session_factory),
):
    """
    Send a chat message and stream the assistant's reply as server-sent events.

    Credential and session checks, and saving the user's message, happen
    before the response starts; failures there are ordinary HTTP errors.
    After that every failure is reported in-stream as an `error` event.

    Args:
        payload: Message text, optional session ID and optional model override
        token: Verified JWT payload
        db: Database session

    Returns:
        text/event-stream of `user`, `content`, `thinking`, `done`, `error` events
    """
    user_id = token["userId"]

    exchange = chat_service.prepare_exchange(
        db,
        user_id,
        payload.session_id,
        payload.message,
        payload.model,
    )
    logger.info(f"Streaming chat reply for session {exchange.session_id} with model {exchange.model}")

    stream = ChatStream(
        exchange,
        ai_service=ai_service,
        session_factory=session_factory,
        is_disconnected=request.is_disconnected,
    )
    return StreamingResponse(stream.events(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/ai/sessions", response_model=List[ChatSessionOut])
async def list_chat_sessions(
    type: Optional[str] = Query(None, pattern="^(normal|scenario)$"),
    token: dict = Depends(verify_token),
    db: Session = Depends(get_db),
):
    """
    List chat sessions for the current user, most recently active first.
    `type=normal` hides scenario sessions, `type=scenario` shows only them.
    """
    rows = chat_service.list_sessions(db, token["userId"], type)
    return [_session_out(s, count) for s, count in rows]


@router.post("/ai/sessions", response_model=ChatSessionOut, status_code=201)
async def create_chat_session(
    payload: ChatSessionCreateRequest,
    token: dict = Depends(verify_token),
    db: Session = Depends(get_db),
):
    session = chat_service.create_session(
        db,
        token["userId"],
        title=payload.title,
        scenario_dialog_id=payload.scenario_dialog_id,
    )
    return _session_out(session, 0)


@router.get("/ai/sessions/{session_id}", response_model=ChatSessionDetail)
async def get_chat_session(
    session_id: str,
    token: dict = Depends(verify_token),
    db: Session = Depends(get_db),
):
    """
    Get a chat session with all of its messages, in chronological order.
    Sessions are strictly per-user; users cannot access others' sessions.
    """
    session = _get_owned_session(db, session_id, token["userId"])
    summary = _session_out(session, len(session.messages))
    return ChatSessionDetail(
        **summary.model_dump(),
        messages=[ChatMessageOut(**chat_service.serialize_message(m)) for m in session.messages],
    )


@router.put("/ai/sessions/{session_id}", response_model=ChatSessionOut)
async def update_chat_session(
    session_id: str,
    payload: ChatSessionUpdateRequest,
    token: dict = Depends(verify_token),
    db: Session = Depends(get_db),
):
    """
    Update a chat session's mutable properties (title, pinned model).
    """
    session = _get_owned_session(db, session_id, token["userId"])
    session = chat_service.update_session(db, session, title=payload.title, model=payload.model)
    return _session_out(session, len(session.messages))


@router.delete("/ai/sessions/{session_id}", status_code=204)
async def delete_chat_session(
    session_id: str,
    token: dict = Depends(verify_token),
    db: Session = Depends(get_db),
):
    """
    Delete a chat session and all of its messages for the current user.
    """
    session = _get_owned_session(db, session_id, token["userId"])
    chat_service.delete_session(db, session)
    return Response(status_code=204)


@router.get("/ai/tokens", response_model=TokenStatsResponse)
async def get_token_stats(
    days: int = Query(settings.token_stats_default_days, ge=1),
    token: dict = Depends(verify_token),
    db: Session = Depends(get_db),
):
    """Token usage totals for the current user over the last `days` days."""
    return chat_service.token_stats(db, token["userId"], days)
