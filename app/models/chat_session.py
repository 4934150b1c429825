"""
Chat session model grouping the messages of one AI conversation.
"""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship
from app.database import Base
from app.config import settings
from datetime import datetime, timezone
import uuid


def utcnow():
    return datetime.now(timezone.utc)


class ChatSession(Base):
    """
    Chat session representing a single conversation with the AI assistant.

    - Each session is identified by a UUID string `id`
    - Sessions are per-user (`user_id`)
    - `title` starts as the default placeholder and is derived from the
      first user message after the first exchange
    - `scenario_dialog_id` optionally binds the session to a scenario preset
    - `model` optionally pins the model used for this conversation
    - `updated_at` is bumped on every message exchange
    """

    __tablename__ = "chat_sessions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    title = Column(String(255), nullable=False, default=lambda: settings.default_session_title)
    scenario_dialog_id = Column(String, nullable=True, index=True)
    model = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # Canonical conversation history, replayed to the provider in this order
    messages = relationship(
        "ChatMessage",
        back_populates="session",
        order_by="ChatMessage.created_at",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<ChatSession(id={self.id}, user_id={self.user_id}, title={self.title!r})>"
