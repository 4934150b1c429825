"""
Chat message model for storing chat history in the database.
"""
from sqlalchemy import Column, String, DateTime, Text, Integer, ForeignKey
from sqlalchemy.orm import relationship
from app.database import Base
from app.models.chat_session import utcnow
import uuid


class ChatMessage(Base):
    """
    Chat message model storing user and assistant messages.

    Messages are immutable once written; their creation time orders the
    conversation within a session.
    """
    __tablename__ = "chat_messages"

    # Primary key - using UUID as string
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    # Parent session; deleting the session deletes its messages
    session_id = Column(
        String,
        ForeignKey("chat_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Owner (userId claim of the JWT)
    user_id = Column(String, nullable=False, index=True)

    # Message role: "user" or "assistant"
    role = Column(String, nullable=False)  # "user" | "assistant"

    # Message content (text/markdown for assistant)
    content = Column(Text, nullable=False)

    # Model the exchange was sent to
    model = Column(String, nullable=True)

    # Total tokens reported by the provider (assistant messages only)
    tokens = Column(Integer, nullable=True)

    # Microsecond resolution keeps messages of one exchange in order
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    session = relationship("ChatSession", back_populates="messages")

    def __repr__(self):
        return f"<ChatMessage(id={self.id}, session_id={self.session_id}, role={self.role})>"
