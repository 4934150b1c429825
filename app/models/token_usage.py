"""
Append-only ledger of tokens consumed per user and model.
"""
from sqlalchemy import Column, String, DateTime, Integer
from app.database import Base
from app.models.chat_session import utcnow
import uuid


class TokenUsage(Base):
    """
    One row per completed AI exchange that reported usage.

    The streaming relay only sees the provider's cumulative total, so
    `prompt_tokens` and `completion_tokens` stay 0 for rows it writes.
    Rows are never updated; statistics are aggregated on read.
    """
    __tablename__ = "token_usages"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    model = Column(String, nullable=False)
    prompt_tokens = Column(Integer, nullable=False, default=0)
    completion_tokens = Column(Integer, nullable=False, default=0)
    total_tokens = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<TokenUsage(user_id={self.user_id}, model={self.model}, total_tokens={self.total_tokens})>"
