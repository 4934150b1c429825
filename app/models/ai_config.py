"""
Per-user AI provider credential.
"""
from sqlalchemy import Column, String, DateTime
from app.database import Base
from app.models.chat_session import utcnow
import uuid


class AIConfig(Base):
    """Provider, API key and default model of one user (at most one row per user)."""
    __tablename__ = "ai_configs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, unique=True, index=True)
    provider = Column(String, nullable=False, default="deepseek")
    api_key = Column(String, nullable=False)
    model = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<AIConfig(user_id={self.user_id}, provider={self.provider}, model={self.model})>"
