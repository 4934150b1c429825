"""
Database models package.
"""

from app.models.chat_session import ChatSession
from app.models.chat_message import ChatMessage
from app.models.token_usage import TokenUsage
from app.models.ai_config import AIConfig

__all__ = ["ChatSession", "ChatMessage", "TokenUsage", "AIConfig"]
