"""
Errors raised by the AI chat subsystem.

Each error carries the HTTP status and machine-readable code the API
exception handler reports when it escapes before a response has started.
"""
from typing import Optional


class ChatError(Exception):
    """Base class for chat errors that map onto an HTTP response."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message


class ConfigurationMissing(ChatError):
    """The user has no AI credential on file."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str = "Please configure your AI settings first"):
        super().__init__(message)


class SessionNotFound(ChatError):
    """The chat session does not exist or belongs to another user."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, message: str = "Chat session not found."):
        super().__init__(message)


class UpstreamServiceError(ChatError):
    """
    The AI provider answered with a non-2xx status or could not be reached.

    `provider_status` and `provider_body` are kept for server-side logging
    only; the client only ever sees the generic message.
    """

    status_code = 500
    code = "AI_SERVICE_ERROR"

    def __init__(self, provider_status: Optional[int] = None, provider_body: str = ""):
        super().__init__("AI service call failed")
        self.provider_status = provider_status
        self.provider_body = provider_body


class StreamUnavailableError(ChatError):
    """The provider accepted the request but returned no readable body."""

    status_code = 500
    code = "STREAM_ERROR"

    def __init__(self, message: str = "Unable to read the AI response stream"):
        super().__init__(message)
