"""
AI provider service - streaming chat completions over HTTP.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional
import logging

import httpx

from app.config import settings
from app.errors import StreamUnavailableError, UpstreamServiceError

logger = logging.getLogger(__name__)


class AIService:
    """Service for streaming replies from an OpenAI-compatible provider."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the AI provider service."""
        self.api_url = api_url or settings.ai_api_url
        self.timeout = timeout if timeout is not None else settings.ai_request_timeout
        # Tests swap in httpx.MockTransport
        self.transport = transport

        logger.info(f"Initialized AI Service - Endpoint: {self.api_url}")

    @asynccontextmanager
    async def stream_chat(
        self,
        api_key: str,
        model: str,
        messages: List[Dict[str, str]],
    ) -> AsyncIterator[AsyncIterator[str]]:
        """
        Open one streaming completion request and yield its text frames.

        Exactly one attempt is made. A non-2xx answer (or a transport
        failure) raises UpstreamServiceError, a 2xx answer without a body
        raises StreamUnavailableError. Leaving the context closes the
        upstream connection, which is how a cancelled relay stops reading.

        Args:
            api_key: The user's provider API key (sent as a bearer token)
            model: Model name to request
            messages: Ordered conversation history as role/content dicts

        Yields:
            Async iterator over decoded text frames of the response body
        """
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

        payload = {
            "model": model,
            "messages": messages,
            "stream": True,
        }

        logger.info(f"Opening AI stream: model={model}, history={len(messages)} messages")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                async with client.stream("POST", self.api_url, json=payload, headers=headers) as response:
                    if not response.is_success:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        logger.error(f"AI provider error {response.status_code}: {body}")
                        raise UpstreamServiceError(response.status_code, body)

                    # 204 No Content: the provider accepted the request but sent no stream
                    if response.status_code == 204:
                        logger.error("AI provider returned no response body")
                        raise StreamUnavailableError()

                    yield response.aiter_text()
            except httpx.RequestError as e:
                logger.error(f"AI provider request failed: {type(e).__name__}: {str(e)}")
                raise UpstreamServiceError(None, str(e)) from e


# Singleton instance
ai_service = AIService()


def get_ai_service() -> AIService:
    """Dependency returning the shared AI service."""
    return ai_service
