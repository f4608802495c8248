"""
Chat model client (OpenAI-compatible API).

complete_chat goes through the openai SDK. stream_chat posts directly with
httpx and decodes the raw event stream with ChatStreamDecoder so that
fragmented frames from any compatible provider are handled the same way.
"""
from typing import AsyncIterator

import httpx
from openai import AsyncOpenAI

from telecom_rag.config import settings
from telecom_rag.logging_config import get_logger
from telecom_rag.sse import ChatStreamDecoder

logger = get_logger(__name__)


class ChatClient:
    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        http_client: httpx.AsyncClient | None = None,
        model: str | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
    ):
        self.model = model or settings.chat_model
        self.base_url = (base_url or settings.openai_base_url).rstrip("/")
        self.api_key = api_key or settings.openai_api_key
        self.timeout = timeout or settings.llm_timeout_seconds
        self.client = client or AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        self._http_client = http_client

    async def complete_chat(
        self,
        messages: list[dict],
        temperature: float = 0.2,
        model: str | None = None,
    ) -> str:
        """Single non-streaming completion; returns the message text."""
        response = await self.client.chat.completions.create(
            model=model or self.model,
            messages=messages,
            temperature=temperature,
        )
        return response.choices[0].message.content or ""

    async def stream_chat(
        self,
        messages: list[dict],
        temperature: float = 0.2,
        model: str | None = None,
    ) -> AsyncIterator[str]:
        """
        Stream a completion, yielding text deltas as they arrive.

        The generator ends after the provider's done signal or end of stream.

        Raises:
            httpx.HTTPStatusError: If the provider rejects the request.
        """
        body = {
            "model": model or self.model,
            "messages": messages,
            "temperature": temperature,
            "stream": True,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

        owns_client = self._http_client is None
        http_client = self._http_client or httpx.AsyncClient(timeout=self.timeout)
        decoder = ChatStreamDecoder()
        try:
            async with http_client.stream(
                "POST",
                f"{self.base_url}/chat/completions",
                json=body,
                headers=headers,
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    response.raise_for_status()

                async for raw in response.aiter_bytes():
                    for event in decoder.feed(raw):
                        if event.kind == "text":
                            yield event.text
                    if decoder.finished:
                        break

            for event in decoder.close():
                if event.kind == "text":
                    yield event.text
        finally:
            if owns_client:
                await http_client.aclose()
