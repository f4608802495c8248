"""
Embedding client for queries and ingestion.

Uses an OpenAI-compatible embeddings API with batching. When the provider
reports that the primary model does not exist, the call is retried once with
the configured fallback model.
"""
import asyncio

from openai import AsyncOpenAI, NotFoundError, RateLimitError

from telecom_rag.config import settings
from telecom_rag.logging_config import get_logger

logger = get_logger(__name__)


class EmbeddingModelNotFoundError(Exception):
    """The provider does not serve the requested embedding model."""

    def __init__(self, model: str):
        super().__init__(f"Embedding model not found: {model}")
        self.model = model


class EmbeddingClient:
    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str | None = None,
        fallback_model: str | None = None,
        batch_size: int | None = None,
        max_retries: int = 3,
    ):
        self.client = client or AsyncOpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
        )
        self.model = model or settings.embedding_model
        self.fallback_model = fallback_model or settings.openai_embedding_fallback_model
        self.batch_size = batch_size or settings.embedding_batch_size
        self.max_retries = max_retries

    async def _create(self, texts: list[str], model: str) -> list[list[float]]:
        retries = 0
        while True:
            try:
                response = await self.client.embeddings.create(model=model, input=texts)
                return [item.embedding for item in response.data]
            except NotFoundError as e:
                raise EmbeddingModelNotFoundError(model) from e
            except RateLimitError:
                retries += 1
                if retries >= self.max_retries:
                    raise
                wait_time = 2 ** retries  # 2, 4 seconds
                logger.warning(f"embedding rate_limited | model={model} | retry_in={wait_time}s")
                await asyncio.sleep(wait_time)

    async def _create_with_fallback(self, texts: list[str]) -> list[list[float]]:
        try:
            return await self._create(texts, self.model)
        except EmbeddingModelNotFoundError:
            if not self.fallback_model or self.fallback_model == self.model:
                raise
            logger.warning(
                f"embedding model_not_found | model={self.model} | fallback={self.fallback_model}"
            )
            return await self._create(texts, self.fallback_model)

    async def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        embeddings = await self._create_with_fallback([text])
        return embeddings[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Embed texts in sequential batches of batch_size.

        Returns:
            One embedding per input text, in input order.
        """
        if not texts:
            return []

        all_embeddings: list[list[float]] = []
        for i in range(0, len(texts), self.batch_size):
            batch = texts[i:i + self.batch_size]
            all_embeddings.extend(await self._create_with_fallback(batch))
            logger.debug(f"embedding batch | done={min(i + self.batch_size, len(texts))}/{len(texts)}")
        return all_embeddings
