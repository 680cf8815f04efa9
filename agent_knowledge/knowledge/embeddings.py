"""
Embedding generation for the knowledge engine.

This module wraps the external embedding model behind a small provider
interface so that indexing and retrieval never talk to the model directly.

Features:
- OpenAI embedding provider with pluggable alternatives
- Batched embedding generation
- Automatic retry with exponential backoff for transient failures
- Dimension validation
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import openai

from ..config import Settings, get_settings
from ..types.knowledge import EmbeddingConfig, EmbeddingVector

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Exception raised when embedding generation fails."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        retryable: bool = False,
    ):
        self.provider = provider
        self.retryable = retryable
        super().__init__(message)


class BaseEmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    name = "base"

    def __init__(self, config: EmbeddingConfig):
        self.config = config

    @abstractmethod
    async def generate_embeddings(self, texts: List[str]) -> List[EmbeddingVector]:
        """
        Generate embeddings for a list of texts.

        Args:
            texts: List of text strings to embed

        Returns:
            One embedding vector per input text, in order
        """
        pass

    @property
    def dimensions(self) -> int:
        return self.config.dimensions

    async def close(self) -> None:
        """Release any client resources."""
        return None


class OpenAIEmbeddingProvider(BaseEmbeddingProvider):
    """OpenAI embedding provider using text-embedding-3 models."""

    name = "openai"

    MODEL_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(self, config: EmbeddingConfig, api_key: Optional[str] = None):
        super().__init__(config)
        if not api_key:
            raise EmbeddingError(
                "OpenAI API key not provided and OPENAI_API_KEY not set",
                provider=self.name,
            )
        self._client = openai.AsyncOpenAI(api_key=api_key)

        if config.model not in self.MODEL_DIMENSIONS:
            logger.warning(
                f"Unknown OpenAI embedding model: {config.model}. "
                f"Using configured dimensions: {config.dimensions}"
            )

    @property
    def supports_dimensions(self) -> bool:
        return self.config.model.startswith("text-embedding-3")

    async def generate_embeddings(self, texts: List[str]) -> List[EmbeddingVector]:
        kwargs = {}
        if self.supports_dimensions:
            kwargs["dimensions"] = self.config.dimensions

        try:
            response = await self._client.embeddings.create(
                model=self.config.model,
                input=texts,
                encoding_format="float",
                **kwargs,
            )
        except openai.RateLimitError as e:
            raise EmbeddingError(
                f"OpenAI rate limit exceeded: {e}",
                provider=self.name,
                retryable=True,
            ) from e
        except (openai.APIConnectionError, openai.APITimeoutError) as e:
            raise EmbeddingError(
                f"OpenAI connection error: {e}",
                provider=self.name,
                retryable=True,
            ) from e
        except openai.APIStatusError as e:
            raise EmbeddingError(
                f"OpenAI API error: {e}",
                provider=self.name,
                retryable=e.status_code >= 500,
            ) from e

        logger.debug(
            f"Generated {len(response.data)} OpenAI embeddings, "
            f"total tokens: {response.usage.total_tokens}"
        )
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]

    async def close(self) -> None:
        await self._client.close()


class EmbeddingGenerator:
    """
    High-level interface for generating embeddings.

    Handles batching, retries and dimension checks on top of a provider.
    """

    def __init__(
        self,
        config: Optional[EmbeddingConfig] = None,
        provider: Optional[BaseEmbeddingProvider] = None,
        api_key: Optional[str] = None,
    ):
        """
        Initialize the embedding generator.

        Args:
            config: Embedding configuration. If None, uses OpenAI defaults.
            provider: Provider instance. If None, an OpenAI provider is created
                on first use.
            api_key: API key for the default provider.
        """
        self.config = config or EmbeddingConfig()
        self.api_key = api_key
        self._provider = provider

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "EmbeddingGenerator":
        """Create an EmbeddingGenerator from application settings."""
        settings = settings or get_settings()
        api_key = settings.embedding.openai_api_key
        return cls(
            config=settings.embedding.to_config(),
            api_key=api_key.get_secret_value() if api_key else None,
        )

    def _get_provider(self) -> BaseEmbeddingProvider:
        if self._provider is None:
            self._provider = OpenAIEmbeddingProvider(self.config, self.api_key)
        return self._provider

    @property
    def dimensions(self) -> int:
        return self.config.dimensions

    async def generate_embedding(self, text: str) -> EmbeddingVector:
        """
        Generate the embedding for a single text.

        Raises:
            EmbeddingError: If the provider fails after all retries
        """
        results = await self.generate_embeddings([text])
        return results[0]

    async def generate_embeddings(self, texts: List[str]) -> List[EmbeddingVector]:
        """
        Generate embeddings for multiple texts, batching provider requests.

        Args:
            texts: List of texts to embed

        Returns:
            One embedding per text, in order
        """
        if not texts:
            return []

        provider = self._get_provider()
        batch_size = self.config.batch_size
        results: List[EmbeddingVector] = []

        for i in range(0, len(texts), batch_size):
            batch = texts[i : i + batch_size]
            vectors = await self._embed_with_retry(provider, batch)
            if len(vectors) != len(batch):
                raise EmbeddingError(
                    f"Provider returned {len(vectors)} embeddings for {len(batch)} texts",
                    provider=provider.name,
                )
            for vector in vectors:
                if len(vector) != self.config.dimensions:
                    raise EmbeddingError(
                        f"Expected {self.config.dimensions} dimensions, got {len(vector)}",
                        provider=provider.name,
                    )
            results.extend(vectors)

        return results

    async def _embed_with_retry(
        self,
        provider: BaseEmbeddingProvider,
        batch: List[str],
    ) -> List[EmbeddingVector]:
        for attempt in range(self.config.max_retries):
            try:
                return await provider.generate_embeddings(batch)
            except EmbeddingError as e:
                if e.retryable and attempt < self.config.max_retries - 1:
                    wait_time = self.config.retry_delay * (2**attempt)
                    logger.warning(
                        f"Embedding attempt {attempt + 1} failed, "
                        f"retrying in {wait_time}s: {e}"
                    )
                    await asyncio.sleep(wait_time)
                else:
                    raise
        raise EmbeddingError("Embedding retries exhausted", provider=provider.name)

    async def close(self) -> None:
        if self._provider is not None:
            await self._provider.close()
