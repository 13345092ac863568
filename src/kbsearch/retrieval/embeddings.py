"""
Embedding generation via an OpenAI-compatible embeddings API.

Generates vector embeddings for document chunks (batched) and for
search queries. The service does not guarantee response order, so every
batch is re-sorted by the index it returns.
"""

import logging
import time
from typing import Optional, Protocol

import httpx
import numpy as np
from numpy.typing import NDArray

from kbsearch.config import settings
from kbsearch.exceptions import EmbeddingError

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Anything that turns texts into unit-length vectors."""

    def embed_batch(self, texts: list[str]) -> NDArray[np.float32]: ...

    def embed_one(self, text: str) -> NDArray[np.float32]: ...


class OpenAIEmbedder:
    """
    Generate embeddings using an OpenAI-compatible `/embeddings` endpoint.

    Retries rate-limited (429) requests with exponential backoff.

    Example:
        >>> embedder = OpenAIEmbedder(api_key="sk-...")
        >>> vectors = embedder.embed_batch(["Quarterly revenue grew 12%"])
        >>> vectors.shape
        (1, 1536)
    """

    def __init__(
        self,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        dimension: Optional[int] = None,
        batch_size: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Initialize the embedder.

        Args:
            model: Embedding model name (default from settings)
            api_key: API key (default from settings)
            base_url: API base URL (default from settings)
            dimension: Vector dimension requested from the service
            batch_size: Number of texts per API call (at most 100 by default)
            timeout: Request timeout in seconds
        """
        self.model = model or settings.embedding_model
        self.api_key = api_key or settings.openai_api_key_value
        self.base_url = (base_url or settings.embedding_base_url).rstrip("/")
        self.dimension = dimension or settings.embedding_dimension
        self.batch_size = batch_size or settings.embedding_batch_size
        self.timeout = timeout or settings.embedding_timeout
        self.max_retries = 3
        self.initial_retry_delay = 1.0  # seconds

    @property
    def is_configured(self) -> bool:
        """Whether a credential is available for the service."""
        return bool(self.api_key)

    @property
    def url(self) -> str:
        return f"{self.base_url}/embeddings"

    def embed_batch(self, texts: list[str]) -> NDArray[np.float32]:
        """
        Generate embeddings for a list of texts, preserving input order.

        Args:
            texts: Texts to embed

        Returns:
            Array of shape (len(texts), dimension)

        Raises:
            EmbeddingError: If no API key is configured or the response is malformed
            httpx.HTTPStatusError: If the API returns an error after retries
            httpx.HTTPError: If a network error occurs
        """
        if not texts:
            return np.empty((0, self.dimension), dtype=np.float32)

        if not self.is_configured:
            raise EmbeddingError("Embedding API key is not configured")

        all_embeddings: list[NDArray[np.float32]] = []

        with httpx.Client(timeout=self.timeout) as client:
            for i in range(0, len(texts), self.batch_size):
                batch = texts[i : i + self.batch_size]
                all_embeddings.append(self._embed_request(client, batch))

        return np.vstack(all_embeddings)

    def embed_one(self, text: str) -> NDArray[np.float32]:
        """
        Generate the embedding for a single text (query time).

        Args:
            text: Query text

        Returns:
            Array of shape (dimension,)
        """
        return self.embed_batch([text])[0]

    def _embed_request(self, client: httpx.Client, texts: list[str]) -> NDArray[np.float32]:
        """
        Embed a single batch of texts with retry logic.

        Args:
            client: Open HTTP client
            texts: Texts to embed (should be <= batch_size)

        Returns:
            Normalized embeddings in the same order as ``texts``

        Raises:
            httpx.HTTPStatusError: If API returns non-429 error, or 429 after retries
            EmbeddingError: If the response does not hold one vector per text
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "input": texts,
            "dimensions": self.dimension,
        }

        retry_delay = self.initial_retry_delay

        for attempt in range(self.max_retries):
            response = client.post(self.url, json=payload, headers=headers)

            # Handle rate limiting with exponential backoff
            if response.status_code == 429 and attempt < self.max_retries - 1:
                logger.warning(
                    f"Embedding request rate limited, retrying in {retry_delay:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                time.sleep(retry_delay)
                retry_delay *= 2
                continue

            response.raise_for_status()
            return self._parse_response(response.json(), expected=len(texts))

        # This shouldn't be reached, but just in case
        raise RuntimeError("Unexpected error in _embed_request")

    def _parse_response(self, body: dict, expected: int) -> NDArray[np.float32]:
        """Re-sort response items by their index and stack them."""
        data = body.get("data") or []
        if len(data) != expected:
            raise EmbeddingError(
                f"Embedding service returned {len(data)} vectors for {expected} inputs"
            )

        ordered = sorted(data, key=lambda item: item["index"])
        embeddings = np.array([item["embedding"] for item in ordered], dtype=np.float32)
        return self._normalize_embeddings(embeddings)

    def _normalize_embeddings(self, embeddings: NDArray[np.float32]) -> NDArray[np.float32]:
        """
        Normalize embeddings to unit length for cosine similarity.

        Args:
            embeddings: Array of shape (n, dimension)

        Returns:
            Normalized embeddings of same shape
        """
        norms = np.linalg.norm(embeddings, axis=1, keepdims=True)
        # Avoid division by zero
        norms = np.where(norms == 0, 1, norms)
        return (embeddings / norms).astype(np.float32)
