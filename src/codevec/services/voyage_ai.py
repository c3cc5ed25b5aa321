"""VoyageAI API client for embeddings generation."""

import logging
import os
import time
from typing import Any, Dict, List, Optional

import httpx
from rich.console import Console

from ..config import VoyageAIConfig
from ..errors import EmbeddingError
from .embedding_provider import EmbeddingProvider

logger = logging.getLogger(__name__)

# VoyageAI model dimensions (as of API documentation)
MODEL_DIMENSIONS = {
    "voyage-code-3": 1024,
    "voyage-large-2": 1536,
    "voyage-2": 1024,
    "voyage-code-2": 1536,
    "voyage-law-2": 1024,
}

# Cap on any single wait so a huge retry-after cannot stall indexing
MAX_WAIT_SECONDS = 300.0


class VoyageAIClient(EmbeddingProvider):
    """Client for interacting with VoyageAI API."""

    def __init__(self, config: VoyageAIConfig, console: Optional[Console] = None):
        super().__init__(console)
        self.config = config
        self.console = console or Console()

        # Get API key from environment
        self.api_key = os.getenv("VOYAGE_API_KEY")
        if not self.api_key:
            raise ValueError(
                "VOYAGE_API_KEY environment variable is required for VoyageAI. "
                "Set it with: export VOYAGE_API_KEY=your_api_key_here"
            )

    def _backoff(self, attempt: int) -> float:
        return self.config.retry_delay * (
            2**attempt if self.config.exponential_backoff else 1
        )

    def _retry_after(self, response: httpx.Response, attempt: int) -> float:
        """Seconds to wait on a 429; HTTP-date or missing headers use the backoff."""
        header = response.headers.get("retry-after")
        if header:
            try:
                return max(float(header), 0.0)
            except ValueError:
                logger.debug(f"Ignoring non-numeric Retry-After header: {header}")
        return self._backoff(attempt)

    def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        # A client per request keeps the provider safe to share across threads
        with httpx.Client(
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.config.timeout,
        ) as client:
            return client.post(self.config.api_endpoint, json=payload)

    def _make_sync_request(
        self, texts: List[str], model: Optional[str] = None
    ) -> Dict[str, Any]:
        """Make synchronous request to VoyageAI API.

        Rate limits (429) wait for the server's retry-after when present, server
        errors (5xx) and transport errors back off, other client errors fail
        immediately.
        """
        payload = {"input": texts, "model": model or self.config.model}

        last_exception: Optional[Exception] = None
        for attempt in range(self.config.max_retries + 1):
            try:
                response = self._post(payload)
                response.raise_for_status()
                result = response.json()
                if isinstance(result, dict):
                    return result
                raise EmbeddingError(f"Unexpected response format: {type(result)}")

            except httpx.HTTPStatusError as e:
                last_exception = e
                status = e.response.status_code
                if status == 429:
                    wait_time = self._retry_after(e.response, attempt)
                elif status >= 500:
                    wait_time = self._backoff(attempt)
                else:
                    break

                if attempt < self.config.max_retries:
                    wait_time = min(wait_time, MAX_WAIT_SECONDS)
                    logger.warning(
                        f"VoyageAI returned HTTP {status}; retrying in {wait_time:.1f}s "
                        f"({attempt + 1}/{self.config.max_retries})"
                    )
                    time.sleep(wait_time)
                    continue
                break

            except httpx.TransportError as e:
                last_exception = e
                if attempt < self.config.max_retries:
                    logger.warning(f"VoyageAI request failed: {e}; retrying")
                    time.sleep(self.config.retry_delay)
                    continue
                break

        # All retries exhausted
        if isinstance(last_exception, httpx.HTTPStatusError):
            status = last_exception.response.status_code
            if status == 401:
                raise EmbeddingError(
                    "Invalid VoyageAI API key. Check VOYAGE_API_KEY environment variable."
                ) from last_exception
            if status == 429:
                raise EmbeddingError(
                    "VoyageAI rate limit exceeded. Try reducing batch_size."
                ) from last_exception
            raise EmbeddingError(
                f"VoyageAI API error (HTTP {status}): {last_exception}. "
                f"Response: {last_exception.response.text}"
            ) from last_exception
        raise EmbeddingError(
            f"Failed to connect to VoyageAI: {last_exception}"
        ) from last_exception

    @staticmethod
    def _extract(result: Dict[str, Any], expected: int) -> List[List[float]]:
        data = result.get("data") or []
        if len(data) != expected:
            raise EmbeddingError(
                f"VoyageAI returned {len(data)} embeddings for {expected} inputs"
            )
        # The API may return items out of order; each carries its input index
        ordered = sorted(data, key=lambda item: item.get("index", 0))
        try:
            return [list(item["embedding"]) for item in ordered]
        except (KeyError, TypeError) as e:
            raise EmbeddingError(f"Malformed VoyageAI embedding item: {e}") from e

    def get_embedding(self, text: str, model: Optional[str] = None) -> List[float]:
        """Generate embedding for given text."""
        result = self._make_sync_request([text], model)
        return self._extract(result, 1)[0]

    def get_embeddings_batch(
        self, texts: List[str], model: Optional[str] = None
    ) -> List[List[float]]:
        """Generate embeddings for multiple texts, split into batch_size requests."""
        if not texts:
            return []

        all_embeddings: List[List[float]] = []
        for start in range(0, len(texts), self.config.batch_size):
            batch = texts[start : start + self.config.batch_size]
            result = self._make_sync_request(batch, model)
            all_embeddings.extend(self._extract(result, len(batch)))
        return all_embeddings

    def get_dimensions(self) -> int:
        return MODEL_DIMENSIONS.get(self.config.model, 1024)

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the current model."""
        return {
            "name": self.config.model,
            "provider": "voyage-ai",
            "dimensions": self.get_dimensions(),
            "max_tokens": 16000,
            "api_endpoint": self.config.api_endpoint,
        }

    def get_provider_name(self) -> str:
        return "voyage-ai"

    def get_current_model(self) -> str:
        return self.config.model
