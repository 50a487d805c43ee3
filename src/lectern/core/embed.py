"""Embedding adapter: batching, bounded parallelism and retry around an embedding provider."""

import logging
import os
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import closing
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

import openai
from dotenv import load_dotenv
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from .cancel import CancelToken
from .errors import DimensionMismatch, EmbeddingFailure, ProviderError, TextTooLarge

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingConfig:
    """Configuration for embedding generation."""
    model: str = "text-embedding-3-small"
    dimensions: Optional[int] = None
    batch_size: int = 64
    max_attempts: int = 3
    retry_base_seconds: float = 0.5
    retry_max_seconds: float = 8.0
    max_concurrency: int = 4
    max_input_chars: int = 32000  # ~8k tokens at ~4 chars per token
    request_timeout: float = 60.0


def get_embedding_config() -> EmbeddingConfig:
    """Get embedding configuration from environment."""
    dimensions = os.getenv("EMBED_DIMENSIONS")
    model = os.getenv("AZURE_OPENAI_EMBEDDING_DEPLOYMENT") if os.getenv("AZURE_OPENAI_ENDPOINT") else None

    return EmbeddingConfig(
        model=model or os.getenv("EMBED_MODEL", "text-embedding-3-small"),
        dimensions=int(dimensions) if dimensions else None,
        batch_size=max(1, int(os.getenv("EMBEDDING_BATCH_SIZE", "64"))),
        max_attempts=max(1, int(os.getenv("EMBEDDING_RETRY_ATTEMPTS", "3"))),
        retry_base_seconds=int(os.getenv("EMBEDDING_RETRY_BASE_MS", "500")) / 1000,
        retry_max_seconds=int(os.getenv("EMBEDDING_RETRY_MAX_MS", "8000")) / 1000,
        max_concurrency=max(1, int(os.getenv("EMBEDDING_CONCURRENCY", "4"))),
        max_input_chars=int(os.getenv("EMBED_MAX_INPUT_CHARS", "32000")),
        request_timeout=float(os.getenv("EMBED_TIMEOUT", "60")),
    )


class EmbeddingProvider(ABC):
    """Anything that turns a batch of texts into vectors, one per text, in order."""

    @abstractmethod
    def embed_batch(self, texts: List[str], timeout: Optional[float] = None) -> List[List[float]]:
        """
        Embed one batch of texts.

        Raises:
            ProviderError: On any failure; ``transient`` marks retryable ones
        """
        ...


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI (or Azure OpenAI) embeddings endpoint."""

    def __init__(self, config: Optional[EmbeddingConfig] = None,
                 client: Optional[openai.OpenAI] = None) -> None:
        self.config = config or get_embedding_config()
        self.client = client or self._create_client()

    @staticmethod
    def _create_client() -> openai.OpenAI:
        # Retries happen in Embedder, not in the SDK
        azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")
        if azure_endpoint:
            return openai.AzureOpenAI(
                azure_endpoint=azure_endpoint.rstrip("/"),
                api_key=os.getenv("AZURE_OPENAI_API_KEY"),
                api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-05-01-preview"),
                max_retries=0,
            )

        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OpenAI API key not found in environment variables")
        return openai.OpenAI(api_key=api_key, max_retries=0)

    def embed_batch(self, texts: List[str], timeout: Optional[float] = None) -> List[List[float]]:
        kwargs = {"model": self.config.model, "input": texts,
                  "timeout": timeout or self.config.request_timeout}
        if self.config.dimensions:
            kwargs["dimensions"] = self.config.dimensions

        try:
            response = self.client.embeddings.create(**kwargs)
        except openai.APIConnectionError as e:
            # Includes APITimeoutError
            raise ProviderError(f"Embedding request failed: {e}", transient=True) from e
        except openai.APIStatusError as e:
            transient = e.status_code == 429 or e.status_code >= 500
            raise ProviderError(
                f"Embedding provider returned {e.status_code}: {e.message}",
                transient=transient,
                status_code=e.status_code,
            ) from e

        return [item.embedding for item in sorted(response.data, key=lambda item: item.index)]


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.transient


class Embedder:
    """
    Batching, retrying front for an :class:`EmbeddingProvider`.

    Batches never reorder inputs: ``embed([a, b])[1]`` is the vector of ``b``.
    A batch either succeeds whole or the whole call fails with
    :class:`EmbeddingFailure` naming the batch.
    """

    def __init__(self, provider: EmbeddingProvider,
                 config: Optional[EmbeddingConfig] = None) -> None:
        self.provider = provider
        self.config = config or get_embedding_config()

    def embed(self, texts: Sequence[str], cancel: Optional[CancelToken] = None) -> List[List[float]]:
        """
        Embed texts, preserving positional correspondence.

        Args:
            texts: Texts to embed
            cancel: Optional cancellation token / deadline

        Returns:
            One vector per input text, in input order
        """
        vectors: List[Optional[List[float]]] = [None] * len(texts)
        dimension = None
        with closing(self.iter_batches(texts, cancel=cancel)) as batches:
            for start, batch_vectors in batches:
                for offset, vector in enumerate(batch_vectors):
                    if dimension is None:
                        dimension = len(vector)
                    elif len(vector) != dimension:
                        raise DimensionMismatch(dimension, len(vector))
                    vectors[start + offset] = vector
        return vectors  # type: ignore[return-value]

    def embed_query(self, text: str, cancel: Optional[CancelToken] = None) -> List[float]:
        """Embed a single text (one provider call)."""
        return self.embed([text], cancel=cancel)[0]

    def iter_batches(
        self,
        texts: Sequence[str],
        cancel: Optional[CancelToken] = None,
    ) -> Iterator[Tuple[int, List[List[float]]]]:
        """
        Embed texts batch by batch.

        Up to ``max_concurrency`` batches run in parallel; results are yielded
        as ``(start_offset, vectors)`` in completion order. If a batch fails,
        or the consumer stops early, batches still pending are abandoned.

        Raises:
            TextTooLarge: Before any provider call, if a text is over the limit
            EmbeddingFailure: When a batch fails for good
            OperationCancelled: When ``cancel`` fires
        """
        self._check_sizes(texts)

        size = self.config.batch_size
        batches = [(start, list(texts[start:start + size])) for start in range(0, len(texts), size)]
        if not batches:
            return

        abort = CancelToken(parent=cancel)
        workers = min(self.config.max_concurrency, len(batches))

        try:
            if workers <= 1:
                for start, batch in batches:
                    yield start, self._embed_batch(start, batch, abort)
                return

            logger.info(f"Embedding {len(texts)} texts in {len(batches)} batches ({workers} in flight)")
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="embed") as pool:
                futures = {
                    pool.submit(self._embed_batch, start, batch, abort): start
                    for start, batch in batches
                }
                try:
                    for future in as_completed(futures):
                        yield futures[future], future.result()
                finally:
                    abort.cancel()
                    for future in futures:
                        future.cancel()
        finally:
            abort.detach()

    def _check_sizes(self, texts: Sequence[str]) -> None:
        limit = self.config.max_input_chars
        for position, text in enumerate(texts):
            if len(text) > limit:
                raise TextTooLarge(position, len(text), limit)

    def _embed_batch(self, start: int, batch: List[str], cancel: CancelToken) -> List[List[float]]:
        end = start + len(batch) - 1
        retrying = Retrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential_jitter(
                multiplier=self.config.retry_base_seconds,
                max=self.config.retry_max_seconds,
                jitter=self.config.retry_base_seconds / 2,
            ),
            retry=retry_if_exception(_is_transient),
            sleep=cancel.sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        try:
            for attempt in retrying:
                with attempt:
                    cancel.raise_if_cancelled()
                    vectors = self.provider.embed_batch(batch, timeout=self._timeout(cancel))
        except ProviderError as e:
            attempts = retrying.statistics.get("attempt_number", 1)
            raise EmbeddingFailure(
                f"Failed embedding batch {start}-{end} after {attempts} attempt(s): {e.message}",
                batch_start=start,
                batch_end=end,
                attempts=attempts,
            ) from e

        if len(vectors) != len(batch):
            raise EmbeddingFailure(
                f"Embedding count mismatch: got {len(vectors)} expected {len(batch)}",
                batch_start=start,
                batch_end=end,
            )

        attempts = retrying.statistics.get("attempt_number", 1)
        if attempts > 1:
            logger.info(f"Embedding batch {start}-{end} succeeded after retry #{attempts - 1}")
        return vectors

    def _timeout(self, cancel: CancelToken) -> float:
        remaining = cancel.remaining()
        if remaining is None:
            return self.config.request_timeout
        return max(0.001, min(self.config.request_timeout, remaining))
