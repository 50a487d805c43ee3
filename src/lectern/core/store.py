"""Index store: index metadata and embedded chunk records on top of a persistence backend."""

import logging
import os
import uuid
from abc import ABC, abstractmethod
from contextlib import closing
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field, StrictBool, StrictFloat, StrictInt, StrictStr, field_validator

from .cancel import CancelToken
from .embed import Embedder
from .errors import DimensionMismatch, IndexNotFound

logger = logging.getLogger(__name__)

# Closed set of scalar kinds allowed as chunk metadata values
MetaValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr]


class Index(BaseModel):
    """A named collection of embedded chunks."""
    id: str
    name: Optional[str] = None
    created_at: datetime


class ChunkRecord(BaseModel):
    """A chunk as submitted for indexing, before it has an embedding."""
    text: str
    page: Optional[int] = None
    ord: int = 0
    meta: Dict[str, MetaValue] = Field(default_factory=dict)

    @field_validator("text")
    @classmethod
    def _text_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("chunk text must not be empty")
        return value


class Chunk(ChunkRecord):
    """A persisted chunk with its embedding."""
    id: str
    index_id: str
    embedding: List[float]


def chunk_sort_key(chunk: ChunkRecord):
    """Reading order: by page (unpaginated last), then by position within the page."""
    return (chunk.page is None, chunk.page or 0, chunk.ord)


class StoreBackend(ABC):
    """Durable storage for indices and chunks.

    Implementations map connectivity problems to ``StoreUnavailable`` and must
    reject chunks whose ``index_id`` does not exist.
    """

    @abstractmethod
    def insert_index(self, index: Index) -> None:
        ...

    @abstractmethod
    def get_index(self, index_id: str) -> Optional[Index]:
        ...

    @abstractmethod
    def list_indexes(self) -> List[Index]:
        """All indices, newest first."""
        ...

    @abstractmethod
    def insert_chunks(self, chunks: List[Chunk]) -> None:
        ...

    @abstractmethod
    def fetch_chunks(self, index_id: str) -> List[Chunk]:
        """All chunks of an index, in no particular order."""
        ...

    @abstractmethod
    def count_chunks(self, index_id: str) -> int:
        ...

    @abstractmethod
    def embedding_dimension(self, index_id: str) -> Optional[int]:
        """Length of the vectors already stored for the index, None if it has none."""
        ...


class IndexStore:
    """
    Owns index lifecycle and chunk persistence.

    ``add_chunks`` embeds the records through the :class:`Embedder` and
    writes each batch as soon as it is embedded, so a failure partway leaves
    the batches already written in place. With ``atomic=True`` every batch
    is buffered and written in a single call once all of them succeeded.
    """

    def __init__(self, backend: StoreBackend, embedder: Embedder,
                 atomic: Optional[bool] = None) -> None:
        self.backend = backend
        self.embedder = embedder
        if atomic is None:
            atomic = os.getenv("ATOMIC_INGEST", "false").lower() == "true"
        self.atomic = atomic

    def create_index(self, name: Optional[str] = None) -> Index:
        """Allocate and persist a new, empty index."""
        index = Index(id=str(uuid.uuid4()), name=name or None, created_at=datetime.now(timezone.utc))
        self.backend.insert_index(index)
        logger.info(f"Created index {index.id} (name={index.name!r})")
        return index

    def get_index(self, index_id: str) -> Index:
        index = self.backend.get_index(index_id)
        if index is None:
            raise IndexNotFound(index_id)
        return index

    def list_indexes(self) -> List[Index]:
        return self.backend.list_indexes()

    def count_chunks(self, index_id: str) -> int:
        self.get_index(index_id)
        return self.backend.count_chunks(index_id)

    def add_chunks(
        self,
        index_id: str,
        records: Iterable[Union[ChunkRecord, dict]],
        cancel: Optional[CancelToken] = None,
    ) -> int:
        """
        Embed and persist chunk records for an index.

        Writes are append-only: submitting the same ``(page, ord)`` twice
        creates two chunks.

        Args:
            index_id: Target index
            records: Chunk records (or dicts with text/page/ord/meta)
            cancel: Optional cancellation token / deadline

        Returns:
            Number of chunks written

        Raises:
            IndexNotFound: If the index does not exist
            EmbeddingFailure: If a batch could not be embedded
            DimensionMismatch: If vectors disagree with the index's dimension
        """
        self.get_index(index_id)
        records = [r if isinstance(r, ChunkRecord) else ChunkRecord(**r) for r in records]
        if not records:
            return 0

        dimension = self.backend.embedding_dimension(index_id)
        buffered: List[Chunk] = []
        written = 0

        # Closing abandons batches still in flight
        with closing(self.embedder.iter_batches([r.text for r in records], cancel=cancel)) as batches:
            for start, vectors in batches:
                chunks = []
                for offset, vector in enumerate(vectors):
                    if dimension is None:
                        dimension = len(vector)
                    elif len(vector) != dimension:
                        raise DimensionMismatch(dimension, len(vector), index_id=index_id)
                    record = records[start + offset]
                    chunks.append(Chunk(
                        id=str(uuid.uuid4()),
                        index_id=index_id,
                        embedding=vector,
                        **record.model_dump(),
                    ))

                if self.atomic:
                    buffered.extend(chunks)
                    continue

                self.backend.insert_chunks(chunks)
                written += len(chunks)
                logger.debug(f"Committed {len(chunks)} chunks to index {index_id} (batch at {start})")

        if buffered:
            self.backend.insert_chunks(buffered)
            written = len(buffered)

        logger.info(f"Added {written} chunks to index {index_id}")
        return written

    def load_chunks(self, index_id: str) -> List[Chunk]:
        """
        Return all chunks of an index sorted by ``(page, ord)``.

        An index without chunks yields an empty list.

        Raises:
            IndexNotFound: If the index does not exist
        """
        self.get_index(index_id)
        return sorted(self.backend.fetch_chunks(index_id), key=chunk_sort_key)
