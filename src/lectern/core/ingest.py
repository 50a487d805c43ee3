"""PDF ingest pipeline: extract (PyMuPDF) -> chunk -> embed -> persist (index store)."""

import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from .cancel import CancelToken
from .chunker import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, split_text
from .errors import LecternError
from .extract import ExtractedPage, extract_pages, fetch_document
from .logging_config import get_audit_logger, log_ingestion_event
from .store import ChunkRecord, Index, IndexStore

logger = logging.getLogger(__name__)

Extractor = Callable[[bytes], List[ExtractedPage]]


class IngestionResult(BaseModel):
    """Outcome of ingesting one document."""
    index: Index
    pages: int
    chunks: int
    meta: Dict[str, Any]


class FileOutcome(BaseModel):
    """Per-file outcome of a folder ingestion."""
    file: str
    meta: Dict[str, Any]
    index_id: Optional[str] = None
    chunks: int = 0
    error: Optional[str] = None


def build_chunk_records(
    pages: List[ExtractedPage],
    meta: Dict[str, Any],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> List[ChunkRecord]:
    """
    Chunk every page and tag each chunk with its page, position and metadata.

    Pages without text contribute nothing.
    """
    records = []
    for page in pages:
        pieces = split_text(page.text, chunk_size, chunk_overlap)
        for ord_, text in enumerate(pieces):
            records.append(ChunkRecord(text=text, page=page.page, ord=ord_, meta=dict(meta)))
    return records


def ingest_document(
    data: bytes,
    store: IndexStore,
    source: str,
    index_name: Optional[str] = None,
    index_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    extractor: Extractor = extract_pages,
    cancel: Optional[CancelToken] = None,
) -> IngestionResult:
    """
    Build (or extend) an index from one document.

    Args:
        data: Raw document bytes
        store: Index store to write to
        source: Identifier of the document origin, stored as ``meta["source"]``
        index_name: Label for a new index
        index_id: Existing index to append to instead of creating one
        metadata: Extra metadata copied onto every chunk (niveau, matiere, cours, ...)
        chunk_size: Maximum characters per chunk
        chunk_overlap: Characters shared by consecutive chunks
        extractor: Page text extractor
        cancel: Optional cancellation token / deadline

    Returns:
        The populated index with page and chunk counts

    Raises:
        ExtractionFailed: Before anything is written, if the document is unreadable
        IndexNotFound: If ``index_id`` does not exist
        EmbeddingFailure: If embedding fails; batches already written stay
    """
    start_time = time.time()

    pages = extractor(data)
    meta = {**(metadata or {}), "source": source}
    records = build_chunk_records(pages, meta, chunk_size, chunk_overlap)

    index = store.get_index(index_id) if index_id else store.create_index(index_name)
    chunks_created = store.add_chunks(index.id, records, cancel=cancel)

    processing_time_ms = (time.time() - start_time) * 1000
    log_ingestion_event(
        get_audit_logger("ingest"),
        source=source,
        index_id=index.id,
        pages=len(pages),
        chunks_created=chunks_created,
        processing_time_ms=processing_time_ms,
        meta=meta,
    )
    logger.info(f"Ingested {source}: {len(pages)} pages, {chunks_created} chunks into {index.id}")

    return IngestionResult(index=index, pages=len(pages), chunks=chunks_created, meta=meta)


def ingest_pdf(pdf_path: Path, store: IndexStore, **kwargs: Any) -> IngestionResult:
    """Ingest a local PDF file; ``source`` defaults to the file path."""
    pdf_path = Path(pdf_path)
    kwargs.setdefault("source", str(pdf_path))
    return ingest_document(pdf_path.read_bytes(), store, **kwargs)


def ingest_url(url: str, store: IndexStore, timeout: float = 60.0, **kwargs: Any) -> IngestionResult:
    """Download a PDF and ingest it; ``source`` defaults to the URL."""
    kwargs.setdefault("source", url)
    return ingest_document(fetch_document(url, timeout=timeout), store, **kwargs)


def derive_folder_metadata(root: Path, pdf_path: Path) -> Dict[str, str]:
    """
    Derive metadata from a ``<niveau>/<matiere>/<cours>.pdf`` layout.

    A file directly under a niveau folder uses the niveau as matiere; a file
    directly under ``root`` gets niveau ``UNKNOWN`` and matiere ``General``.
    """
    rel = Path(pdf_path).relative_to(root).as_posix()
    parts = rel.split("/")

    niveau = parts[0] if len(parts) >= 2 else "UNKNOWN"
    if len(parts) >= 3:
        matiere = parts[1]
    elif len(parts) == 2:
        matiere = niveau
    else:
        matiere = "General"

    return {"source": rel, "niveau": niveau, "matiere": matiere, "cours": Path(pdf_path).stem}


def ingest_directory(
    directory_path: Path,
    store: Optional[IndexStore],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    dry_run: bool = False,
    extractor: Extractor = extract_pages,
    cancel: Optional[CancelToken] = None,
) -> List[FileOutcome]:
    """
    Ingest every PDF under a directory, one index per file.

    Metadata comes from :func:`derive_folder_metadata`; each index is named
    after the file's ``cours``. A failing file is recorded and skipped.

    Args:
        directory_path: Root folder, typically ``PDFs/<niveau>/<matiere>/``
        store: Index store (unused and may be None when ``dry_run``)
        chunk_size: Maximum characters per chunk
        chunk_overlap: Characters shared by consecutive chunks
        dry_run: Extract and chunk only; nothing is embedded or written
        extractor: Page text extractor
        cancel: Optional cancellation token, checked between files

    Returns:
        One outcome per PDF, in path order
    """
    root = Path(directory_path)
    pdf_files = sorted(p for p in root.rglob("*") if p.is_file() and p.suffix.lower() == ".pdf")

    if not pdf_files:
        logger.warning(f"No PDF files found in {root}")
        return []

    logger.info(f"Found {len(pdf_files)} PDF files to ingest")
    outcomes = []

    for pdf_path in pdf_files:
        if cancel is not None:
            cancel.raise_if_cancelled()

        meta = derive_folder_metadata(root, pdf_path)
        source = meta["source"]
        outcome = FileOutcome(file=source, meta=meta)

        try:
            if dry_run:
                pages = extractor(pdf_path.read_bytes())
                outcome.chunks = len(build_chunk_records(pages, meta, chunk_size, chunk_overlap))
            else:
                result = ingest_pdf(
                    pdf_path,
                    store,
                    source=source,
                    index_name=meta["cours"],
                    metadata=meta,
                    chunk_size=chunk_size,
                    chunk_overlap=chunk_overlap,
                    extractor=extractor,
                    cancel=cancel,
                )
                outcome.index_id = result.index.id
                outcome.chunks = result.chunks
        except (LecternError, OSError) as e:
            logger.error(f"Failed to ingest {pdf_path}: {e}")
            outcome.error = str(e)

        outcomes.append(outcome)

    succeeded = sum(1 for o in outcomes if o.error is None)
    logger.info(f"Completed ingestion: {succeeded}/{len(pdf_files)} files processed")
    return outcomes
