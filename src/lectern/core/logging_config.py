"""Structured logging configuration for lectern."""

import logging
from typing import Any, Dict, Optional

import structlog
from structlog.stdlib import LoggerFactory


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Configure stdlib logging and structlog audit events."""

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_audit_logger(component: str) -> structlog.BoundLogger:
    """Get a logger with audit context for a specific component."""
    logger = structlog.get_logger(component)
    return logger.bind(component=component, audit=True)


def log_ingestion_event(
    logger: structlog.BoundLogger,
    source: str,
    index_id: str,
    pages: int,
    chunks_created: int,
    processing_time_ms: float,
    meta: Optional[Dict[str, Any]] = None,
) -> None:
    """Log document ingestion for audit trail."""
    logger.info(
        "document_ingested",
        source=source,
        index_id=index_id,
        pages=pages,
        chunks_created=chunks_created,
        processing_time_ms=processing_time_ms,
        meta=meta or {},
        event_type="document_ingestion",
    )


def log_search_event(
    logger: structlog.BoundLogger,
    index_id: str,
    query: str,
    k: int,
    candidates: int,
    results_count: int,
    execution_time_ms: float,
    top_score: Optional[float] = None,
) -> None:
    """Log a similarity search with its candidate and result counts."""
    logger.info(
        "search_completed",
        index_id=index_id,
        query=query,
        k=k,
        candidates=candidates,
        results_count=results_count,
        top_score=top_score,
        execution_time_ms=execution_time_ms,
        event_type="search",
    )
