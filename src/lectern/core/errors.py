"""Error taxonomy shared by the chunking, embedding, storage and search layers."""

from typing import Any, Dict, Optional


class LecternError(Exception):
    """Base class for every error raised by lectern."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ExtractionFailed(LecternError):
    """The source document could not be fetched or read."""

    def __init__(self, message: str, source: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None) -> None:
        details = details or {}
        if source:
            details["source"] = source
        super().__init__(message, details)


class ProviderError(LecternError):
    """A single call to the embedding provider failed.

    ``transient`` marks failures worth retrying (timeouts, connection resets,
    HTTP 429 and 5xx). Everything else (auth, bad request) fails immediately.
    """

    def __init__(self, message: str, transient: bool = False,
                 status_code: Optional[int] = None) -> None:
        details: Dict[str, Any] = {"transient": transient}
        if status_code is not None:
            details["status_code"] = status_code
        self.transient = transient
        self.status_code = status_code
        super().__init__(message, details)


class EmbeddingFailure(LecternError):
    """An embedding batch could not be produced, even after retrying."""

    def __init__(self, message: str, batch_start: int, batch_end: int,
                 attempts: int = 1, details: Optional[Dict[str, Any]] = None) -> None:
        details = details or {}
        details.update({"batch": f"{batch_start}-{batch_end}", "attempts": attempts})
        self.batch_start = batch_start
        self.batch_end = batch_end
        self.attempts = attempts
        super().__init__(message, details)


class TextTooLarge(LecternError):
    """A single text exceeds the provider's input limit."""

    def __init__(self, position: int, length: int, limit: int) -> None:
        self.position = position
        self.length = length
        self.limit = limit
        super().__init__(
            f"Text at position {position} has {length} characters, provider limit is {limit}",
            {"position": position, "length": length, "limit": limit},
        )


class DimensionMismatch(LecternError):
    """Embedding vectors that must share a length do not."""

    def __init__(self, expected: int, actual: int, index_id: Optional[str] = None) -> None:
        details: Dict[str, Any] = {"expected": expected, "actual": actual}
        if index_id:
            details["index_id"] = index_id
        super().__init__(f"Embedding dimension {actual} does not match {expected}", details)


class IndexNotFound(LecternError):
    """The referenced index does not exist."""

    def __init__(self, index_id: str) -> None:
        self.index_id = index_id
        super().__init__(f"Index not found: {index_id}", {"index_id": index_id})


class StoreUnavailable(LecternError):
    """The persistence layer is unreachable or not initialised."""

    def __init__(self, message: str, operation: Optional[str] = None,
                 hint: Optional[str] = None) -> None:
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if hint:
            details["hint"] = hint
        self.hint = hint
        super().__init__(message, details)


class OperationCancelled(LecternError):
    """The caller cancelled the operation or its deadline passed."""

    pass
