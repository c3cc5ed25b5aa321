"""Exception hierarchy shared across codevec components."""

from pathlib import Path
from typing import Optional, Union


class CodevecError(Exception):
    """Base class for every error raised by codevec."""

    pass


class StoreError(CodevecError):
    """Base class for vector store failures."""

    pass


class StoreIOError(StoreError):
    """Reading or writing one of the persisted store files failed."""

    def __init__(self, operation: str, path: Union[str, Path], reason: str):
        self.operation = operation
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"{operation} {self.path} failed: {reason}")


class IndexEngineError(StoreError):
    """The HNSW engine rejected an operation (bad vector, missing key, corrupt file)."""

    def __init__(self, operation: str, message: str, key: Optional[int] = None):
        self.operation = operation
        self.key = key
        self.message = message
        if key is None:
            super().__init__(f"index {operation} failed: {message}")
        else:
            super().__init__(f"index {operation} failed for key {key}: {message}")


class MetadataSerializationError(StoreError):
    """The metadata sidecar could not be parsed; the store refuses to open."""

    pass


class StoreCorruptionError(StoreError):
    """The store directory holds only one of the two files it needs."""

    pass


class ChunkingError(CodevecError):
    """Source text could not be split into chunks."""

    pass


class EmbeddingError(CodevecError):
    """The embedding provider failed to produce vectors."""

    pass


class IndexingLockError(CodevecError):
    """Raised when a reindex is requested while another one is running."""

    pass


class PathOutsideRootError(CodevecError):
    """A requested path resolves outside the indexed root."""

    pass
