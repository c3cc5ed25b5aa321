"""Metadata catalogue: chunk records keyed by never-reused integer keys.

The catalogue is the human-readable half of a vector store. It maps the same
integer keys used as labels in the HNSW index to the descriptive record of
each chunk and owns the key counter. Keys are handed out in strictly
increasing order and never reused, so a retired label in the vector index can
never alias a new chunk.

On disk the catalogue is a JSON sidecar::

    {"next_key": 7, "chunks": {"0": {...}, "3": {...}}}

Keys are strings in the file because JSON object keys must be.
"""

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import MetadataSerializationError, StoreIOError
from .atomic_writer import write_text_atomic

logger = logging.getLogger(__name__)


class ChunkRecord(BaseModel):
    """One indexed unit of source. Immutable: updates are delete + reinsert."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    file_path: str
    chunk_id: int
    content: str
    symbol_name: Optional[str] = None
    symbol_kind: Optional[str] = None
    package_name: Optional[str] = None
    language: str
    start_line: int
    end_line: int
    last_modified: int


class _CatalogueFile(BaseModel):
    """Validation schema for metadata.json."""

    model_config = ConfigDict(extra="forbid")

    next_key: int = Field(ge=0)
    chunks: Dict[int, ChunkRecord]


class MetadataCatalogue:
    """In-memory chunk records plus the next-key counter.

    Not synchronised: the owning VectorStore serialises access through its
    reader/writer lock.
    """

    def __init__(self, next_key: int = 0, chunks: Optional[Dict[int, ChunkRecord]] = None):
        self._next_key = next_key
        self._chunks: Dict[int, ChunkRecord] = dict(chunks or {})

    @property
    def next_key(self) -> int:
        return self._next_key

    def allocate_key(self) -> int:
        """Return the next unused key and advance the counter."""
        key = self._next_key
        self._next_key += 1
        return key

    def advance_next_key(self, minimum: int) -> None:
        """Raise the counter to at least ``minimum``. Never lowers it."""
        if minimum > self._next_key:
            self._next_key = minimum

    def insert(self, key: int, record: ChunkRecord) -> None:
        if key >= self._next_key:
            # Keys must come from allocate_key(); keep the counter ahead regardless
            self._next_key = key + 1
        self._chunks[key] = record

    def remove(self, key: int) -> Optional[ChunkRecord]:
        return self._chunks.pop(key, None)

    def get(self, key: int) -> Optional[ChunkRecord]:
        return self._chunks.get(key)

    def keys(self) -> List[int]:
        return list(self._chunks)

    def __contains__(self, key: object) -> bool:
        return key in self._chunks

    def __len__(self) -> int:
        return len(self._chunks)

    def scan(
        self, predicate: Optional[Callable[[ChunkRecord], bool]] = None
    ) -> Iterator[Tuple[int, ChunkRecord]]:
        """Lazily yield ``(key, record)`` pairs matching ``predicate``.

        The pairs come from a snapshot taken when iteration starts, so the scan
        is finite and unaffected by later mutations. Calling ``scan`` again
        starts a fresh pass.
        """
        snapshot = list(self._chunks.items())
        for key, record in snapshot:
            if predicate is None or predicate(record):
                yield key, record

    def to_dict(self) -> Dict[str, Any]:
        return {
            "next_key": self._next_key,
            "chunks": {
                str(key): record.model_dump() for key, record in self._chunks.items()
            },
        }

    def save(self, path: Path) -> None:
        """Atomically write the catalogue as JSON.

        Raises:
            StoreIOError: If the file cannot be written
        """
        text = json.dumps(self.to_dict(), ensure_ascii=False)
        write_text_atomic(path, text)

    @classmethod
    def load(cls, path: Path) -> "MetadataCatalogue":
        """Load a catalogue from ``path``.

        Returns:
            The loaded catalogue, or an empty one with ``next_key = 0`` when the
            file does not exist

        Raises:
            StoreIOError: If the file exists but cannot be read
            MetadataSerializationError: If the content is not a valid catalogue
        """
        if not path.exists():
            return cls()

        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = f.read()
        except OSError as e:
            raise StoreIOError("reading", path, str(e)) from e

        try:
            data = json.loads(raw)
            parsed = _CatalogueFile.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            raise MetadataSerializationError(f"Malformed metadata file {path}: {e}") from e

        if parsed.chunks and max(parsed.chunks) >= parsed.next_key:
            raise MetadataSerializationError(
                f"Malformed metadata file {path}: next_key {parsed.next_key} "
                f"is not greater than key {max(parsed.chunks)}"
            )

        logger.debug(f"Loaded {len(parsed.chunks)} chunk records from {path}")
        return cls(next_key=parsed.next_key, chunks=parsed.chunks)
