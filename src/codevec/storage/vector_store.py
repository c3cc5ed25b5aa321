"""Vector store: the transactional and concurrency boundary of the index.

A ``VectorStore`` owns exactly one ``HNSWIndexManager`` and one
``MetadataCatalogue`` and is the only way to read or change either. Every
public operation keeps the two in lockstep: the set of live keys in the
vector index always equals the set of keys in the catalogue.

Persisted layout in ``store_dir``:

- ``index.hnsw``: native hnswlib binary
- ``metadata.json``: ``{"next_key": n, "chunks": {"<key>": {...}}}``
- ``reindex.tmp/``: shadow store, only while a full reindex is running

Files are written index first, metadata second. A crash between the two
writes leaves keys present in one file only; ``load_or_create`` drops such
keys from both structures instead of guessing.
"""

import logging
import shutil
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

import numpy as np

from ..config import HNSWConfig
from ..errors import IndexEngineError, StoreCorruptionError, StoreError, StoreIOError
from .atomic_writer import cleanup_orphaned_temp_files
from .hnsw_index_manager import HNSWIndexManager
from .metadata_catalogue import ChunkRecord, MetadataCatalogue
from .rw_lock import ReaderWriterLock

logger = logging.getLogger(__name__)

RecordPredicate = Callable[[ChunkRecord], bool]


@dataclass
class ChunkInsert:
    """A chunk record paired with its embedding, the unit of ``insert_batch``."""

    record: ChunkRecord
    vector: Sequence[float]


@dataclass
class SearchResult:
    """One hydrated nearest-neighbour hit."""

    key: int
    record: ChunkRecord
    distance: float


class VectorStore:
    """Thread-safe pairing of an HNSW index and its metadata catalogue.

    Reads (searches, symbol lookups, listings, counts) share the lock;
    writes hold it exclusively for the whole logical transaction, including
    the persist that follows. Callers embed and read files before calling in,
    never while a lock is held.
    """

    METADATA_FILENAME = "metadata.json"
    INDEX_FILENAME = HNSWIndexManager.INDEX_FILENAME
    SHADOW_DIRNAME = "reindex.tmp"

    def __init__(
        self,
        store_dir: Path,
        index: HNSWIndexManager,
        catalogue: MetadataCatalogue,
        hnsw_config: Optional[HNSWConfig] = None,
        auto_persist: bool = True,
    ):
        """Use ``load_or_create`` or ``create_shadow`` instead of calling this directly."""
        self.store_dir = Path(store_dir)
        self.hnsw_config = hnsw_config or HNSWConfig()
        self.auto_persist = auto_persist
        self._index = index
        self._catalogue = catalogue
        self._lock = ReaderWriterLock()
        self._persist_lock = threading.Lock()

        # Live store side of a running rebuild
        self._key_lock = threading.Lock()
        self._shadow: Optional["VectorStore"] = None
        self._written_paths: Set[str] = set()
        # Shadow store side
        self._parent: Optional["VectorStore"] = None
        self._keep: Optional[RecordPredicate] = None

    # === CONSTRUCTION ===

    @classmethod
    def load_or_create(
        cls,
        store_dir: Path,
        dimension: int,
        hnsw_config: Optional[HNSWConfig] = None,
    ) -> "VectorStore":
        """Open the store in ``store_dir``, creating an empty one when it holds no files.

        Args:
            store_dir: Directory holding index.hnsw and metadata.json
            dimension: Vector dimension for the whole store
            hnsw_config: HNSW graph parameters

        Returns:
            The loaded (and, if needed, repaired) store

        Raises:
            StoreCorruptionError: If exactly one of the two files exists
            StoreIOError: If the directory or a file cannot be accessed
            IndexEngineError: If index.hnsw is not a valid hnswlib file
            MetadataSerializationError: If metadata.json is malformed
        """
        store_dir = Path(store_dir)
        hnsw_config = hnsw_config or HNSWConfig()
        index_path = store_dir / cls.INDEX_FILENAME
        metadata_path = store_dir / cls.METADATA_FILENAME

        try:
            store_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreIOError("creating", store_dir, str(e)) from e

        cleanup_orphaned_temp_files(store_dir)

        has_index = index_path.exists()
        has_metadata = metadata_path.exists()
        if has_index != has_metadata:
            present, missing = (
                (index_path, metadata_path) if has_index else (metadata_path, index_path)
            )
            raise StoreCorruptionError(
                f"Store {store_dir} is incomplete: found {present.name} but not {missing.name}"
            )

        index = HNSWIndexManager.load(
            index_path,
            dimension,
            m=hnsw_config.m,
            ef_construction=hnsw_config.ef_construction,
            ef_search=hnsw_config.ef_search,
            min_capacity=hnsw_config.min_capacity,
        )
        catalogue = MetadataCatalogue.load(metadata_path)

        store = cls(store_dir, index, catalogue, hnsw_config)
        if store._reconcile():
            store.persist()

        if has_index:
            logger.info(f"Opened vector store {store_dir} with {len(catalogue)} chunks")
        else:
            logger.info(f"Created empty vector store in {store_dir}")
        return store

    def _reconcile(self) -> bool:
        """Drop keys present in only one structure; return True if anything changed."""
        index_keys = set(self._index.keys())
        catalogue_keys = set(self._catalogue.keys())
        changed = False

        only_in_index = index_keys - catalogue_keys
        for key in sorted(only_in_index):
            self._index.remove(key)
        only_in_catalogue = catalogue_keys - index_keys
        for key in sorted(only_in_catalogue):
            self._catalogue.remove(key)

        if only_in_index or only_in_catalogue:
            logger.warning(
                f"Store {self.store_dir} was inconsistent: dropped "
                f"{len(only_in_index)} keys found only in the index and "
                f"{len(only_in_catalogue)} keys found only in the metadata"
            )
            changed = True

        floor = self._index.highest_label() + 1
        if floor > self._catalogue.next_key:
            logger.warning(
                f"Store {self.store_dir}: next_key {self._catalogue.next_key} "
                f"raised to {floor} to stay ahead of stored index labels"
            )
            self._catalogue.advance_next_key(floor)
            changed = True

        return changed

    # === PATHS ===

    @property
    def index_path(self) -> Path:
        return self.store_dir / self.INDEX_FILENAME

    @property
    def metadata_path(self) -> Path:
        return self.store_dir / self.METADATA_FILENAME

    @property
    def dimension(self) -> int:
        return self._index.vector_dim

    # === WRITES ===

    def insert_batch(self, items: Iterable[ChunkInsert]) -> List[int]:
        """Insert chunks as one all-or-nothing batch.

        Every vector is validated before any key is allocated. If the index
        rejects an add partway through, the chunks already applied for this
        batch are removed from both structures before the error propagates;
        keys allocated for the failed batch stay consumed.

        Returns:
            Keys assigned to the inserted chunks, in input order

        Raises:
            IndexEngineError: If a vector is invalid or the engine fails
            StoreIOError: If persisting fails after the batch was applied
        """
        items = list(items)
        if not items:
            return []
        vectors = self._validate(items)

        with self._lock.write_locked():
            keys = self._apply_inserts(items, vectors)
            self._note_written(item.record.file_path for item in items)
            self._persist_if_enabled()

        logger.debug(f"Inserted batch of {len(keys)} chunks")
        return keys

    def replace_file(self, file_path: str, items: Iterable[ChunkInsert]) -> int:
        """Swap every chunk of ``file_path`` for ``items`` in one transaction.

        New chunks go in first; the old ones are removed only once every
        insert succeeded, so a failed replace leaves the file's previous
        chunks untouched.

        Returns:
            Number of chunks removed
        """
        items = list(items)
        vectors = self._validate(items)

        with self._lock.write_locked():
            old_keys = [
                key
                for key, _ in self._catalogue.scan(lambda r: r.file_path == file_path)
            ]
            new_keys = self._apply_inserts(items, vectors)
            for key in old_keys:
                self._remove_key(key)
            self._note_written([file_path])
            if old_keys or new_keys:
                self._persist_if_enabled()

        logger.debug(
            f"Replaced {file_path}: removed {len(old_keys)}, inserted {len(new_keys)}"
        )
        return len(old_keys)

    def delete_by_path(self, file_path: str) -> int:
        """Remove every chunk whose ``file_path`` equals ``file_path`` exactly.

        Returns:
            Number of chunks removed; zero is not an error
        """
        with self._lock.write_locked():
            keys = [
                key
                for key, _ in self._catalogue.scan(lambda r: r.file_path == file_path)
            ]
            for key in keys:
                self._remove_key(key)
            self._note_written([file_path])
            if keys:
                self._persist_if_enabled()

        if keys:
            logger.debug(f"Deleted {len(keys)} chunks for {file_path}")
        return len(keys)

    def _validate(self, items: List[ChunkInsert]) -> List[np.ndarray]:
        return [self._index.validate_vector(item.vector) for item in items]

    def _apply_inserts(
        self, items: List[ChunkInsert], vectors: List[np.ndarray]
    ) -> List[int]:
        # Caller holds the write lock
        applied: List[int] = []
        try:
            for item, vector in zip(items, vectors):
                key = self._allocate_key()
                self._index.add(key, vector)
                self._catalogue.insert(key, item.record)
                applied.append(key)
        except IndexEngineError:
            self._rollback(applied)
            raise
        return applied

    def _allocate_key(self) -> int:
        # A shadow draws from its live store so keys stay unique across the swap
        if self._parent is not None:
            return self._parent._allocate_key()
        with self._key_lock:
            return self._catalogue.allocate_key()

    def _note_written(self, paths: Iterable[str]) -> None:
        # Caller holds the write lock
        if self._shadow is not None:
            self._written_paths.update(paths)

    def _rollback(self, keys: List[int]) -> None:
        for key in reversed(keys):
            self._catalogue.remove(key)
            try:
                self._index.remove(key)
            except IndexEngineError as e:
                logger.error(f"Rollback could not remove key {key} from the index: {e}")
        if keys:
            logger.warning(f"Rolled back {len(keys)} chunks of a failed batch")

    def _remove_key(self, key: int) -> None:
        self._catalogue.remove(key)
        if key in self._index:
            self._index.remove(key)
        else:
            logger.warning(f"Consistency: key {key} was in the metadata but not in the index")

    # === READS ===

    def search(self, query: Sequence[float], limit: int) -> List[SearchResult]:
        """Nearest chunks to ``query``, closest first, at most ``limit``."""
        if limit <= 0:
            return []
        with self._lock.read_locked():
            hits = self._index.search(query, limit)
            return self._hydrate(hits, limit)

    def search_filtered(
        self, query: Sequence[float], limit: int, field_predicate: RecordPredicate
    ) -> List[SearchResult]:
        """Nearest chunks whose record satisfies ``field_predicate``.

        The predicate runs inside the HNSW traversal, so up to ``limit``
        matching chunks are returned whenever that many exist.
        """
        if limit <= 0:
            return []

        def key_predicate(key: int) -> bool:
            record = self._catalogue.get(key)
            return record is not None and field_predicate(record)

        with self._lock.read_locked():
            hits = self._index.filtered_search(query, limit, key_predicate)
            return self._hydrate(hits, limit)

    def search_by_language(
        self, query: Sequence[float], limit: int, language: str
    ) -> List[SearchResult]:
        return self.search_filtered(query, limit, lambda r: r.language == language)

    def _hydrate(self, hits, limit: int) -> List[SearchResult]:
        results: List[SearchResult] = []
        for key, distance in hits:
            record = self._catalogue.get(key)
            if record is None:
                logger.warning(f"Consistency: key {key} in the index has no metadata; skipped")
                continue
            results.append(SearchResult(key=key, record=record, distance=distance))
            if len(results) >= limit:
                break
        return results

    def find_by_symbol(
        self, pattern: str, kind_filter: Optional[str] = None, limit: int = 20
    ) -> List[ChunkRecord]:
        """Chunks whose symbol name contains ``pattern`` (case-insensitive).

        Args:
            pattern: Substring to look for in the symbol name
            kind_filter: If given, the symbol kind must equal it exactly
            limit: Maximum number of records returned

        Returns:
            Matching records in catalogue scan order
        """
        if limit <= 0:
            return []
        needle = pattern.lower()

        def matches(record: ChunkRecord) -> bool:
            if record.symbol_name is None:
                return False
            if kind_filter is not None and record.symbol_kind != kind_filter:
                return False
            return needle in record.symbol_name.lower()

        found: List[ChunkRecord] = []
        with self._lock.read_locked():
            for _, record in self._catalogue.scan(matches):
                found.append(record)
                if len(found) >= limit:
                    break
        return found

    def list_files(self, language_filter: Optional[str] = None) -> List[str]:
        """Distinct indexed file paths, sorted."""
        with self._lock.read_locked():
            paths = {
                record.file_path
                for _, record in self._catalogue.scan(
                    None
                    if language_filter is None
                    else lambda r: r.language == language_filter
                )
            }
        return sorted(paths)

    def file_timestamps(self) -> Dict[str, int]:
        """Map each indexed path to the ``last_modified`` stored for it."""
        timestamps: Dict[str, int] = {}
        with self._lock.read_locked():
            for _, record in self._catalogue.scan():
                current = timestamps.get(record.file_path)
                if current is None or record.last_modified > current:
                    timestamps[record.file_path] = record.last_modified
        return timestamps

    def languages(self) -> List[str]:
        """Distinct languages present in the store, sorted."""
        with self._lock.read_locked():
            return sorted({record.language for _, record in self._catalogue.scan()})

    def count(self) -> int:
        with self._lock.read_locked():
            return len(self._catalogue)

    def get(self, key: int) -> Optional[ChunkRecord]:
        with self._lock.read_locked():
            return self._catalogue.get(key)

    @property
    def next_key(self) -> int:
        with self._lock.read_locked():
            return self._catalogue.next_key

    def index_keys(self) -> List[int]:
        """Live keys of the vector index, sorted."""
        with self._lock.read_locked():
            return sorted(self._index.keys())

    def catalogue_keys(self) -> List[int]:
        """Keys of the metadata catalogue, sorted."""
        with self._lock.read_locked():
            return sorted(self._catalogue.keys())

    # === PERSISTENCE ===

    def persist(self) -> None:
        """Write index.hnsw, then metadata.json.

        Safe to call again after a StoreIOError; the in-memory state is the
        source of truth.
        """
        with self._lock.read_locked():
            self._persist_unlocked()

    def _persist_if_enabled(self) -> None:
        if self.auto_persist:
            self._persist_unlocked()

    def _persist_unlocked(self) -> None:
        # Caller holds either side of the store lock
        with self._persist_lock:
            self._index.save(self.index_path)
            self._catalogue.save(self.metadata_path)
        logger.debug(f"Persisted {len(self._catalogue)} chunks to {self.store_dir}")

    # === SHADOW REINDEX ===

    def create_shadow(self, keep: Optional[RecordPredicate] = None) -> "VectorStore":
        """Create a detached store for a full rebuild.

        The shadow lives in ``<store_dir>/reindex.tmp`` (a leftover from an
        interrupted rebuild is removed first) and never persists on its own.
        It draws keys from this store, so keys stay unique across both. Live
        entries for which ``keep`` returns True are copied in with the same
        keys and vectors; ``swap_in`` refreshes them from the live state.

        Raises:
            StoreError: If a shadow is already attached to this store
        """
        if self._parent is not None:
            raise StoreError("A shadow store cannot have a shadow of its own")
        shadow_dir = self.store_dir / self.SHADOW_DIRNAME

        with self._lock.read_locked():
            with self._key_lock:
                if self._shadow is not None:
                    raise StoreError(f"A rebuild of {self.store_dir} is already in progress")
                try:
                    if shadow_dir.exists():
                        logger.info(f"Removing leftover shadow store {shadow_dir}")
                        shutil.rmtree(shadow_dir)
                    shadow_dir.mkdir(parents=True)
                except OSError as e:
                    raise StoreIOError("creating", shadow_dir, str(e)) from e

                shadow = VectorStore(
                    shadow_dir,
                    HNSWIndexManager(
                        self.dimension,
                        m=self.hnsw_config.m,
                        ef_construction=self.hnsw_config.ef_construction,
                        ef_search=self.hnsw_config.ef_search,
                        min_capacity=self.hnsw_config.min_capacity,
                    ),
                    MetadataCatalogue(),
                    self.hnsw_config,
                    auto_persist=False,
                )
                shadow._parent = self
                shadow._keep = keep
                shadow._catalogue.advance_next_key(self._catalogue.next_key)
                self._shadow = shadow
                self._written_paths = set()

            kept = 0
            if keep is not None:
                kept = shadow._copy_from(self, [key for key, _ in self._catalogue.scan(keep)])

        logger.debug(f"Created shadow store {shadow_dir} keeping {kept} chunks")
        return shadow

    def _copy_from(self, source: "VectorStore", keys: List[int]) -> int:
        # Caller holds a lock on ``source``; self is a shadow nobody else writes
        for key in keys:
            self._index.add(key, source._index.get_vector(key))
            self._catalogue.insert(key, source._catalogue.get(key))
        return len(keys)

    def _carried_over(self, shadow: "VectorStore") -> RecordPredicate:
        keep = shadow._keep
        written = self._written_paths

        def carried(record: ChunkRecord) -> bool:
            if record.file_path in written:
                return True
            return keep is not None and keep(record)

        return carried

    def swap_in(self, shadow: "VectorStore") -> None:
        """Adopt ``shadow``'s contents in one exclusive step, persist, drop the shadow.

        Entries the shadow keeps from the live store, and every path written
        to the live store while the shadow was attached, are taken from the
        live state as it is at swap time; the rebuilt entries cover the rest.
        Searches running concurrently see either the complete old contents or
        the complete new contents.
        """
        if shadow is self:
            raise ValueError("A store cannot swap in itself")
        if shadow._parent is not self or self._shadow is not shadow:
            raise ValueError(f"{shadow.store_dir} is not the shadow attached to {self.store_dir}")
        if shadow.dimension != self.dimension:
            raise ValueError(
                f"Shadow dimension {shadow.dimension} does not match store dimension {self.dimension}"
            )

        try:
            with self._lock.write_locked():
                carried = self._carried_over(shadow)
                # Keys are never reused, so a key held by both stores names the same chunk
                live_keys = {key for key, _ in self._catalogue.scan(carried)}
                for key, _ in shadow._catalogue.scan(carried):
                    if key not in live_keys:
                        shadow._remove_key(key)
                refreshed = shadow._copy_from(
                    self, sorted(key for key in live_keys if key not in shadow._catalogue)
                )
                if self._written_paths:
                    logger.info(
                        f"Kept {len(self._written_paths)} files written during the rebuild"
                    )

                with self._key_lock:
                    previous_next_key = self._catalogue.next_key
                    self._index = shadow._index
                    self._catalogue = shadow._catalogue
                    self._catalogue.advance_next_key(
                        max(previous_next_key, self._index.highest_label() + 1)
                    )
                    self._shadow = None
                    self._written_paths = set()
                self._persist_unlocked()
        finally:
            shadow.discard()

        logger.info(
            f"Swapped rebuilt index into {self.store_dir}: {len(self._catalogue)} chunks, "
            f"{refreshed} carried over from the live store"
        )

    def discard(self) -> None:
        """Detach this shadow from its live store and delete its directory."""
        if self.store_dir.name != self.SHADOW_DIRNAME:
            raise ValueError(f"Refusing to delete non-shadow store {self.store_dir}")

        parent = self._parent
        if parent is not None:
            with parent._key_lock:
                if parent._shadow is self:
                    parent._shadow = None
                    parent._written_paths = set()

        try:
            shutil.rmtree(self.store_dir)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.warning(f"Failed to remove shadow store {self.store_dir}: {e}")
