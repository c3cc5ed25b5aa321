"""HNSW vector index for approximate nearest neighbour search.

Wraps a live ``hnswlib.Index`` in cosine space. Labels are the integer keys
issued by the metadata catalogue; deletion is a soft delete (``mark_deleted``)
so a label is never handed to a different vector.

It is only ever constructed and used by ``VectorStore``, which serialises
mutations through its reader/writer lock. Queries from concurrent readers
still share hnswlib's index-wide ``ef`` setting, so the query path holds a
small internal lock while it adjusts and uses ``ef``.
"""

import logging
import threading
from pathlib import Path
from typing import Callable, List, Optional, Set, Tuple

import hnswlib
import numpy as np

from ..errors import IndexEngineError, StoreIOError
from .atomic_writer import atomic_write

logger = logging.getLogger(__name__)

KeyPredicate = Callable[[int], bool]


class HNSWIndexManager:
    """Manages one in-memory HNSW index and its binary file.

    Provides:
    - Incremental add / soft delete keyed by catalogue keys
    - k-NN queries, optionally filtered during graph traversal
    - Dynamic capacity growth
    - Save/load to a single native hnswlib file
    """

    INDEX_FILENAME = "index.hnsw"
    SPACE = "cosine"

    # Dynamic sizing constants
    GROWTH_FACTOR = 1.5  # 50% growth headroom
    RESIZE_THRESHOLD = 0.8  # Trigger resize at 80% capacity

    def __init__(
        self,
        vector_dim: int,
        m: int = 16,
        ef_construction: int = 200,
        ef_search: int = 64,
        min_capacity: int = 1024,
    ):
        """Create an empty index.

        Args:
            vector_dim: Dimension every vector must have
            m: HNSW parameter - number of connections per layer
            ef_construction: HNSW parameter - candidate list size while building
            ef_search: HNSW parameter - candidate list size while querying
            min_capacity: Smallest max_elements ever allocated
        """
        if vector_dim <= 0:
            raise ValueError(f"Vector dimension must be positive, got {vector_dim}")

        self.vector_dim = vector_dim
        self.m = m
        self.ef_construction = ef_construction
        self.ef_search = ef_search
        self.min_capacity = min_capacity

        self._index = hnswlib.Index(space=self.SPACE, dim=vector_dim)
        self._index.init_index(
            max_elements=min_capacity, ef_construction=ef_construction, M=m
        )
        self._index.set_ef(ef_search)
        self._live: Set[int] = set()
        self._highest_label = -1
        self._query_lock = threading.Lock()

    # === SIZING ===

    def calculate_dynamic_max_elements(self, current_count: int) -> int:
        """Calculate max_elements for ``current_count`` vectors.

        Uses 1.5x growth factor, never below the configured minimum capacity.
        """
        calculated = int(current_count * self.GROWTH_FACTOR)
        return max(calculated, self.min_capacity)

    def should_resize(self, current_count: int, max_elements: int) -> bool:
        """True once utilisation reaches the resize threshold."""
        if max_elements == 0:
            return True
        return current_count / max_elements >= self.RESIZE_THRESHOLD

    def _ensure_capacity(self, additional: int) -> None:
        # get_current_count() includes soft-deleted elements, which still occupy slots
        needed = self._index.get_current_count() + additional
        max_elements = self._index.get_max_elements()
        if not self.should_resize(needed, max_elements):
            return

        new_max = self.calculate_dynamic_max_elements(needed)
        try:
            self._index.resize_index(new_max)
        except RuntimeError as e:
            raise IndexEngineError("resize", str(e)) from e
        logger.debug(f"Resized HNSW index: {max_elements} -> {new_max}")

    # === VALIDATION ===

    def _validate_vector(self, operation: str, vector, key: Optional[int] = None) -> np.ndarray:
        try:
            array = np.asarray(vector, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise IndexEngineError(operation, f"not a numeric vector: {e}", key) from e

        if array.ndim != 1 or array.shape[0] != self.vector_dim:
            raise IndexEngineError(
                operation,
                f"dimension mismatch: expected {self.vector_dim}, got shape {array.shape}",
                key,
            )
        if not np.all(np.isfinite(array)):
            raise IndexEngineError(operation, "vector contains NaN or infinite values", key)
        if not np.any(array):
            raise IndexEngineError(operation, "zero vector has no cosine direction", key)
        return array

    def validate_vector(self, vector, key: Optional[int] = None) -> np.ndarray:
        """Return ``vector`` as float32 or raise IndexEngineError.

        Lets callers reject a whole batch before touching the index.
        """
        return self._validate_vector("add", vector, key)

    # === MUTATION ===

    def add(self, key: int, vector) -> None:
        """Add one vector under ``key``.

        Raises:
            IndexEngineError: If the vector is invalid or ``key`` is already live
        """
        array = self._validate_vector("add", vector, key)
        if key in self._live:
            raise IndexEngineError("add", "key already present", key)

        self._ensure_capacity(1)
        try:
            self._index.add_items(array.reshape(1, -1), np.array([key]), num_threads=1)
        except RuntimeError as e:
            raise IndexEngineError("add", str(e), key) from e

        self._live.add(key)
        if key > self._highest_label:
            self._highest_label = key

    def remove(self, key: int) -> None:
        """Soft-delete ``key``; it is excluded from every later search.

        Raises:
            IndexEngineError: If ``key`` is not live
        """
        if key not in self._live:
            raise IndexEngineError("remove", "key not found", key)
        try:
            self._index.mark_deleted(key)
        except RuntimeError as e:
            raise IndexEngineError("remove", str(e), key) from e
        self._live.discard(key)

    # === QUERIES ===

    def search(self, query, limit: int) -> List[Tuple[int, float]]:
        """Return up to ``limit`` ``(key, distance)`` pairs, closest first."""
        array = self._validate_vector("search", query)
        return self._knn(array, min(limit, len(self._live)), None)

    def filtered_search(
        self, query, limit: int, predicate: KeyPredicate
    ) -> List[Tuple[int, float]]:
        """k-NN restricted to keys accepted by ``predicate``.

        The predicate is handed to hnswlib and evaluated while the graph is
        traversed, so rejected keys never consume result slots. When hnswlib
        cannot fill ``limit`` results at the current ``ef``, ``ef`` is doubled
        up to the total element count before the result is allowed to come
        back short.
        """
        array = self._validate_vector("search", query)
        k = min(limit, len(self._live))
        if k <= 0:
            return []

        results = self._knn(array, k, predicate)
        if results:
            return results

        # Whole graph explored without filling k: ask for exactly what can match
        matching = sum(1 for key in self._live if predicate(key))
        if matching == 0:
            return []
        return self._knn(array, min(k, matching), predicate)

    def _knn(
        self, query: np.ndarray, k: int, predicate: Optional[KeyPredicate]
    ) -> List[Tuple[int, float]]:
        if k <= 0:
            return []

        total = self._index.get_current_count()
        ef = max(self.ef_search, k)
        with self._query_lock:
            return self._knn_locked(query, k, predicate, ef, total)

    def _knn_locked(
        self,
        query: np.ndarray,
        k: int,
        predicate: Optional[KeyPredicate],
        ef: int,
        total: int,
    ) -> List[Tuple[int, float]]:
        try:
            while True:
                self._index.set_ef(ef)
                results = self._try_knn(query, k, predicate)
                if results is not None:
                    return results
                if ef >= total:
                    break
                ef = min(ef * 2, total)

            # hnswlib raises when fewer than k results are reachable; shrink k
            # until the reachable set fits
            while k > 1:
                k -= 1
                results = self._try_knn(query, k, predicate)
                if results is not None:
                    return results
            return []
        finally:
            self._index.set_ef(self.ef_search)

    def _try_knn(
        self, query: np.ndarray, k: int, predicate: Optional[KeyPredicate]
    ) -> Optional[List[Tuple[int, float]]]:
        try:
            if predicate is None:
                labels, distances = self._index.knn_query(query, k=k, num_threads=1)
            else:
                labels, distances = self._index.knn_query(
                    query, k=k, num_threads=1, filter=predicate
                )
        except RuntimeError:
            return None
        return [(int(label), float(dist)) for label, dist in zip(labels[0], distances[0])]

    def get_vector(self, key: int) -> np.ndarray:
        """Return the stored (normalised) vector for ``key``."""
        if key not in self._live:
            raise IndexEngineError("get", "key not found", key)
        try:
            items = self._index.get_items([key])
        except RuntimeError as e:
            raise IndexEngineError("get", str(e), key) from e
        return np.asarray(items[0], dtype=np.float32)

    def keys(self) -> List[int]:
        """Live keys, unordered."""
        return list(self._live)

    def highest_label(self) -> int:
        """Largest label ever stored, deleted or not; -1 when never used."""
        return self._highest_label

    @property
    def element_count(self) -> int:
        """Stored elements including soft-deleted ones."""
        return self._index.get_current_count()

    @property
    def capacity(self) -> int:
        return self._index.get_max_elements()

    def __len__(self) -> int:
        return len(self._live)

    def __contains__(self, key: object) -> bool:
        return key in self._live

    # === PERSISTENCE ===

    def save(self, path: Path) -> None:
        """Write the native hnswlib binary atomically.

        Raises:
            StoreIOError: If the file cannot be written
        """

        def _write(temp_file: Path) -> None:
            try:
                self._index.save_index(str(temp_file))
            except RuntimeError as e:
                raise StoreIOError("writing", temp_file, str(e)) from e
            if not temp_file.exists():
                raise StoreIOError("writing", temp_file, "hnswlib produced no file")

        atomic_write(path, _write)

    @classmethod
    def load(
        cls,
        path: Path,
        vector_dim: int,
        m: int = 16,
        ef_construction: int = 200,
        ef_search: int = 64,
        min_capacity: int = 1024,
    ) -> "HNSWIndexManager":
        """Load an index file, or create an empty index when ``path`` is missing.

        Raises:
            IndexEngineError: If the file cannot be parsed as an hnswlib index
        """
        manager = cls(
            vector_dim,
            m=m,
            ef_construction=ef_construction,
            ef_search=ef_search,
            min_capacity=min_capacity,
        )
        if not path.exists():
            return manager

        index = hnswlib.Index(space=cls.SPACE, dim=vector_dim)
        try:
            # max_elements=0 keeps the capacity stored in the file
            index.load_index(str(path), max_elements=0)
        except (RuntimeError, MemoryError, ValueError) as e:
            raise IndexEngineError("load", f"{path}: {e}") from e

        manager._index = index
        manager._adopt_loaded_labels()
        if index.get_max_elements() < min_capacity:
            manager._index.resize_index(min_capacity)
        manager._index.set_ef(ef_search)

        logger.debug(
            f"Loaded HNSW index from {path}: {len(manager._live)} live, "
            f"{index.get_current_count()} stored"
        )
        return manager

    def _adopt_loaded_labels(self) -> None:
        all_labels = [int(label) for label in self._index.get_ids_list()]
        if not all_labels:
            self._highest_label = -1
            self._live = set()
            return
        self._highest_label = max(all_labels)

        # get_items raises for soft-deleted labels, which is the only way
        # hnswlib exposes deletion state
        try:
            self._index.get_items(all_labels)
        except RuntimeError:
            self._live = {label for label in all_labels if self._is_stored(label)}
        else:
            self._live = set(all_labels)

    def _is_stored(self, label: int) -> bool:
        try:
            self._index.get_items([label])
        except RuntimeError:
            return False
        return True
