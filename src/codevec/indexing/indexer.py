"""Indexer: walk, chunk, embed and store a source tree.

Each file is applied to the vector store as one ``replace_file``
transaction, so a file's chunks are either all stored or all absent. A file
that fails (unreadable, unparsable, embedding error, store error) is recorded
in the run's statistics and the walk continues with the next file.

A full reindex builds its result in a shadow store and swaps it in at the
end; searches running meanwhile see the complete old index until the swap.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from ..config import Config
from ..errors import ChunkingError, EmbeddingError, IndexingLockError
from ..services.embedding_provider import EmbeddingProvider
from ..storage.metadata_catalogue import ChunkRecord
from ..storage.vector_store import ChunkInsert, VectorStore
from .chunker import TreeSitterChunker
from .file_finder import FileFinder

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class IndexingStats:
    """Statistics for indexing operations."""

    files_processed: int = 0
    files_skipped: int = 0
    files_removed: int = 0
    chunks_created: int = 0
    chunks_removed: int = 0
    failed_files: Dict[str, str] = field(default_factory=dict)
    cancelled: bool = False
    start_time: float = 0.0
    end_time: float = 0.0

    @property
    def duration(self) -> float:
        """Processing duration in seconds."""
        return self.end_time - self.start_time if self.end_time > self.start_time else 0.0

    def summary(self) -> str:
        text = (
            f"{self.files_processed} files indexed, {self.chunks_created} chunks, "
            f"{len(self.failed_files)} failed"
        )
        if self.files_skipped:
            text += f", {self.files_skipped} unchanged"
        if self.files_removed:
            text += f", {self.files_removed} removed"
        if self.cancelled:
            text += " (cancelled)"
        return text


class CancellationToken:
    """Cooperative cancellation flag, checked between files."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class Indexer:
    """Populates a VectorStore from the files under one root directory."""

    def __init__(
        self,
        config: Config,
        store: VectorStore,
        embedding_provider: EmbeddingProvider,
        file_finder: Optional[FileFinder] = None,
        chunker: Optional[TreeSitterChunker] = None,
    ):
        self.config = config
        self.store = store
        self.embedding_provider = embedding_provider
        self.file_finder = file_finder or FileFinder(config)
        self.chunker = chunker or TreeSitterChunker(config)
        self.root = self.file_finder.codebase_dir

        self._reindex_lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    # === PATHS ===

    def _absolute(self, path: PathLike) -> Path:
        path = Path(path)
        if not path.is_absolute():
            path = self.root / path
        return path.resolve()

    def _resolve_root(self, root: Optional[PathLike]) -> Path:
        if root is None:
            return self.root
        resolved = self._absolute(root)
        if resolved != self.root and self.root not in resolved.parents:
            raise ValueError(f"{resolved} is outside the indexed root {self.root}")
        return resolved

    def _relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            raise ValueError(f"{path} is outside the indexed root {self.root}") from None

    @staticmethod
    def _is_under(file_path: str, root_prefix: str) -> bool:
        if root_prefix == ".":
            return True
        return file_path == root_prefix or file_path.startswith(root_prefix + "/")

    # === SINGLE FILES ===

    def _prepare_file(self, path: Path) -> Tuple[str, List[ChunkInsert]]:
        """Read, chunk and embed one file. Never touches the store."""
        relative = self._relative(path)
        language = self.file_finder.language_for(path)
        if language is None:
            raise ChunkingError(f"no language configured for {relative}")

        last_modified = int(path.stat().st_mtime)
        with open(path, "r", encoding="utf-8") as f:
            contents = f.read()

        chunks = self.chunker.chunk(relative, contents, language)
        if not chunks:
            return relative, []

        vectors = self.embedding_provider.get_embeddings_batch([c.content for c in chunks])
        if len(vectors) != len(chunks):
            raise EmbeddingError(
                f"provider returned {len(vectors)} embeddings for {len(chunks)} chunks"
            )

        items = [
            ChunkInsert(
                record=ChunkRecord(
                    file_path=relative,
                    chunk_id=chunk_id,
                    content=chunk.content,
                    symbol_name=chunk.symbol_name,
                    symbol_kind=chunk.symbol_kind,
                    package_name=chunk.package_name,
                    language=language,
                    start_line=chunk.start_line,
                    end_line=chunk.end_line,
                    last_modified=last_modified,
                ),
                vector=vector,
            )
            for chunk_id, (chunk, vector) in enumerate(zip(chunks, vectors))
        ]
        return relative, items

    def index_file(self, path: PathLike) -> int:
        """Re-index one file, replacing whatever the store held for it.

        Returns:
            Number of chunks stored for the file
        """
        relative, items = self._prepare_file(self._absolute(path))
        self.store.replace_file(relative, items)
        logger.info(f"Indexed {relative}: {len(items)} chunks")
        return len(items)

    def remove_file(self, path: PathLike) -> int:
        """Remove every chunk of ``path`` from the store."""
        return self.store.delete_by_path(self._relative(self._absolute(path)))

    # === DIRECTORY WALKS ===

    def index_directory(
        self,
        root: Optional[PathLike] = None,
        incremental: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> IndexingStats:
        """Index every eligible file under ``root`` into the live store.

        Args:
            root: Directory to walk (default: the indexer root)
            incremental: Skip files whose mtime matches the stored one and
                remove files that disappeared from disk
            cancel_token: Checked between files

        Returns:
            Statistics for the run
        """
        start = self._resolve_root(root)
        stats = IndexingStats(start_time=time.time())
        self._index_tree(self.store, start, incremental, cancel_token, stats)
        stats.end_time = time.time()
        logger.info(f"Indexing {start} complete: {stats.summary()} in {stats.duration:.1f}s")
        return stats

    def _index_tree(
        self,
        store: VectorStore,
        start: Path,
        incremental: bool,
        cancel_token: Optional[CancellationToken],
        stats: IndexingStats,
    ) -> None:
        timestamps = store.file_timestamps() if incremental else {}
        seen = set()

        for file_path in self.file_finder.find_files(start):
            # Check cancellation only between files, never during file processing
            if cancel_token is not None and cancel_token.cancelled:
                stats.cancelled = True
                logger.info("Indexing cancelled")
                return

            relative = self._relative(file_path)
            seen.add(relative)

            if incremental:
                try:
                    mtime = int(file_path.stat().st_mtime)
                except OSError:
                    mtime = None
                if mtime is not None and timestamps.get(relative) == mtime:
                    stats.files_skipped += 1
                    continue

            try:
                relative, items = self._prepare_file(file_path)
                removed = store.replace_file(relative, items)
            except Exception as e:
                # One bad file never aborts the walk
                stats.failed_files[relative] = str(e) or type(e).__name__
                logger.warning(f"Failed to index {relative}: {e}")
                continue

            stats.files_processed += 1
            stats.chunks_created += len(items)
            stats.chunks_removed += removed
            logger.debug(f"{relative}: {len(items)} chunks")

        if incremental:
            prefix = self._relative(start) if start != self.root else "."
            for stale in sorted(timestamps):
                if stale not in seen and self._is_under(stale, prefix):
                    stats.chunks_removed += store.delete_by_path(stale)
                    stats.files_removed += 1
                    logger.info(f"Removed deleted file {stale} from the index")

    # === FULL REINDEX ===

    def reindex(
        self,
        root: Optional[PathLike] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> IndexingStats:
        """Rebuild everything under ``root`` from scratch and swap it in.

        Chunks of files outside ``root`` are carried over, as are files written
        through this store while the rebuild ran. A cancelled rebuild is
        discarded and leaves the live store as it was.

        Raises:
            IndexingLockError: If another reindex is already running
        """
        self._acquire_reindex_lock()
        try:
            return self._reindex_locked(root, cancel_token)
        finally:
            self._reindex_lock.release()

    def _acquire_reindex_lock(self) -> None:
        if not self._reindex_lock.acquire(blocking=False):
            raise IndexingLockError("A reindex is already in progress")

    def _reindex_locked(
        self,
        root: Optional[PathLike],
        cancel_token: Optional[CancellationToken],
    ) -> IndexingStats:
        start = self._resolve_root(root)
        prefix = self._relative(start) if start != self.root else "."
        stats = IndexingStats(start_time=time.time())
        logger.info(f"Reindexing {start}")

        keep = None if prefix == "." else (lambda r: not self._is_under(r.file_path, prefix))
        shadow = self.store.create_shadow(keep)
        try:
            self._index_tree(shadow, start, False, cancel_token, stats)
        except BaseException:
            shadow.discard()
            raise

        if stats.cancelled:
            shadow.discard()
            logger.info("Reindex cancelled; live index left unchanged")
        else:
            self.store.swap_in(shadow)

        stats.end_time = time.time()
        logger.info(f"Reindex of {start} finished: {stats.summary()} in {stats.duration:.1f}s")
        return stats

    def reindex_in_background(
        self,
        root: Optional[PathLike] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> "Future[IndexingStats]":
        """Start ``reindex`` on a worker thread and return immediately.

        The reindex lock is taken before returning, so a second call (in the
        background or not) raises instead of queueing.

        Raises:
            IndexingLockError: If another reindex is running
        """
        self._acquire_reindex_lock()
        try:
            with self._executor_lock:
                if self._executor is None:
                    self._executor = ThreadPoolExecutor(
                        max_workers=1, thread_name_prefix="codevec-reindex"
                    )
                future = self._executor.submit(self._run_background_reindex, root, cancel_token)
        except BaseException:
            self._reindex_lock.release()
            raise
        future.add_done_callback(self._background_done)
        return future

    def _run_background_reindex(
        self,
        root: Optional[PathLike],
        cancel_token: Optional[CancellationToken],
    ) -> IndexingStats:
        # The submitting thread already holds the reindex lock
        try:
            return self._reindex_locked(root, cancel_token)
        finally:
            self._reindex_lock.release()

    def _background_done(self, future: "Future[IndexingStats]") -> None:
        if future.cancelled():
            # Never started, so the lock taken on submit is still held
            self._reindex_lock.release()
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Background reindex failed: {error}", exc_info=error)

    def is_reindexing(self) -> bool:
        return self._reindex_lock.locked()

    def shutdown(self, wait: bool = True) -> None:
        """Stop the background worker, waiting for a running reindex by default."""
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
