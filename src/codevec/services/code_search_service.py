"""Caller-facing retrieval surface over one vector store and indexer."""

import logging
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from rich.console import Console

from ..config import Config
from ..errors import CodevecError, PathOutsideRootError
from ..indexing.indexer import Indexer, IndexingStats
from ..storage.metadata_catalogue import ChunkRecord
from ..storage.vector_store import SearchResult, VectorStore
from .embedding_factory import EmbeddingProviderFactory
from .embedding_provider import EmbeddingProvider

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 10
DEFAULT_SYMBOL_LIMIT = 20


@dataclass
class IndexStatus:
    """Snapshot of what the index currently holds."""

    root: Path
    store_dir: Path
    chunk_count: int
    file_count: int
    languages: List[str]
    reindexing: bool
    provider: str
    model: str


def format_results(
    results: Sequence[Union[SearchResult, ChunkRecord]], show_distance: bool = True
) -> str:
    """Render results as markdown: one heading and one fenced block per chunk.

    Headings read ``## path:start-end (kind name) [distance]``; the symbol part
    is present only when both kind and name are known, the distance only for
    similarity results when ``show_distance`` is set.
    """
    output = []
    for result in results:
        if isinstance(result, SearchResult):
            record, distance = result.record, result.distance
        else:
            record, distance = result, None

        heading = f"## {record.file_path}:{record.start_line}-{record.end_line}"
        if record.symbol_kind and record.symbol_name:
            heading += f" ({record.symbol_kind} {record.symbol_name})"
        if show_distance and distance is not None:
            heading += f" [{distance:.3f}]"
        output.append(f"{heading}\n```\n{record.content}\n```\n")
    return "\n".join(output)


class CodeSearchService:
    """Search, symbol lookup, listing and reindex over one indexed root."""

    def __init__(
        self,
        config: Config,
        store: VectorStore,
        indexer: Indexer,
        embedding_provider: EmbeddingProvider,
    ):
        self.config = config
        self.store = store
        self.indexer = indexer
        self.embedding_provider = embedding_provider
        self.root = indexer.root

    @classmethod
    def open(cls, config: Config, console: Optional[Console] = None) -> "CodeSearchService":
        """Build the provider, open the store and wire up an indexer for ``config``."""
        provider = EmbeddingProviderFactory.create(config, console)
        store = VectorStore.load_or_create(
            config.resolved_store_dir(), config.embedding.dimension, config.hnsw
        )
        indexer = Indexer(config, store, provider)
        return cls(config, store, indexer, provider)

    def search(
        self, query: str, language: Optional[str] = None, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> List[SearchResult]:
        """Semantic search by natural-language query."""
        vector = self.embedding_provider.get_embedding(query)
        if language is None:
            results = self.store.search(vector, limit)
        else:
            results = self.store.search_by_language(vector, limit, language)
        return results[:limit]

    def find_similar(
        self, code: str, language: Optional[str] = None, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> List[SearchResult]:
        """Chunks semantically close to a code snippet."""
        return self.search(code, language, limit)

    def find_symbol(
        self, name: str, kind: Optional[str] = None, limit: int = DEFAULT_SYMBOL_LIMIT
    ) -> List[ChunkRecord]:
        return self.store.find_by_symbol(name, kind, limit)

    def list_files(self, language: Optional[str] = None) -> List[str]:
        return self.store.list_files(language)

    def index_status(self) -> IndexStatus:
        return IndexStatus(
            root=self.root,
            store_dir=self.store.store_dir,
            chunk_count=self.store.count(),
            file_count=len(self.store.list_files()),
            languages=self.store.languages(),
            reindexing=self.indexer.is_reindexing(),
            provider=self.embedding_provider.get_provider_name(),
            model=self.embedding_provider.get_current_model(),
        )

    def read_file(self, path: str) -> str:
        """Read a file inside the indexed root.

        Args:
            path: Path relative to the root

        Raises:
            PathOutsideRootError: If ``path`` is absolute or resolves outside
                the root, symlinks included
            CodevecError: If the file does not exist or cannot be read
        """
        requested = Path(path)
        if requested.is_absolute():
            raise PathOutsideRootError(
                f"path '{path}' is absolute; only paths relative to {self.root} are accepted"
            )

        resolved = (self.root / requested).resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise PathOutsideRootError(
                f"path '{path}' is outside the project root; only files within "
                f"{self.root} are accessible"
            )
        if not resolved.is_file():
            raise CodevecError(f"file not found: {path}")

        try:
            with open(resolved, "r", encoding="utf-8") as f:
                return f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise CodevecError(f"failed to read {path}: {e}") from e

    def index(self, incremental: bool = False) -> IndexingStats:
        """Index the whole root into the live store."""
        return self.indexer.index_directory(incremental=incremental)

    def reindex(
        self, background: bool = True
    ) -> Union["Future[IndexingStats]", IndexingStats]:
        """Full rebuild of the root; returns immediately when ``background`` is set."""
        if background:
            logger.info(f"Re-indexing started for {self.root}")
            return self.indexer.reindex_in_background()
        return self.indexer.reindex()

    def close(self) -> None:
        self.indexer.shutdown(wait=True)
        self.embedding_provider.close()
