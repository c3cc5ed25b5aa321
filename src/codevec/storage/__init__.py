"""Storage layer: HNSW vector index, metadata catalogue and the vector store over both."""

from .hnsw_index_manager import HNSWIndexManager
from .metadata_catalogue import ChunkRecord, MetadataCatalogue
from .rw_lock import ReaderWriterLock
from .vector_store import ChunkInsert, SearchResult, VectorStore

__all__ = [
    "ChunkInsert",
    "ChunkRecord",
    "HNSWIndexManager",
    "MetadataCatalogue",
    "ReaderWriterLock",
    "SearchResult",
    "VectorStore",
]
