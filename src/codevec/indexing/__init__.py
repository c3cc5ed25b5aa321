"""Indexing components for code processing."""

from .chunker import SourceChunk, TreeSitterChunker
from .file_finder import FileFinder
from .indexer import CancellationToken, Indexer, IndexingStats

__all__ = [
    "CancellationToken",
    "FileFinder",
    "Indexer",
    "IndexingStats",
    "SourceChunk",
    "TreeSitterChunker",
]
