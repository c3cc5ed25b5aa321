"""
codevec - local semantic code index with HNSW graph search.

Chunks source files along syntax boundaries, embeds each chunk, and keeps the
vectors in an hnswlib index next to a JSON metadata catalogue so code can be
searched by meaning, by symbol name, or by file.
"""

__version__ = "0.4.2"
