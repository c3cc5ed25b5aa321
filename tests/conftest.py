"""
Shared pytest fixtures for codevec tests.

Provides record and vector factories, throwaway vector stores, and a small
multi-language sample project indexed with the offline hashing embedder.
"""

from pathlib import Path
from typing import Callable, Optional

import numpy as np
import pytest

from codevec.config import Config, EmbeddingConfig, HNSWConfig
from codevec.storage.metadata_catalogue import ChunkRecord
from codevec.storage.vector_store import ChunkInsert, VectorStore

TEST_DIM = 16

SAMPLE_FILES = {
    "app/main.py": '''"""Entry point."""


# Start the service loop.
def run(port):
    return serve(port)


class Server:
    def handle_request(self, request):
        return request


@route("/health")
def health_check():
    return "ok"
''',
    "app/util.py": '''def parse_config(path):
    with open(path) as f:
        return f.read()
''',
    "cmd/server.go": """package main

// Start boots the HTTP listener.
func Start() error {
	return nil
}

type Server struct {
	Port int
}
""",
    "src/net/tcp.rs": """/// Opens a TCP stream.
fn connect(addr: &str) -> Stream {
    Stream::new(addr)
}

impl Display for Stream {
    fn fmt(&self, f: &mut Formatter) -> Result {
        Ok(())
    }
}
""",
    "README.md": "# not indexed\n",
}


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded generator so vector tests are reproducible."""
    return np.random.default_rng(1234)


@pytest.fixture
def make_record() -> Callable[..., ChunkRecord]:
    """Factory for ChunkRecords with sensible defaults."""

    def _make(
        file_path: str,
        chunk_id: int = 0,
        symbol_name: Optional[str] = None,
        symbol_kind: Optional[str] = "function_definition",
        language: str = "python",
        content: Optional[str] = None,
        last_modified: int = 1_700_000_000,
    ) -> ChunkRecord:
        return ChunkRecord(
            file_path=file_path,
            chunk_id=chunk_id,
            content=content if content is not None else f"# {file_path} chunk {chunk_id}",
            symbol_name=symbol_name,
            symbol_kind=symbol_kind,
            package_name=None,
            language=language,
            start_line=chunk_id * 10 + 1,
            end_line=chunk_id * 10 + 5,
            last_modified=last_modified,
        )

    return _make


@pytest.fixture
def make_insert(make_record, rng) -> Callable[..., ChunkInsert]:
    """Factory for ChunkInserts carrying a random unit vector."""

    def _make(file_path: str, chunk_id: int = 0, vector=None, **kwargs) -> ChunkInsert:
        if vector is None:
            vector = rng.standard_normal(TEST_DIM).astype(np.float32)
        return ChunkInsert(record=make_record(file_path, chunk_id, **kwargs), vector=vector)

    return _make


@pytest.fixture
def hnsw_config() -> HNSWConfig:
    return HNSWConfig(m=16, ef_construction=100, ef_search=32, min_capacity=64)


@pytest.fixture
def store_dir(tmp_path: Path) -> Path:
    return tmp_path / "store"


@pytest.fixture
def store(store_dir: Path, hnsw_config: HNSWConfig) -> VectorStore:
    """Empty vector store in a temporary directory."""
    return VectorStore.load_or_create(store_dir, TEST_DIM, hnsw_config)


def write_sample_project(root: Path) -> Path:
    for relative, text in SAMPLE_FILES.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    return root


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Small go/python/rust project."""
    return write_sample_project(tmp_path / "project")


@pytest.fixture
def hash_config(project_dir: Path, hnsw_config: HNSWConfig) -> Config:
    """Config for the sample project using the offline hashing embedder."""
    return Config(
        codebase_dir=project_dir,
        embedding=EmbeddingConfig(provider="hash", dimension=64),
        hnsw=hnsw_config,
    )
