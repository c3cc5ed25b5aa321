"""Unit tests for HNSWIndexManager: keyed add/remove, k-NN and persistence."""

from pathlib import Path

import numpy as np
import pytest

from codevec.errors import IndexEngineError
from codevec.storage.hnsw_index_manager import HNSWIndexManager

DIM = 32


@pytest.fixture
def vectors(rng) -> np.ndarray:
    return rng.standard_normal((300, DIM)).astype(np.float32)


@pytest.fixture
def manager() -> HNSWIndexManager:
    return HNSWIndexManager(DIM, m=16, ef_construction=100, ef_search=32, min_capacity=64)


def fill(manager: HNSWIndexManager, vectors: np.ndarray) -> None:
    for key, vector in enumerate(vectors):
        manager.add(key, vector)


class TestAddAndRemove:
    def test_add_makes_key_live(self, manager, vectors):
        manager.add(0, vectors[0])

        assert 0 in manager
        assert len(manager) == 1
        assert manager.highest_label() == 0

    def test_add_duplicate_key_raises(self, manager, vectors):
        manager.add(5, vectors[0])

        with pytest.raises(IndexEngineError) as exc_info:
            manager.add(5, vectors[1])
        assert exc_info.value.key == 5

    @pytest.mark.parametrize(
        "bad_vector",
        [
            np.ones(DIM + 1, dtype=np.float32),
            np.zeros(DIM, dtype=np.float32),
            np.full(DIM, np.nan, dtype=np.float32),
            np.full(DIM, np.inf, dtype=np.float32),
        ],
        ids=["wrong-dimension", "zero", "nan", "inf"],
    )
    def test_invalid_vectors_raise(self, manager, bad_vector):
        with pytest.raises(IndexEngineError):
            manager.add(0, bad_vector)
        assert len(manager) == 0

    def test_remove_absent_key_raises(self, manager):
        with pytest.raises(IndexEngineError) as exc_info:
            manager.remove(99)
        assert exc_info.value.key == 99

    def test_removed_key_is_never_returned(self, manager, vectors):
        fill(manager, vectors[:50])
        manager.remove(10)

        results = manager.search(vectors[10], 50)

        assert 10 not in [key for key, _ in results]
        assert len(results) == 49

    def test_capacity_grows_past_min_capacity(self, manager, vectors):
        fill(manager, vectors)

        assert manager.capacity >= 300
        assert len(manager) == 300


class TestSearch:
    def test_exact_vector_is_nearest(self, manager, vectors):
        fill(manager, vectors[:100])

        results = manager.search(vectors[42], 5)

        assert results[0][0] == 42
        assert results[0][1] == pytest.approx(0.0, abs=1e-5)
        distances = [d for _, d in results]
        assert distances == sorted(distances)

    def test_limit_above_count_returns_everything(self, manager, vectors):
        fill(manager, vectors[:7])

        assert len(manager.search(vectors[0], 20)) == 7

    def test_search_on_empty_index(self, manager, vectors):
        assert manager.search(vectors[0], 10) == []

    def test_query_dimension_mismatch_raises(self, manager, vectors):
        fill(manager, vectors[:5])

        with pytest.raises(IndexEngineError):
            manager.search(np.ones(DIM - 1), 3)


class TestFilteredSearch:
    """The predicate applies inside the traversal, not after it."""

    def test_fills_limit_with_selective_predicate(self, manager, vectors):
        fill(manager, vectors)

        # 30 of 300 keys match; the query sits on a non-matching key
        results = manager.filtered_search(vectors[1], 20, lambda key: key % 10 == 0)

        assert len(results) == 20
        assert all(key % 10 == 0 for key, _ in results)

    def test_returns_every_match_when_fewer_than_limit(self, manager, vectors):
        fill(manager, vectors)
        wanted = {3, 150, 299}

        results = manager.filtered_search(vectors[0], 10, lambda key: key in wanted)

        assert {key for key, _ in results} == wanted

    def test_no_match_returns_empty(self, manager, vectors):
        fill(manager, vectors[:50])

        assert manager.filtered_search(vectors[0], 10, lambda key: False) == []

    def test_deleted_keys_do_not_match(self, manager, vectors):
        fill(manager, vectors[:50])
        manager.remove(4)

        results = manager.filtered_search(vectors[4], 10, lambda key: key in (4, 5))

        assert [key for key, _ in results] == [5]


class TestPersistence:
    def test_save_and_load_keeps_live_keys(self, tmp_path: Path, manager, vectors):
        fill(manager, vectors[:100])
        manager.remove(7)
        manager.remove(99)
        path = tmp_path / HNSWIndexManager.INDEX_FILENAME
        manager.save(path)

        loaded = HNSWIndexManager.load(path, DIM, min_capacity=64)

        assert sorted(loaded.keys()) == sorted(manager.keys())
        assert 7 not in loaded
        # Deleted labels still count towards the highest label ever used
        assert loaded.highest_label() == 99

    def test_loaded_index_answers_like_the_original(self, tmp_path: Path, manager, vectors):
        fill(manager, vectors[:200])
        path = tmp_path / "index.hnsw"
        manager.save(path)
        loaded = HNSWIndexManager.load(path, DIM, ef_search=32, min_capacity=64)

        query = vectors[123]
        original = manager.search(query, 10)
        reloaded = loaded.search(query, 10)

        assert [key for key, _ in original] == [key for key, _ in reloaded]
        for (_, d1), (_, d2) in zip(original, reloaded):
            assert abs(d1 - d2) < 1e-6

    def test_load_missing_file_gives_empty_index(self, tmp_path: Path):
        loaded = HNSWIndexManager.load(tmp_path / "index.hnsw", DIM)

        assert len(loaded) == 0
        assert loaded.highest_label() == -1

    def test_loaded_index_accepts_new_keys(self, tmp_path: Path, manager, vectors):
        fill(manager, vectors[:10])
        path = tmp_path / "index.hnsw"
        manager.save(path)

        loaded = HNSWIndexManager.load(path, DIM, min_capacity=64)
        loaded.add(10, vectors[10])

        assert loaded.search(vectors[10], 1)[0][0] == 10

    def test_get_vector_returns_normalised_copy(self, manager, vectors):
        manager.add(0, vectors[0])

        stored = manager.get_vector(0)
        expected = vectors[0] / np.linalg.norm(vectors[0])

        assert np.allclose(stored, expected, atol=1e-5)


class TestSizing:
    def test_dynamic_max_elements_has_floor(self, manager):
        assert manager.calculate_dynamic_max_elements(10) == 64
        assert manager.calculate_dynamic_max_elements(1000) == 1500

    def test_should_resize_at_threshold(self, manager):
        assert not manager.should_resize(79, 100)
        assert manager.should_resize(80, 100)
        assert manager.should_resize(0, 0)
