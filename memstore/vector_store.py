"""
Approximate nearest neighbour candidate selection.

A fresh HNSW graph is built over the in-memory vectors on every search and
thrown away afterwards. The store is capped by compaction and each process
runs a single command, so there is no persisted index to keep in sync with
the logs.
"""
from abc import ABC, abstractmethod
from typing import Callable, List, Sequence, Set
import logging

import hnswlib
import numpy as np

from memstore.config import (
    HNSW_EF_CONSTRUCTION,
    HNSW_EF_SEARCH,
    HNSW_M,
    VECTOR_DIM,
)
from memstore.embedding_service import cosine_similarity

logger = logging.getLogger(__name__)

CANDIDATE_FACTOR = 10
MIN_CANDIDATES = 10


class CandidateIndex(ABC):
    """Build over a vector set once, then query positions of nearest vectors."""

    @abstractmethod
    def build(self, vectors: Sequence[np.ndarray]) -> None:
        """Index ``vectors``; positions in this sequence are the result ids."""
        pass

    @abstractmethod
    def search(self, query: np.ndarray, k: int) -> List[int]:
        """Return positions of up to ``k`` nearest vectors, nearest first."""
        pass


class BruteForceIndex(CandidateIndex):
    """Exact cosine ranking over every vector."""

    def __init__(self):
        self._vectors: Sequence[np.ndarray] = []

    def build(self, vectors: Sequence[np.ndarray]) -> None:
        self._vectors = vectors

    def search(self, query: np.ndarray, k: int) -> List[int]:
        similarities = np.array(
            [cosine_similarity(query, v) for v in self._vectors],
            dtype=np.float64
        )
        order = np.argsort(-similarities, kind="stable")
        return [int(i) for i in order[:k]]


class HnswCandidateIndex(CandidateIndex):
    """
    HNSW graph in cosine space backed by hnswlib.

    Items are inserted single-threaded in load order so graph construction
    is reproducible for a given log.
    """

    def __init__(
        self,
        dim: int = VECTOR_DIM,
        m: int = HNSW_M,
        ef_construction: int = HNSW_EF_CONSTRUCTION,
        ef_search: int = HNSW_EF_SEARCH,
        random_seed: int = 100
    ):
        self.dim = dim
        self.m = m
        self.ef_construction = ef_construction
        self.ef_search = ef_search
        self.random_seed = random_seed
        self._index = None
        self._size = 0

    def build(self, vectors: Sequence[np.ndarray]) -> None:
        self._size = len(vectors)
        self._index = hnswlib.Index(space="cosine", dim=self.dim)
        self._index.init_index(
            max_elements=max(self._size, 1),
            ef_construction=self.ef_construction,
            M=self.m,
            random_seed=self.random_seed
        )
        if self._size:
            data = np.vstack(vectors).astype(np.float32)
            self._index.add_items(data, np.arange(self._size), num_threads=1)
        logger.debug(f"Built HNSW index over {self._size} vectors")

    def search(self, query: np.ndarray, k: int) -> List[int]:
        if self._index is None:
            raise RuntimeError("index has not been built")
        k = min(k, self._size)
        if k <= 0:
            return []

        self._index.set_ef(max(self.ef_search, k))
        labels, _ = self._index.knn_query(
            np.asarray(query, dtype=np.float32).reshape(1, -1),
            k=k,
            num_threads=1
        )
        return [int(label) for label in labels[0]]


def candidate_count(limit: int, total: int) -> int:
    """k = limit * 10, at least 10, at most the number of vectors."""
    return min(max(limit * CANDIDATE_FACTOR, MIN_CANDIDATES), total)


def select_candidates(
    query: np.ndarray,
    vectors: Sequence[np.ndarray],
    limit: int,
    index_factory: Callable[[], CandidateIndex] = HnswCandidateIndex
) -> Set[int]:
    """
    Choose which record positions the scorer should consider.

    Args:
        query: Query embedding
        vectors: One vector per record, in load order
        limit: Number of results the caller wants
        index_factory: Builds the ANN index when the store is large enough

    Returns:
        Set of positions into ``vectors``
    """
    if not vectors:
        return set()

    k = candidate_count(limit, len(vectors))
    if len(vectors) <= k:
        return set(range(len(vectors)))

    index = index_factory()
    index.build(vectors)
    try:
        positions = index.search(query, k)
    except RuntimeError as e:
        # hnswlib refuses to return fewer than k results when the graph is
        # poorly connected (e.g. many zero vectors)
        logger.debug(f"ANN search failed, ranking exhaustively: {e}")
        fallback = BruteForceIndex()
        fallback.build(vectors)
        positions = fallback.search(query, k)

    logger.debug(f"Selected {len(positions)} candidates out of {len(vectors)}")
    return set(positions)
