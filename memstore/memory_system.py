"""
Memory system: the store operations and the ranked retrieval pipeline.

Each command works on a fresh snapshot of the logs:
load -> transform in memory -> (optionally) write back.

Search ranking blends three signals:
- cosine similarity between query and record embeddings
- the record's own weight
- recency, decaying as 1 / (1 + age in days)
"""
from collections import Counter
from dataclasses import dataclass
from functools import cmp_to_key
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging
import math
import time

import numpy as np

from memstore.config import (
    DEFAULT_KEEP,
    DEFAULT_KIND,
    DEFAULT_RECENT_LIMIT,
    DEFAULT_SEARCH_LIMIT,
    DEFAULT_WEIGHT,
    default_path,
    default_vec_path,
)
from memstore.embedding_service import EmbeddingService, cosine_similarity
from memstore.record import Record
from memstore.storage import PathLike, RecordLog, VectorLog
from memstore.vector_store import CandidateIndex, HnswCandidateIndex, select_candidates

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0


@dataclass
class ScoredRecord:
    """A search hit."""

    score: float
    record: Record


@dataclass
class CompactionResult:
    kept: int
    dropped: int


def recency(now_s: int, ts: int) -> float:
    """1 / (1 + age_days) in float32; records from the future count as brand new."""
    age_days = np.float32(max(0, now_s - ts)) / np.float32(SECONDS_PER_DAY)
    return float(np.float32(1.0) / (np.float32(1.0) + age_days))


class MemorySystem:
    """
    Local-disk memory store over a record log and a vector log.

    The record log is the source of truth. The vector log caches embeddings;
    records without a cached vector are re-embedded in memory at query time.
    """

    # Ranking weights
    SIMILARITY_WEIGHT = 2.0
    RECORD_WEIGHT = 0.5

    def __init__(
        self,
        path: Optional[PathLike] = None,
        vec_path: Optional[PathLike] = None,
        embedding_service: Optional[EmbeddingService] = None,
        index_factory: Callable[[], CandidateIndex] = HnswCandidateIndex,
        clock: Callable[[], int] = time.time_ns
    ):
        """
        Initialize the memory system.

        Args:
            path: Record log path (defaults to MEMSTORE_PATH or memory/memories.log)
            vec_path: Vector log path (defaults to MEMSTORE_VEC_PATH or memory/memories.vec)
            embedding_service: Embedder shared by writes and queries
            index_factory: Builds the candidate index for large stores
            clock: Wall clock in nanoseconds since the epoch
        """
        self.record_log = RecordLog(Path(path) if path is not None else default_path())
        self.embedding_service = embedding_service or EmbeddingService()
        self.vector_log = VectorLog(
            Path(vec_path) if vec_path is not None else default_vec_path(),
            dim=self.embedding_service.embedding_dim
        )
        self.index_factory = index_factory
        self._clock = clock

    def _now_s(self) -> int:
        return self._clock() // 1_000_000_000

    def add(
        self,
        text: str,
        kind: str = DEFAULT_KIND,
        weight: float = DEFAULT_WEIGHT
    ) -> Record:
        """
        Append a new memory to the record log, then its vector to the vector log.

        Args:
            text: Memory text
            kind: Short free-form tag
            weight: Ranking weight

        Returns:
            The stored record

        Raises:
            StoreError: If either log cannot be written
        """
        record = Record.create(text, kind=kind, weight=weight, now_ns=self._clock())
        self.record_log.append(record)
        self.vector_log.append(record.id, self.embedding_service.embed(record.text))
        logger.info(f"Added memory {record.id} ({record.kind})")
        return record

    def _resolve_vectors(
        self,
        records: Sequence[Record],
        vectors: Dict[int, np.ndarray]
    ) -> List[np.ndarray]:
        """
        One vector per record: cached if present, otherwise embedded now.

        Ids are wall-clock milliseconds and can repeat under rapid adds; a
        cached vector for a repeated id may belong to either record, so those
        records are always re-embedded.
        """
        id_counts = Counter(record.id for record in records)
        resolved = []
        missing = 0
        for record in records:
            vector = vectors.get(record.id) if id_counts[record.id] == 1 else None
            if vector is None:
                vector = self.embedding_service.embed(record.text)
                missing += 1
            resolved.append(vector)
        if missing:
            logger.debug(f"Re-embedded {missing} records without a cached vector")
        return resolved

    def score(self, query_vec: np.ndarray, vector: np.ndarray, record: Record, now_s: int) -> float:
        # float32 throughout, summed left to right
        cosine = np.float32(cosine_similarity(query_vec, vector))
        with np.errstate(over="ignore", invalid="ignore"):
            total = (
                cosine * np.float32(self.SIMILARITY_WEIGHT)
                + np.float32(record.weight) * np.float32(self.RECORD_WEIGHT)
                + np.float32(recency(now_s, record.ts))
            )
        return float(total)


    def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[ScoredRecord]:
        """
        Rank memories against a query.

        Args:
            query: Search text
            limit: Maximum number of results

        Returns:
            Hits sorted by score descending (ties keep log order)

        Raises:
            ReadError: If the record log cannot be read
        """
        records = self.record_log.load()
        if limit <= 0 or not records:
            return []

        vectors = self.vector_log.load_or_empty()
        query_vec = self.embedding_service.embed(query)
        resolved = self._resolve_vectors(records, vectors)
        candidates = select_candidates(query_vec, resolved, limit, self.index_factory)

        now_s = self._now_s()
        scored = [
            ScoredRecord(self.score(query_vec, resolved[pos], record, now_s), record)
            for pos, record in enumerate(records)
            if pos in candidates
        ]
        results = rank(scored)[:limit]

        logger.info(f"Search: {len(candidates)} candidates of {len(records)} -> {len(results)} results")
        return results

    def recent(self, limit: int = DEFAULT_RECENT_LIMIT) -> List[Record]:
        """Most recent memories by timestamp, newest first."""
        records = self.record_log.load()
        if limit <= 0:
            return []
        return sort_newest_first(records)[:limit]

    def compact(self, keep: int = DEFAULT_KEEP) -> CompactionResult:
        """
        Keep only the ``keep`` newest memories and rewrite both logs.

        The record log is rewritten first; the vector log is then rebuilt
        from the surviving texts, in the same order.

        Raises:
            StoreError: If a log cannot be read or written
        """
        records = self.record_log.load()
        survivors = sort_newest_first(records)[:max(keep, 0)]

        self.record_log.rewrite(survivors)
        self._rewrite_vectors(survivors)

        result = CompactionResult(kept=len(survivors), dropped=len(records) - len(survivors))
        logger.info(f"Compacted store: kept {result.kept}, dropped {result.dropped}")
        return result

    def reindex(self) -> int:
        """
        Rebuild the vector log from the record log without dropping records.

        Returns:
            Number of vectors written
        """
        records = self.record_log.load()
        self._rewrite_vectors(records)
        logger.info(f"Reindexed {len(records)} records")
        return len(records)

    def _rewrite_vectors(self, records: Sequence[Record]) -> None:
        embeddings = self.embedding_service.embed_batch([r.text for r in records])
        self.vector_log.rewrite(zip((r.id for r in records), embeddings))

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the store.

        Returns:
            Dictionary with record/vector counts and drift between the logs
        """
        records = self.record_log.load()
        vectors = self.vector_log.load_or_empty()
        record_ids = {r.id for r in records}

        return {
            "total_memories": len(records),
            "total_vectors": len(vectors),
            "missing_vectors": sum(1 for r in records if r.id not in vectors),
            "orphan_vectors": sum(1 for i in vectors if i not in record_ids),
            "record_path": str(self.record_log.path),
            "vector_path": str(self.vector_log.path),
            "embedding": self.embedding_service.get_stats(),
        }


def sort_newest_first(records: Sequence[Record]) -> List[Record]:
    # sorted() is stable with reverse=True, equal timestamps keep log order
    return sorted(records, key=lambda r: r.ts, reverse=True)


def _compare_scores(a: ScoredRecord, b: ScoredRecord) -> int:
    if math.isnan(a.score) or math.isnan(b.score):
        return 0
    if a.score > b.score:
        return -1
    if a.score < b.score:
        return 1
    return 0


def rank(scored: Sequence[ScoredRecord]) -> List[ScoredRecord]:
    """Stable sort by score descending; NaN compares equal to everything."""
    return sorted(scored, key=cmp_to_key(_compare_scores))
