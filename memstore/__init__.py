"""
Memstore - simple local memory store

Add short memories, list them by recency, search them by similarity blended
with recency and weight, and compact the store to a size cap.
"""

__version__ = "0.1.0"

from memstore.memory_system import CompactionResult, MemorySystem, ScoredRecord
from memstore.record import Record

__all__ = ["CompactionResult", "MemorySystem", "Record", "ScoredRecord"]
