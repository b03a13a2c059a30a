"""
Line-oriented persistence for records and their vectors.

Two append-only text files:
- record log: one escaped record per line (source of truth)
- vector log: one precomputed embedding per line (cache, rebuildable)

Single writer at a time is a precondition; no locking is taken.
"""
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple, Union
import logging

import numpy as np

from memstore.config import VECTOR_DIM
from memstore.record import (
    Record,
    format_record_line,
    format_vector_line,
    parse_record_line,
    parse_vector_line,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class StoreError(Exception):
    """File-level failure that aborts the current command."""

    category = "store error"

    def __init__(self, path: PathLike, cause: Exception):
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"{self.category}: {self.path}: {cause}")


class ReadError(StoreError):
    category = "read failed"


class WriteError(StoreError):
    category = "write failed"


class MkdirError(StoreError):
    category = "mkdir failed"


def ensure_parent_dir(path: PathLike) -> None:
    """Create the parent directories of ``path`` if they are missing."""
    parent = Path(path).parent
    try:
        parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise MkdirError(parent, e) from e


def _read_lines(path: Path) -> Iterator[str]:
    """Yield the non-blank lines of a UTF-8 file; only ``\\n`` ends a line."""
    try:
        with open(path, "r", encoding="utf-8", newline="\n") as f:
            for line in f:
                line = line[:-1] if line.endswith("\n") else line
                if line.endswith("\r"):
                    line = line[:-1]
                if not line.strip():
                    continue
                yield line
    except (OSError, UnicodeDecodeError) as e:
        raise ReadError(path, e) from e


def _append_line(path: Path, line: str) -> None:
    ensure_parent_dir(path)
    try:
        with open(path, "a", encoding="utf-8", newline="\n") as f:
            f.write(line + "\n")
            f.flush()
    except (OSError, UnicodeEncodeError) as e:
        raise WriteError(path, e) from e


def _write_lines(path: Path, lines: Iterable[str]) -> None:
    ensure_parent_dir(path)
    try:
        with open(path, "w", encoding="utf-8", newline="\n") as f:
            for line in lines:
                f.write(line + "\n")
            f.flush()
    except (OSError, UnicodeEncodeError) as e:
        raise WriteError(path, e) from e


class RecordLog:
    """The record log: ``<id>|<ts>|<kind>|<weight>|<text>`` per line."""

    def __init__(self, path: PathLike):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def append(self, record: Record) -> None:
        _append_line(self.path, format_record_line(record))
        logger.debug(f"Appended record {record.id} to {self.path}")

    def rewrite(self, records: Sequence[Record]) -> None:
        """Truncate the log and write ``records`` in order."""
        _write_lines(self.path, (format_record_line(r) for r in records))
        logger.debug(f"Rewrote {self.path} with {len(records)} records")

    def load(self) -> List[Record]:
        """
        Load all well-formed records.

        A missing file is an empty store. Malformed lines are skipped.

        Raises:
            ReadError: If the file exists but cannot be read or decoded
        """
        if not self.path.exists():
            return []

        records = []
        skipped = 0
        for line in _read_lines(self.path):
            record = parse_record_line(line)
            if record is None:
                skipped += 1
                continue
            records.append(record)

        if skipped:
            logger.debug(f"Skipped {skipped} malformed lines in {self.path}")
        logger.debug(f"Loaded {len(records)} records from {self.path}")
        return records


class VectorLog:
    """The vector log: ``<id>|<dim>|<v0>,<v1>,...`` per line."""

    def __init__(self, path: PathLike, dim: int = VECTOR_DIM):
        self.path = Path(path)
        self.dim = dim

    def exists(self) -> bool:
        return self.path.exists()

    def append(self, record_id: int, vector: Sequence[float]) -> None:
        _append_line(self.path, format_vector_line(record_id, vector))
        logger.debug(f"Appended vector {record_id} to {self.path}")

    def rewrite(self, items: Iterable[Tuple[int, Sequence[float]]]) -> None:
        """Truncate the log and write ``(id, vector)`` pairs in order."""
        _write_lines(self.path, (format_vector_line(i, v) for i, v in items))
        logger.debug(f"Rewrote {self.path}")

    def load(self) -> Dict[int, np.ndarray]:
        """
        Load all well-formed vectors keyed by record id.

        Lines whose declared dimension does not match their values, or whose
        dimension is not the store's, are skipped. Later lines win for
        duplicate ids.

        Raises:
            ReadError: If the file exists but cannot be read or decoded
        """
        if not self.path.exists():
            return {}

        vectors = {}
        skipped = 0
        for line in _read_lines(self.path):
            parsed = parse_vector_line(line)
            if parsed is None or len(parsed[1]) != self.dim:
                skipped += 1
                continue
            record_id, vector = parsed
            vectors[record_id] = vector

        if skipped:
            logger.debug(f"Skipped {skipped} malformed lines in {self.path}")
        return vectors

    def load_or_empty(self) -> Dict[int, np.ndarray]:
        """Load vectors, treating any read failure as an empty cache."""
        try:
            return self.load()
        except ReadError as e:
            logger.warning(f"Ignoring unreadable vector log, re-embedding instead: {e}")
            return {}
