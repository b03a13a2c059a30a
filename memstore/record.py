"""
Record type and the line codec shared by the record log and the vector log.

Record log line:  <id>|<ts>|<kind>|<weight>|<text>
Vector log line:  <id>|<dim>|<v0>,<v1>,...

``kind`` and ``text`` are escaped so a record always fits on one line.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
import re
import time

import numpy as np

from memstore.config import DEFAULT_KIND, DEFAULT_WEIGHT

ID_MAX = 2 ** 128
I64_MIN = -(2 ** 63)
I64_MAX = 2 ** 63 - 1

_UNSIGNED_RE = re.compile(r"\+?[0-9]+")
_SIGNED_RE = re.compile(r"[+-]?[0-9]+")
_FLOAT_RE = re.compile(
    r"[+-]?(?:(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?|inf|infinity|nan)",
    re.IGNORECASE | re.ASCII
)


def to_f32(value: float) -> float:
    """Round a float to float32 precision (overflow saturates to inf)."""
    with np.errstate(over="ignore"):
        return float(np.float32(value))


def format_f32(value: float) -> str:
    """Shortest decimal that reads back as the same float32, never exponent form."""
    return np.format_float_positional(np.float32(value), trim="-")


def parse_f32(text: str) -> Optional[float]:
    # float() also takes padding, digit separators and non-ASCII digits
    if not _FLOAT_RE.fullmatch(text):
        return None
    return to_f32(float(text))


def parse_unsigned(text: str, upper: int) -> Optional[int]:
    if not _UNSIGNED_RE.fullmatch(text):
        return None
    value = int(text)
    return value if value < upper else None


def parse_signed(text: str, lower: int, upper: int) -> Optional[int]:
    if not _SIGNED_RE.fullmatch(text):
        return None
    value = int(text)
    return value if lower <= value <= upper else None


def escape(value: str) -> str:
    """Escape backslash, newline and pipe so the value fits in one field."""
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace("|", "\\|")


def unescape(value: str) -> str:
    """
    Reverse ``escape``.

    Unknown sequences such as ``\\t`` are kept verbatim, and a dangling
    backslash at the end of the value is kept as a literal backslash.
    """
    out = []
    chars = iter(value)
    for ch in chars:
        if ch != "\\":
            out.append(ch)
            continue
        following = next(chars, None)
        if following is None:
            out.append("\\")
        elif following == "n":
            out.append("\n")
        elif following in ("|", "\\"):
            out.append(following)
        else:
            out.append("\\" + following)
    return "".join(out)


def split_fields(line: str, maxsplit: int) -> List[str]:
    """Split on ``|`` separators that are not escaped, at most ``maxsplit`` times."""
    fields = []
    start = 0
    i = 0
    while i < len(line) and len(fields) < maxsplit:
        ch = line[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "|":
            fields.append(line[start:i])
            start = i + 1
        i += 1
    fields.append(line[start:])
    return fields


@dataclass
class Record:
    """A single stored memory."""

    id: int
    ts: int
    kind: str
    weight: float
    text: str

    def __post_init__(self):
        # weight is a float32 quantity on disk; keep it exact across a round trip
        self.weight = to_f32(self.weight)

    @classmethod
    def create(
        cls,
        text: str,
        kind: str = DEFAULT_KIND,
        weight: float = DEFAULT_WEIGHT,
        now_ns: Optional[int] = None
    ) -> "Record":
        """
        Build a new record stamped with the current wall clock.

        Args:
            text: Memory text
            kind: Short free-form tag
            weight: Ranking weight
            now_ns: Clock reading in nanoseconds (defaults to time.time_ns())

        Returns:
            Record with id in milliseconds and ts in seconds since the epoch
        """
        if now_ns is None:
            now_ns = time.time_ns()
        return cls(
            id=now_ns // 1_000_000,
            ts=now_ns // 1_000_000_000,
            kind=kind,
            weight=weight,
            text=text
        )

    def display_text(self) -> str:
        return self.text.replace("\n", " ")


def format_record_line(record: Record) -> str:
    return "|".join([
        str(record.id),
        str(record.ts),
        escape(record.kind),
        format_f32(record.weight),
        escape(record.text),
    ])


def parse_record_line(line: str) -> Optional[Record]:
    """Parse one record log line, or return None if it is malformed."""
    parts = split_fields(line, 4)
    if len(parts) != 5:
        return None

    record_id = parse_unsigned(parts[0], ID_MAX)
    ts = parse_signed(parts[1], I64_MIN, I64_MAX)
    weight = parse_f32(parts[3])
    if record_id is None or ts is None or weight is None:
        return None

    return Record(
        id=record_id,
        ts=ts,
        kind=unescape(parts[2]),
        weight=weight,
        text=unescape(parts[4])
    )


def format_vector_line(record_id: int, vector: Sequence[float]) -> str:
    values = ",".join(f"{float(v):.6f}" for v in np.asarray(vector, dtype=np.float32))
    return f"{record_id}|{len(vector)}|{values}"


def parse_vector_line(line: str) -> Optional[Tuple[int, np.ndarray]]:
    """
    Parse one vector log line.

    Values that do not parse as floats are dropped; the line is accepted only
    if the number of remaining values equals the declared dimension.
    """
    parts = line.split("|", 2)
    if len(parts) != 3:
        return None

    record_id = parse_unsigned(parts[0], ID_MAX)
    dim = parse_unsigned(parts[1], 2 ** 64)
    if record_id is None or dim is None:
        return None

    values = []
    if parts[2]:
        for token in parts[2].split(","):
            value = parse_f32(token)
            if value is not None:
                values.append(value)

    if len(values) != dim:
        return None
    return record_id, np.array(values, dtype=np.float32)
