"""
Embedding service using hashed bag-of-words vectors.

Vectors are a pure function of the text: the same text always produces
bit-identical float32 vectors on every platform, so the vector log is a
cache that can be rebuilt from the record log at any time.
"""
from typing import List, Sequence
import logging

import numpy as np
import regex

from memstore.config import VECTOR_DIM

logger = logging.getLogger(__name__)

FNV_OFFSET_BASIS = 0xcbf29ce484222325
FNV_PRIME = 0x100000001b3
_MASK_64 = 0xFFFFFFFFFFFFFFFF

# Alphabetic covers combining vowel signs (Other_Alphabetic) that \w splits on
_TOKEN_RE = regex.compile(r"[\p{Alphabetic}\p{N}]+")
_ASCII_LOWER = str.maketrans(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ",
    "abcdefghijklmnopqrstuvwxyz"
)


def fnv1a_hash(token: str) -> int:
    """FNV-1a 64-bit hash over the UTF-8 bytes of ``token``."""
    value = FNV_OFFSET_BASIS
    for byte in token.encode("utf-8"):
        value ^= byte
        value = (value * FNV_PRIME) & _MASK_64
    return value


def tokenize(text: str) -> List[str]:
    """
    Split text into lowercase alphanumeric tokens.

    Only ASCII letters are case folded; every other character of a token is
    emitted unchanged. Anything that is not alphanumeric separates tokens.

    Args:
        text: Input text

    Returns:
        Tokens in input order (empty for whitespace or symbol-only input)
    """
    return [run.translate(_ASCII_LOWER) for run in _TOKEN_RE.findall(text)]


def embed(text: str, dim: int = VECTOR_DIM) -> np.ndarray:
    """
    Embed text as an L2-normalized hashed bag of words.

    Args:
        text: Text to embed
        dim: Number of hash buckets

    Returns:
        float32 vector of length ``dim`` (all zeros when there are no tokens)
    """
    vec = np.zeros(dim, dtype=np.float32)
    tokens = tokenize(text)
    if not tokens:
        return vec

    for token in tokens:
        vec[fnv1a_hash(token) % dim] += np.float32(1.0)

    norm = np.sqrt(np.sum(vec * vec, dtype=np.float32))
    if norm > 0:
        vec /= norm
    return vec


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity over the common prefix of two vectors.

    Inputs are not assumed to be normalized. Returns 0.0 if either vector
    has zero norm. Sums run left to right in float32, matching how the
    embeddings themselves are accumulated.
    """
    n = min(len(a), len(b))
    if n == 0:
        return 0.0
    a = np.asarray(a[:n], dtype=np.float32)
    b = np.asarray(b[:n], dtype=np.float32)

    with np.errstate(over="ignore", invalid="ignore"):
        # cumsum accumulates sequentially; np.sum would sum pairwise
        dot = np.cumsum(a * b, dtype=np.float32)[-1]
        a_norm = np.cumsum(a * a, dtype=np.float32)[-1]
        b_norm = np.cumsum(b * b, dtype=np.float32)[-1]
        if a_norm == 0 or b_norm == 0:
            return 0.0
        return float(dot / (np.sqrt(a_norm) * np.sqrt(b_norm)))


class EmbeddingService:
    """
    Handles text embeddings for the store.

    Features:
    - Deterministic hashed bag-of-words embeddings (no model download)
    - Batch embedding for compaction and reindexing
    """

    SCHEME = "fnv1a-bow"

    def __init__(self, dim: int = VECTOR_DIM):
        """
        Initialize the embedding service.

        Args:
            dim: Embedding dimension (number of hash buckets)
        """
        self.embedding_dim = dim

    def embed(self, text: str) -> np.ndarray:
        """Generate the embedding for a single text."""
        return embed(text, self.embedding_dim)

    def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: Texts to embed

        Returns:
            One vector per text, in input order
        """
        if not texts:
            return []
        logger.debug(f"Embedding {len(texts)} texts")
        return [embed(text, self.embedding_dim) for text in texts]

    def get_stats(self) -> dict:
        """Describe the embedding scheme."""
        return {
            "scheme": self.SCHEME,
            "embedding_dimension": self.embedding_dim,
        }
