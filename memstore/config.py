"""
Memstore configuration
"""
from pathlib import Path
import os

# Environment variables - resolved per invocation, never at import time
PATH_ENV = "MEMSTORE_PATH"
VEC_PATH_ENV = "MEMSTORE_VEC_PATH"
LOG_LEVEL_ENV = "MEMSTORE_LOG_LEVEL"

DEFAULT_PATH = Path("memory") / "memories.log"
DEFAULT_VEC_PATH = Path("memory") / "memories.vec"
DEFAULT_LOG_LEVEL = "WARNING"

# Embedding
VECTOR_DIM = 256

# HNSW candidate index
HNSW_M = 16
HNSW_EF_CONSTRUCTION = 200
HNSW_EF_SEARCH = 50

# Command defaults
DEFAULT_KIND = "summary"
DEFAULT_WEIGHT = 1.0
DEFAULT_SEARCH_LIMIT = 3
DEFAULT_RECENT_LIMIT = 20
DEFAULT_KEEP = 5000


def default_path() -> Path:
    """Record log path from MEMSTORE_PATH, else memory/memories.log."""
    value = os.environ.get(PATH_ENV)
    return Path(value) if value else DEFAULT_PATH


def default_vec_path() -> Path:
    """Vector log path from MEMSTORE_VEC_PATH, else memory/memories.vec."""
    value = os.environ.get(VEC_PATH_ENV)
    return Path(value) if value else DEFAULT_VEC_PATH


def log_level() -> str:
    return os.environ.get(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL).upper()
