"""
Storage modules for codeindex.

Provides persistent storage for:
- File content hashes (SQLite)
- Block embeddings (HNSW index)
"""

from codeindex.storage.cache_store import CacheStore
from codeindex.storage.vector_store import VectorPoint, VectorStore

__all__ = [
    "CacheStore",
    "VectorPoint",
    "VectorStore",
]
