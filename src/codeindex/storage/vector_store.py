"""
Per-workspace HNSW vector collection.

Provides a named, persistent collection of block embeddings using hnswlib.
Vectors are L2-normalized and stored with their block payloads so that the
points of a file can be replaced when the file changes.
"""

from __future__ import annotations

import asyncio
import pickle
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import hnswlib
import numpy as np
import structlog

if TYPE_CHECKING:
    from codeindex.config import Config

logger = structlog.get_logger(__name__)

_METADATA_VERSION = 1


@dataclass
class VectorPoint:
    """A block embedding with its payload."""

    point_id: str
    vector: np.ndarray
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def file_path(self) -> str | None:
        return self.payload.get("file_path")


class VectorStore:
    """
    HNSW-based vector collection, one per workspace.

    Features:
    - Named collection persisted under the data directory
    - Recreation when the embedding dimension changes
    - Point replacement by file path
    - Capacity that grows with the collection
    """

    def __init__(
        self,
        config: "Config",
        collection_name: str | None = None,
        dimension: int | None = None,
    ) -> None:
        """
        Initialize the vector store.

        Args:
            config: codeindex configuration.
            collection_name: Override for the collection name.
            dimension: Override for the embedding dimension.
        """
        self.config = config
        self.collection_name = collection_name or config.collection_name
        self.dimension = dimension or config.embedding.dimension

        self.index_path = config.collections_dir / f"{self.collection_name}.hnsw"
        self.metadata_path = self.index_path.with_suffix(".meta")

        self.initial_capacity = config.vector_store.max_elements
        self.m = config.vector_store.hnsw_m
        self.ef_construction = config.vector_store.hnsw_ef_construction
        self.ef_search = config.vector_store.hnsw_ef_search

        self._index: hnswlib.Index | None = None
        self._id_to_point: dict[int, str] = {}
        self._point_to_id: dict[str, int] = {}
        self._payloads: dict[str, dict[str, Any]] = {}
        self._next_id = 0
        self._lock = asyncio.Lock()
        self._dirty = False

    @property
    def is_initialized(self) -> bool:
        return self._index is not None

    async def initialize(self) -> bool:
        """
        Open the collection, creating it if needed.

        Returns:
            True if a new collection was created (including recreation after
            a dimension mismatch), False if an existing one was loaded.
        """
        logger.info(
            "Initializing vector store",
            collection=self.collection_name,
            dimension=self.dimension,
        )

        self.index_path.parent.mkdir(parents=True, exist_ok=True)

        if await self.collection_exists():
            if self._load_collection():
                logger.info(
                    "Loaded existing collection",
                    collection=self.collection_name,
                    num_points=len(self._point_to_id),
                )
                return False
            self._remove_files()

        self._create_collection()
        await self.save(force=True)
        logger.info("Created new collection", collection=self.collection_name)
        return True

    async def collection_exists(self) -> bool:
        return self.index_path.exists() and self.metadata_path.exists()

    def _new_index(self, capacity: int) -> hnswlib.Index:
        index = hnswlib.Index(space="cosine", dim=self.dimension)
        index.init_index(
            max_elements=capacity,
            ef_construction=self.ef_construction,
            M=self.m,
        )
        index.set_ef(self.ef_search)
        return index

    def _create_collection(self) -> None:
        self._index = self._new_index(self.initial_capacity)
        self._id_to_point = {}
        self._point_to_id = {}
        self._payloads = {}
        self._next_id = 0
        self._dirty = True

    def _load_collection(self) -> bool:
        """Load the persisted collection; False if it is unusable."""
        try:
            with open(self.metadata_path, "rb") as f:
                metadata = pickle.load(f)

            if metadata.get("dimension") != self.dimension:
                logger.warning(
                    "Collection dimension mismatch, recreating",
                    collection=self.collection_name,
                    stored=metadata.get("dimension"),
                    expected=self.dimension,
                )
                return False

            index = hnswlib.Index(space="cosine", dim=self.dimension)
            index.load_index(
                str(self.index_path),
                max_elements=max(metadata["capacity"], self.initial_capacity),
            )
            index.set_ef(self.ef_search)

            self._index = index
            self._id_to_point = metadata["id_to_point"]
            self._point_to_id = metadata["point_to_id"]
            self._payloads = metadata["payloads"]
            self._next_id = metadata["next_id"]
            self._dirty = False
            return True
        except Exception as e:
            logger.warning(
                "Failed to load collection, recreating",
                collection=self.collection_name,
                error=str(e),
            )
            return False

    def _remove_files(self) -> None:
        for path in (self.index_path, self.metadata_path):
            path.unlink(missing_ok=True)

    def _require_index(self) -> hnswlib.Index:
        if self._index is None:
            raise RuntimeError("Vector store not initialized")
        return self._index

    async def save(self, force: bool = False) -> None:
        """Persist the collection to disk."""
        if self._index is None or not (self._dirty or force):
            return

        async with self._lock:
            self._index.save_index(str(self.index_path))

            metadata = {
                "version": _METADATA_VERSION,
                "dimension": self.dimension,
                "capacity": self._index.get_max_elements(),
                "id_to_point": self._id_to_point,
                "point_to_id": self._point_to_id,
                "payloads": self._payloads,
                "next_id": self._next_id,
            }
            with open(self.metadata_path, "wb") as f:
                pickle.dump(metadata, f)

            self._dirty = False
            logger.debug("Collection saved", collection=self.collection_name)

    async def close(self) -> None:
        """Save and release the collection."""
        await self.save()
        self._index = None

    def _ensure_capacity(self, index: hnswlib.Index, extra: int) -> None:
        needed = index.get_current_count() + extra
        capacity = index.get_max_elements()
        if needed > capacity:
            new_capacity = max(needed, capacity * 2)
            index.resize_index(new_capacity)
            logger.debug(
                "Collection resized",
                collection=self.collection_name,
                capacity=new_capacity,
            )

    async def upsert_points(self, points: list[VectorPoint]) -> None:
        """
        Insert or replace points.

        Raises:
            ValueError: If a vector has the wrong dimension.
        """
        index = self._require_index()
        if not points:
            return

        vectors = np.vstack([np.asarray(p.vector, dtype=np.float32) for p in points])
        if vectors.shape[1] != self.dimension:
            raise ValueError(
                f"Vector dimension {vectors.shape[1]} does not match "
                f"collection dimension {self.dimension}"
            )

        norms = np.linalg.norm(vectors, axis=1, keepdims=True)
        norms[norms == 0] = 1
        vectors = vectors / norms

        async with self._lock:
            self._ensure_capacity(index, len(points))

            labels = []
            for point in points:
                old_id = self._point_to_id.get(point.point_id)
                if old_id is not None:
                    index.mark_deleted(old_id)
                    del self._id_to_point[old_id]

                internal_id = self._next_id
                self._next_id += 1
                self._id_to_point[internal_id] = point.point_id
                self._point_to_id[point.point_id] = internal_id
                self._payloads[point.point_id] = dict(point.payload)
                labels.append(internal_id)

            index.add_items(vectors, np.array(labels))
            self._dirty = True

        await self.save()

    async def delete_points_by_file_path(self, file_path: str) -> int:
        return await self.delete_points_by_multiple_file_paths([file_path])

    async def delete_points_by_multiple_file_paths(self, file_paths: list[str]) -> int:
        """
        Delete every point whose payload belongs to one of the files.

        Returns:
            Number of points deleted.
        """
        index = self._require_index()
        targets = set(file_paths)
        if not targets:
            return 0

        async with self._lock:
            doomed = [
                point_id
                for point_id, payload in self._payloads.items()
                if payload.get("file_path") in targets
            ]
            for point_id in doomed:
                internal_id = self._point_to_id.pop(point_id)
                index.mark_deleted(internal_id)
                del self._id_to_point[internal_id]
                del self._payloads[point_id]

            if doomed:
                self._dirty = True

        await self.save()
        return len(doomed)

    async def clear_collection(self) -> None:
        """Remove all points but keep the collection."""
        self._require_index()
        async with self._lock:
            self._create_collection()
        await self.save(force=True)
        logger.info("Collection cleared", collection=self.collection_name)

    async def delete_collection(self) -> None:
        """Delete the collection and its files."""
        async with self._lock:
            self._index = None
            self._id_to_point = {}
            self._point_to_id = {}
            self._payloads = {}
            self._next_id = 0
            self._dirty = False
            self._remove_files()
        logger.info("Collection deleted", collection=self.collection_name)

    async def contains(self, point_id: str) -> bool:
        return point_id in self._point_to_id

    async def get_payload(self, point_id: str) -> dict[str, Any] | None:
        payload = self._payloads.get(point_id)
        return dict(payload) if payload is not None else None

    async def count(self) -> int:
        return len(self._point_to_id)

    async def get_stats(self) -> dict[str, Any]:
        """Get collection statistics."""
        stats: dict[str, Any] = {
            "collection": self.collection_name,
            "num_points": len(self._point_to_id),
            "dimension": self.dimension,
            "exists": await self.collection_exists(),
        }
        if self._index is not None:
            stats["capacity"] = self._index.get_max_elements()
        return stats
