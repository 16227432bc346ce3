"""
Approximate nearest-neighbor index strategies.
A capability-selected strategy: faiss HNSW when the native library imports, brute-force cosine scan otherwise.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..core.errors import CapacityError, ValidationError
from ..util.logging import logger


class IVectorIndex(ABC):
    """Abstract k-NN index keyed by integer handles.

    Vectors are expected to be L2-normalized, so inner product equals cosine
    similarity. Deletion marks a tombstone; tombstoned handles are filtered
    out of results until rebuild() physically drops them. Capacity counts
    every slot in the structure, tombstones included.
    """

    name = "abstract"

    def __init__(self, dimension: int, max_elements: int = 100000):
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        if max_elements <= 0:
            raise ValueError("max_elements must be positive")
        self.dimension = dimension
        self.max_elements = max_elements
        self._vectors: Dict[int, np.ndarray] = {}
        self._tombstones: set = set()

    def __len__(self) -> int:
        """Number of live (non-tombstoned) points."""
        return len(self._vectors) - len(self._tombstones)

    @property
    def size(self) -> int:
        """Slots used in the structure, tombstones included."""
        return len(self._vectors)

    @property
    def tombstone_count(self) -> int:
        return len(self._tombstones)

    def free_slots(self) -> int:
        return self.max_elements - self.size

    def check_capacity(self, new_points: int) -> None:
        """Raise CapacityError unless new_points more points fit, compacting first if that helps."""
        if new_points <= self.free_slots():
            return
        if self._tombstones and new_points <= self.max_elements - len(self):
            self.rebuild(reason="capacity")
            return
        raise CapacityError(
            f"Adding {new_points} points would exceed index capacity "
            f"({len(self)} live, {self.tombstone_count} tombstoned, max {self.max_elements})",
            context=self.name,
        )

    def add_point(self, vector: np.ndarray, handle: int) -> None:
        """Insert one vector under a fresh handle."""
        self.add_points([vector], [handle])

    def add_points(self, vectors: Sequence[np.ndarray], handles: Sequence[int]) -> None:
        """Insert several vectors; all-or-nothing with respect to capacity."""
        if len(vectors) != len(handles):
            raise ValueError("vectors and handles must have the same length")
        if not handles:
            return
        for handle in handles:
            if handle in self._vectors:
                raise ValueError(f"handle {handle} is already bound; handles are never reused")
        self.check_capacity(len(handles))

        matrix = np.vstack([self._prepare(v) for v in vectors]).astype(np.float32)
        ids = np.asarray(handles, dtype=np.int64)
        self._add(matrix, ids)
        for row, handle in zip(matrix, handles):
            self._vectors[int(handle)] = row

    def search_knn(self, query: np.ndarray, k: int) -> List[Tuple[int, float]]:
        """Return up to k (handle, cosine similarity) pairs, best first, tombstones excluded."""
        if k < 1:
            raise ValueError("k must be >= 1")
        live = len(self)
        if live == 0:
            return []
        query = self._prepare(query)
        wanted = min(k, live)
        # Ask for enough extra slots to cover every tombstone that could rank ahead
        raw = self._search(query, min(wanted + self.tombstone_count, self.size))
        results = [(h, s) for h, s in raw if h not in self._tombstones and h in self._vectors]
        return results[:wanted]

    def mark_deleted(self, handle: int) -> bool:
        """Tombstone a handle. Returns False if it is unknown or already deleted."""
        if handle not in self._vectors or handle in self._tombstones:
            return False
        self._tombstones.add(handle)
        return True

    def is_deleted(self, handle: int) -> bool:
        return handle in self._tombstones

    def get_vector(self, handle: int) -> Optional[np.ndarray]:
        if handle in self._tombstones:
            return None
        return self._vectors.get(handle)

    def rebuild(self, reason: str = "manual") -> int:
        """Drop tombstoned points and rebuild the structure from live vectors."""
        reclaimed = len(self._tombstones)
        for handle in self._tombstones:
            self._vectors.pop(handle, None)
        self._tombstones.clear()

        self._reset()
        if self._vectors:
            handles = sorted(self._vectors)
            matrix = np.vstack([self._vectors[h] for h in handles]).astype(np.float32)
            self._add(matrix, np.asarray(handles, dtype=np.int64))

        logger.log_index_rebuild(self.name, len(self), reclaimed, reason)
        return reclaimed

    def clear(self) -> None:
        self._vectors.clear()
        self._tombstones.clear()
        self._reset()

    def stats(self) -> Dict[str, int]:
        return {
            "strategy": self.name,
            "live": len(self),
            "tombstones": self.tombstone_count,
            "size": self.size,
            "capacity": self.max_elements,
        }

    def _prepare(self, vector) -> np.ndarray:
        # Normalize in float64: float32 squared norms overflow for large components
        vector = np.asarray(vector, dtype=np.float64).reshape(-1)
        if vector.shape[0] != self.dimension:
            raise ValidationError(
                f"Vector dimension {vector.shape[0]} does not match expected dimension {self.dimension}",
                context=self.name,
            )
        norm = np.linalg.norm(vector)
        if norm == 0 or not np.isfinite(norm):
            raise ValidationError("Cannot index a zero or non-finite vector", context=self.name)
        return (vector / norm).astype(np.float32)

    @abstractmethod
    def _add(self, matrix: np.ndarray, ids: np.ndarray) -> None:
        """Insert rows of matrix under ids into the underlying structure."""
        pass

    @abstractmethod
    def _search(self, query: np.ndarray, k: int) -> List[Tuple[int, float]]:
        """Raw k-NN over every slot, tombstones included."""
        pass

    @abstractmethod
    def _reset(self) -> None:
        """Empty the underlying structure."""
        pass


class BruteForceIndex(IVectorIndex):
    """Exact O(n) cosine scan. Correctness fallback when no ANN backend is available."""

    name = "brute-force"

    def __init__(self, dimension: int, max_elements: int = 100000):
        super().__init__(dimension, max_elements)
        self._matrix: Optional[np.ndarray] = None
        self._matrix_handles: Optional[np.ndarray] = None

    def _add(self, matrix: np.ndarray, ids: np.ndarray) -> None:
        # Rows are picked up from self._vectors on the next search
        self._matrix = None
        self._matrix_handles = None

    def _reset(self) -> None:
        self._matrix = None
        self._matrix_handles = None

    def _search(self, query: np.ndarray, k: int) -> List[Tuple[int, float]]:
        if self._matrix is None:
            handles = [h for h in self._vectors if h not in self._tombstones]
            if not handles:
                return []
            self._matrix_handles = np.asarray(handles, dtype=np.int64)
            self._matrix = np.vstack([self._vectors[h] for h in handles])

        # Tombstones added after the cache was built are filtered by search_knn
        scores = self._matrix @ query
        k = min(k, scores.shape[0])
        top = np.argpartition(-scores, k - 1)[:k]
        top = top[np.argsort(-scores[top], kind="stable")]
        return [(int(self._matrix_handles[i]), float(scores[i])) for i in top]

    def mark_deleted(self, handle: int) -> bool:
        deleted = super().mark_deleted(handle)
        if deleted:
            self._matrix = None
            self._matrix_handles = None
        return deleted


def faiss_available() -> bool:
    """Check whether the native faiss extension can be imported."""
    try:
        import faiss  # noqa: F401
    except ImportError:
        return False
    return True


def create_index(
    dimension: int,
    strategy: str = "auto",
    max_elements: int = 100000,
    m: int = 16,
    ef_construction: int = 200,
    ef_search: int = 64,
) -> IVectorIndex:
    """
    Choose the index strategy once, at construction.

    Args:
        dimension: Vector dimension D
        strategy: auto|hnsw|brute-force
        max_elements: Declared capacity
        m: HNSW graph degree
        ef_construction: HNSW build-time breadth
        ef_search: HNSW query-time breadth

    Returns:
        FaissHnswIndex when requested (or auto) and faiss imports, BruteForceIndex otherwise
    """
    if strategy == "brute-force":
        return BruteForceIndex(dimension, max_elements)

    if faiss_available():
        from .faiss_store import FaissHnswIndex
        return FaissHnswIndex(
            dimension,
            max_elements=max_elements,
            m=m,
            ef_construction=ef_construction,
            ef_search=ef_search,
        )

    # Gracefully degrade to an exact scan if the native component is missing
    if strategy == "hnsw":
        logger.warning("INDEX_STRATEGY=hnsw but faiss is not importable; using brute-force cosine scan")
    else:
        logger.info("faiss not available; using brute-force cosine scan")
    return BruteForceIndex(dimension, max_elements)
