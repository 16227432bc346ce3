"""
FAISS-backed HNSW index.
Hierarchical navigable small-world graph under inner product on normalized vectors (cosine).
"""

from typing import List, Tuple

import faiss
import numpy as np

from .index import IVectorIndex


class FaissHnswIndex(IVectorIndex):
    """HNSW graph index using faiss.IndexHNSWFlat wrapped in an IndexIDMap.

    The IDMap lets points carry our monotonically assigned handles. HNSW has
    no native delete, so deletions stay in the graph as tombstones until
    rebuild().
    """

    name = "hnsw"

    def __init__(
        self,
        dimension: int,
        max_elements: int = 100000,
        m: int = 16,
        ef_construction: int = 200,
        ef_search: int = 64,
    ):
        """
        Initialize the HNSW index.

        Args:
            dimension: Dimension of the vectors
            max_elements: Declared capacity, tombstones included
            m: Graph degree
            ef_construction: Candidate list size while inserting
            ef_search: Candidate list size while querying (raised to k when needed)
        """
        if m <= 0:
            raise ValueError("m must be positive")
        if ef_construction <= 0 or ef_search <= 0:
            raise ValueError("ef_construction and ef_search must be positive")
        super().__init__(dimension, max_elements)
        self.m = m
        self.ef_construction = ef_construction
        self.ef_search = ef_search
        self._new_structure()

    def _new_structure(self) -> None:
        self._hnsw = faiss.IndexHNSWFlat(self.dimension, self.m, faiss.METRIC_INNER_PRODUCT)
        self._hnsw.hnsw.efConstruction = self.ef_construction
        self._hnsw.hnsw.efSearch = self.ef_search
        self.index = faiss.IndexIDMap(self._hnsw)

    def _add(self, matrix: np.ndarray, ids: np.ndarray) -> None:
        self.index.add_with_ids(np.ascontiguousarray(matrix, dtype=np.float32), ids.astype(np.int64))

    def _search(self, query: np.ndarray, k: int) -> List[Tuple[int, float]]:
        if not self.index.ntotal:
            return []
        k = min(k, self.index.ntotal)
        # HNSW returns at most efSearch neighbours
        self._hnsw.hnsw.efSearch = max(self.ef_search, k)
        query_array = np.ascontiguousarray(query, dtype=np.float32).reshape(1, -1)
        scores, ids = self.index.search(query_array, k)

        results = []
        for score, handle in zip(scores[0], ids[0]):
            if handle < 0:
                continue
            results.append((int(handle), float(score)))
        return results

    def _reset(self) -> None:
        self._new_structure()

    def stats(self):
        stats = super().stats()
        stats.update({"m": self.m, "ef_construction": self.ef_construction, "ef_search": self.ef_search})
        return stats
