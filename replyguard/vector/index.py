"""
Vector collection store - pure in-memory index.
Named collections of records with cosine similarity search. No persistence here.
"""

from typing import Callable, Dict, Iterable, List, Optional
import numpy as np

from util.logging import logger
from .types import VectorRecord, SearchResult


def cosine_similarity(a, b) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero magnitude."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        return 0.0

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    score = float(np.dot(a, b) / (norm_a * norm_b))
    # Clip floating point drift
    return max(-1.0, min(1.0, score))


class VectorCollection:
    """Ordered-by-insertion set of vector records searchable by cosine similarity."""

    def __init__(self, name: str):
        self.name = name
        self._records: Dict[str, VectorRecord] = {}  # record_id -> VectorRecord, insertion ordered
        self._dimension: Optional[int] = None

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def insert(self, record: VectorRecord) -> None:
        """Add a record, overwriting any record with the same id in place."""
        vector = np.asarray(record.vector, dtype=np.float32)
        if vector.ndim != 1:
            raise ValueError(f"Vector for {record.id} must be one-dimensional")
        if self._dimension is None:
            self._dimension = vector.shape[0]
        elif vector.shape[0] != self._dimension:
            raise ValueError(
                f"Vector dimension mismatch in '{self.name}': expected {self._dimension}, got {vector.shape[0]}"
            )

        record.vector = vector
        self._records[record.id] = record

    def batch_insert(self, records: Iterable[VectorRecord]) -> int:
        """Insert multiple records, returning how many were inserted."""
        count = 0
        for record in records:
            self.insert(record)
            count += 1
        return count

    def find_similar(self, vector, score_threshold: float = 0.0, limit: int = 10) -> List[SearchResult]:
        """Rank records by cosine similarity to ``vector``.

        Results below ``score_threshold`` are dropped; equal scores keep
        insertion order.
        """
        if limit <= 0 or not self._records:
            return []

        query = np.asarray(vector, dtype=np.float32)
        scored = []
        for record in self._records.values():
            score = cosine_similarity(query, record.vector)
            if score >= score_threshold:
                scored.append(SearchResult(record=record, score=score))

        # sorted() is stable, so ties stay in insertion order
        scored = sorted(scored, key=lambda result: result.score, reverse=True)
        return scored[:limit]

    def get(self, record_id: str) -> Optional[VectorRecord]:
        return self._records.get(record_id)

    def delete(self, record_id: str) -> bool:
        """Delete a record by id. Returns True if it existed."""
        return self._records.pop(record_id, None) is not None

    def delete_where(self, predicate: Callable[[VectorRecord], bool]) -> int:
        """Delete every record matching ``predicate``. Returns how many were removed."""
        doomed = [record_id for record_id, record in self._records.items() if predicate(record)]
        for record_id in doomed:
            del self._records[record_id]
        return len(doomed)

    def size(self) -> int:
        return len(self._records)

    def get_all(self) -> List[VectorRecord]:
        return list(self._records.values())

    def clear(self) -> None:
        """Clear all records from the collection."""
        self._records.clear()
        self._dimension = None

    def __len__(self) -> int:
        return len(self._records)


class VectorDatabase:
    """Process-wide registry of named collections."""

    def __init__(self):
        self._collections: Dict[str, VectorCollection] = {}

    def collection(self, name: str) -> VectorCollection:
        """Get or create the collection called ``name``."""
        if name not in self._collections:
            self._collections[name] = VectorCollection(name)
            logger.log_vector_operation("create_collection", name)
        return self._collections[name]

    def has_collection(self, name: str) -> bool:
        return name in self._collections

    def collection_names(self) -> List[str]:
        return list(self._collections.keys())

    def search(self, vector, collection_names: Iterable[str], score_threshold: float = 0.0,
               limit: int = 10) -> List[SearchResult]:
        """Search several collections and merge their rankings."""
        merged: List[SearchResult] = []
        for name in collection_names:
            if name in self._collections:
                merged.extend(self._collections[name].find_similar(vector, score_threshold, limit))
        merged = sorted(merged, key=lambda result: result.score, reverse=True)
        return merged[:limit]

    def get_stats(self) -> Dict[str, int]:
        return {name: collection.size() for name, collection in self._collections.items()}

    def clear(self) -> None:
        for collection in self._collections.values():
            collection.clear()
