"""
Vector layer data types.
Records, search results and the per-kind metadata variants they carry.
"""

import time
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Dict, Optional, Union
import numpy as np


IMPORTANCE_LEVELS = {
    "critical": 1.0,
    "high": 0.8,
    "medium": 0.5,
    "low": 0.2,
}


def importance_score(value: Union[str, float, int, None]) -> float:
    """Map an importance level name or number onto [0, 1]."""
    if value is None:
        return IMPORTANCE_LEVELS["medium"]
    if isinstance(value, str):
        try:
            return IMPORTANCE_LEVELS[value.strip().lower()]
        except KeyError:
            raise ValueError(f"Unknown importance level: {value}")
    return max(0.0, min(1.0, float(value)))


@dataclass
class RecordMetadata:
    """Fields shared by every metadata variant."""

    KIND: ClassVar[str] = ""

    quality: Optional[float] = None
    """Optional quality estimate (0-1) used by the persistence gate"""

    persisted: bool = False
    """True once the record has been written to or read from the durable cache"""

    persisted_at: Optional[float] = None
    """Epoch seconds of the last durable write"""

    @property
    def kind(self) -> str:
        return self.KIND

    @property
    def importance_value(self) -> float:
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.KIND
        return data


@dataclass
class KnowledgeMetadata(RecordMetadata):
    """Metadata for a curated knowledge passage."""

    KIND: ClassVar[str] = "knowledge"

    category: str = "general"
    importance: float = 0.5
    source: str = "knowledge_base"

    @property
    def importance_value(self) -> float:
        return self.importance


@dataclass
class TurnMetadata(RecordMetadata):
    """Metadata for an observed conversation turn."""

    KIND: ClassVar[str] = "turn"

    role: str = "patient"
    sequence: int = 0
    session_id: Optional[str] = None


@dataclass
class EvaluationMetadata(RecordMetadata):
    """Metadata for a stored pipeline evaluation."""

    KIND: ClassVar[str] = "evaluation"

    query: str = ""
    confidence: float = 1.0
    was_revised: bool = False
    issue_count: int = 0


METADATA_KINDS = {
    cls.KIND: cls for cls in (KnowledgeMetadata, TurnMetadata, EvaluationMetadata)
}


def metadata_from_dict(data: Dict[str, Any]) -> RecordMetadata:
    """Rebuild a metadata variant from its serialized form."""
    values = dict(data)
    kind = values.pop("kind", None)
    if kind not in METADATA_KINDS:
        raise ValueError(f"Unknown metadata kind: {kind}")
    cls = METADATA_KINDS[kind]
    known = {name for name in cls.__dataclass_fields__}
    return cls(**{k: v for k, v in values.items() if k in known})


@dataclass
class VectorRecord:
    """Represents a vector record with metadata."""

    id: str
    """Unique identifier for the vector record within its collection"""

    text: str
    """The text the vector was computed from"""

    vector: np.ndarray
    """The vector representation of the content"""

    metadata: RecordMetadata = field(default_factory=KnowledgeMetadata)
    """Kind-specific metadata associated with the vector"""

    timestamp: float = field(default_factory=time.time)
    """Creation time in epoch seconds"""


@dataclass
class SearchResult:
    """Represents a search result from a vector collection."""

    record: VectorRecord
    """The matching record"""

    score: float
    """Cosine similarity of the match"""


@dataclass
class PersistedVectorRecord:
    """A vector record as stored in the durable cache."""

    id: str
    text: str
    vector: list
    metadata: RecordMetadata
    timestamp: float
    collection_name: str
    persisted_at: float

    @classmethod
    def from_record(cls, record: VectorRecord, collection_name: str, persisted_at: float) -> "PersistedVectorRecord":
        vector = record.vector.tolist() if isinstance(record.vector, np.ndarray) else list(record.vector)
        return cls(
            id=record.id,
            text=record.text,
            vector=vector,
            metadata=record.metadata,
            timestamp=record.timestamp,
            collection_name=collection_name,
            persisted_at=persisted_at,
        )

    def to_record(self) -> VectorRecord:
        self.metadata.persisted = True
        self.metadata.persisted_at = self.persisted_at
        return VectorRecord(
            id=self.id,
            text=self.text,
            vector=np.asarray(self.vector, dtype=np.float32),
            metadata=self.metadata,
            timestamp=self.timestamp,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "vector": self.vector,
            "metadata": self.metadata.to_dict(),
            "timestamp": self.timestamp,
            "collection_name": self.collection_name,
            "persisted_at": self.persisted_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PersistedVectorRecord":
        return cls(
            id=str(data["id"]),
            text=str(data["text"]),
            vector=list(data["vector"]),
            metadata=metadata_from_dict(data.get("metadata") or {}),
            timestamp=float(data["timestamp"]),
            collection_name=str(data["collection_name"]),
            persisted_at=float(data["persisted_at"]),
        )


@dataclass
class KnowledgeEntry:
    """A knowledge passage submitted for ingestion."""

    content: str
    category: str = "general"
    importance: Union[str, float] = "medium"
    source: str = "knowledge_base"
