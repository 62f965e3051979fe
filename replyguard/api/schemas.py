"""
Request and response models for the verification API.
"""

from pydantic import BaseModel, field_validator
from typing import Optional, List, Dict, Any

from replyguard.vector.types import IMPORTANCE_LEVELS


class ProcessRequest(BaseModel):
    """A candidate response to verify against the patient's message."""
    response: str
    user_input: str
    history: Optional[List[str]] = None
    session_id: str = "default"
    enable_rag: Optional[bool] = None
    enable_reasoning: Optional[bool] = None
    enable_detection: Optional[bool] = None
    enable_reranking: Optional[bool] = None
    detection_sensitivity: Optional[float] = None
    timeout_ms: Optional[int] = None

    @field_validator('response')
    @classmethod
    def response_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('response cannot be empty')
        return v

    @field_validator('session_id')
    @classmethod
    def session_id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('session_id cannot be empty')
        return v

    @field_validator('detection_sensitivity')
    @classmethod
    def sensitivity_in_range(cls, v):
        if v is not None and not 0.0 <= v <= 1.0:
            raise ValueError('detection_sensitivity must be within [0, 1]')
        return v

    @field_validator('timeout_ms')
    @classmethod
    def timeout_must_be_positive(cls, v):
        if v is not None and v <= 0:
            raise ValueError('timeout_ms must be positive')
        return v


class StagesAppliedModel(BaseModel):
    rag: bool
    reasoning: bool
    detection: bool


class ProcessResponse(BaseModel):
    processed_response: str
    was_revised: bool
    stages_applied: StagesAppliedModel
    confidence: float
    processing_time_ms: float
    issue_details: List[str]
    retrieved_passages: List[str] = []
    degraded_embeddings: bool = False
    timed_out: bool = False
    session_id: str


class KnowledgeItem(BaseModel):
    content: str
    category: str = "general"
    importance: str = "medium"
    source: str = "knowledge_base"

    @field_validator('importance')
    @classmethod
    def importance_must_be_valid(cls, v):
        if v not in IMPORTANCE_LEVELS:
            raise ValueError(f'importance must be one of: {list(IMPORTANCE_LEVELS)}')
        return v


class KnowledgeRequest(BaseModel):
    """Knowledge entries to embed and index."""
    entries: List[KnowledgeItem]
    collection: str = "therapeutic_knowledge"

    @field_validator('entries')
    @classmethod
    def entries_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('entries cannot be empty')
        return v


class KnowledgeResponse(BaseModel):
    indexed_ids: List[str]
    skipped: int
    total_processed: int


class FlushResponse(BaseModel):
    flushed: Dict[str, bool]
    stats: Dict[str, Any]


class HealthResponse(BaseModel):
    status: str
    version: str
    degraded_embeddings: bool
    collections: Dict[str, int]
    cache: Dict[str, Any]
    agents: Dict[str, Any]
    config_issues: List[str] = []
