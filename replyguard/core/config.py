"""
Runtime configuration for the retrieval-and-verification pipeline.
Environment-driven constants plus factories for the shared services.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path


def _env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() == "true"


# Durable cache configuration
CACHE_ENABLED = _env_flag("CACHE_ENABLED", "true")
CACHE_DB_PATH = os.getenv("CACHE_DB_PATH", "./data/replyguard_cache.db")
CACHE_KEY_PREFIX = os.getenv("CACHE_KEY_PREFIX", "replyguard_vector_store")
CACHE_MAX_BYTES = int(os.getenv("CACHE_MAX_BYTES", str(5 * 1024 * 1024)))  # simulated quota
CACHE_MAX_RECORDS = int(os.getenv("CACHE_MAX_RECORDS", "500"))
CACHE_MAX_PER_COLLECTION = int(os.getenv("CACHE_MAX_PER_COLLECTION", "100"))
CACHE_EXPIRATION_SEC = int(os.getenv("CACHE_EXPIRATION_SEC", str(7 * 24 * 3600)))
CACHE_MIN_TEXT_LENGTH = int(os.getenv("CACHE_MIN_TEXT_LENGTH", "10"))
PRIORITY_COLLECTIONS = [
    name.strip()
    for name in os.getenv("PRIORITY_COLLECTIONS", "therapeutic_knowledge,facts").split(",")
    if name.strip()
]
PRIORITY_MIN_SHARE = float(os.getenv("PRIORITY_MIN_SHARE", "0.5"))
PRIORITY_MAX_SHARE = float(os.getenv("PRIORITY_MAX_SHARE", "0.8"))
PERSIST_QUALITY_THRESHOLD = 0.7

# Embedding configuration
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "hash")  # hash|sentence_transformer
EMBED_MODEL_NAME = os.getenv("EMBED_MODEL_NAME", "all-MiniLM-L6-v2")
EMBED_DIM = int(os.getenv("EMBED_DIM", "384"))
EMBED_CACHE_SIZE = int(os.getenv("EMBED_CACHE_SIZE", "1000"))
EMBED_CACHE_TTL_SEC = int(os.getenv("EMBED_CACHE_TTL_SEC", "86400"))
EMBED_BATCH_SIZE = 5

# Conversational memory configuration
MEMORY_CAPACITY = int(os.getenv("MEMORY_CAPACITY", "5"))
NEW_CONVERSATION_GAP_SEC = int(os.getenv("NEW_CONVERSATION_GAP_SEC", "1800"))
MAX_SESSIONS = int(os.getenv("MAX_SESSIONS", "1000"))  # least recently used sessions are dropped beyond this

# Collections
KNOWLEDGE_COLLECTION = "therapeutic_knowledge"
FACTS_COLLECTION = "facts"
USER_MESSAGES_COLLECTION = "user_messages"
AGENT_RESPONSES_COLLECTION = "agent_responses"
EVALUATIONS_COLLECTION = "evaluations"
RECENT_COLLECTIONS = [USER_MESSAGES_COLLECTION, AGENT_RESPONSES_COLLECTION]
RETRIEVAL_COLLECTIONS = [KNOWLEDGE_COLLECTION, FACTS_COLLECTION]

# Retrieval tuning
VECTOR_WEIGHT = 0.6
LEXICAL_WEIGHT = 0.4
VECTOR_CANDIDATE_THRESHOLD = 0.3
VECTOR_CANDIDATE_LIMIT = 20
NEAR_DUPLICATE_THRESHOLD = 0.85
RAG_MIN_SCORE = float(os.getenv("RAG_MIN_SCORE", "0.25"))

# Detector tuning: confidence penalty subtracted per flag of each type
PENALTY_WEIGHTS = {
    "false_memory": 0.25,
    "logical_error": 0.2,
    "false_continuity": 0.3,
    "token_level_error": 0.15,
    "repetition": 0.35,
    "critical_protocol_mix": 0.9,
    "missing_crisis_resources": 0.8,
}
REPETITION_SIMILARITY_THRESHOLD = 0.7

# Pipeline configuration
ENABLE_RAG = _env_flag("ENABLE_RAG")
ENABLE_REASONING = _env_flag("ENABLE_REASONING")
ENABLE_DETECTION = _env_flag("ENABLE_DETECTION")
ENABLE_RERANKING = _env_flag("ENABLE_RERANKING")
REASONING_THRESHOLD = float(os.getenv("REASONING_THRESHOLD", "0.7"))
DETECTION_SENSITIVITY = float(os.getenv("DETECTION_SENSITIVITY", "0.6"))
TOKEN_THRESHOLD = float(os.getenv("TOKEN_THRESHOLD", "0.6"))
ENTAILMENT_THRESHOLD = float(os.getenv("ENTAILMENT_THRESHOLD", "0.7"))
PIPELINE_TIMEOUT_MS = int(os.getenv("PIPELINE_TIMEOUT_MS", "5000"))
RAG_LIMIT = int(os.getenv("RAG_LIMIT", "3"))

# Version string
VERSION = "1.0.0"


@dataclass
class PipelineOptions:
    """Per-invocation switches and thresholds for the orchestrator."""

    enable_rag: bool = True
    enable_reasoning: bool = True
    enable_detection: bool = True
    reasoning_threshold: float = 0.7
    detection_sensitivity: float = 0.6
    token_threshold: float = 0.6
    entailment_threshold: float = 0.7
    enable_reranking: bool = True
    timeout_ms: int = 5000
    rag_limit: int = 3

    def with_overrides(self, **overrides) -> "PipelineOptions":
        """Return a copy with the given non-None fields replaced."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **values)


def get_pipeline_options() -> PipelineOptions:
    """Get pipeline options built from the environment."""
    return PipelineOptions(
        enable_rag=ENABLE_RAG,
        enable_reasoning=ENABLE_REASONING,
        enable_detection=ENABLE_DETECTION,
        reasoning_threshold=REASONING_THRESHOLD,
        detection_sensitivity=DETECTION_SENSITIVITY,
        token_threshold=TOKEN_THRESHOLD,
        entailment_threshold=ENTAILMENT_THRESHOLD,
        enable_reranking=ENABLE_RERANKING,
        timeout_ms=PIPELINE_TIMEOUT_MS,
        rag_limit=RAG_LIMIT,
    )


def get_embedding_provider():
    """Get configured embedding provider implementation."""
    if EMBED_PROVIDER == "sentence_transformer":
        from replyguard.vector.embeddings import SentenceTransformerEmbedding
        return SentenceTransformerEmbedding(EMBED_MODEL_NAME)
    else:
        # Default to hashed embeddings for unknown providers
        from replyguard.vector.embeddings import DeterministicHashEmbedding
        return DeterministicHashEmbedding(EMBED_DIM)


def get_durable_store():
    """Get the configured durable key-value store."""
    from replyguard.core.db import DurableStore
    return DurableStore(
        db_path=CACHE_DB_PATH,
        enabled=is_cache_enabled(),
        max_bytes=CACHE_MAX_BYTES,
    )


def get_persistent_cache():
    """Get the persistent vector cache backed by the durable store."""
    from replyguard.core.persistence import PersistentVectorCache
    return PersistentVectorCache(get_durable_store())


def is_cache_enabled():
    """Check if durable caching is enabled."""
    return os.getenv("CACHE_ENABLED", "true").lower() == "true"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or CACHE_DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if EMBED_PROVIDER not in ["hash", "sentence_transformer"]:
        issues.append(f"Invalid EMBED_PROVIDER: {EMBED_PROVIDER}")

    if EMBED_DIM < 1:
        issues.append("EMBED_DIM must be >= 1")

    if MEMORY_CAPACITY < 1:
        issues.append("MEMORY_CAPACITY must be >= 1")

    if MAX_SESSIONS < 1:
        issues.append("MAX_SESSIONS must be >= 1")

    if CACHE_MAX_PER_COLLECTION > CACHE_MAX_RECORDS:
        issues.append("CACHE_MAX_PER_COLLECTION exceeds CACHE_MAX_RECORDS")

    if not 0.0 <= PRIORITY_MIN_SHARE <= PRIORITY_MAX_SHARE <= 1.0:
        issues.append("PRIORITY shares must satisfy 0 <= MIN <= MAX <= 1")

    for name, value in (("REASONING_THRESHOLD", REASONING_THRESHOLD),
                        ("DETECTION_SENSITIVITY", DETECTION_SENSITIVITY),
                        ("TOKEN_THRESHOLD", TOKEN_THRESHOLD),
                        ("ENTAILMENT_THRESHOLD", ENTAILMENT_THRESHOLD)):
        if not 0.0 <= value <= 1.0:
            issues.append(f"{name} must be within [0, 1]")

    if PIPELINE_TIMEOUT_MS < 1:
        issues.append("PIPELINE_TIMEOUT_MS must be >= 1")

    return issues
