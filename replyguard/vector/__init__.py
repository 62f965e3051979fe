"""
Vector layer: embeddings, in-memory collections and the semantic memory service.
"""

# Package initialization for vector module
from .index import VectorCollection, VectorDatabase, cosine_similarity
from .types import (
    VectorRecord,
    SearchResult,
    PersistedVectorRecord,
    KnowledgeEntry,
    KnowledgeMetadata,
    TurnMetadata,
    EvaluationMetadata,
)
from .embeddings import (
    IEmbeddingProvider,
    DeterministicHashEmbedding,
    SentenceTransformerEmbedding,
    EmbeddingCache,
    EmbeddingService,
)
from .semantic_memory import SemanticMemoryService

__all__ = [
    'VectorCollection',
    'VectorDatabase',
    'cosine_similarity',
    'VectorRecord',
    'SearchResult',
    'PersistedVectorRecord',
    'KnowledgeEntry',
    'KnowledgeMetadata',
    'TurnMetadata',
    'EvaluationMetadata',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'EmbeddingCache',
    'EmbeddingService',
    'SemanticMemoryService',
]
