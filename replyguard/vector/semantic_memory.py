"""
Semantic memory service.
Owns the vector database, the embedding service and the persistent cache for
one process, with an explicit init / flush / shutdown lifecycle.
"""

from typing import Any, Dict, Iterable, List, Optional, Union
import hashlib
import uuid

from util.logging import logger
from .embeddings import EmbeddingService
from .index import VectorDatabase
from .types import (
    EvaluationMetadata,
    KnowledgeEntry,
    KnowledgeMetadata,
    TurnMetadata,
    VectorRecord,
    importance_score,
)
from replyguard.core.config import (
    EVALUATIONS_COLLECTION,
    KNOWLEDGE_COLLECTION,
    RECENT_COLLECTIONS,
    AGENT_RESPONSES_COLLECTION,
    USER_MESSAGES_COLLECTION,
)


class SemanticMemoryService:
    """
    High-level service for semantic memory operations.

    Construct once per process and pass to the agents that need it. ``init``
    warms collections from the persistent cache, ``flush`` writes every
    collection back through the eviction policy, and ``shutdown`` flushes and
    then empties the in-memory index.
    """

    def __init__(self, vector_db: VectorDatabase = None, embeddings: EmbeddingService = None, cache=None):
        self.vector_db = vector_db or VectorDatabase()
        self.embeddings = embeddings or EmbeddingService()
        self.cache = cache
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def init(self, collections: Optional[Iterable[str]] = None) -> Dict[str, int]:
        """Warm the vector database from the persistent cache."""
        loaded: Dict[str, int] = {}
        if self.cache is not None:
            names = list(collections) if collections is not None else self.cache.persisted_collections()
            for name in names:
                loaded[name] = await self.cache.load(name, self.vector_db)

        self._initialized = True
        logger.log_operation("semantic_memory.init", "success", {"loaded": loaded})
        return loaded

    async def load_knowledge(self, entries: List[Union[KnowledgeEntry, Dict[str, Any]]],
                             collection_name: str = KNOWLEDGE_COLLECTION) -> List[str]:
        """Embed and insert knowledge entries. Returns the ids inserted."""
        collection = self.vector_db.collection(collection_name)
        inserted = []

        for entry in entries:
            if isinstance(entry, dict):
                entry = KnowledgeEntry(**entry)

            content = entry.content.strip()
            if not content:
                continue
            try:
                importance = importance_score(entry.importance)
            except ValueError as e:
                logger.warning(f"Skipping knowledge entry: {e}")
                continue

            vector = await self.embeddings.embed(content)
            record_id = "kn_" + hashlib.md5(content.encode()).hexdigest()[:12]
            collection.insert(VectorRecord(
                id=record_id,
                text=content,
                vector=vector,
                metadata=KnowledgeMetadata(
                    category=entry.category,
                    importance=importance,
                    source=entry.source,
                ),
            ))
            inserted.append(record_id)

        logger.log_vector_operation("load_knowledge", collection_name, len(inserted))
        return inserted

    async def add_turn(self, role: str, content: str, sequence: int,
                       session_id: Optional[str] = None, quality: Optional[float] = None) -> Optional[str]:
        """Index one conversation turn into its recent partition."""
        content = content.strip()
        if not content:
            return None

        collection_name = USER_MESSAGES_COLLECTION if role == "patient" else AGENT_RESPONSES_COLLECTION
        vector = await self.embeddings.embed(content)
        record_id = f"{role}_{sequence}_{uuid.uuid4().hex[:8]}"
        self.vector_db.collection(collection_name).insert(VectorRecord(
            id=record_id,
            text=content,
            vector=vector,
            metadata=TurnMetadata(role=role, sequence=sequence, session_id=session_id, quality=quality),
        ))
        return record_id

    async def add_evaluation(self, query: str, confidence: float, was_revised: bool, issue_count: int) -> Optional[str]:
        """Store the outcome of a pipeline run for later review."""
        query = query.strip()
        if not query:
            return None

        vector = await self.embeddings.embed(query)
        record_id = f"eval_{uuid.uuid4().hex[:8]}"
        self.vector_db.collection(EVALUATIONS_COLLECTION).insert(VectorRecord(
            id=record_id,
            text=query,
            vector=vector,
            metadata=EvaluationMetadata(
                query=query,
                confidence=confidence,
                was_revised=was_revised,
                issue_count=issue_count,
                quality=confidence,
            ),
        ))
        return record_id

    def clear_recent(self, session_id: Optional[str] = None) -> int:
        """
        Drop indexed conversation turns.

        With a ``session_id`` only that session's turns go; other sessions
        sharing the process keep theirs. Without one both partitions are emptied.
        """
        removed = 0
        for name in RECENT_COLLECTIONS:
            if not self.vector_db.has_collection(name):
                continue
            collection = self.vector_db.collection(name)
            if session_id is None:
                removed += collection.size()
                collection.clear()
            else:
                removed += collection.delete_where(
                    lambda record: isinstance(record.metadata, TurnMetadata)
                    and record.metadata.session_id == session_id
                )
        logger.log_operation("semantic_memory.clear_recent", "success",
                             {"session_id": session_id, "removed": removed})
        return removed

    async def flush(self, collections: Optional[Iterable[str]] = None) -> Dict[str, bool]:
        """Persist collections through the cache's eviction policy."""
        if self.cache is None:
            return {}

        names = list(collections) if collections is not None else self.vector_db.collection_names()
        results = {}
        for name in names:
            records = self.vector_db.collection(name).get_all()
            results[name] = await self.cache.persist(name, records)
        return results

    async def shutdown(self) -> Dict[str, bool]:
        """Flush everything, then release the in-memory index."""
        results = await self.flush()
        self.vector_db.clear()
        self._initialized = False
        logger.log_operation("semantic_memory.shutdown", "success", {"flushed": results})
        return results

    def health_check(self) -> Dict[str, Any]:
        cache_health = self.cache.store.health_check() if self.cache is not None else {"status": "disabled"}
        return {
            "initialized": self._initialized,
            "collections": self.vector_db.get_stats(),
            "embeddings": self.embeddings.get_stats(),
            "cache": cache_health,
        }
