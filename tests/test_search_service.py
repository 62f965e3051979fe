"""
Tests for hybrid retrieval: fusion of vector and lexical scores, and reranking.
"""

import asyncio

import numpy as np
import pytest

from replyguard.core.query_expansion import QueryExpansion
from replyguard.core.search_service import HybridSearchService, RetrievedPassage, lexical_score
from replyguard.vector.embeddings import DeterministicHashEmbedding, EmbeddingCache, EmbeddingService
from replyguard.vector.index import VectorDatabase
from replyguard.vector.semantic_memory import SemanticMemoryService
from replyguard.vector.types import KnowledgeMetadata

BREATHING = "Box breathing exercises can reduce anxiety during panic attacks."
SLEEP = "Regular sleep schedules improve mood over several weeks."


@pytest.fixture
def semantic_memory():
    embeddings = EmbeddingService(DeterministicHashEmbedding(384), DeterministicHashEmbedding(384), EmbeddingCache())
    service = SemanticMemoryService(VectorDatabase(), embeddings)
    asyncio.run(service.load_knowledge([
        {"content": BREATHING, "importance": "high"},
        {"content": SLEEP, "importance": "medium"},
    ]))
    return service


@pytest.fixture
def search(semantic_memory):
    return HybridSearchService(semantic_memory.vector_db, semantic_memory.embeddings)


def test_lexical_score_with_phrase_bonus():
    expansion = QueryExpansion("breathing exercises", expanded_terms=["breathing", "exercises"])
    assert lexical_score(expansion, "Slow breathing exercises reduce panic.") == 1.0
    assert lexical_score(expansion, "Breathing helps.") == pytest.approx(0.5)
    assert lexical_score(QueryExpansion("", expanded_terms=[]), "anything") == 0.0


def test_retrieve_ranks_relevant_passage_first(search):
    passages = asyncio.run(search.retrieve("I have anxiety and panic attacks"))

    assert passages
    assert passages[0].text == BREATHING
    assert passages[0].collection == "therapeutic_knowledge"
    assert passages[0].lexical_score > 0
    assert passages[0].vector_score > 0


def test_retrieve_ignores_conversation_partitions(semantic_memory, search):
    asyncio.run(semantic_memory.add_turn("patient", "I have anxiety and panic attacks", 0))
    passages = asyncio.run(search.retrieve("I have anxiety and panic attacks", limit=5))
    assert all(p.collection in ("therapeutic_knowledge", "facts") for p in passages)


def test_recall_turns_scoped_to_session(semantic_memory, search):
    async def run():
        await semantic_memory.add_turn("patient", "My sister criticizes my cooking at family dinners", 0, "s1")
        await semantic_memory.add_turn("patient", "My sister criticizes my driving", 0, "s2")
        await semantic_memory.add_turn("patient", "My sister criticizes everything", 2, "s1")
        return await search.recall_turns("My sister criticizes everything", "s1", limit=5)

    turns = asyncio.run(run())

    assert [t.text for t in turns] == ["My sister criticizes my cooking at family dinners"]
    assert turns[0].collection == "user_messages"
    assert turns[0].metadata.session_id == "s1"


def test_recall_turns_needs_session(search):
    assert asyncio.run(search.recall_turns("anything at all", None)) == []


def test_empty_query_returns_nothing(search):
    assert asyncio.run(search.retrieve("   ")) == []
    assert asyncio.run(search.retrieve("anxiety", limit=0)) == []


def test_rerank_collapses_near_duplicates(semantic_memory, search):
    asyncio.run(semantic_memory.load_knowledge([{"content": BREATHING.lower()}]))

    reranked = asyncio.run(search.retrieve("anxiety panic attacks breathing", limit=5, rerank=True))
    plain = asyncio.run(search.retrieve("anxiety panic attacks breathing", limit=5, rerank=False))

    assert sum(1 for p in reranked if p.text.lower() == BREATHING.lower()) == 1
    assert sum(1 for p in plain if p.text.lower() == BREATHING.lower()) == 2


def test_rerank_boosts_importance(search):
    low = RetrievedPassage("low", "low importance", "facts", 0.5,
                           metadata=KnowledgeMetadata(importance=0.2), vector=np.array([1.0, 0.0]))
    high = RetrievedPassage("high", "high importance", "facts", 0.5,
                            metadata=KnowledgeMetadata(importance=1.0), vector=np.array([0.0, 1.0]))

    ranked = search.rerank([low, high])
    assert [p.id for p in ranked] == ["high", "low"]
    assert ranked[0].score == pytest.approx(0.5)
    assert ranked[1].score == pytest.approx(0.44)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
