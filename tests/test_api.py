"""
Tests for the HTTP endpoints.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from replyguard.agents.orchestrator import create_orchestrator
from replyguard.api.main import Runtime, app, get_runtime, set_runtime
from replyguard.core.config import PipelineOptions
from replyguard.vector.embeddings import DeterministicHashEmbedding, EmbeddingCache, EmbeddingService
from replyguard.vector.index import VectorDatabase
from replyguard.vector.semantic_memory import SemanticMemoryService


@pytest.fixture
def client():
    embeddings = EmbeddingService(DeterministicHashEmbedding(384), DeterministicHashEmbedding(384), EmbeddingCache())
    semantic_memory = SemanticMemoryService(VectorDatabase(), embeddings)
    set_runtime(Runtime(semantic_memory, create_orchestrator(semantic_memory, PipelineOptions())))
    yield TestClient(app)
    set_runtime(None)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["degraded_embeddings"] is False
    assert data["agents"]["detector"] is True


def test_process_corrects_false_memory(client):
    response = client.post("/process", json={
        "response": "As we discussed, your anxiety has improved.",
        "user_input": "hi",
        "history": [],
        "session_id": "abc",
        "enable_rag": False,
    })
    assert response.status_code == 200
    data = response.json()
    assert data["was_revised"] is True
    assert data["processed_response"] == "I'd like to hear how your anxiety feels right now."
    assert data["stages_applied"]["detection"] is True
    assert data["session_id"] == "abc"


def test_process_rejects_empty_response(client):
    response = client.post("/process", json={"response": "  ", "user_input": "hi"})
    assert response.status_code == 422


def test_sessions_keep_separate_memory(client):
    client.post("/process", json={"response": "That sounds hard.", "user_input": "Work is rough", "session_id": "a"})
    client.post("/process", json={"response": "That sounds hard.", "user_input": "Work is rough", "session_id": "b"})

    runtime = asyncio.run(get_runtime())
    assert set(runtime.sessions) == {"a", "b"}
    assert len(runtime.sessions["a"].memory) == 2


def test_least_recently_used_session_is_evicted():
    embeddings = EmbeddingService(DeterministicHashEmbedding(384), DeterministicHashEmbedding(384), EmbeddingCache())
    semantic_memory = SemanticMemoryService(VectorDatabase(), embeddings)
    runtime = Runtime(semantic_memory, create_orchestrator(semantic_memory, PipelineOptions()), max_sessions=2)
    set_runtime(runtime)
    try:
        client = TestClient(app)
        for session_id in ("a", "b", "a", "c"):
            client.post("/process", json={"response": "That sounds hard.", "user_input": "Work is rough",
                                          "session_id": session_id})
    finally:
        set_runtime(None)

    assert list(runtime.sessions) == ["a", "c"]
    turns = semantic_memory.vector_db.collection("user_messages").get_all()
    assert "b" not in {t.metadata.session_id for t in turns}


def test_knowledge_indexing(client):
    response = client.post("/knowledge", json={
        "entries": [
            {"content": "Box breathing exercises can reduce anxiety.", "importance": "high"},
            {"content": "   "},
        ]
    })
    assert response.status_code == 200
    data = response.json()
    assert len(data["indexed_ids"]) == 1
    assert data["skipped"] == 1


def test_knowledge_rejects_unknown_importance(client):
    response = client.post("/knowledge", json={"entries": [{"content": "text", "importance": "urgent"}]})
    assert response.status_code == 422


def test_flush_without_cache(client):
    response = client.post("/flush")
    assert response.status_code == 200
    assert response.json() == {"flushed": {}, "stats": {"available": False}}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
