"""
Tests for the persistent vector cache: quality gate, expiry, caps and priority share.
"""

import asyncio
import json

import numpy as np
import pytest

from replyguard.core.db import DurableStore
from replyguard.core.persistence import PersistentVectorCache, allocate_slots
from replyguard.vector.index import VectorDatabase
from replyguard.vector.semantic_memory import SemanticMemoryService
from replyguard.vector.embeddings import DeterministicHashEmbedding, EmbeddingCache, EmbeddingService
from replyguard.vector.types import KnowledgeMetadata, TurnMetadata, VectorRecord

NOW = 1_700_000_000.0


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


def knowledge(record_id, text=None, timestamp=NOW, importance=0.5):
    return VectorRecord(
        id=record_id,
        text=text or f"Knowledge passage number {record_id}",
        vector=np.ones(4, dtype=np.float32),
        metadata=KnowledgeMetadata(importance=importance),
        timestamp=timestamp,
    )


def turn(record_id, quality=0.9, timestamp=NOW, text=None):
    return VectorRecord(
        id=record_id,
        text=text or f"Conversation turn number {record_id}",
        vector=np.ones(4, dtype=np.float32),
        metadata=TurnMetadata(quality=quality),
        timestamp=timestamp,
    )


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def cache(tmp_path, clock):
    store = DurableStore(db_path=str(tmp_path / "cache.db"), max_bytes=50 * 1024 * 1024)
    return PersistentVectorCache(
        store,
        key_prefix="test_store",
        max_records=250,
        max_per_collection=100,
        expiration_sec=7 * 24 * 3600,
        min_text_length=10,
        priority_collections=["therapeutic_knowledge", "facts"],
        clock=clock,
    )


class TestAllocateSlots:

    def test_under_cap_keeps_everything(self):
        assert allocate_slots(10, 20, 100) == (10, 20)

    def test_priority_gets_its_floor(self):
        assert allocate_slots(80, 220, 250, 0.5, 0.8) == (80, 170)

    def test_priority_capped_at_max_share(self):
        assert allocate_slots(300, 300, 100, 0.5, 0.8) == (80, 20)

    def test_unused_other_slots_go_to_priority(self):
        assert allocate_slots(300, 5, 100, 0.5, 0.8) == (95, 5)


class TestQualityGate:

    def test_priority_collection_always_persists(self, cache):
        assert cache.should_persist("therapeutic_knowledge", knowledge("k1", importance=0.1))

    def test_short_text_rejected_even_for_priority(self, cache):
        assert not cache.should_persist("therapeutic_knowledge", knowledge("k1", text="too short"))

    def test_quality_or_importance_needed_elsewhere(self, cache):
        assert cache.should_persist("agent_responses", turn("t1", quality=0.9))
        assert not cache.should_persist("agent_responses", turn("t2", quality=0.5))
        assert not cache.should_persist("agent_responses", turn("t3", quality=None))
        assert cache.should_persist("misc", knowledge("k2", importance=0.8))


class TestPersistAndLoad:

    def test_round_trip_into_fresh_database(self, cache):
        records = [knowledge(f"k{i}") for i in range(3)]
        assert cache.persist_sync("therapeutic_knowledge", records) is True
        assert all(r.metadata.persisted for r in records)
        assert records[0].metadata.persisted_at == NOW

        db = VectorDatabase()
        assert cache.load_sync("therapeutic_knowledge", db) == 3
        loaded = db.collection("therapeutic_knowledge").get("k1")
        assert loaded.text == "Knowledge passage number k1"
        assert loaded.metadata.persisted is True
        assert isinstance(loaded.metadata, KnowledgeMetadata)

    def test_persist_replaces_collection_set(self, cache):
        cache.persist_sync("facts", [knowledge("a"), knowledge("b")])
        cache.persist_sync("facts", [knowledge("c")])

        db = VectorDatabase()
        assert cache.load_sync("facts", db) == 1
        assert db.collection("facts").get("c") is not None

    def test_other_collections_survive(self, cache):
        cache.persist_sync("facts", [knowledge("f1")])
        cache.persist_sync("therapeutic_knowledge", [knowledge("k1")])
        assert sorted(cache.persisted_collections()) == ["facts", "therapeutic_knowledge"]

    def test_per_collection_cap_keeps_most_recent(self, cache):
        records = [knowledge(f"k{i}", timestamp=NOW + i) for i in range(120)]
        cache.persist_sync("therapeutic_knowledge", records)

        db = VectorDatabase()
        assert cache.load_sync("therapeutic_knowledge", db) == 100
        assert db.collection("therapeutic_knowledge").get("k119") is not None
        assert db.collection("therapeutic_knowledge").get("k0") is None

    def test_expired_records_not_loaded(self, cache, clock):
        cache.persist_sync("facts", [knowledge("old")])
        clock.now = NOW + 8 * 24 * 3600

        db = VectorDatabase()
        assert cache.load_sync("facts", db) == 0

    def test_global_cap_preserves_priority_records(self, cache):
        cache.persist_sync("therapeutic_knowledge", [knowledge(f"k{i}") for i in range(80)])
        cache.persist_sync("user_messages", [turn(f"u{i}") for i in range(74)])
        cache.persist_sync("agent_responses", [turn(f"a{i}") for i in range(73)])
        cache.persist_sync("evaluations", [turn(f"e{i}") for i in range(73)])

        stats = cache.get_stats()
        assert stats["total"] == 250
        assert stats["collections"]["therapeutic_knowledge"] == 80

    def test_corrupt_entries_are_skipped(self, cache):
        cache.persist_sync("facts", [knowledge("good")])
        entries = json.loads(cache.store.get_item(cache.data_key))
        entries.append({"id": "broken"})
        cache.store.set_item(cache.data_key, json.dumps(entries))

        db = VectorDatabase()
        assert cache.load_sync("facts", db) == 1

    def test_corrupt_payload_loads_nothing(self, cache):
        cache.store.set_item(cache.data_key, "{not json")
        assert cache.load_sync("facts", VectorDatabase()) == 0

    def test_stats_and_clear(self, cache):
        cache.persist_sync("facts", [knowledge("f1"), knowledge("f2")])
        stats = cache.get_stats()
        assert stats["total"] == 2
        assert stats["last_update"] == NOW
        assert stats["available"] is True

        assert cache.clear() is True
        assert cache.get_stats()["total"] == 0
        assert cache.persisted_collections() == []


class TestUnavailableStore:

    def test_persist_and_load_fail_soft(self, tmp_path):
        store = DurableStore(db_path=str(tmp_path / "cache.db"), enabled=False)
        cache = PersistentVectorCache(store, key_prefix="off")
        records = [knowledge("k1")]

        assert cache.persist_sync("facts", records) is False
        assert records[0].metadata.persisted is False
        assert cache.load_sync("facts", VectorDatabase()) == 0

    def test_quota_exceeded_leaves_previous_state(self, tmp_path):
        store = DurableStore(db_path=str(tmp_path / "cache.db"), max_bytes=4000)
        cache = PersistentVectorCache(store, key_prefix="tight", clock=Clock())
        assert cache.persist_sync("facts", [knowledge("small")]) is True

        big = [knowledge(f"k{i}") for i in range(50)]
        assert cache.persist_sync("facts", big) is False
        assert cache.get_stats()["total"] == 1


class TestSemanticMemoryLifecycle:

    def make_service(self, cache):
        embeddings = EmbeddingService(DeterministicHashEmbedding(32), DeterministicHashEmbedding(32), EmbeddingCache())
        return SemanticMemoryService(VectorDatabase(), embeddings, cache)

    def test_flush_then_init_restores_knowledge(self, cache):
        first = self.make_service(cache)

        async def seed():
            ids = await first.load_knowledge([
                {"content": "Box breathing can calm acute anxiety.", "importance": "high"},
                {"content": "Sleep hygiene supports mood stability.", "category": "sleep"},
                {"content": "   "},
                {"content": "Unknown importance is skipped here.", "importance": "urgent"},
            ])
            flushed = await first.shutdown()
            return ids, flushed

        ids, flushed = asyncio.run(seed())
        assert len(ids) == 2
        assert flushed["therapeutic_knowledge"] is True

        second = self.make_service(cache)
        loaded = asyncio.run(second.init())
        assert loaded == {"therapeutic_knowledge": 2}
        record = second.vector_db.collection("therapeutic_knowledge").get(ids[0])
        assert record.metadata.importance == 0.8

    def test_turns_and_recent_partitions(self, cache):
        service = self.make_service(cache)

        async def run():
            await service.add_turn("patient", "I have been struggling to sleep", 0, "s1")
            await service.add_turn("agent", "That sounds exhausting.", 1, "s1", quality=0.9)

        asyncio.run(run())
        assert service.vector_db.get_stats() == {"user_messages": 1, "agent_responses": 1}

        service.clear_recent()
        assert service.vector_db.get_stats() == {"user_messages": 0, "agent_responses": 0}

    def test_clear_recent_for_one_session(self, cache):
        service = self.make_service(cache)

        async def run():
            await service.add_turn("patient", "I have been struggling to sleep", 0, "s1")
            await service.add_turn("agent", "That sounds exhausting.", 1, "s1", quality=0.9)
            await service.add_turn("patient", "My boss yelled at me today", 0, "s2")

        asyncio.run(run())
        assert service.clear_recent("s1") == 2
        assert service.vector_db.get_stats() == {"user_messages": 1, "agent_responses": 0}
        remaining = service.vector_db.collection("user_messages").get_all()
        assert [r.metadata.session_id for r in remaining] == ["s2"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
