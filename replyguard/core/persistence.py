"""
Persistent cache layer for vector collections.
Serializes collection records into the durable key-value store and applies the
eviction policy (expiry, quality gate, per-collection cap, global cap with a
reserved share for priority collections).
"""

import asyncio
import json
import time
from typing import Dict, Iterable, List, Optional, Tuple

from util.logging import logger
from replyguard.vector.index import VectorDatabase
from replyguard.vector.types import PersistedVectorRecord, VectorRecord
from .config import (
    CACHE_EXPIRATION_SEC,
    CACHE_KEY_PREFIX,
    CACHE_MAX_PER_COLLECTION,
    CACHE_MAX_RECORDS,
    CACHE_MIN_TEXT_LENGTH,
    PERSIST_QUALITY_THRESHOLD,
    PRIORITY_COLLECTIONS,
    PRIORITY_MAX_SHARE,
    PRIORITY_MIN_SHARE,
)
from .db import DurableStore


def allocate_slots(priority_count: int, other_count: int, cap: int,
                   min_share: float = PRIORITY_MIN_SHARE,
                   max_share: float = PRIORITY_MAX_SHARE) -> Tuple[int, int]:
    """Split ``cap`` slots between priority and non-priority records.

    Priority records are guaranteed ``min_share`` of the cap and may take up to
    ``max_share`` while non-priority records compete for the rest. Slots either
    side leaves unused go to the other side.
    """
    if priority_count + other_count <= cap:
        return priority_count, other_count

    floor = min(priority_count, int(cap * min_share))
    ceiling = max(floor, int(cap * max_share))
    priority_slots = min(priority_count, ceiling)
    other_slots = min(other_count, cap - priority_slots)
    priority_slots = min(priority_count, cap - other_slots)
    return priority_slots, other_slots


def _most_recent(records: List[PersistedVectorRecord], limit: int) -> List[PersistedVectorRecord]:
    return sorted(records, key=lambda r: r.timestamp, reverse=True)[:max(0, limit)]


class PersistentVectorCache:
    """
    Durable, bounded copy of vector collections.

    All records live under one payload key so a flush replaces the whole
    persisted set in a single atomic write. Companion keys hold the
    collection-to-ids index, the last update time and aggregate stats.
    """

    def __init__(self, store: DurableStore,
                 key_prefix: str = CACHE_KEY_PREFIX,
                 max_records: int = CACHE_MAX_RECORDS,
                 max_per_collection: int = CACHE_MAX_PER_COLLECTION,
                 expiration_sec: float = CACHE_EXPIRATION_SEC,
                 min_text_length: int = CACHE_MIN_TEXT_LENGTH,
                 priority_collections: Optional[Iterable[str]] = None,
                 priority_min_share: float = PRIORITY_MIN_SHARE,
                 priority_max_share: float = PRIORITY_MAX_SHARE,
                 clock=time.time):
        self.store = store
        self.max_records = max_records
        self.max_per_collection = max_per_collection
        self.expiration_sec = expiration_sec
        self.min_text_length = min_text_length
        self.priority_collections = set(
            PRIORITY_COLLECTIONS if priority_collections is None else priority_collections
        )
        self.priority_min_share = priority_min_share
        self.priority_max_share = priority_max_share
        self._clock = clock

        self.data_key = f"{key_prefix}_data"
        self.index_key = f"{key_prefix}_index"
        self.updated_key = f"{key_prefix}_updated"
        self.stats_key = f"{key_prefix}_stats"

    @property
    def available(self) -> bool:
        return self.store.available

    def is_priority(self, collection_name: str) -> bool:
        return collection_name in self.priority_collections

    def should_persist(self, collection_name: str, record: VectorRecord) -> bool:
        """Quality gate applied to incoming records."""
        if len(record.text.strip()) < self.min_text_length:
            return False
        if self.is_priority(collection_name):
            return True

        quality = record.metadata.quality or 0.0
        importance = record.metadata.importance_value or 0.0
        return quality > PERSIST_QUALITY_THRESHOLD or importance > PERSIST_QUALITY_THRESHOLD

    def _is_expired(self, record: PersistedVectorRecord, now: float) -> bool:
        return now - record.persisted_at > self.expiration_sec

    def _read_all(self) -> List[PersistedVectorRecord]:
        raw = self.store.get_item(self.data_key)
        if not raw:
            return []

        try:
            entries = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.log_persistence("read", status="failed", details={"error": f"corrupt payload: {e}"})
            return []

        records = []
        for entry in entries:
            try:
                records.append(PersistedVectorRecord.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable cached record: {e}")
        return records

    def _enforce_global_cap(self, records: List[PersistedVectorRecord]) -> List[PersistedVectorRecord]:
        if len(records) <= self.max_records:
            return records

        priority = [r for r in records if self.is_priority(r.collection_name)]
        others = [r for r in records if not self.is_priority(r.collection_name)]
        priority_slots, other_slots = allocate_slots(
            len(priority), len(others), self.max_records,
            self.priority_min_share, self.priority_max_share,
        )
        kept = _most_recent(priority, priority_slots) + _most_recent(others, other_slots)

        logger.log_persistence("evict", details={
            "dropped": len(records) - len(kept),
            "priority_kept": priority_slots,
            "other_kept": other_slots,
        })
        return kept

    def _build_payload(self, records: List[PersistedVectorRecord], now: float) -> Dict[str, str]:
        index: Dict[str, List[str]] = {}
        for record in records:
            index.setdefault(record.collection_name, []).append(record.id)

        stats = {
            "total": len(records),
            "collections": {name: len(ids) for name, ids in index.items()},
            "last_update": now,
        }
        return {
            self.data_key: json.dumps([r.to_dict() for r in records]),
            self.index_key: json.dumps(index),
            self.updated_key: str(now),
            self.stats_key: json.dumps(stats),
        }

    def persist_sync(self, collection_name: str, records: Iterable[VectorRecord]) -> bool:
        """Merge ``records`` into the persisted set for ``collection_name``."""
        if not self.available:
            return False

        now = self._clock()
        existing = [r for r in self._read_all() if not self._is_expired(r, now)]

        accepted = [r for r in records if self.should_persist(collection_name, r)]
        accepted = sorted(accepted, key=lambda r: r.timestamp, reverse=True)[:self.max_per_collection]
        persisted = [PersistedVectorRecord.from_record(r, collection_name, now) for r in accepted]

        others = [r for r in existing if r.collection_name != collection_name]
        merged = self._enforce_global_cap(others + persisted)

        ok = self.store.set_items(self._build_payload(merged, now))
        if ok:
            for record in accepted:
                record.metadata.persisted = True
                record.metadata.persisted_at = now
            logger.log_persistence("persist", collection_name, details={
                "accepted": len(accepted),
                "total": len(merged),
            })
        return ok

    async def persist(self, collection_name: str, records: Iterable[VectorRecord]) -> bool:
        return await asyncio.to_thread(self.persist_sync, collection_name, list(records))

    def load_sync(self, collection_name: str, vector_db: VectorDatabase) -> int:
        """Insert the non-expired persisted records of one collection."""
        if not self.available:
            return 0

        now = self._clock()
        collection = vector_db.collection(collection_name)
        loaded = 0
        for persisted in self._read_all():
            if persisted.collection_name != collection_name or self._is_expired(persisted, now):
                continue
            try:
                collection.insert(persisted.to_record())
            except ValueError as e:
                logger.warning(f"Skipping cached record {persisted.id}: {e}")
                continue
            loaded += 1

        logger.log_persistence("load", collection_name, details={"loaded": loaded})
        return loaded

    async def load(self, collection_name: str, vector_db: VectorDatabase) -> int:
        return await asyncio.to_thread(self.load_sync, collection_name, vector_db)

    def persisted_collections(self) -> List[str]:
        """Names of collections that currently have persisted records."""
        raw = self.store.get_item(self.index_key)
        if not raw:
            return []
        try:
            return list(json.loads(raw).keys())
        except (json.JSONDecodeError, AttributeError):
            return []

    def get_stats(self) -> Dict[str, object]:
        """Aggregate stats written alongside the last flush."""
        raw = self.store.get_item(self.stats_key)
        if not raw:
            return {"total": 0, "collections": {}, "last_update": None, "available": self.available}
        try:
            stats = json.loads(raw)
        except json.JSONDecodeError:
            stats = {"total": 0, "collections": {}, "last_update": None}
        stats["available"] = self.available
        return stats

    def clear(self) -> bool:
        """Drop every persisted key."""
        ok = self.store.remove_items([self.data_key, self.index_key, self.updated_key, self.stats_key])
        if ok:
            logger.log_persistence("clear")
        return ok
