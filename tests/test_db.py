"""
Tests for the durable key-value store: atomic writes, quota and fail-soft behavior.
"""

import pytest

from replyguard.core.db import DurableStore


@pytest.fixture
def store(tmp_path):
    return DurableStore(db_path=str(tmp_path / "cache.db"), enabled=True, max_bytes=1024)


def test_set_and_get_items(store):
    assert store.set_items({"a": "one", "b": "two"}) is True
    assert store.get_item("a") == "one"
    assert store.get_items(["a", "b", "missing"]) == {"a": "one", "b": "two"}


def test_in_memory_store_keeps_data_between_calls():
    store = DurableStore(db_path=":memory:", enabled=True, max_bytes=1024)
    assert store.set_items({"a": "one"}) is True
    assert store.get_item("a") == "one"
    assert store.health_check()["keys"] == 1
    assert store.remove_items(["a"]) is True
    assert store.get_item("a") is None

    store.set_item("b", "two")
    store.close()
    assert store.get_item("b") is None


def test_overwrite_replaces_value(store):
    store.set_item("a", "one")
    store.set_item("a", "uno")
    assert store.get_item("a") == "uno"


def test_quota_rejects_whole_write(store):
    store.set_item("existing", "x" * 600)
    assert store.set_items({"new": "y" * 300, "other": "z" * 300}) is False

    assert store.get_item("new") is None
    assert store.get_item("other") is None
    assert store.get_item("existing") == "x" * 600
    assert store.get_stats()["quota_rejections"] == 1


def test_quota_counts_replaced_keys_once(store):
    store.set_item("payload", "x" * 900)
    # replacing the same key frees its old bytes
    assert store.set_item("payload", "y" * 900) is True


def test_remove_items(store):
    store.set_items({"a": "1", "b": "2"})
    assert store.remove_items(["a"]) is True
    assert store.get_item("a") is None
    assert store.get_item("b") == "2"


def test_disabled_store_is_noop(tmp_path):
    store = DurableStore(db_path=str(tmp_path / "cache.db"), enabled=False)
    assert store.available is False
    assert store.set_item("a", "1") is False
    assert store.get_item("a") is None
    assert store.health_check()["status"] == "disabled"


def test_unavailable_store_never_raises(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("file in the way")
    store = DurableStore(db_path=str(blocker / "cache.db"))

    assert store.available is False
    assert store.set_item("a", "1") is False
    assert store.get_items(["a"]) == {}
    assert store.health_check()["status"] == "unavailable"


def test_health_check_reports_key_count(store):
    store.set_items({"a": "1", "b": "2"})
    health = store.health_check()
    assert health["status"] == "healthy"
    assert health["keys"] == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
