import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from bgqueue.queue.lock import ProcessLock
from bgqueue.store.kv import JsonFileStore, MemoryStore
from bgqueue.store.storage import StoreDocument, StoreError


@pytest.fixture(params=["memory", "file"])
def kv(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return JsonFileStore(str(tmp_path / "queue"))


def test_put_get_and_default(kv):
    kv.put("a", {"x": 1})

    assert kv.get("a") == {"x": 1}
    assert kv.get("missing") is None
    assert kv.get("missing", "default") == "default"


def test_first_by_prefix_follows_insertion_order(kv):
    kv.put("job_batch_b", 1)
    kv.put("job_batch_a", 2)
    kv.put("other_batch_c", 3)
    # Replacing a row keeps its place in line
    kv.put("job_batch_b", 10)

    assert kv.first_by_prefix("job_batch_") == ("job_batch_b", 10)
    assert kv.first_by_prefix("job_batch_", ascending=False) == ("job_batch_a", 2)
    assert kv.first_by_prefix("nothing_") is None


def test_prefix_scans_can_skip_a_suffix(kv):
    kv.put("job_batch_1", [1])
    kv.put("job_batch_1_group", "default")
    kv.put("job_batch_2", [2])

    assert kv.count_by_prefix("job_batch_") == 3
    assert kv.count_by_prefix("job_batch_", exclude_suffix="_group") == 2
    kv.delete("job_batch_1")
    assert kv.first_by_prefix("job_batch_", exclude_suffix="_group") == ("job_batch_2", [2])


def test_add_refuses_a_live_key(kv):
    assert kv.add("job_batch_1", {"0": "a"}) is True
    assert kv.add("job_batch_1", {"0": "b"}) is False
    assert kv.get("job_batch_1") == {"0": "a"}

    kv.put("lease", "old", ttl=0.05)
    time.sleep(0.1)
    assert kv.add("lease", "new") is True
    assert kv.get("lease") == "new"


def test_update_only_touches_existing_rows(kv):
    kv.put("a", 1)

    assert kv.update("a", 2) is True
    assert kv.get("a") == 2
    assert kv.update("gone", 3) is False
    assert kv.get("gone") is None


def test_delete_removes_several_keys(kv):
    kv.put("a", 1)
    kv.put("b", 2)

    assert kv.delete("a", "b", "c") == 2
    assert kv.count_by_prefix("") == 0


def test_rows_with_ttl_expire(kv):
    kv.put("lock", "held", ttl=0.05)
    assert kv.get("lock") == "held"

    time.sleep(0.1)

    assert kv.get("lock") is None
    assert kv.count_by_prefix("lock") == 0
    assert kv.update("lock", "again") is False


def test_memory_store_purges_expired_rows_on_request():
    kv = MemoryStore()
    kv.put("lock", "held", ttl=0.05)
    kv.put("batch", [1])
    time.sleep(0.1)

    assert kv.purge_expired() == 1
    assert kv.purge_expired() == 0
    assert list(kv._snapshot()["entries"]) == ["batch"]


def test_file_store_prunes_expired_rows_on_next_write(tmp_path):
    kv = JsonFileStore(str(tmp_path / "queue"))
    kv.put("lock", "held", ttl=0.05)
    time.sleep(0.1)

    kv.put("batch", [1])

    document, _ = kv.document.snapshot()
    assert list(document["entries"]) == ["batch"]


def test_file_store_survives_reopen(tmp_path):
    base = str(tmp_path / "queue")
    JsonFileStore(base).put("persisted", [1, 2, 3])

    assert JsonFileStore(base).get("persisted") == [1, 2, 3]


def test_file_store_rejects_unserialisable_values(tmp_path):
    kv = JsonFileStore(str(tmp_path / "queue"))

    with pytest.raises(StoreError):
        kv.put("bad", object())
    assert kv.get("bad") is None


def test_memory_store_copies_values():
    kv = MemoryStore()
    items = ["a"]
    kv.put("k", items)
    items.append("b")

    assert kv.get("k") == ["a"]


def test_concurrent_commits_are_never_lost(tmp_path):
    base = str(tmp_path / "counter")
    workers, increments = 4, 10
    StoreDocument(base)

    def increment_counter(document):
        document["counter"] = document.get("counter", 0) + 1
        return document["counter"]

    def worker():
        document = StoreDocument(base)
        for _ in range(increments):
            document.transact(increment_counter, max_retries=50, base_delay=0.001)

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(worker) for _ in range(workers)]
        for future in futures:
            future.result()

    data, version = StoreDocument(base).snapshot()
    assert data["counter"] == workers * increments
    assert version == workers * increments


def test_commit_rejects_a_stale_version(tmp_path):
    document = StoreDocument(str(tmp_path / "queue"))
    data, version = document.snapshot()

    assert document.commit({"entries": {}}, version) == (True, version + 1)
    assert document.commit({"entries": {"late": {}}}, version) == (False, version + 1)
    assert document.snapshot() == ({"entries": {}}, version + 1)


def test_process_lock_is_time_bound(kv):
    lock = ProcessLock(kv, "job_process_lock")

    assert lock.try_acquire(0.05) is True
    assert lock.try_acquire(0.05) is False
    assert lock.is_held()

    time.sleep(0.1)
    assert not lock.is_held()
    assert lock.try_acquire(60) is True

    lock.release()
    assert not lock.is_held()
