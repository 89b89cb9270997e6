import pytest

from callworker.core.kv_store import InMemoryKeyValueStore, SQLiteKeyValueStore


@pytest.fixture(params=["sqlite", "memory"])
def store(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteKeyValueStore(db_path=str(tmp_path / "state" / "kv.db"))
    return InMemoryKeyValueStore()


@pytest.mark.asyncio
async def test_values_keep_their_types(store):
    await store.set("isWorkInProgress", True)
    await store.set("workStartTime", 1_700_000_000_123)
    await store.set("lastFileName", "job-1.mp3")

    assert await store.get("isWorkInProgress") is True
    assert await store.get("workStartTime") == 1_700_000_000_123
    assert await store.get("lastFileName") == "job-1.mp3"
    assert await store.get("missing", "fallback") == "fallback"

    await store.delete("isWorkInProgress", "workStartTime")
    assert await store.get("isWorkInProgress") is None
    assert await store.get("lastFileName") == "job-1.mp3"


@pytest.mark.asyncio
async def test_compare_and_swap(store):
    assert await store.compare_and_swap("isWorkInProgress", None, True) is True
    # Second swap from "absent" must fail: the key is now True.
    assert await store.compare_and_swap("isWorkInProgress", None, True) is False
    assert await store.compare_and_swap("isWorkInProgress", True, None) is True
    assert await store.get("isWorkInProgress") is None


def test_failed_transaction_leaves_no_writes(store):
    store.set_sync("counter", 1)

    def _boom(view):
        view.set("counter", 2)
        view.set("other", "x")
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        store.transaction_sync(_boom)

    assert store.get_sync("counter") == 1
    assert store.get_sync("other") is None


def test_sqlite_state_survives_reopen(tmp_path):
    db_path = str(tmp_path / "kv.db")
    SQLiteKeyValueStore(db_path=db_path).set_sync("simNumber1", "+15550000001")

    reopened = SQLiteKeyValueStore(db_path=db_path)
    assert reopened.get_sync("simNumber1") == "+15550000001"
