"""Test suite for the in-memory document store."""

import asyncio

import pytest

from pair_chat.domain.exceptions import DocumentMissingError, StoreError, TransactionConflictError
from pair_chat.repositories.base import Filter, OrderBy
from pair_chat.repositories.memory import InMemoryChatStore


@pytest.mark.asyncio
async def test_set_get_and_merge():
    """Merged sets keep fields they do not mention."""
    store = InMemoryChatStore()
    await store.set("rooms/r1", {"a": 1, "nested": {"x": 1}})
    await store.set("rooms/r1", {"b": 2, "nested": {"y": 2}}, merge=True)

    snapshot = await store.get("rooms/r1")
    assert snapshot.exists
    assert snapshot.id == "r1"
    assert snapshot.data == {"a": 1, "b": 2, "nested": {"x": 1, "y": 2}}

    await store.set("rooms/r1", {"c": 3})
    assert (await store.get("rooms/r1")).data == {"c": 3}


@pytest.mark.asyncio
async def test_snapshots_are_copies():
    store = InMemoryChatStore()
    await store.set("rooms/r1", {"tags": {"a": True}})
    snapshot = await store.get("rooms/r1")
    snapshot.data["tags"]["b"] = True
    assert (await store.get("rooms/r1")).data == {"tags": {"a": True}}


@pytest.mark.asyncio
async def test_update_nested_fields():
    """Dotted and tuple keys address nested map fields."""
    store = InMemoryChatStore()
    await store.set("rooms/r1", {"seen": False})
    await store.update("rooms/r1", {"deletedFor.bob": True})
    await store.update("rooms/r1", {("deletedFor", "jane.doe"): True})

    data = (await store.get("rooms/r1")).data
    assert data["deletedFor"] == {"bob": True, "jane.doe": True}
    assert data["seen"] is False


@pytest.mark.asyncio
async def test_update_missing_document_fails():
    store = InMemoryChatStore()
    with pytest.raises(DocumentMissingError):
        await store.update("rooms/nope", {"a": 1})


@pytest.mark.asyncio
async def test_delete_is_idempotent():
    store = InMemoryChatStore()
    await store.set("rooms/r1", {"a": 1})
    await store.delete("rooms/r1")
    await store.delete("rooms/r1")
    assert not (await store.get("rooms/r1")).exists


@pytest.mark.asyncio
async def test_invalid_paths_rejected():
    store = InMemoryChatStore()
    with pytest.raises(StoreError):
        await store.get("rooms")
    with pytest.raises(StoreError):
        await store.query("rooms/r1")


@pytest.mark.asyncio
async def test_query_filters_order_and_limit():
    """Queries only see direct children and skip documents missing the ordered field."""
    store = InMemoryChatStore()
    for i, sender in enumerate(["a", "b", "a", "b", "a"]):
        await store.set(f"rooms/r1/messages/m{i}", {"timestamp": i * 10, "senderId": sender})
    await store.set("rooms/r1/messages/no-ts", {"senderId": "b"})
    await store.set("rooms/r2/messages/other", {"timestamp": 5, "senderId": "b"})

    results = await store.query(
        "rooms/r1/messages",
        filters=[Filter("senderId", "!=", "a")],
        order_by=OrderBy("timestamp", descending=True),
    )
    assert [s.id for s in results] == ["m3", "m1"]

    limited = await store.query(
        "rooms/r1/messages",
        filters=[Filter("timestamp", "<", 40)],
        order_by=OrderBy("timestamp", descending=True),
        limit=2,
    )
    assert [s.data["timestamp"] for s in limited] == [30, 20]


def test_filter_rejects_unknown_operator():
    with pytest.raises(ValueError):
        Filter("a", "~=", 1)


@pytest.mark.asyncio
async def test_batch_is_all_or_nothing():
    """A batch with one invalid update writes nothing."""
    store = InMemoryChatStore()
    await store.set("rooms/r1", {"seen": False})

    batch = store.batch()
    batch.update("rooms/r1", {"seen": True})
    batch.update("rooms/missing", {"seen": True})
    with pytest.raises(DocumentMissingError):
        await batch.commit()

    assert (await store.get("rooms/r1")).data == {"seen": False}


@pytest.mark.asyncio
async def test_batch_can_update_document_it_creates():
    store = InMemoryChatStore()
    batch = store.batch().set("rooms/r1", {"a": 1}).update("rooms/r1", {"b": 2})
    await batch.commit()
    assert (await store.get("rooms/r1")).data == {"a": 1, "b": 2}


@pytest.mark.asyncio
async def test_transaction_commits_buffered_writes():
    store = InMemoryChatStore()

    async def fn(txn):
        snapshot = await txn.get("counters/c")
        value = snapshot.data["value"] if snapshot.exists else 0
        txn.set("counters/c", {"value": value + 1})
        return value + 1

    assert await store.run_transaction(fn) == 1
    assert await store.run_transaction(fn) == 2
    assert (await store.get("counters/c")).data == {"value": 2}


@pytest.mark.asyncio
async def test_concurrent_transactions_serialize():
    """Read-modify-write increments never lose an update."""
    store = InMemoryChatStore(max_attempts=50)

    async def increment(txn):
        snapshot = await txn.get("counters/c")
        value = snapshot.data["value"] if snapshot.exists else 0
        txn.set("counters/c", {"value": value + 1})

    await asyncio.gather(*[store.run_transaction(increment) for _ in range(20)])
    assert (await store.get("counters/c")).data == {"value": 20}


@pytest.mark.asyncio
async def test_conflict_exhaustion_raises():
    """With a single attempt, the loser of a race fails instead of retrying."""
    store = InMemoryChatStore(max_attempts=1)

    async def increment(txn):
        snapshot = await txn.get("counters/c")
        value = snapshot.data["value"] if snapshot.exists else 0
        txn.set("counters/c", {"value": value + 1})

    results = await asyncio.gather(
        store.run_transaction(increment),
        store.run_transaction(increment),
        return_exceptions=True,
    )
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], TransactionConflictError)
    assert isinstance(failures[0], StoreError)
    assert (await store.get("counters/c")).data == {"value": 1}


@pytest.mark.asyncio
async def test_transaction_error_discards_writes():
    store = InMemoryChatStore()

    async def fn(txn):
        await txn.get("rooms/r1")
        txn.set("rooms/r1", {"a": 1})
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await store.run_transaction(fn)
    assert not (await store.get("rooms/r1")).exists


@pytest.mark.asyncio
async def test_transaction_reads_must_precede_writes():
    store = InMemoryChatStore()

    async def fn(txn):
        txn.set("rooms/r1", {"a": 1})
        await txn.get("rooms/r2")

    with pytest.raises(StoreError):
        await store.run_transaction(fn)


def test_new_ids_are_unique():
    store = InMemoryChatStore()
    ids = {store.new_id() for _ in range(500)}
    assert len(ids) == 500
    assert all(len(i) == 20 for i in ids)
