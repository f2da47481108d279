from datetime import datetime

import pytest

from clausesync.database.models import ClauseRecord, ContractRecord
from clausesync.services.clause_store import ClauseStore, decode_clause
from clausesync.services.exceptions import ContractAlreadyExists, NotFound, Unauthenticated
from conftest import make_clause


@pytest.mark.asyncio
async def test_operations_need_a_user(session_factory):
    anonymous = ClauseStore(session_factory)
    with pytest.raises(Unauthenticated):
        await anonymous.load_contracts()
    with pytest.raises(Unauthenticated):
        await anonymous.save_clause("c1", make_clause("1"))


@pytest.mark.asyncio
async def test_create_contract_and_duplicate(store, admin_identity):
    summary = await store.create_contract("c1", "Main Contract")
    assert summary.meta.created_by == admin_identity.uid

    with pytest.raises(ContractAlreadyExists):
        await store.create_contract("c1", "Again")
    assert await store.ensure_contract("c1", "Again") is False
    assert (await store.get_contract_meta("c1")).title == "Main Contract"


@pytest.mark.asyncio
async def test_save_clause_requires_contract(store):
    with pytest.raises(NotFound):
        await store.save_clause("missing", make_clause("1"))


@pytest.mark.asyncio
async def test_differently_punctuated_numbers_upsert_one_row(store):
    await store.create_contract("c1", "Contract")
    await store.save_clause("c1", make_clause("4.2(a)", title="first"))
    await store.save_clause("c1", make_clause("4.2(b)", title="second"))

    clauses = await store.load_clauses("c1")
    assert len(clauses) == 1
    assert clauses[0].clause_title == "second"


@pytest.mark.asyncio
async def test_upsert_keeps_creator(store, session_factory):
    await store.create_contract("c1", "Contract")
    await store.save_clause("c1", make_clause("1", title="v1"))

    editor = store.with_user(store.user.model_copy(update={"uid": "uid-editor"}))
    await editor.save_clause("c1", make_clause("1", title="v2"))

    db = session_factory()
    try:
        record = db.get(ClauseRecord, ("c1", "C.1"))
        assert record.created_by == "uid-admin"
        assert record.title == "v2"
    finally:
        db.close()


@pytest.mark.asyncio
async def test_load_clauses_in_canonical_order(store):
    await store.create_contract("c1", "Contract")
    for number in ["10", "2.10", "2", "2.1"]:
        await store.save_clause("c1", make_clause(number))
    assert [c.clause_number for c in await store.load_clauses("c1")] == ["2", "2.1", "2.10", "10"]


@pytest.mark.asyncio
async def test_save_clauses_counts_failures(store):
    await store.create_contract("c1", "Contract")
    seen = []
    saved, failed = await store.save_clauses("c1", [make_clause("1"), make_clause("2")],
                                             lambda i, total: seen.append((i, total)))
    assert (saved, failed) == (2, 0)
    assert seen == [(0, 2), (1, 2)]

    saved, failed = await store.save_clauses("missing", [make_clause("1")])
    assert (saved, failed) == (0, 1)


@pytest.mark.asyncio
async def test_delete_clause(store):
    await store.create_contract("c1", "Contract")
    await store.save_clause("c1", make_clause("3"))
    assert await store.delete_clause("c1", "C.3") is True
    assert await store.delete_clause("c1", "C.3") is False
    assert await store.load_clauses("c1") == []


@pytest.mark.asyncio
async def test_contracts_newest_first(store, session_factory):
    await store.create_contract("old", "Old")
    await store.create_contract("new", "New")

    db = session_factory()
    try:
        db.get(ContractRecord, "old").created_at = datetime(2020, 1, 1)
        db.commit()
    finally:
        db.close()

    assert [c.id for c in await store.load_contracts()] == ["new", "old"]


@pytest.mark.asyncio
async def test_subscription_gets_snapshot_then_changes(store):
    await store.create_contract("c1", "Contract")
    await store.save_clause("c1", make_clause("2"))
    await store.feed.drain()

    received = []
    unsubscribe = store.subscribe_to_clauses("c1", received.append)
    await store.feed.drain()
    assert [c.clause_number for c in received[0].clauses] == ["2"]

    await store.save_clause("c1", make_clause("1"))
    await store.feed.drain()
    assert [c.clause_number for c in received[-1].clauses] == ["1", "2"]
    assert received[-1].revision > received[0].revision

    unsubscribe()
    unsubscribe()
    await store.save_clause("c1", make_clause("3"))
    await store.feed.drain()
    assert len(received) == 2
    assert store.feed.subscriber_count("c1") == 0


@pytest.mark.asyncio
async def test_failing_subscriber_stays_subscribed(store):
    await store.create_contract("c1", "Contract")
    calls = []

    def broken(snapshot):
        calls.append(snapshot)
        raise RuntimeError("boom")

    store.subscribe_to_clauses("c1", broken)
    await store.feed.drain()
    await store.save_clause("c1", make_clause("1"))
    await store.feed.drain()
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_bulk_save_sends_one_snapshot_per_subscriber(store):
    await store.create_contract("c1", "Contract")
    first, second = [], []
    store.subscribe_to_clauses("c1", first.append)
    store.subscribe_to_clauses("c1", second.append)
    await store.feed.drain()

    saved, failed = await store.save_clauses("c1", [make_clause(str(n)) for n in range(1, 51)])
    await store.feed.drain()

    assert (saved, failed) == (50, 0)
    for received in (first, second):
        assert len(received) == 2
        assert len(received[-1].clauses) == 50
        assert received[-1].revision == store.feed.revision("c1")


def test_decode_defaults():
    clause = decode_clause({"id": "C.7.1", "comparison": None, "time_frames": None})
    assert clause.clause_number == "7.1"
    assert clause.clause_title == ""
    assert clause.condition_type == "General"
    assert clause.comparison == []
    assert clause.has_time_frame is False


def test_decode_version_one_empty_variants():
    clause = decode_clause({
        "id": "C.1", "number": "1", "general_condition": "", "particular_condition": "",
        "condition_type": "particular", "time_frames": ["28 days"], "schema_version": 1
    })
    assert clause.general_condition is None
    assert clause.particular_condition is None
    assert clause.condition_type == "Particular"
    assert clause.has_time_frame is True
