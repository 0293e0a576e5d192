from __future__ import annotations

import asyncio

import psycopg
import psycopg.errors
import pytest
from psycopg_pool import PoolTimeout

from jewelry_inventory.errors import (
    ConstraintViolation,
    OperationTimeout,
    StorageUnavailable,
    TransactionClosed,
    ValidationError,
)
from jewelry_inventory.persistence.query_builder import Page, Query
from jewelry_inventory.persistence.record_store import RecordStore


@pytest.fixture
def store(fake_pool, unit_settings) -> RecordStore:
    return RecordStore("vendors", fake_pool, settings=unit_settings)


@pytest.mark.asyncio
async def test_find_by_id_issues_single_row_select(store, fake_pool, responder) -> None:
    responder.on("SELECT * FROM vendors", [{"id": 3, "name": "Ravi"}])

    row = await store.find_by_id(3)

    assert row == {"id": 3, "name": "Ravi"}
    assert fake_pool.statements == [("SELECT * FROM vendors WHERE id = %s LIMIT %s", (3, 1))]
    assert fake_pool.acquired == fake_pool.released == 1


@pytest.mark.asyncio
async def test_find_by_id_returns_none_when_missing(store) -> None:
    assert await store.find_by_id(99) is None


@pytest.mark.asyncio
async def test_count_and_exists_read_the_count_column(store, responder) -> None:
    responder.on("SELECT COUNT(*)", [{"count": 2}])

    assert await store.count({"name": "Ravi"}) == 2
    assert await store.exists({"name": "Ravi"}) is True


@pytest.mark.asyncio
async def test_create_maps_unique_violation(store, fake_pool, responder) -> None:
    responder.on("INSERT INTO vendors", psycopg.errors.UniqueViolation("duplicate key value"))

    with pytest.raises(ConstraintViolation) as excinfo:
        await store.create({"name": "Ravi"})

    assert excinfo.value.table == "vendors"
    assert excinfo.value.sqlstate == "23505"
    assert fake_pool.connections[0].rollbacks == 1
    assert fake_pool.acquired == fake_pool.released == 1


@pytest.mark.asyncio
async def test_data_error_maps_to_validation_error(store, responder) -> None:
    responder.on("INSERT INTO vendors", psycopg.errors.NumericValueOutOfRange("out of range"))

    with pytest.raises(ValidationError):
        await store.create({"rating": 99})


@pytest.mark.asyncio
async def test_pool_exhaustion_maps_to_storage_unavailable(store, fake_pool) -> None:
    fake_pool.fail_getconn = PoolTimeout("couldn't get a connection after 1.00 sec")

    with pytest.raises(StorageUnavailable):
        await store.find_all()
    with pytest.raises(StorageUnavailable):
        await store.begin_transaction()


@pytest.mark.asyncio
async def test_update_patches_and_returns_row(store, fake_pool, responder) -> None:
    responder.on("UPDATE vendors", [{"id": 4, "name": "New"}])

    row = await store.update(4, {"name": "New"})

    assert row == {"id": 4, "name": "New"}
    sql, params = fake_pool.statements[0]
    assert "updated_at = CURRENT_TIMESTAMP" in sql
    assert params == ("New", 4)


@pytest.mark.asyncio
async def test_update_of_missing_row_returns_none(store) -> None:
    assert await store.update(4, {"name": "New"}) is None


@pytest.mark.asyncio
async def test_delete_reports_whether_a_row_went(store, responder) -> None:
    responder.on("DELETE FROM vendors WHERE id = %s", lambda sql, params: 1 if params == (1,) else 0)

    assert await store.delete(1) is True
    assert await store.delete(2) is False


@pytest.mark.asyncio
async def test_soft_delete_clears_active_flag(store, fake_pool, responder) -> None:
    responder.on("UPDATE vendors", lambda sql, params: [{"id": params[-1], "is_active": params[0]}])

    row = await store.soft_delete(5)

    assert row == {"id": 5, "is_active": False}
    assert fake_pool.sql[0].startswith("UPDATE vendors SET is_active = %s")


@pytest.mark.asyncio
async def test_transaction_runs_everything_on_one_connection(store, fake_pool) -> None:
    async with store.transaction() as tx:
        await store.create({"name": "A"}, tx=tx)
        await store.create({"name": "B"}, tx=tx)

    assert fake_pool.acquired == fake_pool.released == 1
    assert {number for number, _ in fake_pool.events} == {1}
    assert fake_pool.kinds() == ["INSERT", "INSERT", "COMMIT"]


@pytest.mark.asyncio
async def test_transaction_rolls_back_and_reraises(store, fake_pool) -> None:
    with pytest.raises(RuntimeError, match="boom"):
        async with store.transaction() as tx:
            await store.create({"name": "A"}, tx=tx)
            raise RuntimeError("boom")

    assert fake_pool.kinds() == ["INSERT", "ROLLBACK"]
    assert fake_pool.acquired == fake_pool.released == 1


@pytest.mark.asyncio
async def test_released_handle_cannot_be_reused(store) -> None:
    tx = await store.begin_transaction()
    await store.commit_transaction(tx)

    assert tx.closed
    with pytest.raises(TransactionClosed):
        await store.create({"name": "late"}, tx=tx)
    # Releasing twice is harmless.
    await tx.release()
    await store.rollback_transaction(tx)


@pytest.mark.asyncio
async def test_failed_commit_still_releases_connection(store, fake_pool) -> None:
    fake_pool.fail_commit = psycopg.OperationalError("server closed the connection")
    tx = await store.begin_transaction()

    with pytest.raises(StorageUnavailable):
        await store.commit_transaction(tx)

    assert tx.closed
    assert fake_pool.acquired == fake_pool.released == 1


@pytest.mark.asyncio
async def test_failed_rollback_still_releases_connection(store, fake_pool) -> None:
    fake_pool.fail_rollback = psycopg.OperationalError("server closed the connection")
    tx = await store.begin_transaction()

    with pytest.raises(StorageUnavailable):
        await store.rollback_transaction(tx)

    assert tx.closed
    assert fake_pool.acquired == fake_pool.released == 1


@pytest.mark.asyncio
async def test_batch_create_is_all_or_nothing(store, fake_pool, responder) -> None:
    calls = {"n": 0}

    def second_insert_fails(sql, params):
        calls["n"] += 1
        if calls["n"] == 2:
            return psycopg.errors.UniqueViolation("duplicate key value")
        return [{"id": calls["n"], "name": params[0]}]

    responder.on("INSERT INTO vendors", second_insert_fails)

    with pytest.raises(ConstraintViolation):
        await store.batch_create([{"name": "A"}, {"name": "B"}, {"name": "C"}])

    assert fake_pool.kinds() == ["INSERT", "INSERT", "ROLLBACK"]
    assert fake_pool.acquired == fake_pool.released == 1


@pytest.mark.asyncio
async def test_batch_create_of_nothing_touches_nothing(store, fake_pool) -> None:
    assert await store.batch_create([]) == []
    assert fake_pool.acquired == 0


@pytest.mark.asyncio
async def test_transaction_deadline_rolls_back(fake_pool, responder, unit_settings) -> None:
    settings = unit_settings.model_copy(update={"db_transaction_timeout_seconds": 0.05})
    store = RecordStore("vendors", fake_pool, settings=settings)

    async def slow(sql, params):
        await asyncio.sleep(1)
        return []

    responder.on("SELECT", slow)

    with pytest.raises(OperationTimeout):
        async with store.transaction() as tx:
            await store.find_all(tx=tx)

    assert fake_pool.kinds() == ["SELECT", "ROLLBACK"]
    assert fake_pool.acquired == fake_pool.released == 1


@pytest.mark.asyncio
async def test_explicit_handle_deadline_rolls_back_and_releases(fake_pool, responder, unit_settings) -> None:
    settings = unit_settings.model_copy(update={"db_transaction_timeout_seconds": 0.05})
    store = RecordStore("vendors", fake_pool, settings=settings)

    async def slow(sql, params):
        await asyncio.sleep(1)
        return []

    responder.on("SELECT", slow)
    tx = await store.begin_transaction()

    with pytest.raises(OperationTimeout):
        await store.find_all(tx=tx)

    assert tx.closed
    assert fake_pool.kinds() == ["SELECT", "ROLLBACK"]
    assert fake_pool.acquired == fake_pool.released == 1
    with pytest.raises(TransactionClosed):
        await store.commit_transaction(tx)
    await store.rollback_transaction(tx)


@pytest.mark.asyncio
async def test_single_statement_deadline(fake_pool, responder, unit_settings) -> None:
    settings = unit_settings.model_copy(update={"db_operation_timeout_seconds": 0.05})
    store = RecordStore("vendors", fake_pool, settings=settings)

    async def slow(sql, params):
        await asyncio.sleep(1)
        return []

    responder.on("SELECT", slow)

    with pytest.raises(OperationTimeout):
        await store.find_all()
    assert fake_pool.acquired == fake_pool.released == 1


@pytest.mark.asyncio
async def test_statement_timeout_is_set_per_transaction(fake_pool, unit_settings) -> None:
    settings = unit_settings.model_copy(update={"db_statement_timeout_ms": 1500})
    store = RecordStore("vendors", fake_pool, settings=settings)

    async with store.transaction() as tx:
        await store.find_all(page=Page(1), tx=tx)

    assert fake_pool.sql[0] == "SET LOCAL statement_timeout = 1500"


@pytest.mark.asyncio
async def test_isolation_level_is_reset_before_release(store, fake_pool) -> None:
    async with store.transaction(isolation_level=psycopg.IsolationLevel.REPEATABLE_READ):
        pass

    conn = fake_pool.connections[0]
    assert conn.isolation_levels == [psycopg.IsolationLevel.REPEATABLE_READ, None]


@pytest.mark.asyncio
async def test_raw_query_returns_rows(store, responder) -> None:
    responder.on("SELECT 1", [{"one": 1}])

    assert await store.query(Query("SELECT 1 AS one")) == [{"one": 1}]
