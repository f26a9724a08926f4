"""
Integration tests against in-memory SQLite
"""

import threading
import time
from datetime import datetime
from typing import Optional

import pandas as pd
import pytest
from pydantic import BaseModel

from littleorm import column, open_database
from littleorm.core.driver import SQLAlchemyDriver
from littleorm.exceptions import NoRowsError, QueryTimeoutError, TransactionClosedError

pytestmark = pytest.mark.integration

TABLE = "little_orm"
NAME = "allen"
AGE = 18


class LittleOrm(BaseModel):
    id: int = column("id", default=0)
    name: str = column("name", default="")
    age: int = column("age", default=0)
    created_at: Optional[datetime] = column("created_at")
    updated_at: Optional[datetime] = column("updated_at")


@pytest.fixture
def seeded_db(sqlite_db):
    """Database with three rows: allen/18, allen/20, allen-3/21."""
    sqlite_db.acquire().name(TABLE).insert({"name": NAME, "age": AGE})
    sqlite_db.acquire().name(TABLE).insert_batch(
        ["name", "age"], [NAME, AGE + 2], [f"{NAME}-3", AGE + 3]
    )
    return sqlite_db


class TestInsert:
    """Test write paths."""

    def test_insert(self, sqlite_db):
        result = sqlite_db.acquire().name(TABLE).insert({"name": NAME, "age": AGE})
        assert result.lastrowid == 1
        assert result.rowcount == 1

    def test_insert_batch(self, sqlite_db):
        result = sqlite_db.acquire().name(TABLE).insert_batch(
            ["name", "age"], [NAME, AGE + 2], [f"{NAME}-3", AGE + 3]
        )
        assert result.rowcount == 2

    def test_exec(self, seeded_db):
        result = seeded_db.acquire().exec(
            f"insert into {TABLE} (name, age) values (?, ?)", f"{NAME}-exec", AGE + 1
        )
        assert result.rowcount == 1
        assert result.lastrowid == 4


class TestRead:
    """Test read paths."""

    def test_get(self, seeded_db):
        little = seeded_db.acquire().get(LittleOrm, f"select * from {TABLE} where id=?", 1)
        assert little.id == 1
        assert isinstance(little.created_at, datetime)

    def test_select(self, seeded_db):
        littles = seeded_db.acquire().select(LittleOrm, f"select * from {TABLE}")
        assert len(littles) == 3

    def test_find_one(self, seeded_db):
        little = (seeded_db.acquire().name(TABLE).what(["id", "name", "age"])
                  .where("id=?", 1).find_one(LittleOrm))
        assert little.id == 1
        assert little.name == NAME
        assert little.age == AGE
        assert little.created_at is None

    def test_find_one_count(self, seeded_db):
        total = seeded_db.acquire().name(TABLE).what(["count(id) as total"]).find_one(int)
        assert total == 3

    def test_find_without_what(self, seeded_db):
        """Columns come from the model declaration."""
        little = seeded_db.acquire().name(TABLE).where("id=?", 1).find_one(LittleOrm)
        assert little.id == 1
        assert little.updated_at is not None

    def test_find_one_missing(self, seeded_db):
        with pytest.raises(NoRowsError):
            seeded_db.acquire().name(TABLE).where("id=?", 99).find_one(LittleOrm)

    def test_find_many(self, seeded_db):
        littles = seeded_db.acquire().name(TABLE).find_many(LittleOrm)
        assert len(littles) == 3

    def test_order(self, seeded_db):
        littles = (seeded_db.acquire().name(TABLE).what(["id", "name", "age"])
                   .order("id desc").find_many(LittleOrm))
        assert [little.id for little in littles] == [3, 2, 1]

    def test_group_having(self, seeded_db):
        """Filter parameters bind before having parameters."""
        totals = (seeded_db.acquire().name(TABLE).what(["sum(age) as total"])
                  .where("id > ?", 0).group("name").having("sum(age) > ?", 30)
                  .find_many(int))
        assert totals == [38]

    def test_where_in(self, seeded_db):
        littles = seeded_db.acquire().name(TABLE).where_in("id", [1, 2]).find_many(LittleOrm)
        assert len(littles) == 2

    def test_limit(self, seeded_db):
        littles = (seeded_db.acquire().name(TABLE).where_in("id", [1, 2, 3])
                   .order("id").offset(1).limit(2).find_many(LittleOrm))
        assert [little.id for little in littles] == [2, 3]

    def test_find_frame(self, seeded_db):
        frame = seeded_db.acquire().name(TABLE).what(["id", "age"]).order("id").find_frame()
        assert isinstance(frame, pd.DataFrame)
        assert list(frame.columns) == ["id", "age"]
        assert list(frame["age"]) == [18, 20, 21]


class TestUpdateDelete:
    """Test update and delete."""

    def test_update(self, seeded_db):
        rows = (seeded_db.acquire().name(TABLE).where("id=?", 2)
                .update("name=?, age=age+?", f"{NAME}-update", 2))
        assert rows == 1

        little = seeded_db.acquire().name(TABLE).where("id=?", 2).find_one(LittleOrm)
        assert little.name == f"{NAME}-update"
        assert little.age == AGE + 4

    def test_update_map(self, seeded_db):
        rows = (seeded_db.acquire().name(TABLE).where("id=?", 2)
                .update_map({"name": f"{NAME}-updatemap", "age": 10}))
        assert rows == 1

        little = seeded_db.acquire().name(TABLE).where("id=?", 2).find_one(LittleOrm)
        assert little.age == 10

    def test_delete(self, seeded_db):
        assert seeded_db.acquire().name(TABLE).where("id=?", 3).delete() == 1
        assert seeded_db.acquire().name(TABLE).what(["count(*)"]).find_one(int) == 2

    def test_drop(self, seeded_db):
        seeded_db.acquire().name(TABLE).drop()
        tables = seeded_db.acquire().select(
            str, "select name from sqlite_master where type='table' and name=?", TABLE
        )
        assert tables == []


class TestTransactions:
    """Test the transaction helper end to end."""

    @staticmethod
    def update_age(db):
        def unit(tx, age):
            little = db.acquire_tx(tx).name(TABLE).where("id=?", 1).find_one(LittleOrm)
            rows = db.acquire_tx(tx).name(TABLE).where("id=?", little.id).update("age=age+?", age)
            if rows != 1:
                raise RuntimeError("update row affect error")
            return little.age + age
        return unit

    def test_with_tx_commits(self, seeded_db):
        assert seeded_db.with_tx(self.update_age(seeded_db), 100) == AGE + 100

        little = seeded_db.acquire().name(TABLE).where("id=?", 1).find_one(LittleOrm)
        assert little.age == AGE + 100

    def test_with_tx_rolls_back(self, seeded_db):
        def unit(tx, age):
            seeded_db.acquire_tx(tx).name(TABLE).where("id=?", 1).update("age=?", age)
            raise ValueError("abort")

        with pytest.raises(ValueError, match="abort"):
            seeded_db.with_tx(unit, 1)

        little = seeded_db.acquire().name(TABLE).where("id=?", 1).find_one(LittleOrm)
        assert little.age == AGE

    def test_finished_transaction_rejects_statements(self, seeded_db):
        with seeded_db.transaction() as tx:
            pass
        with pytest.raises(TransactionClosedError):
            seeded_db.acquire_tx(tx).name(TABLE).find_many(LittleOrm)


class TestDriver:
    """Test the SQLAlchemy driver directly."""

    def test_expired_deadline(self, sqlite_db):
        driver = sqlite_db.driver
        assert isinstance(driver, SQLAlchemyDriver)
        with pytest.raises(QueryTimeoutError):
            driver.execute("select 1", (), deadline=0.0)

    def test_driver_error_propagates(self, sqlite_db):
        from sqlalchemy.exc import OperationalError

        with pytest.raises(OperationalError):
            sqlite_db.acquire().name("no_such_table").find_many()
        assert sqlite_db.pool.get_stats()['checked_out_contexts'] == 0


def slow(seconds):
    time.sleep(seconds)
    return 1


def retry_until_free(read, limit=5.0):
    """Run `read`, retrying while a deferred rollback still owns the connection."""
    deadline = time.monotonic() + limit
    while True:
        try:
            return read()
        except QueryTimeoutError:
            if time.monotonic() > deadline:
                raise


class TestSharedConnection:
    """In-memory SQLite hands every caller the same connection."""

    @pytest.fixture
    def values_db(self, sqlite_db):
        sqlite_db.acquire().create("create table t (v integer)")
        return sqlite_db

    def test_driver_serializes_shared_connection(self, values_db, tmp_path):
        assert values_db.driver.shares_connection is True

        database = open_database(f"sqlite:///{tmp_path / 'file.db'}")
        try:
            assert database.driver.shares_connection is False
        finally:
            database.close()

    def test_concurrent_write_waits_for_transaction(self, values_db):
        """A write from another thread is not committed along with a transaction that rolls back."""
        inserted = threading.Event()
        proceed = threading.Event()
        errors = []

        def unit(tx, arg):
            values_db.acquire_tx(tx).name("t").insert({"v": 1})
            inserted.set()
            proceed.wait(5)
            raise ValueError("abort")

        def run_transaction():
            try:
                values_db.with_tx(unit)
            except ValueError as e:
                errors.append(e)

        def write_outside():
            values_db.acquire().name("t").insert({"v": 2})

        tx_thread = threading.Thread(target=run_transaction)
        tx_thread.start()
        assert inserted.wait(5)

        writer = threading.Thread(target=write_outside)
        writer.start()
        time.sleep(0.2)
        # still waiting for the transaction to finish
        assert writer.is_alive()

        proceed.set()
        tx_thread.join(5)
        writer.join(5)

        assert len(errors) == 1
        assert values_db.acquire().select(None, "select v from t") == [{"v": 2}]

    def test_outside_statement_times_out_while_transaction_open(self, values_db):
        """Statements outside the transaction wait no longer than the timeout."""
        values_db.timeout = 0.2
        with values_db.transaction():
            with pytest.raises(QueryTimeoutError):
                values_db.acquire().name("t").find_many()
        assert values_db.acquire().name("t").find_many() == []


class TestTransactionTimeout:
    """A statement that times out inside a transaction does not hold up the caller."""

    @pytest.fixture
    def slow_db(self):
        database = open_database("sqlite://", timeout=0.3)
        with database.driver.engine.connect() as conn:
            conn.connection.driver_connection.create_function("slow", 1, slow)
        database.acquire().create("create table t (v integer)")
        yield database
        database.close()

    def test_with_tx_returns_within_timeout(self, slow_db):
        def unit(tx, arg):
            slow_db.acquire_tx(tx).name("t").insert({"v": 1})
            return slow_db.acquire_tx(tx).get(int, "select slow(1.5)")

        start = time.monotonic()
        with pytest.raises(QueryTimeoutError):
            slow_db.with_tx(unit)
        assert time.monotonic() - start < 1.0

        # the insert is rolled back once the interrupted statement stops
        rows = retry_until_free(lambda: slow_db.acquire().select(None, "select v from t"))
        assert rows == []
        assert slow_db.pool.get_stats()['checked_out_contexts'] == 0

    def test_commit_waits_no_longer_than_timeout(self, slow_db):
        """Committing while an abandoned statement runs rolls back instead."""
        def unit(tx, arg):
            slow_db.acquire_tx(tx).name("t").insert({"v": 1})
            with pytest.raises(QueryTimeoutError):
                slow_db.acquire_tx(tx).get(int, "select slow(1.5)")

        start = time.monotonic()
        with pytest.raises(QueryTimeoutError):
            slow_db.with_tx(unit)
        assert time.monotonic() - start < 1.2

        rows = retry_until_free(lambda: slow_db.acquire().select(None, "select v from t"))
        assert rows == []
