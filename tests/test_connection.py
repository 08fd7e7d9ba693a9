"""End-to-end tests for CryptoConnection over SQLite files."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest

from crypto_tables import SALT_COLUMN_NAME, CryptoAlgorithm, CryptoConnection, col
from crypto_tables.errors import (
    BlobTypeInComparisonError,
    EncryptedColumnInPredicateError,
    EncryptedOrderByError,
    InvalidLimitError,
    NoKeyError,
    NullPredicateError,
    PredicateSyntaxError,
    SelfJoinError,
    StorageError,
)
from crypto_tables.mapping import ForeignKey, column, table
from crypto_tables.translator import SortOrder
from crypto_tables.types import ValueKind

KEY = bytes(range(32))
OTHER_KEY = bytes(range(100, 132))


@table("Accounts")
@dataclass
class Account:
    id: Optional[int] = column(primary_key=True, auto_increment=True)
    name: Optional[str] = None
    age: Optional[int] = None
    active: Optional[bool] = None
    secret: Optional[str] = column(encrypted=True)


@table("Accounts")
@dataclass
class AccountOtherShape:
    id: Optional[int] = column(primary_key=True, auto_increment=True)
    name: Optional[str] = None


@table("Everything")
@dataclass
class Everything:
    id: Optional[int] = column(primary_key=True)
    small: Optional[int] = column(ValueKind.INT16, encrypted=True)
    huge: Optional[int] = column(ValueKind.UINT64, encrypted=True)
    plain_huge: Optional[int] = column(ValueKind.UINT64)
    ratio: Optional[float] = column(encrypted=True)
    flag: Optional[bool] = column(encrypted=True)
    stamp: Optional[datetime] = column(encrypted=True)
    plain_stamp: Optional[datetime] = None
    amount: Optional[Decimal] = column(encrypted=True)
    payload: Optional[bytes] = column(encrypted=True)
    note: Optional[str] = column(encrypted=True)


@table("Settings")
@dataclass
class Setting:
    id: Optional[int] = column(primary_key=True, auto_increment=True)
    name: Optional[str] = column(not_null=True)
    retries: Optional[int] = column(default_value=3)


@table("Authors")
@dataclass
class Author:
    id: Optional[int] = column(primary_key=True, auto_increment=True)
    name: Optional[str] = None
    email: Optional[str] = column(encrypted=True)


@table("Publishers")
@dataclass
class Publisher:
    id: Optional[int] = column(primary_key=True, auto_increment=True)
    name: Optional[str] = None


@table("Books")
@dataclass
class Book:
    id: Optional[int] = column(primary_key=True, auto_increment=True)
    title: Optional[str] = None
    author_id: Optional[int] = column(foreign_key=ForeignKey("author"))
    publisher_id: Optional[int] = column(foreign_key=ForeignKey("publisher", auto_resolve=False))
    author: Optional[Author] = None
    publisher: Optional[Publisher] = None


@table("People")
@dataclass
class Person:
    id: Optional[int] = column(primary_key=True)
    name: Optional[str] = None
    friend_id: Optional[int] = column(foreign_key=ForeignKey("friend"))
    friend: Optional[Person] = None


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.db"


@pytest.fixture
def db(db_path):
    connection = CryptoConnection(db_path)
    connection.set_encryption_key(KEY)
    yield connection
    connection.close()


@pytest.fixture
def accounts(db):
    db.create_table(Account)
    for name, age, active, secret in [
        ("alice", 31, True, "alice-secret"),
        ("bob", 25, False, "bob-secret"),
        ("carol", 42, True, "carol-secret"),
    ]:
        db.insert(Account(name=name, age=age, active=active, secret=secret))
    return db


@pytest.fixture
def library(db):
    for record_type in (Author, Publisher, Book):
        db.create_table(record_type)
    ann = db.insert(Author(name="Ann", email="ann@example.com"))
    ben = db.insert(Author(name="Ben", email="ben@example.com"))
    pub = db.insert(Publisher(name="Acme"))
    db.insert(Book(title="First", author_id=ann.id, publisher_id=pub.id))
    db.insert(Book(title="Second", author_id=ben.id, publisher_id=pub.id))
    db.insert(Book(title="Orphan", author_id=None))
    return db


class TestTables:
    """Tests for table creation and structure checks."""

    def test_create_table_adds_salt_column(self, db):
        db.create_table(Account)
        rows = db.engine.query("PRAGMA TABLE_INFO(Accounts)")
        names = [row[1].value for row in rows]
        assert names == ["id", "name", "age", "active", "secret", SALT_COLUMN_NAME]

    def test_create_table_twice(self, db):
        """Test that creating an existing table is a no-op."""
        db.create_table(Account)
        db.create_table(Account)
        db.check_table_structure(Account)

    def test_check_table_structure_mismatch(self, db):
        db.create_table(Account)
        with pytest.raises(StorageError):
            db.check_table_structure(AccountOtherShape)

    def test_check_missing_table(self, db):
        with pytest.raises(StorageError):
            db.check_table_structure(Account)

    def test_delete_table(self, accounts):
        accounts.delete_table(Account)
        with pytest.raises(StorageError, match="does not exist"):
            accounts.table(Account)

    def test_clear_table(self, accounts):
        assert accounts.clear_table(Account) == 3
        assert accounts.table(Account) == []


class TestInsertAndRead:
    """Tests for writing records and reading them back."""

    def test_round_trip(self, accounts):
        rows = accounts.table(Account)
        assert [(a.name, a.age, a.active, a.secret) for a in rows] == [
            ("alice", 31, True, "alice-secret"),
            ("bob", 25, False, "bob-secret"),
            ("carol", 42, True, "carol-secret"),
        ]

    def test_auto_increment_written_back(self, db):
        db.create_table(Account)
        first = db.insert(Account(name="x"))
        second = db.insert(Account(name="y"))
        assert (first.id, second.id) == (1, 2)

    def test_encrypted_values_stored_as_blobs(self, accounts):
        """Test that the database never sees the plaintext of encrypted columns."""
        rows = accounts.engine.query("SELECT secret, SaltColumn FROM Accounts")
        for secret, salt in rows:
            assert isinstance(secret.value, bytes)
            assert "secret".encode("utf-16-le") not in secret.value
            assert len(salt.value) == 8

    def test_rows_use_different_salts(self, db):
        db.create_table(Account)
        db.insert(Account(name="a", secret="same"))
        db.insert(Account(name="b", secret="same"))
        rows = db.engine.query("SELECT secret, SaltColumn FROM Accounts")
        assert rows[0][0].value != rows[1][0].value
        assert rows[0][1].value != rows[1][1].value

    def test_every_kind_round_trips(self, db):
        db.create_table(Everything)
        item = Everything(
            id=1,
            small=-300,
            huge=(1 << 64) - 1,
            plain_huge=(1 << 63) + 1,
            ratio=0.125,
            flag=False,
            stamp=datetime(2023, 3, 4, 5, 6, 7, 890000, tzinfo=timezone.utc),
            plain_stamp=datetime(1999, 12, 31, 23, 59, 59),
            amount=Decimal("-1234.5678"),
            payload=b"\x00\xff\x10",
            note="ünïcødé",
        )
        db.insert(item)
        [loaded] = db.table(Everything)
        assert loaded == item

    def test_absent_values_round_trip(self, db):
        db.create_table(Everything)
        db.insert(Everything(id=1))
        [loaded] = db.table(Everything)
        assert loaded == Everything(id=1)

    def test_insert_without_key(self, db_path):
        with CryptoConnection(db_path) as db:
            db.create_table(Account)
            with pytest.raises(NoKeyError):
                db.insert(Account(name="x", secret="y"))

    def test_not_null_without_default(self, db):
        db.create_table(Setting)
        with pytest.raises(StorageError):
            db.insert(Setting(name=None))

    def test_default_value_used_for_none(self, db):
        db.create_table(Setting)
        db.insert(Setting(name="timeout"))
        [loaded] = db.table(Setting)
        assert loaded.retries == 3

    def test_insert_or_replace(self, accounts):
        accounts.insert_or_replace(Account(id=2, name="robert", age=26, active=True, secret="new"))
        loaded = accounts.find_first(Account, col("id") == 2)
        assert (loaded.name, loaded.secret) == ("robert", "new")
        assert accounts.count(Account) == 3


class TestKeys:
    """Tests for default and per-table keys against a real database."""

    def test_wrong_key_gives_wrong_plaintext(self, accounts, db_path):
        with CryptoConnection(db_path) as other:
            other.set_encryption_key(OTHER_KEY)
            rows = other.table(Account)
        assert [r.name for r in rows] == ["alice", "bob", "carol"]
        assert all(r.secret != s for r, s in zip(rows, ["alice-secret", "bob-secret", "carol-secret"]))

    def test_wrong_key_reads_every_kind(self, db, db_path):
        """Test that a wrong key yields wrong values of every kind, not an error."""
        db.create_table(Everything)
        item = Everything(
            id=1,
            small=7,
            huge=1 << 40,
            ratio=2.5,
            flag=True,
            stamp=datetime(2020, 1, 1),
            amount=Decimal("99.95"),
            payload=b"\x01\x02\x03\x04",
            note="born",
        )
        db.insert(item)

        with CryptoConnection(db_path) as other:
            other.set_encryption_key(OTHER_KEY)
            [loaded] = other.table(Everything)
        assert loaded.id == 1
        assert isinstance(loaded.stamp, datetime)
        assert loaded.stamp != item.stamp
        assert loaded.note != item.note
        assert loaded.payload != item.payload

    def test_same_key_other_connection(self, accounts, db_path):
        with CryptoConnection(db_path) as other:
            other.set_encryption_key(KEY)
            assert other.table(Account)[0].secret == "alice-secret"

    def test_table_key_overrides_default(self, db, db_path):
        db.set_table_key(Account, OTHER_KEY)
        db.create_table(Account)
        db.insert(Account(name="x", secret="table key"))

        with CryptoConnection(db_path) as other:
            other.set_encryption_key(OTHER_KEY)
            assert other.table(Account)[0].secret == "table key"

    def test_other_algorithm(self, db_path):
        with CryptoConnection(db_path, algorithm=CryptoAlgorithm.TRIPLE_DES_168) as db:
            db.set_encryption_key(bytes(range(24)))
            db.create_table(Account)
            db.insert(Account(name="x", secret="des"))
            assert db.table(Account)[0].secret == "des"


class TestFind:
    """Tests for predicate reads."""

    def test_find(self, accounts):
        found = accounts.find(Account, col("age") > 30)
        assert [a.name for a in found] == ["alice", "carol"]

    def test_find_with_text(self, accounts):
        found = accounts.find(Account, "age < 40 and active")
        assert [a.name for a in found] == ["alice"]

    def test_find_bad_text(self, accounts):
        with pytest.raises(PredicateSyntaxError):
            accounts.find(Account, "age <")

    def test_find_order_and_limit(self, accounts):
        found = accounts.find(Account, col("age") > 0, limit=2, order_by="age", sort_order=SortOrder.DESC)
        assert [a.name for a in found] == ["carol", "alice"]

    def test_find_first(self, accounts):
        assert accounts.find_first(Account, col("name") == "bob").age == 25
        assert accounts.find_first(Account, col("name") == "nobody") is None

    def test_find_rejections(self, accounts):
        with pytest.raises(NullPredicateError):
            accounts.find(Account, None)
        with pytest.raises(EncryptedColumnInPredicateError):
            accounts.find(Account, col("secret") == "bob-secret")
        with pytest.raises(EncryptedOrderByError):
            accounts.find(Account, col("age") > 0, order_by="secret")
        with pytest.raises(InvalidLimitError):
            accounts.find(Account, col("age") > 0, limit=0)

    def test_find_by_value(self, accounts):
        assert [a.name for a in accounts.find_by_value(Account, "active", True)] == ["alice", "carol"]
        assert accounts.find_by_value(Account, "name", None) == []
        with pytest.raises(EncryptedColumnInPredicateError):
            accounts.find_by_value(Account, "secret", "x")

    def test_find_by_blob_value(self, db):
        db.create_table(Everything)
        db.insert(Everything(id=1, plain_huge=1 << 40))
        db.insert(Everything(id=2, plain_huge=7))
        assert [e.id for e in db.find_by_value(Everything, "plain_huge", 7)] == [2]

    def test_select_subset(self, accounts):
        """Test that unselected fields keep their defaults."""
        [bob] = accounts.select(Account, col("name") == "bob", "name", "secret")
        assert bob.name == "bob"
        assert bob.secret == "bob-secret"
        assert bob.age is None
        assert bob.id is None

    def test_select_top(self, accounts):
        assert [a.name for a in accounts.select_top(Account, 2)] == ["alice", "bob"]
        with pytest.raises(InvalidLimitError):
            accounts.select_top(Account, 0)


class TestWrites:
    """Tests for update and delete."""

    def test_update(self, accounts):
        target = accounts.find_first(Account, col("name") == "bob")
        old_salt = accounts.engine.query_scalar("SELECT SaltColumn FROM Accounts WHERE id = ?", [target.id])

        target.age = 26
        target.secret = "rotated"
        assert accounts.update(target, col("id") == target.id) == 1

        reloaded = accounts.find_first(Account, col("id") == target.id)
        assert (reloaded.age, reloaded.secret) == (26, "rotated")
        new_salt = accounts.engine.query_scalar("SELECT SaltColumn FROM Accounts WHERE id = ?", [target.id])
        assert new_salt != old_salt

    def test_update_requires_predicate(self, accounts):
        with pytest.raises(NullPredicateError):
            accounts.update(Account(name="x"), None)

    def test_delete(self, accounts):
        assert accounts.delete(Account, col("age") < 30) == 1
        assert [a.name for a in accounts.table(Account)] == ["alice", "carol"]

    def test_delete_by_value(self, accounts):
        assert accounts.delete_by_value(Account, "name", "alice") == 1
        assert accounts.count(Account) == 2


class TestAggregates:
    def test_count(self, accounts):
        assert accounts.count(Account) == 3
        assert accounts.count(Account, col("active") == True) == 2  # noqa: E712
        assert accounts.count(Account, "age > 30") == 2

    def test_count_column(self, accounts):
        accounts.insert(Account(name=None, age=1))
        assert accounts.count_column(Account, "name") == 3
        assert accounts.count_column(Account, "secret") == 3

    def test_count_distinct(self, accounts):
        assert accounts.count_distinct(Account, "active") == 2
        with pytest.raises(EncryptedColumnInPredicateError):
            accounts.count_distinct(Account, "secret")

    def test_min_max_sum_avg(self, accounts):
        assert accounts.max(Account, "age") == 42
        assert accounts.min(Account, "age") == 25
        assert accounts.sum(Account, "age") == 98
        assert accounts.avg(Account, "age", col("active") == True) == pytest.approx(36.5)  # noqa: E712
        assert accounts.max(Account, "active") is True

    def test_aggregate_rejections(self, db):
        db.create_table(Everything)
        with pytest.raises(EncryptedColumnInPredicateError):
            db.max(Everything, "small")
        with pytest.raises(BlobTypeInComparisonError):
            db.sum(Everything, "plain_huge")


class TestForeignKeys:
    """Tests for automatic reference resolution."""

    def test_reads_resolve_references(self, library):
        [first] = library.find(Book, col("title") == "First")
        assert first.author.name == "Ann"
        assert first.author.email == "ann@example.com"

    def test_auto_resolve_disabled(self, library):
        [first] = library.find(Book, col("title") == "First")
        assert first.publisher_id is not None
        assert first.publisher is None

    def test_null_reference(self, library):
        [orphan] = library.find(Book, col("title") == "Orphan")
        assert orphan.author is None

    def test_shared_reference_loaded_once(self, library):
        library.insert(Book(title="Third", author_id=1))
        books = library.find(Book, col("author_id") == 1)
        assert len(books) == 2
        assert books[0].author is books[1].author

    def test_reference_cycle(self, db):
        db.create_table(Person)
        db.insert(Person(id=1, name="Ann", friend_id=2))
        db.insert(Person(id=2, name="Ben", friend_id=1))

        [ann] = db.find(Person, col("id") == 1)
        assert ann.friend.name == "Ben"
        assert ann.friend.friend is ann


class TestJoins:
    """Tests for inner and left joins."""

    def test_inner_join(self, library):
        rows = library.join(Book, Author, ("author_id", "id"))
        assert [(book.title, author.name) for book, author in rows] == [("First", "Ann"), ("Second", "Ben")]
        assert rows[0][1].email == "ann@example.com"

    def test_join_with_where(self, library):
        rows = library.join(Book, Author, ("author_id", "id"), col("title") == "Second")
        assert [(b.title, a.name) for b, a in rows] == [("Second", "Ben")]

    def test_join_result_view(self, library):
        titles = library.join(Book, Author, ("author_id", "id"), result=lambda b, a: f"{b.title} by {a.name}")
        assert titles == ["First by Ann", "Second by Ben"]

    def test_three_table_join(self, library):
        rows = library.join(
            Book, Author, ("author_id", "id"), third=Publisher, on_third=("publisher_id", "id")
        )
        assert [(b.title, a.name, p.name) for b, a, p in rows] == [("First", "Ann", "Acme"), ("Second", "Ben", "Acme")]

    def test_left_join(self, library):
        rows = library.left_join(Book, Author, ("author_id", "id"))
        assert [(b.title, a.name if a else None) for b, a in rows] == [
            ("First", "Ann"),
            ("Second", "Ben"),
            ("Orphan", None),
        ]

    def test_self_join(self, library):
        with pytest.raises(SelfJoinError):
            library.join(Book, Book, ("id", "id"))
