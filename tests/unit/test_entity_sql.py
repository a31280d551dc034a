"""
Unit tests for entity statements.

Tests cover:
- INSERT / UPDATE / DELETE text per entity
- Parameter binding (version, foreign keys, listener)
- Generated key write-back
- Batching by chunk size
- Upsert clauses
"""

import logging
from decimal import Decimal

import pytest

from entmap.sql import EntitySql, SqliteDialect, SqlQuery, StatementKind
from tests.fakes import FakeConnection
from tests.sample_entities import (
    Customer,
    OrderStatus,
    PurchaseOrder,
    RecordingListener,
    Region,
    Tag,
    build_sample_schema,
)


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def query(connection, listener):
    return SqlQuery(connection, build_sample_schema(listener=listener), SqliteDialect(), batch_size=2)


class TestInsert:
    """Tests for INSERT statements."""

    def test_insert_text(self, query):
        """All fields but the identity are inserted, in field order."""
        entity_sql = EntitySql.insert(query, Customer)
        assert entity_sql.kind is StatementKind.INSERT
        assert entity_sql.sql == (
            "INSERT INTO customer AS x (created_by, email, name, notes, region, version) VALUES (?,?,?,?,?,?)"
        )
        assert [f.name for f in entity_sql.generated_fields] == ["id", "version"]

    def test_insert_sets_generated_values(self, query, connection, listener):
        """Identity and version are read back with RETURNING."""
        connection.queue(["id", "version"], [(5, 1)])
        customer = Customer(name="Acme", region=Region(id=4))
        assert query.insert(customer) == 1
        sql, parameters = connection.statements[-1]
        assert sql.endswith(" RETURNING id, version")
        assert parameters == ("listener", None, "Acme", None, 4, 1)
        assert customer.id == 5
        assert customer.version == 1
        assert listener.events == [("insert", customer)]

    def test_enum_and_decimal_parameters(self, query, connection):
        """Enums bind by name and decimals as text on sqlite."""
        connection.queue(["id", "version"], [(1, 1)])
        order = PurchaseOrder(customer=Customer(id=9), amount=Decimal("3.10"), status=OrderStatus.OPEN)
        query.insert(order)
        assert connection.last_parameters == ("3.10", "listener", 9, None, "OPEN", 1)

    def test_upsert_do_nothing(self, query):
        """ON CONFLICT without an update clause does nothing."""
        entity_sql = EntitySql.insert(query, Region, "code")
        assert entity_sql.sql == (
            "INSERT INTO region AS x (code, created_by, name, version) VALUES (?,?,?,?)"
            " ON CONFLICT (code) DO NOTHING"
        )

    def test_upsert_do_update(self, query):
        """ON CONFLICT with an update clause updates."""
        entity_sql = EntitySql.insert(query, Region, "code", "name = excluded.name")
        assert entity_sql.sql.endswith(" ON CONFLICT (code) DO UPDATE SET name = excluded.name")

    def test_schema_qualified(self, connection):
        """Statements use the schema-qualified table name."""
        query = SqlQuery(connection, build_sample_schema(name="shop"), SqliteDialect())
        assert EntitySql.insert(query, Tag).sql == "INSERT INTO shop.tag AS x (label) VALUES (?)"


class TestBatchInsert:
    """Tests for multi-row INSERT batches."""

    def test_chunks(self, query, connection):
        """One multi-row statement is sent per chunk of batch_size."""
        connection.queue(["id"], [(1,), (2,)])
        connection.queue(["id"], [(3,)])
        tags = [Tag(label=f"t{i}") for i in range(3)]
        assert query.batch_insert(tags) == 3
        assert len(connection.statements) == 2
        assert connection.statements[0][0] == "INSERT INTO tag AS x (label) VALUES (?),(?) RETURNING id"
        assert connection.statements[0][1] == ("t0", "t1")
        assert connection.statements[1][0] == "INSERT INTO tag AS x (label) VALUES (?) RETURNING id"
        assert [t.id for t in tags] == [1, 2, 3]

    def test_keys_follow_identity_order(self, query, connection):
        """Returned rows are matched in identity order, whatever order they arrive in."""
        connection.queue(["id"], [(11,), (10,)])
        tags = [Tag(label="t0"), Tag(label="t1")]
        query.batch_insert(tags)
        assert [t.id for t in tags] == [10, 11]

    def test_row_count_mismatch(self, query, connection, caplog):
        """Plain inserts do not write keys back when the row count differs."""
        connection.queue(["id"], [(1,)])
        tags = [Tag(label="a"), Tag(label="b")]
        with caplog.at_level(logging.WARNING):
            assert query.batch_insert(tags) == 1
        assert [t.id for t in tags] == [None, None]
        assert "Generated keys not written back" in caplog.text

    def test_upsert_matches_conflict_columns(self, query, connection, caplog):
        """Upsert rows are matched to entities by their conflict columns."""
        connection.queue(["id", "label"], [(7, "b")])
        tags = [Tag(label="a"), Tag(label="b")]
        with caplog.at_level(logging.WARNING):
            assert query.batch_upsert(tags, "label") == 1
        assert [t.id for t in tags] == [None, 7]
        assert "Generated keys not written back for 1 of 2" in caplog.text
        assert "ON CONFLICT (label) DO NOTHING RETURNING id, label" in connection.last_sql

    def test_upsert_rows_in_any_order(self, query, connection):
        """Updated and inserted upsert rows find their entities in any order."""
        connection.queue(["id", "version", "code"], [(3, 2, "US"), (1, 1, "EU")])
        regions = [Region(code="EU", name="Europe"), Region(code="US", name="States")]
        query.batch_upsert(regions, "code", "name = excluded.name")
        assert [(r.id, r.version) for r in regions] == [(1, 1), (3, 2)]

    def test_empty_batch(self, query, connection):
        """Empty batches execute nothing."""
        assert query.batch_insert([]) == 0
        assert query.batch_update([]) == 0
        assert query.batch_delete([]) == 0
        assert connection.statements == []


class TestUpdate:
    """Tests for UPDATE statements."""

    def test_update_text(self, query):
        """The version is bumped and checked."""
        entity_sql = EntitySql.update(query, Customer)
        assert entity_sql.kind is StatementKind.UPDATE
        assert entity_sql.sql == (
            "UPDATE customer SET version = version + 1, created_by = ?, email = ?, name = ?, region = ?"
            " WHERE id = ? AND version = ?"
        )

    def test_update_field_group(self, query):
        """Only the fields of the group are assigned."""
        entity_sql = EntitySql.update(query, Customer, "contact")
        assert entity_sql.sql == "UPDATE customer SET version = version + 1, email = ? WHERE id = ? AND version = ?"

    def test_update_without_version(self, query):
        """Entities without a version are matched by identity only."""
        assert EntitySql.update(query, Tag).sql == "UPDATE tag SET label = ? WHERE id = ?"

    def test_update_reads_new_version(self, query, connection, listener):
        """The new version is written back to the entity."""
        connection.queue(["version"], [(4,)])
        customer = Customer(id=7, version=3, name="Acme", email="a@example.com")
        assert query.update(customer, "contact") == 1
        assert connection.last_sql.endswith(" RETURNING version")
        assert connection.last_parameters == ("a@example.com", 7, 3)
        assert customer.version == 4
        assert listener.events == [("update", customer)]

    def test_version_conflict(self, query, connection):
        """A stale version updates nothing and keeps the entity unchanged."""
        customer = Customer(id=7, version=3, name="Acme")
        connection.queue(["version"], [])
        assert query.update(customer) == 0
        assert customer.version == 3

    def test_nothing_to_update(self, query, connection, caplog):
        """A group with only id and version executes nothing."""
        with caplog.at_level(logging.WARNING):
            assert EntitySql.update(query, Region, "keys") is None
            assert query.update(Region(id=1, version=1), "keys") == 0
        assert connection.statements == []
        assert "Fields are not included to update" in caplog.text

    def test_batch_update_without_version(self, query, connection):
        """Without a version column updates run with executemany per chunk."""
        tags = [Tag(id=i, label=f"t{i}") for i in range(3)]
        assert query.batch_update(tags) == 3
        assert len(connection.statements) == 2
        assert connection.statements[0] == ("UPDATE tag SET label = ? WHERE id = ?", [("t0", 0), ("t1", 1)])

    def test_batch_update_with_version(self, query, connection):
        """Versioned updates run per row to read each new version."""
        connection.queue(["version"], [(2,)])
        connection.queue(["version"], [(6,)])
        regions = [Region(id=1, version=1, code="EU"), Region(id=2, version=5, code="US")]
        assert query.batch_update(regions) == 2
        assert [r.version for r in regions] == [2, 6]

    def test_save(self, query, connection):
        """save() inserts new entities and updates existing ones."""
        connection.queue(["id"], [(11,)])
        tag = query.save(Tag(label="new"), is_new=True)
        assert tag.id == 11
        tag.label = "renamed"
        query.save(tag, is_new=False)
        assert connection.statements[-1] == ("UPDATE tag SET label = ? WHERE id = ?", ("renamed", 11))


class TestDelete:
    """Tests for DELETE statements."""

    def test_delete_text(self, query):
        """Deletes match identity and version."""
        assert EntitySql.delete_sql(query, query.schema.get_entity_data(Customer)) == (
            "DELETE FROM customer WHERE id = ? AND version = ?"
        )
        assert EntitySql.delete_sql(query, query.schema.get_entity_data(Tag)) == "DELETE FROM tag WHERE id = ?"

    def test_delete(self, query, connection):
        """delete() binds identity and version."""
        connection.queue([], [], rowcount=1)
        assert query.delete(Customer(id=3, version=2)) == 1
        assert connection.statements[-1] == ("DELETE FROM customer WHERE id = ? AND version = ?", (3, 2))

    def test_batch_delete(self, query, connection):
        """Batch deletes are chunked."""
        tags = [Tag(id=i) for i in range(5)]
        assert query.batch_delete(tags) == 5
        assert [len(rows) for _, rows in connection.statements] == [2, 2, 1]

    def test_lock_for_update(self, query, connection):
        """lock_for_update selects the row (no lock clause on sqlite)."""
        query.lock_for_update(Customer, 8)
        assert connection.statements[-1] == ("SELECT 1 FROM customer WHERE id = ?", (8,))

    def test_none_rejected(self, query):
        """None entities are rejected."""
        with pytest.raises(TypeError):
            query.insert(None)
        with pytest.raises(TypeError):
            query.delete(None)
