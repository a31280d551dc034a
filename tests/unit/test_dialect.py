"""
Unit tests for SQL dialects.

Tests cover:
- Placeholder conversion
- Paging and row-lock rendering
- Parameter adaptation
- Column type definitions
- Dialect factory
"""

import datetime
import uuid
from decimal import Decimal

import pytest

from entmap.sql.dialect import PostgresDialect, SqliteDialect, create_dialect
from tests.sample_entities import Customer, OrderStatus, PurchaseOrder, build_sample_schema


@pytest.fixture
def schema():
    return build_sample_schema()


class TestPlaceholders:
    """Tests for placeholder conversion."""

    def test_sqlite_unchanged(self):
        """sqlite3 uses qmark placeholders as generated."""
        assert SqliteDialect().convert_placeholders("a = ? AND b = ?") == "a = ? AND b = ?"

    def test_postgres_format(self):
        """psycopg placeholders are %s and literal percent signs are escaped."""
        sql = "x.a = ? AND x.b % 2 = 0"
        assert PostgresDialect().convert_placeholders(sql) == "x.a = %s AND x.b %% 2 = 0"

    def test_postgres_literal_question_mark_kept(self):
        """Question marks inside literals are not placeholders."""
        sql = "x.a = 'who?' AND x.b = ?"
        assert PostgresDialect().convert_placeholders(sql) == "x.a = 'who?' AND x.b = %s"

    def test_postgres_literal_percent_escaped(self):
        """Percent signs inside literals are doubled as well."""
        sql = "x.name LIKE 'A%' AND x.id = ?"
        assert PostgresDialect().convert_placeholders(sql) == "x.name LIKE 'A%%' AND x.id = %s"


class TestPaging:
    """Tests for offset/limit and row locks."""

    def test_postgres_offset_limit(self):
        """Offset comes before limit; non-positive values are omitted."""
        dialect = PostgresDialect()
        assert dialect.offset_limit(10, 5) == " OFFSET 10 LIMIT 5"
        assert dialect.offset_limit(-1, 5) == " LIMIT 5"
        assert dialect.offset_limit(0, 0) == ""

    def test_sqlite_offset_limit(self):
        """sqlite needs LIMIT before OFFSET."""
        dialect = SqliteDialect()
        assert dialect.offset_limit(10, 5) == " LIMIT 5 OFFSET 10"
        assert dialect.offset_limit(10, -1) == " LIMIT -1 OFFSET 10"
        assert dialect.offset_limit(-1, 1) == " LIMIT 1"

    def test_for_update(self):
        """Row locks are rendered only where supported."""
        assert PostgresDialect().for_update() == " FOR UPDATE"
        assert PostgresDialect().for_update("x") == " FOR UPDATE OF x"
        assert SqliteDialect().for_update("x") == ""


class TestAdaptation:
    """Tests for parameter adaptation."""

    def test_enum_by_name(self):
        """Enums bind their name on every dialect."""
        assert PostgresDialect().adapt(OrderStatus.SHIPPED) == "SHIPPED"
        assert SqliteDialect().adapt(OrderStatus.OPEN) == "OPEN"

    def test_sqlite_values(self):
        """Dates, decimals and UUIDs bind as text on sqlite."""
        dialect = SqliteDialect()
        value = uuid.UUID("12345678-1234-5678-1234-567812345678")
        params = dialect.adapt_parameters(
            [datetime.datetime(2024, 5, 1, 8, 30), datetime.date(2024, 5, 1), Decimal("9.50"), value, 3]
        )
        assert params == ("2024-05-01T08:30:00", "2024-05-01", "9.50", str(value), 3)

    def test_postgres_values_passed_through(self):
        """psycopg adapts native values itself."""
        moment = datetime.datetime(2024, 5, 1)
        assert PostgresDialect().adapt_parameters([moment, Decimal("1")]) == (moment, Decimal("1"))


class TestColumnDefinitions:
    """Tests for DDL column definitions."""

    def test_sqlite_definitions(self, schema):
        """sqlite column definitions with inline references."""
        dialect = SqliteDialect()
        order = schema.get_entity_data(PurchaseOrder)
        assert dialect.column_definition(order.id_field) == "id INTEGER PRIMARY KEY"
        assert dialect.column_definition(order.version_field) == "version INTEGER NOT NULL DEFAULT 1"
        assert dialect.column_definition(order.get_field("amount")) == "amount numeric(19, 2)"
        assert dialect.column_definition(order.get_field("status")) == "status VARCHAR(16)"
        assert dialect.column_definition(order.get_field("orderedAt")) == "ordered_at TIMESTAMP"
        assert (
            dialect.column_definition(order.get_field("customer"), "customer (id)")
            == "customer INTEGER NOT NULL REFERENCES customer (id) DEFERRABLE INITIALLY DEFERRED"
        )

    def test_postgres_definitions(self, schema):
        """PostgreSQL column definitions."""
        dialect = PostgresDialect()
        customer = schema.get_entity_data(Customer)
        assert dialect.column_definition(customer.id_field) == "id bigserial PRIMARY KEY"
        assert dialect.column_definition(customer.version_field) == "version integer NOT NULL DEFAULT 1"
        assert dialect.column_definition(customer.get_field("name")) == "name varchar(80) NOT NULL"
        assert dialect.column_definition(customer.get_field("notes")) == "notes text"
        assert dialect.column_definition(customer.get_field("region")) == "region bigint"

    def test_add_columns(self):
        """sqlite adds one column per statement, PostgreSQL all at once."""
        definitions = ["a integer", "b text"]
        assert SqliteDialect().add_columns("t", definitions) == [
            "ALTER TABLE t ADD COLUMN a integer",
            "ALTER TABLE t ADD COLUMN b text",
        ]
        assert PostgresDialect().add_columns("s.t", definitions) == [
            "ALTER TABLE s.t ADD COLUMN a integer, ADD COLUMN b text"
        ]


class TestCreateDialect:
    """Tests for the dialect factory."""

    @pytest.mark.parametrize(
        "name,expected",
        [("sqlite", SqliteDialect), ("postgresql", PostgresDialect), (" Postgres ", PostgresDialect)],
    )
    def test_known(self, name, expected):
        """Known names create their dialect."""
        assert isinstance(create_dialect(name), expected)

    def test_unknown(self):
        """Unknown names are rejected."""
        with pytest.raises(ValueError, match="Unsupported SQL dialect"):
            create_dialect("oracle")
