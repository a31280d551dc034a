"""
Sample entities shared by the test suite.

Region <- Customer <- PurchaseOrder, all inheriting identity, version and
audit fields from the AuditedEntity mapped superclass.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Optional

from entmap import (
    FieldGroup,
    Index,
    UniqueConstraint,
    column,
    id_column,
    lob,
    mapped_superclass,
    table,
    transient,
    version_column,
)
from entmap.metadata import Schema


class OrderStatus(Enum):
    OPEN = 1
    SHIPPED = 2


@mapped_superclass
@dataclass
class AuditedEntity:
    id: Optional[int] = id_column()
    version: Optional[int] = version_column()
    created_by: Optional[str] = column(length=40)


@table(
    field_groups=[
        FieldGroup("brief", fields=("name",), join_fetch=True),
        FieldGroup("keys"),
    ],
    unique_constraints=[UniqueConstraint(("code",))],
)
@dataclass
class Region(AuditedEntity):
    code: Optional[str] = column(length=8, optional=False)
    name: Optional[str] = column(length=80)


@table(
    field_groups=[
        FieldGroup("brief", fields=("name", "region"), join_fetch=True),
        FieldGroup("contact", fields=("email",)),
        FieldGroup("full", fields=("notes",), includes=("brief", "contact")),
    ],
    indexes=[Index(("name", "email"))],
)
@dataclass
class Customer(AuditedEntity):
    name: Optional[str] = column(length=80, optional=False)
    email: Optional[str] = column(index=True)
    region: Optional[Region] = column()
    notes: Optional[str] = lob(fetch=False)
    cache: Optional[dict] = transient()

    KIND: ClassVar[str] = "customer"


@table(
    "purchase_order",
    field_groups=[
        FieldGroup("status", fields=("status",)),
        FieldGroup("summary", fields=("customer@contact", "amount")),
    ],
)
@dataclass
class PurchaseOrder(AuditedEntity):
    customer: Optional[Customer] = column(optional=False)
    amount: Optional[Decimal] = column(scale=2)
    status: Optional[OrderStatus] = column(length=16)
    orderedAt: Optional[datetime.datetime] = column()


@table()
@dataclass
class Tag:
    """An entity without a version column."""

    id: Optional[int] = id_column()
    label: Optional[str] = column(length=30)


@dataclass
class OrderTotal:
    """Result type for aggregate queries."""

    status: Optional[str] = None
    order_count: Optional[int] = None


class RecordingListener:
    """Records before_insert/before_update notifications."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []

    def before_insert(self, entity: Any) -> None:
        self.events.append(("insert", entity))
        if getattr(entity, "created_by", "-") is None:
            entity.created_by = "listener"

    def before_update(self, entity: Any) -> None:
        self.events.append(("update", entity))


def build_sample_schema(listener: Optional[RecordingListener] = None, name: Optional[str] = None) -> Schema:
    builder = Schema.builder().add(Region).add(Customer).add(PurchaseOrder).add(Tag)
    if listener is not None:
        builder.having(listener)
    if name is not None:
        builder.named(name)
    return builder.build()
