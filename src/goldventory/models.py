"""Database models for thresholds, inventory documents and purchase orders."""
from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    RECEIVED = "received"


OPEN_STATUSES = (OrderStatus.PENDING.value, OrderStatus.PARTIAL.value)


class StockEventType(str, enum.Enum):
    RECEIVE = "receive"
    MANUAL_RECEIVE = "manual_receive"


class WeightMode(str, enum.Enum):
    SHARED = "shared"
    PER_SUB_ITEM = "perSubItem"


class TimestampMixin:
    """Mixin providing created/updated timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class ThresholdDocument(Base, TimestampMixin):
    """One document per encoded category: item -> sub_item -> weight -> minimum."""

    __tablename__ = "threshold_documents"

    category: Mapped[str] = mapped_column(String(255), primary_key=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)


class InventoryDocument(Base, TimestampMixin):
    """One document per encoded category: item -> sub_item -> weight -> quantity."""

    __tablename__ = "inventory_documents"

    product_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class WeightSchema(Base, TimestampMixin):
    __tablename__ = "weight_schemas"

    category: Mapped[str] = mapped_column(String(255), primary_key=True)
    item: Mapped[str] = mapped_column(String(255), primary_key=True)
    mode: Mapped[str] = mapped_column(String(32), nullable=False)


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    status: Mapped[str] = mapped_column(
        String(16), default=OrderStatus.PENDING.value, nullable=False, index=True
    )
    name: Mapped[str | None] = mapped_column(String(128))
    supplier_id: Mapped[str | None] = mapped_column(String(128))
    created_by: Mapped[str | None] = mapped_column(String(128))
    expected_delivery: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
    last_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    lines: Mapped[list["OrderLine"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.position",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def refresh_status(self) -> str:
        self.status = derive_status(self.lines)
        return self.status


class OrderLine(Base):
    __tablename__ = "order_lines"
    __table_args__ = (
        CheckConstraint("qty_ordered >= 0", name="ck_order_lines_qty_ordered_positive"),
        CheckConstraint("qty_received >= 0", name="ck_order_lines_qty_received_positive"),
        CheckConstraint(
            "qty_received <= qty_ordered", name="ck_order_lines_received_within_ordered"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    product_name: Mapped[str | None] = mapped_column(String(255))
    weight_key: Mapped[str] = mapped_column(String(768), nullable=False)
    category: Mapped[str | None] = mapped_column(String(255))
    item: Mapped[str | None] = mapped_column(String(255))
    sub_item: Mapped[str | None] = mapped_column(String(255))
    weight: Mapped[str | None] = mapped_column(String(255))
    qty_ordered: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_received: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    order: Mapped[PurchaseOrder] = relationship(back_populates="lines")

    @property
    def outstanding(self) -> int:
        return max(0, self.qty_ordered - self.qty_received)

    def matches(self, product_id: str, weight_key: str) -> bool:
        return self.product_id == product_id and self.weight_key == weight_key


class StockEvent(Base):
    """Audit record written alongside every stock increase."""

    __tablename__ = "stock_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    order_id: Mapped[int | None] = mapped_column(Integer)
    weight_key: Mapped[str] = mapped_column(String(768), nullable=False)
    note: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


def derive_status(lines: list[OrderLine]) -> str:
    """``received`` once every line is filled, ``partial`` once any line has stock."""

    if all(line.qty_received >= line.qty_ordered for line in lines):
        return OrderStatus.RECEIVED.value
    if any(line.qty_received > 0 for line in lines):
        return OrderStatus.PARTIAL.value
    return OrderStatus.PENDING.value


__all__ = [
    "OPEN_STATUSES",
    "InventoryDocument",
    "OrderLine",
    "OrderStatus",
    "PurchaseOrder",
    "StockEvent",
    "StockEventType",
    "ThresholdDocument",
    "WeightMode",
    "WeightSchema",
    "derive_status",
]
