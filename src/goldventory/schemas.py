"""Pydantic schemas used by the API and the order/inventory entry points."""
from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .keys import StockKey
from .models import WeightMode


class StockKeyIn(BaseModel):
    category: str = Field(..., min_length=1)
    item: str = Field(..., min_length=1)
    sub_item: str = Field("", description="Empty for the item-level (shared) slot.")
    weight: str = Field(..., min_length=1)

    def to_key(self) -> StockKey:
        return StockKey(self.category, self.item, self.sub_item, self.weight)


class ThresholdIn(StockKeyIn):
    value: int = Field(..., ge=0, description="Minimum quantity before reorder.")


class ThresholdOut(StockKeyIn):
    value: int | None = None


class ThresholdWriteResult(BaseModel):
    applied: bool
    persisted: bool


class NodeIn(BaseModel):
    """Addresses a category, an item (with ``item``) or a sub-item (with both)."""

    category: str = Field(..., min_length=1)
    item: str | None = None
    sub_item: str | None = None


class RenameIn(NodeIn):
    new_name: str = Field(..., min_length=1)


class ItemRef(BaseModel):
    category: str = Field(..., min_length=1)
    item: str = Field(..., min_length=1)


class WeightModeIn(BaseModel):
    category: str = Field(..., min_length=1)
    item: str = Field(..., min_length=1)
    mode: WeightMode


class WeightModeOut(BaseModel):
    category: str
    item: str
    mode: WeightMode | None = None
    accepted: bool = True


class WeightListOut(BaseModel):
    category: str
    item: str
    sub_item: str
    weights: list[str]


class SubItemWeightsIn(BaseModel):
    category: str = Field(..., min_length=1)
    item: str = Field(..., min_length=1)
    sub_item: str = Field(..., min_length=1)
    weights: list[str] = Field(default_factory=list)


class QuantityEdit(StockKeyIn):
    quantity: int | None = Field(
        default=None, ge=0, description="New absolute quantity; null deletes the field."
    )


class AllocationRequest(StockKeyIn):
    delta: int = Field(..., gt=0)


class OrderAllocationOut(BaseModel):
    order_id: int
    line_id: int
    quantity: int


class AllocationOut(BaseModel):
    allocated: int
    unallocated: int
    allocations: list[OrderAllocationOut] = Field(default_factory=list)


class QuantityEditOut(BaseModel):
    product_id: str
    weight_key: str
    previous: int | None
    quantity: int | None
    allocation: AllocationOut | None = None


class OrderLineCreate(StockKeyIn):
    qty_ordered: int = Field(..., gt=0)
    product_name: str | None = None


class OrderCreate(BaseModel):
    lines: list[OrderLineCreate] = Field(..., min_length=1)
    name: str | None = None
    supplier_id: str | None = None
    expected_delivery: datetime | None = None
    created_by: str | None = None


class OrderLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    position: int
    product_id: str
    product_name: str | None = None
    weight_key: str
    category: str | None = None
    item: str | None = None
    sub_item: str | None = None
    weight: str | None = None
    qty_ordered: int
    qty_received: int


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: Literal["pending", "partial", "received"]
    name: str | None = None
    supplier_id: str | None = None
    created_by: str | None = None
    expected_delivery: datetime | None = None
    created_at: datetime
    last_updated_at: datetime | None = None
    lines: list[OrderLineOut]


class ShipmentReceiptIn(BaseModel):
    order_id: int
    product_id: str = Field(..., min_length=1)
    weight_key: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    line_id: int | None = None


class ShipmentIn(BaseModel):
    receipts: list[ShipmentReceiptIn] = Field(..., min_length=1)


class ReorderRowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    category: str
    item: str
    sub_item: str
    weight: str
    product_id: str
    weight_key: str
    quantity: int
    pending: int
    threshold: int
    to_order: int


class ReorderSelection(BaseModel):
    weight_keys: list[tuple[str, str]] = Field(
        ..., min_length=1, description="(product_id, weight_key) pairs of the rows to order."
    )
    name: str | None = None
    created_by: str | None = None


class StockEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: str
    type: Literal["receive", "manual_receive"]
    quantity: int
    order_id: int | None = None
    weight_key: str
    note: str | None = None
    created_at: datetime


class HealthStatus(BaseModel):
    status: Literal["ok"] = "ok"
    environment: str


__all__ = [
    "AllocationOut",
    "AllocationRequest",
    "HealthStatus",
    "ItemRef",
    "NodeIn",
    "OrderAllocationOut",
    "OrderCreate",
    "OrderLineCreate",
    "OrderLineOut",
    "OrderOut",
    "QuantityEdit",
    "QuantityEditOut",
    "ReorderRowOut",
    "ReorderSelection",
    "RenameIn",
    "ShipmentIn",
    "ShipmentReceiptIn",
    "StockEventOut",
    "StockKeyIn",
    "SubItemWeightsIn",
    "ThresholdIn",
    "ThresholdOut",
    "ThresholdWriteResult",
    "WeightListOut",
    "WeightModeIn",
    "WeightModeOut",
]
