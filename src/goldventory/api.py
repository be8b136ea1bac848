"""FastAPI router configuration."""
from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import schemas
from .allocation import AllocationResult, ShipmentReceipt
from .config import Settings, get_settings
from .core import InventoryCore
from .database import SessionFactory, create_engine, create_session_factory
from .exceptions import (
    ConcurrentUpdateError,
    GoldventoryError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .models import OPEN_STATUSES

logger = logging.getLogger(__name__)

router = APIRouter()


def provide_settings(request: Request) -> Settings:
    """Dependency returning the active :class:`Settings` instance."""

    return request.app.state.settings


async def get_core(request: Request) -> InventoryCore:
    """Dependency returning the loaded :class:`InventoryCore` of the app."""

    core: InventoryCore = request.app.state.core
    await core.ensure_loaded()
    return core


def _allocation_out(result: AllocationResult) -> schemas.AllocationOut:
    return schemas.AllocationOut(
        allocated=result.allocated,
        unallocated=result.unallocated,
        allocations=[
            schemas.OrderAllocationOut(
                order_id=allocation.order_id, line_id=allocation.line_id, quantity=allocation.quantity
            )
            for allocation in result.allocations
        ],
    )


def _rejected(message: str) -> ValidationError:
    return ValidationError(message, code="rejected")


@router.get("/health", response_model=schemas.HealthStatus, tags=["system"])
async def health_check(settings: Settings = Depends(provide_settings)) -> schemas.HealthStatus:
    return schemas.HealthStatus(environment=settings.environment)


# ----------------------------------------------------------------------
# Thresholds
# ----------------------------------------------------------------------


@router.get("/thresholds", tags=["thresholds"])
async def get_thresholds(core: InventoryCore = Depends(get_core)) -> dict[str, Any]:
    return core.thresholds.as_nested_map()


@router.get("/thresholds/lookup", response_model=schemas.ThresholdOut, tags=["thresholds"])
async def lookup_threshold(
    category: str,
    item: str,
    weight: str,
    sub_item: str = "",
    core: InventoryCore = Depends(get_core),
) -> schemas.ThresholdOut:
    value = core.thresholds.get_threshold_for(category, item, sub_item, weight)
    return schemas.ThresholdOut(category=category, item=item, sub_item=sub_item, weight=weight, value=value)


@router.put("/thresholds", response_model=schemas.ThresholdWriteResult, tags=["thresholds"])
async def set_threshold(
    payload: schemas.ThresholdIn, core: InventoryCore = Depends(get_core)
) -> schemas.ThresholdWriteResult:
    if not core.thresholds.set_threshold(
        payload.category, payload.item, payload.sub_item, payload.weight, payload.value
    ):
        raise _rejected("Threshold rejected")
    persisted = await core.thresholds.save()
    return schemas.ThresholdWriteResult(applied=True, persisted=persisted)


@router.delete("/thresholds", response_model=schemas.ThresholdWriteResult, tags=["thresholds"])
async def remove_threshold(
    category: str,
    item: str,
    weight: str,
    sub_item: str = "",
    core: InventoryCore = Depends(get_core),
) -> schemas.ThresholdWriteResult:
    if not core.thresholds.remove_threshold(category, item, sub_item, weight):
        raise NotFoundError(f"No threshold for {category}/{item}/{sub_item}/{weight}", code="threshold_not_found")
    persisted = await core.thresholds.save()
    return schemas.ThresholdWriteResult(applied=True, persisted=persisted)


@router.post(
    "/thresholds/nodes",
    response_model=schemas.ThresholdWriteResult,
    status_code=status.HTTP_201_CREATED,
    tags=["thresholds"],
)
async def create_node(
    payload: schemas.NodeIn, core: InventoryCore = Depends(get_core)
) -> schemas.ThresholdWriteResult:
    if payload.item is None:
        applied = core.thresholds.create_category(payload.category)
    elif payload.sub_item is None:
        applied = core.thresholds.create_item(payload.category, payload.item)
    else:
        applied = core.weights.create_sub_item(payload.category, payload.item, payload.sub_item)
    if not applied:
        raise _rejected("Node rejected")
    persisted = await core.thresholds.save()
    return schemas.ThresholdWriteResult(applied=True, persisted=persisted)


@router.post("/thresholds/nodes/rename", response_model=schemas.ThresholdWriteResult, tags=["thresholds"])
async def rename_node(
    payload: schemas.RenameIn, core: InventoryCore = Depends(get_core)
) -> schemas.ThresholdWriteResult:
    if not core.thresholds.rename_node(payload.new_name, payload.category, payload.item, payload.sub_item):
        raise _rejected("Rename rejected")
    persisted = await core.thresholds.save()
    return schemas.ThresholdWriteResult(applied=True, persisted=persisted)


@router.delete("/thresholds/nodes", response_model=schemas.ThresholdWriteResult, tags=["thresholds"])
async def delete_node(
    category: str,
    item: str | None = None,
    sub_item: str | None = None,
    core: InventoryCore = Depends(get_core),
) -> schemas.ThresholdWriteResult:
    if not core.thresholds.delete_node(category, item, sub_item):
        raise NotFoundError(f"No threshold node {category}/{item}/{sub_item}", code="node_not_found")
    persisted = await core.thresholds.save()
    if item is not None:
        await core.delete_inventory_node(category, item, sub_item)
    return schemas.ThresholdWriteResult(applied=True, persisted=persisted)


# ----------------------------------------------------------------------
# Weights
# ----------------------------------------------------------------------


@router.get("/weights", response_model=schemas.WeightListOut, tags=["weights"])
async def weights_for(
    category: str, item: str, sub_item: str = "", core: InventoryCore = Depends(get_core)
) -> schemas.WeightListOut:
    weights = core.weights.weights_for(category, item, sub_item)
    return schemas.WeightListOut(category=category, item=item, sub_item=sub_item, weights=weights)


@router.put("/weights", response_model=schemas.WeightListOut, tags=["weights"])
async def set_sub_item_weights(
    payload: schemas.SubItemWeightsIn, core: InventoryCore = Depends(get_core)
) -> schemas.WeightListOut:
    if not core.thresholds.set_sub_item_weights(
        payload.category, payload.item, payload.sub_item, payload.weights
    ):
        raise _rejected("Weight columns rejected")
    await core.thresholds.save()
    weights = core.weights.weights_for(payload.category, payload.item, payload.sub_item)
    return schemas.WeightListOut(
        category=payload.category, item=payload.item, sub_item=payload.sub_item, weights=weights
    )


@router.get("/weight-modes", response_model=schemas.WeightModeOut, tags=["weights"])
async def get_weight_mode(
    category: str, item: str, core: InventoryCore = Depends(get_core)
) -> schemas.WeightModeOut:
    return schemas.WeightModeOut(
        category=category, item=item, mode=core.weights.weight_mode_for(category, item)
    )


@router.put("/weight-modes", response_model=schemas.WeightModeOut, tags=["weights"])
async def set_weight_mode(
    payload: schemas.WeightModeIn, core: InventoryCore = Depends(get_core)
) -> schemas.WeightModeOut:
    accepted = await core.weights.set_weight_mode(payload.category, payload.item, payload.mode)
    return schemas.WeightModeOut(
        category=payload.category,
        item=payload.item,
        mode=core.weights.weight_mode_for(payload.category, payload.item),
        accepted=accepted,
    )


@router.post("/weight-modes/reset", response_model=schemas.WeightModeOut, tags=["weights"])
async def reset_weight_mode(
    payload: schemas.ItemRef, core: InventoryCore = Depends(get_core)
) -> schemas.WeightModeOut:
    if not await core.weights.reset_weight_mode(payload.category, payload.item):
        raise NotFoundError(f"Unknown item {payload.category}/{payload.item}", code="item_not_found")
    return schemas.WeightModeOut(category=payload.category, item=payload.item, mode=None)


# ----------------------------------------------------------------------
# Inventory
# ----------------------------------------------------------------------


@router.get("/inventory", tags=["inventory"])
async def get_inventory(core: InventoryCore = Depends(get_core)) -> dict[str, Any]:
    return await core.inventory_snapshot()


@router.put("/inventory/quantity", response_model=schemas.QuantityEditOut, tags=["inventory"])
async def edit_quantity(
    payload: schemas.QuantityEdit, core: InventoryCore = Depends(get_core)
) -> schemas.QuantityEditOut:
    result = await core.edit_quantity(payload.to_key(), payload.quantity)
    return schemas.QuantityEditOut(
        product_id=result.product_id,
        weight_key=result.weight_key,
        previous=result.previous,
        quantity=result.quantity,
        allocation=_allocation_out(result.allocation) if result.allocation is not None else None,
    )


@router.post("/inventory/receive", response_model=schemas.AllocationOut, tags=["inventory"])
async def allocate_receive(
    payload: schemas.AllocationRequest, core: InventoryCore = Depends(get_core)
) -> schemas.AllocationOut:
    key = payload.to_key()
    result = await core.allocation.allocate_receive(key.product_id, key.weight_key, payload.delta)
    return _allocation_out(result)


@router.get("/events", response_model=list[schemas.StockEventOut], tags=["inventory"])
async def list_stock_events(
    product_id: str | None = None, core: InventoryCore = Depends(get_core)
) -> Sequence[schemas.StockEventOut]:
    events = await core.list_stock_events(product_id)
    return [schemas.StockEventOut.model_validate(event) for event in events]


# ----------------------------------------------------------------------
# Orders
# ----------------------------------------------------------------------


@router.post(
    "/orders", response_model=schemas.OrderOut, status_code=status.HTTP_201_CREATED, tags=["orders"]
)
async def create_order(
    payload: schemas.OrderCreate, core: InventoryCore = Depends(get_core)
) -> schemas.OrderOut:
    order = await core.create_order(payload)
    return schemas.OrderOut.model_validate(order)


@router.get("/orders", response_model=list[schemas.OrderOut], tags=["orders"])
async def list_orders(
    status_filter: list[str] | None = Query(default=None, alias="status"),
    open_only: bool = False,
    core: InventoryCore = Depends(get_core),
) -> Sequence[schemas.OrderOut]:
    statuses = OPEN_STATUSES if open_only else status_filter
    orders = await core.list_orders(statuses)
    return [schemas.OrderOut.model_validate(order) for order in orders]


@router.get("/orders/{order_id}", response_model=schemas.OrderOut, tags=["orders"])
async def get_order(order_id: int, core: InventoryCore = Depends(get_core)) -> schemas.OrderOut:
    return schemas.OrderOut.model_validate(await core.get_order(order_id))


@router.post("/orders/receive", response_model=list[schemas.OrderAllocationOut], tags=["orders"])
async def receive_shipment(
    payload: schemas.ShipmentIn, core: InventoryCore = Depends(get_core)
) -> Sequence[schemas.OrderAllocationOut]:
    receipts = [
        ShipmentReceipt(
            order_id=receipt.order_id,
            product_id=receipt.product_id,
            weight_key=receipt.weight_key,
            quantity=receipt.quantity,
            line_id=receipt.line_id,
        )
        for receipt in payload.receipts
    ]
    allocations = await core.allocation.receive_shipment(receipts)
    return [
        schemas.OrderAllocationOut(
            order_id=allocation.order_id, line_id=allocation.line_id, quantity=allocation.quantity
        )
        for allocation in allocations
    ]


@router.post(
    "/orders/from-reorder",
    response_model=schemas.OrderOut,
    status_code=status.HTTP_201_CREATED,
    tags=["orders"],
)
async def create_order_from_reorder(
    payload: schemas.ReorderSelection, core: InventoryCore = Depends(get_core)
) -> schemas.OrderOut:
    order = await core.order_selected_rows(
        payload.weight_keys, name=payload.name, created_by=payload.created_by
    )
    return schemas.OrderOut.model_validate(order)


@router.get("/pending", tags=["orders"])
async def pending_for(
    product_id: list[str] | None = Query(default=None), core: InventoryCore = Depends(get_core)
) -> dict[str, dict[str, int]]:
    return await core.pending.pending_for(product_id or [])


# ----------------------------------------------------------------------
# Reorder rows
# ----------------------------------------------------------------------


@router.get("/reorder", response_model=list[schemas.ReorderRowOut], tags=["reorder"])
async def reorder_rows(core: InventoryCore = Depends(get_core)) -> Sequence[schemas.ReorderRowOut]:
    rows = await core.reconciler.snapshot()
    return [schemas.ReorderRowOut.model_validate(row) for row in rows]


@router.get("/reorder/stream", tags=["reorder"])
async def stream_reorder_rows(
    limit: int | None = Query(default=None, ge=1, description="Close after this many snapshots."),
    core: InventoryCore = Depends(get_core),
) -> StreamingResponse:
    """Newline-delimited JSON: one array of reorder rows per change burst."""

    async def body() -> AsyncIterator[str]:
        stream = core.reconciler.stream_reorder_rows()
        sent = 0
        try:
            async for rows in stream:
                payload = [schemas.ReorderRowOut.model_validate(row).model_dump() for row in rows]
                yield json.dumps(payload, ensure_ascii=False) + "\n"
                sent += 1
                if limit is not None and sent >= limit:
                    break
        finally:
            await stream.aclose()

    return StreamingResponse(body(), media_type="application/x-ndjson")


# ----------------------------------------------------------------------
# Application factory
# ----------------------------------------------------------------------


def _status_for(exc: GoldventoryError) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ConcurrentUpdateError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, PersistenceError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def handle_core_error(request: Request, exc: GoldventoryError) -> JSONResponse:
    code = _status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content=exc.to_dict())


def create_app(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> FastAPI:
    if session_factory is None:
        session_factory = (
            SessionFactory if settings is None else create_session_factory(create_engine(settings))
        )
    settings = settings or get_settings()
    app = FastAPI(title=settings.app_name)
    app.state.settings = settings
    app.state.core = InventoryCore(session_factory, settings)
    app.add_exception_handler(GoldventoryError, handle_core_error)
    app.include_router(router)
    return app


app = create_app()


__all__ = ["app", "create_app", "get_core"]
