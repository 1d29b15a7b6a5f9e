"""
Basket API routes.

One buyer session per buyer_id; the session is hydrated from the stores on
first access (or explicitly via POST /session).
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
import structlog

from models.basket import (
    CartLineRequest,
    CartResponse,
    CheckoutRequest,
    PickupDateSelection,
    QuantityUpdate,
    SessionStartResponse,
)
from models.merge import LoadOrderResponse, MergeConflict, MergeConflictResponse, ResolveConflictRequest
from models.order import PlacedOrder
from models.schedule import DeadlineInfo, PickupCycle
from services.order_lifecycle_service import OrderLifecycleCoordinator
from services.session_service import SessionRegistry, get_session_registry
from exceptions import AppError, NoPendingConflictError

logger = structlog.get_logger(__name__)

router = APIRouter()


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# HELPERS
# ===================

def to_cart_response(coordinator: OrderLifecycleCoordinator) -> CartResponse:
    cart = coordinator.cart
    return CartResponse(
        state=coordinator.state,
        lines=list(cart.lines),
        total=cart.total,
        item_count=cart.item_count,
        source_order_id=cart.source_order_id,
        source_pickup_date_key=cart.source_pickup_date_key,
        selected_pickup_instant=cart.selected_pickup_instant,
        last_modified=cart.last_modified,
        has_changes=coordinator.basket.has_changes,
        has_pending_conflict=coordinator.has_pending_conflict,
    )


def to_conflict_response(conflict: MergeConflict) -> MergeConflictResponse:
    return MergeConflictResponse(order_id=conflict.remote_order.id, diff=list(conflict.diff))


# ===================
# SESSION
# ===================

@router.post("/{buyer_id}/session", response_model=SessionStartResponse)
async def start_session(
    buyer_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """
    (Re)hydrate the buyer's session.

    Source priority: persisted draft, upcoming order, empty draft.
    """
    try:
        coordinator = registry.coordinator_for(buyer_id)
        source = await coordinator.start_session()
        return SessionStartResponse(source=source, cart=to_cart_response(coordinator))

    except Exception as e:
        return handle_error(e)


@router.delete("/{buyer_id}/session")
async def close_session(
    buyer_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Tear down the buyer's session."""
    try:
        closed = await registry.close(buyer_id)
        return {"buyer_id": buyer_id, "closed": closed}

    except Exception as e:
        return handle_error(e)


@router.get("/{buyer_id}", response_model=CartResponse)
async def get_cart(
    buyer_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Active cart with state and total."""
    try:
        coordinator = await registry.acquire(buyer_id)
        return to_cart_response(coordinator)

    except Exception as e:
        return handle_error(e)


@router.post("/{buyer_id}/refresh", response_model=CartResponse)
async def refresh(
    buyer_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Re-fetch the active order from the store."""
    try:
        coordinator = await registry.acquire(buyer_id)
        await coordinator.refresh()
        return to_cart_response(coordinator)

    except Exception as e:
        return handle_error(e)


# ===================
# LINES
# ===================

@router.post("/{buyer_id}/lines", response_model=CartResponse)
async def add_or_update_line(
    buyer_id: str,
    data: CartLineRequest,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Add a product, or replace its existing line."""
    try:
        coordinator = await registry.acquire(buyer_id)
        await coordinator.add_or_update_line(data.to_line())
        return to_cart_response(coordinator)

    except Exception as e:
        return handle_error(e)


@router.put("/{buyer_id}/lines/{product_id}", response_model=CartResponse)
async def set_quantity(
    buyer_id: str,
    product_id: str,
    data: QuantityUpdate,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Set a line's quantity; zero or less removes the line."""
    try:
        coordinator = await registry.acquire(buyer_id)
        await coordinator.set_quantity(product_id, data.quantity)
        return to_cart_response(coordinator)

    except Exception as e:
        return handle_error(e)


@router.delete("/{buyer_id}/lines/{product_id}", response_model=CartResponse)
async def remove_line(
    buyer_id: str,
    product_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Remove a product from the cart."""
    try:
        coordinator = await registry.acquire(buyer_id)
        await coordinator.remove_line(product_id)
        return to_cart_response(coordinator)

    except Exception as e:
        return handle_error(e)


@router.post("/{buyer_id}/new-draft", response_model=CartResponse)
async def start_new_draft(
    buyer_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Discard the active cart and start an empty draft."""
    try:
        coordinator = await registry.acquire(buyer_id)
        await coordinator.start_new_draft()
        return to_cart_response(coordinator)

    except Exception as e:
        return handle_error(e)


# ===================
# PICKUP DATES
# ===================

@router.get("/{buyer_id}/pickup-dates", response_model=list[PickupCycle])
async def get_pickup_dates(
    buyer_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Orderable pickup dates with their edit deadlines."""
    try:
        coordinator = await registry.acquire(buyer_id)
        return [registry.calculator.cycle_for(p) for p in coordinator.available_pickup_dates()]

    except Exception as e:
        return handle_error(e)


@router.put("/{buyer_id}/pickup-date", response_model=CartResponse)
async def select_pickup_date(
    buyer_id: str,
    data: PickupDateSelection,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Choose the pickup date for checkout."""
    try:
        coordinator = await registry.acquire(buyer_id)
        await coordinator.select_pickup_date(data.pickup_instant)
        return to_cart_response(coordinator)

    except Exception as e:
        return handle_error(e)


@router.get("/{buyer_id}/deadline", response_model=Optional[DeadlineInfo])
async def get_deadline(
    buyer_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Window status, urgency and time left for the active cart."""
    try:
        coordinator = await registry.acquire(buyer_id)
        return coordinator.deadline_info()

    except Exception as e:
        return handle_error(e)


# ===================
# ORDERS
# ===================

@router.post("/{buyer_id}/checkout", response_model=PlacedOrder, status_code=201)
async def checkout(
    buyer_id: str,
    data: CheckoutRequest,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Place the draft as an order."""
    try:
        coordinator = await registry.acquire(buyer_id)
        return await coordinator.checkout(pickup=data.pickup_instant, message=data.message)

    except Exception as e:
        return handle_error(e)


@router.post("/{buyer_id}/enable-editing", response_model=CartResponse)
async def enable_editing(
    buyer_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Re-check with the server that the active order is still editable."""
    try:
        coordinator = await registry.acquire(buyer_id)
        await coordinator.enable_editing()
        return to_cart_response(coordinator)

    except Exception as e:
        return handle_error(e)


@router.post("/{buyer_id}/save", response_model=PlacedOrder)
async def save_changes(
    buyer_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Write the edited lines back to the active order."""
    try:
        coordinator = await registry.acquire(buyer_id)
        return await coordinator.save_changes()

    except Exception as e:
        return handle_error(e)


@router.post("/{buyer_id}/cancel", response_model=PlacedOrder)
async def cancel_order(
    buyer_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Cancel the active order while its window is open."""
    try:
        coordinator = await registry.acquire(buyer_id)
        return await coordinator.cancel_order()

    except Exception as e:
        return handle_error(e)


@router.post("/{buyer_id}/reorder", response_model=CartResponse)
async def reorder(
    buyer_id: str,
    data: Optional[PickupDateSelection] = Body(None),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Copy the active cart into a fresh draft for another pickup date."""
    try:
        coordinator = await registry.acquire(buyer_id)
        await coordinator.reorder(data.pickup_instant if data else None)
        return to_cart_response(coordinator)

    except Exception as e:
        return handle_error(e)


@router.post("/{buyer_id}/orders/{order_id}/load", response_model=LoadOrderResponse)
async def load_order_for_edit(
    buyer_id: str,
    order_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """
    Load a placed order as the active cart.

    If unsynced edits of the same order differ from the server copy, the
    conflict is returned and must be resolved before saving.
    """
    try:
        coordinator = await registry.acquire(buyer_id)
        conflict = await coordinator.load_order_for_edit(order_id)
        return LoadOrderResponse(
            conflict=to_conflict_response(conflict) if conflict else None,
            cart=to_cart_response(coordinator),
        )

    except Exception as e:
        return handle_error(e)


# ===================
# CONFLICTS
# ===================

@router.get("/{buyer_id}/conflict", response_model=MergeConflictResponse)
async def get_conflict(
    buyer_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """The pending merge conflict, if any."""
    try:
        coordinator = await registry.acquire(buyer_id)
        conflict = coordinator.pending_conflict
        if conflict is None:
            raise NoPendingConflictError()
        return to_conflict_response(conflict)

    except Exception as e:
        return handle_error(e)


@router.post("/{buyer_id}/conflict/resolve", response_model=PlacedOrder)
async def resolve_conflict(
    buyer_id: str,
    data: ResolveConflictRequest,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Resolve the pending conflict and write the result back to the order."""
    try:
        coordinator = await registry.acquire(buyer_id)
        return await coordinator.resolve_conflict(data.to_policy())

    except Exception as e:
        return handle_error(e)
