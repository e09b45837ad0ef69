"""Admin order endpoints: approval, corrections and payment checks."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from chatorder.core.deps import CurrentUser, DBSession, Notifier
from chatorder.core.exceptions import OrderStateError, UnknownCatalogItemsError
from chatorder.models.order import Order
from chatorder.schemas.order import OrderResponse, OrderVerifyRequest, PaymentCheckResponse
from chatorder.services.order_service import OrderService

router = APIRouter()


def get_order_service(db: DBSession, notifier: Notifier) -> OrderService:
    return OrderService(db, notifier=notifier)


Orders = Annotated[OrderService, Depends(get_order_service)]


async def _get_order(service: OrderService, order_id: UUID) -> Order:
    order = await service.get_order(order_id)
    if order is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Order not found")
    return order


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: UUID, service: Orders, _user: CurrentUser) -> Order:
    return await _get_order(service, order_id)


@router.post("/{order_id}/approve", response_model=OrderResponse)
async def approve_order(order_id: UUID, service: Orders, _user: CurrentUser) -> Order:
    """Confirm a pending order and decrement stock for its items."""
    order = await _get_order(service, order_id)
    try:
        return await service.approve_order(order)
    except OrderStateError as e:
        raise HTTPException(status.HTTP_409_CONFLICT, str(e)) from e


@router.patch("/{order_id}/verify", response_model=OrderResponse)
async def verify_order(
    order_id: UUID,
    data: OrderVerifyRequest,
    service: Orders,
    _user: CurrentUser,
) -> Order:
    """Apply operator corrections; items are re-priced from the catalog."""
    order = await _get_order(service, order_id)
    try:
        return await service.verify_order(order, data)
    except UnknownCatalogItemsError as e:
        raise HTTPException(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            {"message": "Unknown catalog items", "items": e.names},
        ) from e


@router.post("/{order_id}/payment-check", response_model=PaymentCheckResponse)
async def check_payment(order_id: UUID, service: Orders, _user: CurrentUser) -> PaymentCheckResponse:
    """Ask QPay whether the order's invoice has been paid."""
    order = await _get_order(service, order_id)
    if not order.invoice_id:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Order has no invoice")
    order = await service.refresh_payment_status(order)
    return PaymentCheckResponse(
        order_id=order.id,
        payment_status=order.payment_status,
        paid_at=order.paid_at,
    )
