"""
FastAPI routes for orders
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from storefront.api.deps import (
    ensure_access,
    get_current_user,
    get_order_service,
    get_page_request,
    require_admin
)
from storefront.db.database import get_db
from storefront.db.pagination import PageRequest
from storefront.errors import ValidationFailed
from storefront.models.enums import OrderStatus
from storefront.models.schemas import (
    ApiResponse,
    CancelRequest,
    EstimatedDeliveryUpdate,
    OrderCreate,
    OrderResponse,
    OrderStatsResponse,
    OrderStatusUpdate,
    Page,
    TrackingUpdate
)
from storefront.models.user import User
from storefront.services.order_service import OrderService

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/api/v1", tags=["orders"])


def _one(order) -> OrderResponse:
    return OrderResponse.model_validate(order)


def _page(orders, total: int, page_request: PageRequest) -> Page[OrderResponse]:
    return Page.build([_one(o) for o in orders], total, page_request.page, page_request.size)


@router.post(
    "/orders",
    response_model=ApiResponse[OrderResponse],
    status_code=status.HTTP_201_CREATED
)
def create_order(
    order: OrderCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    """
    Place an order from the current user's cart

    This endpoint:
    1. Validates the cart against live prices and stock
    2. Computes subtotal, tax, shipping, discount and total
    3. Reserves stock for every line
    4. Clears the cart
    """
    logger.info(f"Creating order for user {user.id}")
    new_order = order_service.create_order(db, user.id, order)
    return ApiResponse.ok(_one(new_order), "Order created successfully")


@router.get("/orders/my", response_model=ApiResponse[Page[OrderResponse]])
def list_my_orders(
    page_request: PageRequest = Depends(get_page_request),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    orders, total = OrderService.get_orders(db, page_request, user_id=user.id)
    return ApiResponse.ok(_page(orders, total, page_request), "Orders retrieved successfully")


@router.get("/orders/my/count", response_model=ApiResponse[int])
def count_my_orders(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    return ApiResponse.ok(OrderService.get_user_order_count(db, user.id), "Order count retrieved successfully")


@router.get("/orders", response_model=ApiResponse[Page[OrderResponse]])
def list_orders(
    status: Optional[OrderStatus] = Query(None, description="Filter by status"),
    user_id: Optional[int] = Query(None, description="Filter by user ID"),
    keyword: Optional[str] = Query(None, description="Search by order number"),
    page_request: PageRequest = Depends(get_page_request),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """
    List all orders with pagination and filters

    - **status**: Filter by order status (optional)
    - **user_id**: Filter by user ID (optional)
    - **keyword**: Order number fragment (optional)
    """
    logger.info(f"Listing orders: page={page_request.page}, size={page_request.size}, status={status}")

    orders, total = OrderService.get_orders(
        db, page_request, user_id=user_id, status=status, keyword=keyword
    )
    return ApiResponse.ok(_page(orders, total, page_request), "Orders retrieved successfully")


@router.get("/orders/stats", response_model=ApiResponse[OrderStatsResponse])
def order_stats(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin)
):
    stats = OrderService.get_statistics(db)
    return ApiResponse.ok(OrderStatsResponse(**stats), "Order statistics retrieved successfully")


@router.get("/orders/recent", response_model=ApiResponse[List[OrderResponse]])
def recent_orders(
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin)
):
    orders = OrderService.get_recent_orders(db, limit)
    return ApiResponse.ok([_one(o) for o in orders], "Recent orders retrieved successfully")


@router.get("/orders/revenue", response_model=ApiResponse[Decimal])
def revenue_between(
    start: datetime = Query(..., description="Inclusive lower bound on order creation time"),
    end: datetime = Query(..., description="Inclusive upper bound on order creation time"),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Revenue of DELIVERED orders created between ``start`` and ``end``"""
    if start > end:
        raise ValidationFailed("start must not be after end")
    return ApiResponse.ok(OrderService.get_revenue_between(db, start, end), "Revenue retrieved successfully")


@router.get("/orders/number/{order_number}", response_model=ApiResponse[OrderResponse])
def get_order_by_number(
    order_number: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    order = OrderService.get_order_by_number(db, order_number)
    ensure_access(user, order.user_id)
    return ApiResponse.ok(_one(order), "Order retrieved successfully")


@router.get("/orders/{order_id}", response_model=ApiResponse[OrderResponse])
def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """
    Get a specific order by ID

    - **order_id**: Order ID
    """
    order = OrderService.get_order(db, order_id)
    ensure_access(user, order.user_id)
    return ApiResponse.ok(_one(order), "Order retrieved successfully")


@router.patch("/orders/{order_id}/status", response_model=ApiResponse[OrderResponse])
def update_order_status(
    order_id: int,
    status_update: OrderStatusUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    order_service: OrderService = Depends(get_order_service)
):
    """
    Update order status

    Only transitions allowed by the order lifecycle are accepted; entering
    CANCELLED restores stock for every line.
    """
    order = order_service.update_order_status(db, order_id, status_update.status)
    return ApiResponse.ok(_one(order), "Order status updated successfully")


@router.patch("/orders/{order_id}/tracking", response_model=ApiResponse[OrderResponse])
def update_tracking(
    order_id: int,
    tracking: TrackingUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    order_service: OrderService = Depends(get_order_service)
):
    order = order_service.update_tracking_number(db, order_id, tracking.tracking_number)
    return ApiResponse.ok(_one(order), "Tracking number updated successfully")


@router.patch("/orders/{order_id}/estimated-delivery", response_model=ApiResponse[OrderResponse])
def update_estimated_delivery(
    order_id: int,
    update: EstimatedDeliveryUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin)
):
    order = OrderService.update_estimated_delivery(db, order_id, update.estimated_delivery)
    return ApiResponse.ok(_one(order), "Estimated delivery updated successfully")


@router.post("/orders/{order_id}/cancel", response_model=ApiResponse[OrderResponse])
def cancel_order(
    order_id: int,
    cancel: CancelRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    """Cancel an order (only PENDING or CONFIRMED)"""
    ensure_access(user, OrderService.get_order(db, order_id).user_id)
    order = order_service.cancel_order(db, order_id, cancel.reason)
    return ApiResponse.ok(_one(order), "Order cancelled successfully")
