"""
FastAPI routes for the current user's cart
"""
from typing import List
import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user, require_admin
from storefront.db.database import get_db
from storefront.models.schemas import (
    ApiResponse,
    CartLineCreate,
    CartLineResponse,
    CartLineUpdate,
    CartSummaryResponse,
    CartValidationResponse
)
from storefront.models.user import User
from storefront.services.cart_service import CartService
from storefront.services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["cart"])


@router.get("/cart", response_model=ApiResponse[List[CartLineResponse]])
def get_cart(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    lines = CartService.get_lines(db, user.id)
    return ApiResponse.ok([CartLineResponse.model_validate(line) for line in lines], "Cart retrieved successfully")


@router.get("/cart/summary", response_model=ApiResponse[CartSummaryResponse])
def get_cart_summary(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    summary = CartService.summarize(db, user.id)
    return ApiResponse.ok(
        CartSummaryResponse(
            item_count=summary.item_count,
            total_quantity=summary.total_quantity,
            total_amount=summary.total_amount
        ),
        "Cart summary retrieved successfully"
    )


@router.get("/cart/contains/{product_id}", response_model=ApiResponse[bool])
def is_in_cart(
    product_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    return ApiResponse.ok(CartService.is_product_in_cart(db, user.id, product_id))


@router.post(
    "/cart/items",
    response_model=ApiResponse[CartLineResponse],
    status_code=status.HTTP_201_CREATED
)
def add_to_cart(
    item: CartLineCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """
    Add a product to the cart

    Adding a product that is already in the cart merges the quantities.
    """
    line = CartService.add_line(db, user.id, item.product_id, item.quantity, item.selected_variants)
    return ApiResponse.ok(CartLineResponse.model_validate(line), "Item added to cart successfully")


@router.post("/cart/validate", response_model=ApiResponse[CartValidationResponse])
def validate_cart(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """Repair the cart against current prices and stock"""
    report = CartService.validate(db, user.id)
    return ApiResponse.ok(CartValidationResponse.model_validate(report), "Cart validated successfully")


@router.put("/cart/items/{line_id}", response_model=ApiResponse[CartLineResponse])
def update_cart_item(
    line_id: int,
    update: CartLineUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    line = None
    if update.quantity is not None:
        line = CartService.update_quantity(db, user.id, line_id, update.quantity)
    if update.selected_variants is not None:
        line = CartService.update_variants(db, user.id, line_id, update.selected_variants)
    return ApiResponse.ok(CartLineResponse.model_validate(line), "Cart item updated successfully")


@router.delete("/cart/items/{line_id}", response_model=ApiResponse[None])
def remove_cart_item(
    line_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    CartService.remove_line(db, user.id, line_id)
    return ApiResponse.ok(message="Item removed from cart successfully")


@router.delete("/cart/products/{product_id}", response_model=ApiResponse[None])
def remove_cart_product(
    product_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    CartService.remove_product(db, user.id, product_id)
    return ApiResponse.ok(message="Product removed from cart successfully")


@router.delete("/cart", response_model=ApiResponse[int])
def clear_cart(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    return ApiResponse.ok(CartService.clear(db, user.id), "Cart cleared successfully")


@router.post("/cart/transfer", response_model=ApiResponse[int])
def transfer_cart(
    from_user_id: int = Query(..., gt=0),
    to_user_id: int = Query(..., gt=0),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Move one user's cart into another's, merging overlapping products"""
    UserService.get_user(db, from_user_id)
    UserService.get_user(db, to_user_id)
    moved = CartService.transfer(db, from_user_id, to_user_id)
    return ApiResponse.ok(moved, "Cart transferred successfully")


@router.delete("/cart/cleanup", response_model=ApiResponse[int])
def cleanup_carts(
    days: int = Query(30, ge=1),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin)
):
    return ApiResponse.ok(CartService.cleanup_old_lines(db, days), "Old cart items cleaned up")
