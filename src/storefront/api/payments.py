"""
FastAPI routes for payments
"""
from typing import Optional
import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from storefront.api.deps import (
    ensure_access,
    get_current_user,
    get_page_request,
    get_payment_service,
    require_admin
)
from storefront.db.database import get_db
from storefront.db.pagination import PageRequest
from storefront.models.enums import PaymentMethod, PaymentStatus
from storefront.models.schemas import (
    ApiResponse,
    Page,
    PaymentCancelRequest,
    PaymentCreate,
    PaymentProcessRequest,
    PaymentResponse,
    PaymentStatsResponse,
    RefundRequest
)
from storefront.models.user import User
from storefront.services.order_service import OrderService
from storefront.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["payments"])


def _one(payment) -> PaymentResponse:
    return PaymentResponse.model_validate(payment)


def _check_owner(db: Session, user: User, payment):
    ensure_access(user, OrderService.get_order(db, payment.order_id).user_id)


@router.post(
    "/payments",
    response_model=ApiResponse[PaymentResponse],
    status_code=status.HTTP_201_CREATED
)
def create_payment(
    request: PaymentCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    ensure_access(user, OrderService.get_order(db, request.order_id).user_id)
    payment = PaymentService.create_payment(db, request.order_id, request.payment_method, request.currency)
    return ApiResponse.ok(_one(payment), "Payment created successfully")


@router.get("/payments/my", response_model=ApiResponse[Page[PaymentResponse]])
def list_my_payments(
    page_request: PageRequest = Depends(get_page_request),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    payments, total = PaymentService.get_payments(db, page_request, user_id=user.id)
    return ApiResponse.ok(
        Page.build([_one(p) for p in payments], total, page_request.page, page_request.size),
        "Payments retrieved successfully"
    )


@router.get("/payments", response_model=ApiResponse[Page[PaymentResponse]])
def list_payments(
    payment_status: Optional[PaymentStatus] = Query(None, alias="status"),
    payment_method: Optional[PaymentMethod] = Query(None, alias="method"),
    page_request: PageRequest = Depends(get_page_request),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin)
):
    payments, total = PaymentService.get_payments(
        db, page_request, status=payment_status, payment_method=payment_method
    )
    return ApiResponse.ok(
        Page.build([_one(p) for p in payments], total, page_request.page, page_request.size),
        "Payments retrieved successfully"
    )


@router.get("/payments/stats", response_model=ApiResponse[PaymentStatsResponse])
def payment_stats(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin)
):
    stats = PaymentService.get_statistics(db)
    return ApiResponse.ok(PaymentStatsResponse(**stats), "Payment statistics retrieved successfully")


@router.get("/payments/order/{order_id}", response_model=ApiResponse[PaymentResponse])
def get_payment_for_order(
    order_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    ensure_access(user, OrderService.get_order(db, order_id).user_id)
    return ApiResponse.ok(_one(PaymentService.get_payment_by_order(db, order_id)), "Payment retrieved successfully")


@router.get("/payments/transaction/{transaction_id}", response_model=ApiResponse[PaymentResponse])
def get_payment_by_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin)
):
    payment = PaymentService.get_payment_by_transaction(db, transaction_id)
    return ApiResponse.ok(_one(payment), "Payment retrieved successfully")


@router.get("/payments/id/{payment_id}", response_model=ApiResponse[PaymentResponse])
def get_payment_by_id(
    payment_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    payment = PaymentService.get_payment(db, payment_id)
    _check_owner(db, user, payment)
    return ApiResponse.ok(_one(payment), "Payment retrieved successfully")


@router.get("/payments/{reference}", response_model=ApiResponse[PaymentResponse])
def get_payment(
    reference: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    payment = PaymentService.get_payment_by_reference(db, reference)
    _check_owner(db, user, payment)
    return ApiResponse.ok(_one(payment), "Payment retrieved successfully")


@router.post("/payments/{reference}/process", response_model=ApiResponse[PaymentResponse])
def process_payment(
    reference: str,
    credentials: PaymentProcessRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """
    Charge a PENDING payment

    A declined or failing gateway yields a FAILED payment, not an error.
    """
    _check_owner(db, user, PaymentService.get_payment_by_reference(db, reference))
    payment = payment_service.process_payment(db, reference, credentials)

    message = "Payment processed successfully" if payment.status == PaymentStatus.COMPLETED else "Payment failed"
    return ApiResponse.ok(_one(payment), message)


@router.post("/payments/{reference}/cancel", response_model=ApiResponse[PaymentResponse])
def cancel_payment(
    reference: str,
    cancel: PaymentCancelRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    _check_owner(db, user, PaymentService.get_payment_by_reference(db, reference))
    payment = PaymentService.cancel_payment(db, reference, cancel.reason)
    return ApiResponse.ok(_one(payment), "Payment cancelled successfully")


@router.post("/payments/{reference}/refund", response_model=ApiResponse[PaymentResponse])
def refund_payment(
    reference: str,
    refund: RefundRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    payment_service: PaymentService = Depends(get_payment_service)
):
    logger.info(f"Admin {admin.id} refunding {refund.amount} on payment {reference}")
    payment = payment_service.refund_payment(db, reference, refund.amount, refund.reason)
    return ApiResponse.ok(_one(payment), "Refund processed successfully")
