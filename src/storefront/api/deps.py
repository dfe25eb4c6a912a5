"""
Request-scoped dependencies: current user, role checks and service instances
"""
from typing import Optional

from fastapi import Depends, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from storefront.config import settings
from storefront.db.database import get_db
from storefront.db.pagination import PageRequest
from storefront.errors import Forbidden, Unauthorized
from storefront.models.user import User
from storefront.services.auth import can_access, decode_access_token
from storefront.services.cache import CatalogCache
from storefront.services.gateways import GatewayRegistry, default_registry
from storefront.services.notifications import NotificationDispatcher
from storefront.services.order_service import OrderService
from storefront.services.payment_service import PaymentService
from storefront.services.pricing import PricingCalculator
from storefront.services.product_service import ProductService

bearer_scheme = HTTPBearer(auto_error=False)

# Process-wide collaborators (notifier is replaced in main.py lifespan)
notifier: Optional[NotificationDispatcher] = None
catalog_cache = CatalogCache()
gateway_registry = default_registry()
pricing_calculator = PricingCalculator.from_settings(settings)


def get_notifier() -> NotificationDispatcher:
    """Dependency for the notification dispatcher"""
    global notifier
    if notifier is None:
        notifier = NotificationDispatcher(
            webhook_url=settings.notification_webhook_url,
            timeout=settings.notification_timeout_seconds,
            app_name=settings.app_name,
            frontend_url=settings.frontend_url
        )
    return notifier


def get_catalog_cache() -> CatalogCache:
    return catalog_cache


def get_gateway_registry() -> GatewayRegistry:
    return gateway_registry


def get_pricing_calculator() -> PricingCalculator:
    return pricing_calculator


def get_product_service(cache: CatalogCache = Depends(get_catalog_cache)) -> ProductService:
    return ProductService(cache)


def get_order_service(
    pricing: PricingCalculator = Depends(get_pricing_calculator),
    dispatcher: NotificationDispatcher = Depends(get_notifier)
) -> OrderService:
    """Dependency for Order Service"""
    return OrderService(pricing, dispatcher)


def get_payment_service(gateways: GatewayRegistry = Depends(get_gateway_registry)) -> PaymentService:
    return PaymentService(gateways)


def get_page_request(
    page: int = Query(0, ge=0, description="Zero-based page number"),
    size: int = Query(20, ge=1, le=100, description="Page size"),
    sort: Optional[str] = Query(None, description="field[,asc|desc]")
) -> PageRequest:
    return PageRequest(page=page, size=size, sort=sort)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db)
) -> User:
    """Resolve the bearer token to an active user"""
    if credentials is None:
        raise Unauthorized()

    payload = decode_access_token(credentials.credentials)
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise Unauthorized("Invalid or expired token")

    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise Unauthorized("Invalid or expired token")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise Forbidden("Admin role required")
    return user


def ensure_access(user: User, resource_owner_id: int):
    """Raise Forbidden unless ``user`` may act on a resource owned by ``resource_owner_id``"""
    if not can_access(user.role, resource_owner_id, user.id):
        raise Forbidden()
