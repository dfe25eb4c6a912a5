"""
FastAPI routes for the product catalog
"""
from decimal import Decimal
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from storefront.api.deps import get_page_request, get_product_service, require_admin
from storefront.db.database import get_db
from storefront.db.pagination import PageRequest
from storefront.models.schemas import (
    ApiResponse,
    Page,
    PriceUpdate,
    ProductCreate,
    ProductResponse,
    ProductUpdate,
    StockUpdate
)
from storefront.models.user import User
from storefront.services.product_service import ProductService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["products"])


def _one(product) -> ProductResponse:
    return ProductResponse.model_validate(product)


@router.get("/products", response_model=ApiResponse[Page[ProductResponse]])
def list_products(
    category: Optional[str] = Query(None, description="Filter by category"),
    brand: Optional[str] = Query(None, description="Filter by brand"),
    is_active: Optional[bool] = Query(True, description="Filter by active flag"),
    is_featured: Optional[bool] = Query(None),
    in_stock: Optional[bool] = Query(None),
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    keyword: Optional[str] = Query(None, description="Search name, description and brand"),
    page_request: PageRequest = Depends(get_page_request),
    db: Session = Depends(get_db)
):
    """
    List products with filters and pagination

    - **page**: zero-based page number
    - **size**: page size
    - **sort**: `field[,asc|desc]`
    """
    products, total = ProductService.get_products(
        db,
        page_request,
        category=category,
        brand=brand,
        is_active=is_active,
        is_featured=is_featured,
        in_stock=in_stock,
        min_price=min_price,
        max_price=max_price,
        keyword=keyword
    )
    return ApiResponse.ok(
        Page.build([_one(p) for p in products], total, page_request.page, page_request.size),
        "Products retrieved successfully"
    )


@router.get("/products/categories", response_model=ApiResponse[List[str]])
def list_categories(
    db: Session = Depends(get_db),
    service: ProductService = Depends(get_product_service)
):
    return ApiResponse.ok(service.get_categories(db), "Categories retrieved successfully")


@router.get("/products/brands", response_model=ApiResponse[List[str]])
def list_brands(
    db: Session = Depends(get_db),
    service: ProductService = Depends(get_product_service)
):
    return ApiResponse.ok(service.get_brands(db), "Brands retrieved successfully")


@router.get("/products/best-sellers", response_model=ApiResponse[List[ProductResponse]])
def best_sellers(
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db)
):
    products = ProductService.get_best_sellers(db, limit)
    return ApiResponse.ok([_one(p) for p in products], "Best sellers retrieved successfully")


@router.get("/products/low-stock", response_model=ApiResponse[List[ProductResponse]])
def low_stock(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin)
):
    products = ProductService.get_low_stock_products(db)
    return ApiResponse.ok([_one(p) for p in products], "Low stock products retrieved successfully")


@router.get("/products/sku/{sku}", response_model=ApiResponse[ProductResponse])
def get_product_by_sku(sku: str, db: Session = Depends(get_db)):
    return ApiResponse.ok(_one(ProductService.get_product_by_sku(db, sku)), "Product retrieved successfully")


@router.get("/products/{product_id}", response_model=ApiResponse[ProductResponse])
def get_product(
    product_id: str,
    db: Session = Depends(get_db),
    service: ProductService = Depends(get_product_service)
):
    """Get a product by ID (counts as a view)"""
    return ApiResponse.ok(_one(service.get_product(db, product_id)), "Product retrieved successfully")


@router.post(
    "/products",
    response_model=ApiResponse[ProductResponse],
    status_code=status.HTTP_201_CREATED
)
def create_product(
    product: ProductCreate,
    db: Session = Depends(get_db),
    service: ProductService = Depends(get_product_service),
    admin: User = Depends(require_admin)
):
    logger.info(f"Admin {admin.id} creating product {product.sku}")
    return ApiResponse.ok(_one(service.create_product(db, product)), "Product created successfully")


@router.put("/products/{product_id}", response_model=ApiResponse[ProductResponse])
def update_product(
    product_id: str,
    product: ProductUpdate,
    db: Session = Depends(get_db),
    service: ProductService = Depends(get_product_service),
    admin: User = Depends(require_admin)
):
    return ApiResponse.ok(_one(service.update_product(db, product_id, product)), "Product updated successfully")


@router.delete("/products/{product_id}", response_model=ApiResponse[ProductResponse])
def delete_product(
    product_id: str,
    db: Session = Depends(get_db),
    service: ProductService = Depends(get_product_service),
    admin: User = Depends(require_admin)
):
    """Soft delete: the product is deactivated, never removed"""
    return ApiResponse.ok(_one(service.delete_product(db, product_id)), "Product deleted successfully")


@router.patch("/products/{product_id}/activate", response_model=ApiResponse[ProductResponse])
def activate_product(
    product_id: str,
    db: Session = Depends(get_db),
    service: ProductService = Depends(get_product_service),
    admin: User = Depends(require_admin)
):
    return ApiResponse.ok(_one(service.set_active(db, product_id, True)), "Product activated successfully")


@router.patch("/products/{product_id}/deactivate", response_model=ApiResponse[ProductResponse])
def deactivate_product(
    product_id: str,
    db: Session = Depends(get_db),
    service: ProductService = Depends(get_product_service),
    admin: User = Depends(require_admin)
):
    return ApiResponse.ok(_one(service.set_active(db, product_id, False)), "Product deactivated successfully")


@router.patch("/products/{product_id}/feature", response_model=ApiResponse[ProductResponse])
def feature_product(
    product_id: str,
    db: Session = Depends(get_db),
    service: ProductService = Depends(get_product_service),
    admin: User = Depends(require_admin)
):
    return ApiResponse.ok(_one(service.set_featured(db, product_id, True)), "Product featured successfully")


@router.patch("/products/{product_id}/unfeature", response_model=ApiResponse[ProductResponse])
def unfeature_product(
    product_id: str,
    db: Session = Depends(get_db),
    service: ProductService = Depends(get_product_service),
    admin: User = Depends(require_admin)
):
    return ApiResponse.ok(_one(service.set_featured(db, product_id, False)), "Product unfeatured successfully")


@router.patch("/products/{product_id}/stock", response_model=ApiResponse[ProductResponse])
def update_stock(
    product_id: str,
    stock: StockUpdate,
    db: Session = Depends(get_db),
    service: ProductService = Depends(get_product_service),
    admin: User = Depends(require_admin)
):
    product = service.set_stock(db, product_id, stock.stock_quantity)
    return ApiResponse.ok(_one(product), "Stock updated successfully")


@router.patch("/products/{product_id}/price", response_model=ApiResponse[ProductResponse])
def update_price(
    product_id: str,
    price: PriceUpdate,
    db: Session = Depends(get_db),
    service: ProductService = Depends(get_product_service),
    admin: User = Depends(require_admin)
):
    return ApiResponse.ok(_one(service.set_price(db, product_id, price.price)), "Price updated successfully")
