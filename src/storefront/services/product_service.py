"""Product catalog business logic"""
from decimal import Decimal
from typing import List, Optional, Tuple
import logging

from opentelemetry import trace
from sqlalchemy import or_
from sqlalchemy.orm import Session

from storefront.db.pagination import PageRequest, paginate
from storefront.errors import Conflict, NotFound, ValidationFailed
from storefront.models.product import Product
from storefront.models.schemas import ProductCreate, ProductUpdate
from storefront.services.cache import BRANDS_KEY, CATALOG_PREFIX, CATEGORIES_KEY, CatalogCache

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

PRODUCT_SORT_FIELDS = (
    "created_at", "name", "price", "stock_quantity", "sales_count",
    "view_count", "average_rating", "id",
)


class ProductService:
    """Catalog service; every write invalidates the catalog cache"""

    def __init__(self, cache: CatalogCache):
        self.cache = cache

    @staticmethod
    def find_product(db: Session, product_id: str) -> Product:
        """Get product by ID without touching counters"""
        product = db.get(Product, product_id)
        if not product:
            raise NotFound("Product", product_id)
        return product

    def get_product(self, db: Session, product_id: str) -> Product:
        """Get product by ID, counting the view"""
        with tracer.start_as_current_span("product_service.get_product") as span:
            span.set_attribute("product.id", product_id)

            updated = (
                db.query(Product)
                .filter(Product.id == product_id)
                .update({Product.view_count: Product.view_count + 1}, synchronize_session=False)
            )
            if not updated:
                raise NotFound("Product", product_id)
            db.commit()

            return self.find_product(db, product_id)

    @staticmethod
    def get_product_by_sku(db: Session, sku: str) -> Product:
        """Get product by SKU"""
        product = db.query(Product).filter(Product.sku == sku).first()
        if not product:
            raise NotFound("Product", sku, field="sku")
        return product

    @staticmethod
    def get_products(
        db: Session,
        page_request: PageRequest,
        category: Optional[str] = None,
        brand: Optional[str] = None,
        is_active: Optional[bool] = None,
        is_featured: Optional[bool] = None,
        in_stock: Optional[bool] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        keyword: Optional[str] = None
    ) -> Tuple[List[Product], int]:
        """Get list of products with filters and pagination"""
        with tracer.start_as_current_span("product_service.get_products") as span:
            query = db.query(Product)

            if category:
                query = query.filter(Product.category == category)
                span.set_attribute("filter.category", category)
            if brand:
                query = query.filter(Product.brand == brand)
            if is_active is not None:
                query = query.filter(Product.is_active == is_active)
            if is_featured is not None:
                query = query.filter(Product.is_featured == is_featured)
            if in_stock is not None:
                query = query.filter(Product.stock_quantity > 0 if in_stock else Product.stock_quantity == 0)
            if min_price is not None:
                query = query.filter(Product.price >= min_price)
            if max_price is not None:
                query = query.filter(Product.price <= max_price)
            if keyword:
                pattern = f"%{keyword.strip()}%"
                query = query.filter(or_(
                    Product.name.ilike(pattern),
                    Product.description.ilike(pattern),
                    Product.brand.ilike(pattern),
                ))
                span.set_attribute("filter.keyword", keyword)

            products, total = paginate(query, Product, page_request, PRODUCT_SORT_FIELDS)
            span.set_attribute("products.total", total)
            return products, total

    def create_product(self, db: Session, product_data: ProductCreate) -> Product:
        """Create new product"""
        with tracer.start_as_current_span("product_service.create_product") as span:
            if db.query(Product).filter(Product.sku == product_data.sku).first():
                raise Conflict(f"Product with SKU {product_data.sku} already exists")

            product = Product(**product_data.model_dump())
            db.add(product)
            db.commit()
            db.refresh(product)
            self.cache.invalidate(CATALOG_PREFIX)

            span.set_attribute("product.id", product.id)
            logger.info(f"Created product {product.id} (sku={product.sku})")
            return product

    def update_product(self, db: Session, product_id: str, product_data: ProductUpdate) -> Product:
        """Update existing product"""
        with tracer.start_as_current_span("product_service.update_product") as span:
            span.set_attribute("product.id", product_id)
            product = self.find_product(db, product_id)

            update_data = product_data.model_dump(exclude_unset=True)
            new_sku = update_data.get("sku")
            if new_sku and new_sku != product.sku:
                if db.query(Product).filter(Product.sku == new_sku).first():
                    raise Conflict(f"Product with SKU {new_sku} already exists")

            for field, value in update_data.items():
                if value is None and field in ("name", "price", "sku", "stock_quantity",
                                               "low_stock_threshold", "is_active", "is_featured"):
                    raise ValidationFailed(f"{field} cannot be null")
                setattr(product, field, value)

            db.commit()
            db.refresh(product)
            self.cache.invalidate(CATALOG_PREFIX)

            logger.info(f"Updated product {product_id}: {sorted(update_data)}")
            return product

    def delete_product(self, db: Session, product_id: str) -> Product:
        """Delete product (soft delete)"""
        return self.set_active(db, product_id, False)

    def set_active(self, db: Session, product_id: str, active: bool) -> Product:
        product = self.find_product(db, product_id)
        product.is_active = active
        db.commit()
        db.refresh(product)
        self.cache.invalidate(CATALOG_PREFIX)

        logger.info(f"Product {product_id} {'activated' if active else 'deactivated'}")
        return product

    def set_featured(self, db: Session, product_id: str, featured: bool) -> Product:
        product = self.find_product(db, product_id)
        product.is_featured = featured
        db.commit()
        db.refresh(product)
        self.cache.invalidate(CATALOG_PREFIX)
        return product

    def set_stock(self, db: Session, product_id: str, quantity: int) -> Product:
        """Overwrite the stock level (administrative correction)"""
        if quantity < 0:
            raise ValidationFailed("Stock quantity cannot be negative")

        product = self.find_product(db, product_id)
        product.stock_quantity = quantity
        db.commit()
        db.refresh(product)
        self.cache.invalidate(CATALOG_PREFIX)

        logger.info(f"Stock of product {product_id} set to {quantity}")
        return product

    def set_price(self, db: Session, product_id: str, price: Decimal) -> Product:
        if price <= 0:
            raise ValidationFailed("Price must be greater than 0")

        product = self.find_product(db, product_id)
        product.price = price
        db.commit()
        db.refresh(product)
        self.cache.invalidate(CATALOG_PREFIX)

        logger.info(f"Price of product {product_id} set to {price}")
        return product

    @staticmethod
    def get_low_stock_products(db: Session) -> List[Product]:
        return (
            db.query(Product)
            .filter(Product.is_active.is_(True), Product.stock_quantity <= Product.low_stock_threshold)
            .order_by(Product.stock_quantity.asc(), Product.id.asc())
            .all()
        )

    @staticmethod
    def get_best_sellers(db: Session, limit: int = 10) -> List[Product]:
        return (
            db.query(Product)
            .filter(Product.is_active.is_(True))
            .order_by(Product.sales_count.desc(), Product.id.asc())
            .limit(limit)
            .all()
        )

    def get_categories(self, db: Session) -> List[str]:
        return self.cache.get_or_load(CATEGORIES_KEY, lambda: self._distinct(db, Product.category))

    def get_brands(self, db: Session) -> List[str]:
        return self.cache.get_or_load(BRANDS_KEY, lambda: self._distinct(db, Product.brand))

    @staticmethod
    def _distinct(db: Session, column) -> List[str]:
        rows = (
            db.query(column)
            .filter(Product.is_active.is_(True), column.isnot(None))
            .distinct()
            .order_by(column.asc())
            .all()
        )
        return [row[0] for row in rows]
