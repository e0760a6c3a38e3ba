# Overview: Service-layer operations for the catalog (categories, providers, products).

"""
Catalog Service

Prices are USD. Product listings can carry VES prices computed with the
current rate, but VES prices are never stored.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from sqlalchemy import exists, func

from ..errors import CatalogInUse, DuplicateEntry, NotFoundError, ProductNotFound, ValidationError
from ..models import Category, InventoryBatch, Product, Provider
from ..validation import ModelValidationPolicy, enforce_rules_product, validate_payload


CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "is_active"},
    required_on_create={"name"},
)

PROVIDER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "contact", "phone", "email", "address", "is_active"},
    required_on_create={"name"},
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "barcode",
        "internal_code",
        "name",
        "description",
        "category_id",
        "provider_id",
        "sale_price_usd",
        "cost_price_usd",
        "min_stock",
        "unit_of_measure",
        "is_active",
    },
    required_on_create={"barcode", "name", "sale_price_usd", "cost_price_usd"},
)


@dataclass(frozen=True)
class ProductFilter:
    """Explicit optional filters for product listings."""
    search: str | None = None
    category_id: int | None = None
    provider_id: int | None = None
    active_only: bool = True
    page: int = 1
    per_page: int = 20


class CatalogService:
    def __init__(self, session):
        self.session = session

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    def list_categories(self, active_only: bool = True) -> list[Category]:
        query = self.session.query(Category)
        if active_only:
            query = query.filter_by(is_active=True)
        return query.order_by(Category.name.asc()).all()

    def get_category(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if category is None:
            raise NotFoundError("Category not found", details={"category_id": category_id})
        return category

    def _check_category_name(self, name: str, category_id: int | None = None) -> None:
        query = self.session.query(Category).filter(func.lower(Category.name) == name.lower())
        if category_id is not None:
            query = query.filter(Category.id != category_id)
        if query.first() is not None:
            raise DuplicateEntry("name", name)

    def create_category(self, payload: dict) -> Category:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
        self._check_category_name(patch["name"])
        category = Category(**patch)
        self.session.add(category)
        self.session.commit()
        return category

    def update_category(self, category_id: int, payload: dict) -> Category:
        category = self.get_category(category_id)
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)
        if patch.get("name") is not None:
            self._check_category_name(patch["name"], category_id=category_id)

        for key, value in patch.items():
            setattr(category, key, value)
        self.session.commit()
        return category

    def deactivate_category(self, category_id: int) -> Category:
        """Soft delete. Refused while active products still use the category."""
        category = self.get_category(category_id)
        in_use = (
            self.session.query(func.count(Product.id))
            .filter(Product.category_id == category_id, Product.is_active.is_(True))
            .scalar()
        )
        if in_use:
            raise CatalogInUse("category", category_id, in_use)

        category.is_active = False
        self.session.commit()
        return category

    # =========================================================================
    # PROVIDERS
    # =========================================================================

    def list_providers(self, active_only: bool = True) -> list[Provider]:
        query = self.session.query(Provider)
        if active_only:
            query = query.filter_by(is_active=True)
        return query.order_by(Provider.name.asc()).all()

    def get_provider(self, provider_id: int) -> Provider:
        provider = self.session.get(Provider, provider_id)
        if provider is None:
            raise NotFoundError("Provider not found", details={"provider_id": provider_id})
        return provider

    def create_provider(self, payload: dict) -> Provider:
        patch = validate_payload(model=Provider, payload=payload, policy=PROVIDER_POLICY, partial=False)
        provider = Provider(**patch)
        self.session.add(provider)
        self.session.commit()
        return provider

    def update_provider(self, provider_id: int, payload: dict) -> Provider:
        provider = self.get_provider(provider_id)
        patch = validate_payload(model=Provider, payload=payload, policy=PROVIDER_POLICY, partial=True)
        for key, value in patch.items():
            setattr(provider, key, value)
        self.session.commit()
        return provider

    def deactivate_provider(self, provider_id: int) -> Provider:
        """Soft delete. Refused while active products still use the provider."""
        provider = self.get_provider(provider_id)
        in_use = (
            self.session.query(func.count(Product.id))
            .filter(Product.provider_id == provider_id, Product.is_active.is_(True))
            .scalar()
        )
        if in_use:
            raise CatalogInUse("provider", provider_id, in_use)

        provider.is_active = False
        self.session.commit()
        return provider

    # =========================================================================
    # PRODUCTS
    # =========================================================================

    def find_active_product(self, product_id: int) -> Product:
        product = self.session.query(Product).filter_by(id=product_id, is_active=True).first()
        if product is None:
            raise ProductNotFound(product_id)
        return product

    def get_product(self, product_id: int) -> Product:
        product = self.session.get(Product, product_id)
        if product is None:
            raise ProductNotFound(product_id)
        return product

    def get_by_barcode(self, barcode: str) -> Product:
        product = self.session.query(Product).filter_by(barcode=barcode, is_active=True).first()
        if product is None:
            raise NotFoundError("Product not found", details={"barcode": barcode})
        return product

    def _check_references(self, patch: dict) -> None:
        if patch.get("category_id") is not None and self.session.get(Category, patch["category_id"]) is None:
            raise ValidationError(f"Category {patch['category_id']} not found")
        if patch.get("provider_id") is not None and self.session.get(Provider, patch["provider_id"]) is None:
            raise ValidationError(f"Provider {patch['provider_id']} not found")

    def _check_unique(self, patch: dict, product_id: int | None = None) -> None:
        for field in ("barcode", "internal_code"):
            value = patch.get(field)
            if value is None:
                continue
            query = self.session.query(Product).filter(getattr(Product, field) == value)
            if product_id is not None:
                query = query.filter(Product.id != product_id)
            if query.first() is not None:
                raise DuplicateEntry(field, value)

    def create_product(self, payload: dict) -> Product:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        self._check_references(patch)
        self._check_unique(patch)

        product = Product(**patch)
        self.session.add(product)
        self.session.commit()
        return product

    def update_product(self, product_id: int, payload: dict) -> Product:
        product = self.get_product(product_id)
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        self._check_references(patch)
        self._check_unique(patch, product_id=product_id)

        for key, value in patch.items():
            setattr(product, key, value)
        self.session.commit()
        return product

    def deactivate_product(self, product_id: int) -> Product:
        """Soft delete; batches and sale history keep pointing at the row."""
        product = self.get_product(product_id)
        product.is_active = False
        self.session.commit()
        return product

    def list_products(self, spec: ProductFilter) -> dict:
        query = self.session.query(Product)
        if spec.active_only:
            query = query.filter(Product.is_active.is_(True))
        if spec.category_id is not None:
            query = query.filter(Product.category_id == spec.category_id)
        if spec.provider_id is not None:
            query = query.filter(Product.provider_id == spec.provider_id)
        if spec.search:
            pattern = f"%{spec.search.strip()}%"
            query = query.filter(
                Product.name.ilike(pattern)
                | Product.barcode.ilike(pattern)
                | Product.internal_code.ilike(pattern)
            )

        per_page = min(max(spec.per_page, 1), 100)
        page = max(spec.page, 1)
        total = query.count()
        products = (
            query.order_by(Product.name.asc(), Product.id.asc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        return {
            "items": products,
            "pagination": {
                "page": page,
                "per_page": per_page,
                "total": total,
                "total_pages": math.ceil(total / per_page) if total else 0,
            },
        }

    def low_stock_products(self) -> list[tuple[Product, int]]:
        """Active products whose total batch stock is below min_stock."""
        stock = func.coalesce(func.sum(InventoryBatch.current_quantity), 0)
        rows = (
            self.session.query(Product, stock)
            .outerjoin(InventoryBatch, InventoryBatch.product_id == Product.id)
            .filter(Product.is_active.is_(True))
            .group_by(Product.id)
            .having(stock < Product.min_stock)
            .order_by(Product.name.asc())
            .all()
        )
        return [(product, int(total)) for product, total in rows]

    def products_for_pos(self, search: str | None = None, limit: int = 20) -> list[tuple[Product, list[InventoryBatch]]]:
        """
        Active products that can be sold right now, with their in-stock
        batches in allocation order (expiring first).
        """
        query = self.session.query(Product).filter(
            Product.is_active.is_(True),
            exists().where(InventoryBatch.product_id == Product.id, InventoryBatch.current_quantity > 0),
        )
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(
                Product.name.ilike(pattern)
                | Product.barcode.ilike(pattern)
                | Product.internal_code.ilike(pattern)
            )
        products = query.order_by(Product.name.asc(), Product.id.asc()).limit(min(max(limit, 1), 100)).all()
        if not products:
            return []

        batches = (
            self.session.query(InventoryBatch)
            .filter(
                InventoryBatch.product_id.in_([p.id for p in products]),
                InventoryBatch.current_quantity > 0,
            )
            .order_by(
                InventoryBatch.expiry_date.is_(None),
                InventoryBatch.expiry_date.asc(),
                InventoryBatch.received_at.asc(),
                InventoryBatch.id.asc(),
            )
            .all()
        )
        by_product: dict[int, list[InventoryBatch]] = {}
        for batch in batches:
            by_product.setdefault(batch.product_id, []).append(batch)
        return [(product, by_product.get(product.id, [])) for product in products]
