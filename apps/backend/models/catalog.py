"""Catalog tables: canonical styles, supplier links, ingested products and inventory."""

from typing import Any, Optional
from datetime import datetime, timezone
import sqlalchemy as sa
from sqlmodel import Field, SQLModel, Column


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def timestamp_column() -> Column:
    return Column(sa.DateTime(timezone=True), nullable=False)


class CanonicalStyle(SQLModel, table=True):
    """One portal-level product identity, shared by every supplier that stocks it."""
    __tablename__ = "canonical_style"

    id: Optional[int] = Field(default=None, primary_key=True)
    style_number: str = Field(index=True, unique=True)
    display_name: Optional[str] = None
    brand: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now, sa_column=timestamp_column())
    updated_at: datetime = Field(default_factory=utc_now, sa_column=timestamp_column())


class SupplierProductLink(SQLModel, table=True):
    __tablename__ = "supplier_product_link"
    __table_args__ = (
        sa.UniqueConstraint("supplier", "supplier_part_id", name="uq_supplier_link_part"),
        sa.UniqueConstraint("canonical_style_id", "supplier", name="uq_supplier_link_style_supplier"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    canonical_style_id: int = Field(foreign_key="canonical_style.id", index=True)
    supplier: str = Field(index=True)  # PRIMARY, REMOTE
    supplier_part_id: str = Field(index=True)
    details: Optional[Any] = Field(default=None, sa_column=Column(sa.JSON, nullable=True))
    created_at: datetime = Field(default_factory=utc_now, sa_column=timestamp_column())


class Product(SQLModel, table=True):
    """Supplier product row as ingested by the bulk pipeline."""
    __tablename__ = "product"

    id: Optional[int] = Field(default=None, primary_key=True)
    supplier: str = Field(default="PRIMARY", index=True)
    supplier_part_id: str = Field(index=True, unique=True)
    name: str
    brand: Optional[str] = None
    default_color: Optional[str] = None
    # JSON list of description paragraphs
    description: Optional[Any] = Field(default=None, sa_column=Column(sa.JSON, nullable=True))
    # Free-form supplier attributes, e.g. {"piecePrice": 3.12}
    attributes: Optional[Any] = Field(default=None, sa_column=Column(sa.JSON, nullable=True))
    updated_at: datetime = Field(default_factory=utc_now, sa_column=timestamp_column())


class ProductColor(SQLModel, table=True):
    __tablename__ = "product_color"
    __table_args__ = (
        sa.UniqueConstraint("product_id", "color_code", name="uq_product_color_code"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.id", index=True)
    color_code: str
    color_name: Optional[str] = None
    swatch_url: Optional[str] = None
    supplier_variant_id: Optional[str] = None


class ProductSize(SQLModel, table=True):
    __tablename__ = "product_size"
    __table_args__ = (
        sa.UniqueConstraint("product_id", "size_code", name="uq_product_size_code"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.id", index=True)
    size_code: str
    display: Optional[str] = None
    sort: int = 0


class ProductMedia(SQLModel, table=True):
    __tablename__ = "product_media"

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.id", index=True)
    color_code: Optional[str] = None  # None = applies to every colorway
    url: str
    position: int = 0


class ProductSku(SQLModel, table=True):
    __tablename__ = "product_sku"

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.id", index=True)
    color_code: str
    size_code: str
    supplier_sku: str


class ProductInventory(SQLModel, table=True):
    """Stock snapshot for one color/size of a supplier part."""
    __tablename__ = "product_inventory"
    __table_args__ = (
        sa.UniqueConstraint("supplier_part_id", "color_code", "size_code", name="uq_inventory_variant"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    supplier_part_id: str = Field(index=True)
    color_code: str
    size_code: str
    total_qty: int = 0
    # JSON list of {"warehouseId", "warehouseName"?, "quantity"}
    warehouses: Optional[Any] = Field(default=None, sa_column=Column(sa.JSON, nullable=True))
    fetched_at: datetime = Field(default_factory=utc_now, sa_column=timestamp_column())
