"""Typed wire models for the canonical catalog."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

FetchSource = Literal["database", "rest", "fallback"]
SortKey = Literal["relevance", "supplier", "price", "stock"]


class SupplierSource(str, Enum):
    """Closed set of suppliers the catalog reconciles."""

    PRIMARY = "PRIMARY"  # bulk-file supplier, rows already ingested
    REMOTE = "REMOTE"  # live REST supplier

    @classmethod
    def parse(cls, value: object) -> Optional["SupplierSource"]:
        """Case-insensitive lookup; None for anything unrecognized."""
        if isinstance(value, SupplierSource):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


SUPPLIER_PRIORITY: List[SupplierSource] = [SupplierSource.PRIMARY, SupplierSource.REMOTE]


class ProductColorway(BaseModel):
    color_code: str
    color_name: str
    swatch_url: Optional[str] = None
    supplier_variant_id: Optional[str] = None


class ProductSizeEntry(BaseModel):
    code: str
    display: str
    sort: int = 0


class MediaGroup(BaseModel):
    color_code: str
    urls: List[str] = Field(default_factory=list)


class SkuMapEntry(BaseModel):
    supplier_part_id: str
    color_code: str
    size_code: str
    supplier_sku: str


class WarehouseStock(BaseModel):
    warehouse_id: str
    warehouse_name: Optional[str] = None
    quantity: int = 0

    @field_validator("quantity", mode="before")
    @classmethod
    def _coerce_quantity(cls, value: Any) -> int:
        try:
            return max(int(float(value)), 0)
        except (TypeError, ValueError):
            return 0


class InventoryRow(BaseModel):
    color_code: str
    size_code: str
    total_qty: int = 0
    warehouses: List[WarehouseStock] = Field(default_factory=list)
    fetched_at: Optional[datetime] = None


class InventorySummary(BaseModel):
    """Inventory rows plus the directory of every warehouse that appears in them."""

    rows: List[InventoryRow] = Field(default_factory=list)
    warehouses: List[WarehouseStock] = Field(default_factory=list)


class ProductRecord(BaseModel):
    """Supplier product shaped the same way regardless of where it came from."""

    supplier: SupplierSource = SupplierSource.PRIMARY
    supplier_part_id: str
    name: str
    brand: Optional[str] = None
    default_color: str = "DEFAULT"
    colors: List[ProductColorway] = Field(default_factory=list)
    sizes: List[ProductSizeEntry] = Field(default_factory=list)
    media: List[MediaGroup] = Field(default_factory=list)
    sku_map: List[SkuMapEntry] = Field(default_factory=list)
    description: List[str] = Field(default_factory=list)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    inventory: List[InventoryRow] = Field(default_factory=list)


class ProductFetchResult(BaseModel):
    product: ProductRecord
    source: FetchSource
    warnings: List[str] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SupplierRef(BaseModel):
    supplier: SupplierSource
    supplier_part_id: str


class SearchHit(BaseModel):
    canonical_style_id: int
    style_number: str
    display_name: Optional[str] = None
    brand: Optional[str] = None
    score: float = 0.0
    matched_suppliers: List[SupplierSource] = Field(default_factory=list)
    suppliers: List[SupplierRef] = Field(default_factory=list)
    matched_rules: List[str] = Field(default_factory=list)
    total_stock: int = 0
    min_price: Optional[float] = None
    exact_match: bool = False


class SearchResponse(BaseModel):
    items: List[SearchHit] = Field(default_factory=list)
    total: int = 0
    direct_hit: Optional[SearchHit] = None


class SupplierDetail(BaseModel):
    """One supplier's view of a canonical style."""

    supplier: SupplierSource
    supplier_part_id: str
    product: Optional[ProductRecord] = None
    inventory: InventorySummary = Field(default_factory=InventorySummary)
    source: Optional[FetchSource] = None
    warnings: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class CanonicalStyleSummary(BaseModel):
    id: int
    style_number: str
    display_name: Optional[str] = None
    brand: Optional[str] = None


class CanonicalProductDetail(BaseModel):
    canonical_style: CanonicalStyleSummary
    suppliers: List[SupplierDetail] = Field(default_factory=list)


class SupplierProductBundle(BaseModel):
    """Every supplier's product for an identifier, in preferred supplier order."""

    identifier: str
    canonical_style: Optional[CanonicalStyleSummary] = None
    products: List[SupplierDetail] = Field(default_factory=list)

    @property
    def preferred(self) -> Optional[SupplierDetail]:
        for entry in self.products:
            if entry.product is not None:
                return entry
        return None


class LinkRequest(BaseModel):
    supplier: str
    supplier_part_id: str
    style_number: str
    display_name: Optional[str] = None
    brand: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class CatalogHealth(BaseModel):
    canonical_styles: int
    supplier_links: int
    cache: Dict[str, Any] = Field(default_factory=dict)
    remote_configured: bool = False
