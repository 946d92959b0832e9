"""Read access to ingested supplier products and inventory.

Everything here is a local query: no network, and a missing part id yields
None or an empty collection rather than an exception.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from catalog.inventory import derive_colors, derive_sizes, parse_warehouses, row_quantity
from catalog.models import (
    InventoryRow,
    MediaGroup,
    ProductColorway,
    ProductRecord,
    ProductSizeEntry,
    SkuMapEntry,
    SupplierSource,
)
from models import (
    Product,
    ProductColor,
    ProductInventory,
    ProductMedia,
    ProductSize,
    ProductSku,
)

logger = logging.getLogger(__name__)


def parse_piece_price(attributes: Any) -> Optional[float]:
    """Blank cost from product attributes; accepts numbers or numeric strings."""
    if not isinstance(attributes, dict):
        return None
    candidate = attributes.get("piecePrice")
    if isinstance(candidate, bool):
        return None
    if isinstance(candidate, (int, float)):
        return float(candidate)
    if isinstance(candidate, str):
        try:
            return float(candidate.strip())
        except ValueError:
            return None
    return None


def _normalize_ids(part_ids: Iterable[str]) -> List[str]:
    return sorted({part_id.strip().upper() for part_id in part_ids if part_id and part_id.strip()})


class CatalogRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_product_by_supplier_part_id(self, supplier_part_id: str) -> Optional[ProductRecord]:
        part_id = (supplier_part_id or "").strip().upper()
        if not part_id:
            return None
        result = await self.session.exec(select(Product).where(Product.supplier_part_id == part_id))
        product = result.first()
        if product is None:
            return None

        colors = (await self.session.exec(select(ProductColor).where(ProductColor.product_id == product.id))).all()
        sizes = (await self.session.exec(select(ProductSize).where(ProductSize.product_id == product.id))).all()
        media = (
            await self.session.exec(
                select(ProductMedia).where(ProductMedia.product_id == product.id).order_by(ProductMedia.position, ProductMedia.id)
            )
        ).all()
        skus = (await self.session.exec(select(ProductSku).where(ProductSku.product_id == product.id))).all()
        inventory = await self.get_inventory_rows(part_id)

        return self._map_product(product, colors, sizes, media, skus, inventory)

    def _map_product(
        self,
        product: Product,
        colors: List[ProductColor],
        sizes: List[ProductSize],
        media: List[ProductMedia],
        skus: List[ProductSku],
        inventory: List[InventoryRow],
    ) -> ProductRecord:
        colorways = [
            ProductColorway(
                color_code=color.color_code,
                color_name=color.color_name or color.color_code,
                swatch_url=color.swatch_url,
                supplier_variant_id=color.supplier_variant_id,
            )
            for color in colors
        ]
        size_entries = [
            ProductSizeEntry(code=size.size_code, display=size.display or size.size_code, sort=size.sort or 0)
            for size in sizes
        ]
        # Ingestion may lag inventory; fill gaps from the stock rows
        colorways = derive_colors(inventory, colorways)
        size_entries = derive_sizes(inventory, size_entries)

        default_color = product.default_color or (colorways[0].color_code if colorways else "DEFAULT")
        groups: Dict[str, MediaGroup] = {}
        for item in media:
            color_code = item.color_code or default_color
            group = groups.setdefault(color_code, MediaGroup(color_code=color_code))
            if item.url not in group.urls:
                group.urls.append(item.url)

        return ProductRecord(
            supplier=SupplierSource.parse(product.supplier) or SupplierSource.PRIMARY,
            supplier_part_id=product.supplier_part_id,
            name=product.name,
            brand=product.brand,
            default_color=default_color,
            colors=colorways,
            sizes=size_entries,
            media=list(groups.values()),
            sku_map=[
                SkuMapEntry(
                    supplier_part_id=product.supplier_part_id,
                    color_code=sku.color_code,
                    size_code=sku.size_code,
                    supplier_sku=sku.supplier_sku,
                )
                for sku in skus
            ],
            description=[str(line) for line in product.description] if isinstance(product.description, list) else [],
            attributes=product.attributes if isinstance(product.attributes, dict) else {},
            inventory=inventory,
        )

    async def get_product_base_blank_cost(self, supplier_part_id: str) -> Optional[float]:
        part_id = (supplier_part_id or "").strip().upper()
        if not part_id:
            return None
        result = await self.session.exec(select(Product.attributes).where(Product.supplier_part_id == part_id))
        return parse_piece_price(result.first())

    async def get_inventory_rows(self, supplier_part_id: str) -> List[InventoryRow]:
        part_id = (supplier_part_id or "").strip().upper()
        if not part_id:
            return []
        result = await self.session.exec(
            select(ProductInventory)
            .where(ProductInventory.supplier_part_id == part_id)
            .order_by(ProductInventory.color_code, ProductInventory.size_code)
        )
        return [
            InventoryRow(
                color_code=row.color_code,
                size_code=row.size_code,
                total_qty=row.total_qty or 0,
                warehouses=parse_warehouses(row.warehouses),
                fetched_at=row.fetched_at,
            )
            for row in result.all()
        ]

    async def get_aggregate_stock(self, supplier_part_ids: Iterable[str]) -> Dict[str, int]:
        """Total on-hand quantity per part id; parts without rows map to 0."""
        part_ids = _normalize_ids(supplier_part_ids)
        totals: Dict[str, int] = {part_id: 0 for part_id in part_ids}
        if not part_ids:
            return totals
        result = await self.session.exec(
            select(ProductInventory).where(ProductInventory.supplier_part_id.in_(part_ids))
        )
        for row in result.all():
            inventory_row = InventoryRow(
                color_code=row.color_code,
                size_code=row.size_code,
                total_qty=row.total_qty or 0,
                warehouses=parse_warehouses(row.warehouses),
            )
            totals[row.supplier_part_id] += row_quantity(inventory_row)
        return totals

    async def get_base_costs(self, supplier_part_ids: Iterable[str]) -> Dict[str, Optional[float]]:
        part_ids = _normalize_ids(supplier_part_ids)
        costs: Dict[str, Optional[float]] = {part_id: None for part_id in part_ids}
        if not part_ids:
            return costs
        result = await self.session.exec(
            select(Product.supplier_part_id, Product.attributes).where(Product.supplier_part_id.in_(part_ids))
        )
        for part_id, attributes in result.all():
            costs[part_id] = parse_piece_price(attributes)
        return costs

    async def search_products(self, query: str, limit: int = 20) -> List[Dict[str, Optional[str]]]:
        """Loose product lookup by part id, name or brand."""
        trimmed = (query or "").strip()
        if not trimmed:
            return []
        pattern = f"%{trimmed}%"
        result = await self.session.exec(
            select(Product)
            .where(
                or_(
                    Product.supplier_part_id.ilike(pattern),
                    Product.name.ilike(pattern),
                    Product.brand.ilike(pattern),
                )
            )
            .order_by(Product.supplier_part_id)
            .limit(limit)
        )
        return [
            {"supplier_part_id": product.supplier_part_id, "name": product.name, "brand": product.brand}
            for product in result.all()
        ]

