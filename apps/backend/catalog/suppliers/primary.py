"""Primary supplier strategy backed by the ingested catalog tables."""

from __future__ import annotations

from catalog.models import SupplierSource
from catalog.repository import CatalogRepository
from catalog.suppliers.base import SupplierFetch, SupplierStrategy


class PrimarySupplierStrategy(SupplierStrategy):
    supplier = SupplierSource.PRIMARY

    def __init__(self, repository: CatalogRepository):
        self.repository = repository

    def handles(self, supplier_part_id: str) -> bool:
        # Bulk-file part ids have no fixed shape; any non-empty id can be looked up
        return bool((supplier_part_id or "").strip())

    async def fetch(self, supplier_part_id: str) -> SupplierFetch:
        product = await self.repository.get_product_by_supplier_part_id(supplier_part_id)
        if product is None:
            inventory = await self.repository.get_inventory_rows(supplier_part_id)
            return SupplierFetch(product=None, inventory=inventory, source="database")
        return SupplierFetch(product=product, inventory=product.inventory, source="database")
