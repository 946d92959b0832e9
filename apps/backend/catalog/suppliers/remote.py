"""Remote supplier strategy over the S&S Activewear client."""

from __future__ import annotations

from catalog.models import SupplierSource
from catalog.suppliers.base import SupplierFetch, SupplierStrategy
from catalog.suppliers.ssactivewear import SsActivewearClient


class RemoteSupplierStrategy(SupplierStrategy):
    supplier = SupplierSource.REMOTE

    def __init__(self, client: SsActivewearClient):
        self.client = client

    def handles(self, supplier_part_id: str) -> bool:
        return self.client.handles(supplier_part_id)

    async def fetch(self, supplier_part_id: str) -> SupplierFetch:
        result = await self.client.fetch_product_with_fallback(supplier_part_id)
        return SupplierFetch(
            product=result.product,
            inventory=result.product.inventory,
            source=result.source,
            warnings=list(result.warnings),
        )
