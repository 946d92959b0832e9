"""Supplier strategy interface and the registry that selects implementations."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from catalog.models import FetchSource, InventoryRow, ProductRecord, SupplierSource
from exceptions import ValidationError


@dataclass
class SupplierFetch:
    product: Optional[ProductRecord]
    inventory: List[InventoryRow] = field(default_factory=list)
    source: Optional[FetchSource] = None
    warnings: List[str] = field(default_factory=list)


class SupplierStrategy(ABC):
    """One supplier's way of producing a product for a part id."""

    supplier: SupplierSource

    @abstractmethod
    def handles(self, supplier_part_id: str) -> bool:
        """Whether the part id has this supplier's format."""

    @abstractmethod
    async def fetch(self, supplier_part_id: str) -> SupplierFetch:
        pass


class SupplierRegistry:
    """Strategies keyed by supplier; classification tries them in priority order."""

    def __init__(self, strategies: Iterable[SupplierStrategy]):
        self._strategies: Dict[SupplierSource, SupplierStrategy] = {}
        for strategy in strategies:
            self._strategies[strategy.supplier] = strategy

    def for_supplier(self, supplier: object) -> SupplierStrategy:
        source = SupplierSource.parse(supplier)
        if source is None or source not in self._strategies:
            raise ValidationError(f"No strategy registered for supplier {supplier}", detail={"supplier": str(supplier)})
        return self._strategies[source]

    def classify(self, supplier_part_id: str, order: Optional[List[SupplierSource]] = None) -> List[SupplierStrategy]:
        """Strategies whose format check accepts the part id."""
        sources = order or list(self._strategies)
        return [
            self._strategies[source]
            for source in sources
            if source in self._strategies and self._strategies[source].handles(supplier_part_id)
        ]

    @property
    def suppliers(self) -> List[SupplierSource]:
        return list(self._strategies)
