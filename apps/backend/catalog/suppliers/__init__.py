"""Supplier strategies and the remote supplier client."""

from catalog.suppliers.base import SupplierFetch, SupplierRegistry, SupplierStrategy
from catalog.suppliers.primary import PrimarySupplierStrategy
from catalog.suppliers.remote import RemoteSupplierStrategy
from catalog.suppliers.ssactivewear import SsActivewearClient


def build_supplier_registry(repository, client: SsActivewearClient) -> SupplierRegistry:
    return SupplierRegistry([PrimarySupplierStrategy(repository), RemoteSupplierStrategy(client)])


__all__ = [
    "SupplierFetch",
    "SupplierRegistry",
    "SupplierStrategy",
    "PrimarySupplierStrategy",
    "RemoteSupplierStrategy",
    "SsActivewearClient",
    "build_supplier_registry",
]
