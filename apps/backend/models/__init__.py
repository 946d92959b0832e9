"""
Model exports.

Tables live in domain modules:
- catalog.py: canonical styles, supplier links, products and inventory
"""

from models.catalog import (
    CanonicalStyle,
    SupplierProductLink,
    Product,
    ProductColor,
    ProductSize,
    ProductMedia,
    ProductSku,
    ProductInventory,
)

__all__ = [
    "CanonicalStyle",
    "SupplierProductLink",
    "Product",
    "ProductColor",
    "ProductSize",
    "ProductMedia",
    "ProductSku",
    "ProductInventory",
]
