"""Inventory shaping: warehouse normalization, totals checks, size ordering and matrices."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from catalog.models import (
    InventoryRow,
    InventorySummary,
    ProductColorway,
    ProductSizeEntry,
    SupplierSource,
    WarehouseStock,
)
from catalog.warehouses import normalize_warehouse_id, resolve_warehouse_display_name
from observability.metrics import inventory_total_mismatches_total

logger = logging.getLogger(__name__)

SIZE_DISPLAY_ORDER = ["XXS", "XS", "S", "M", "L", "XL", "2XL", "3XL", "4XL", "5XL", "6XL"]
_SIZE_PRIORITY = {code: index for index, code in enumerate(SIZE_DISPLAY_ORDER)}
UNKNOWN_SIZE_SORT = 999

_COLOR_ABBREVIATIONS = [
    (re.compile(r"\bVtg\b", re.IGNORECASE), "Vintage"),
    (re.compile(r"\bHthr\b", re.IGNORECASE), "Heather"),
    (re.compile(r"\bDk\b", re.IGNORECASE), "Dark"),
    (re.compile(r"\bLt\b", re.IGNORECASE), "Light"),
]


def _natural_key(value: str) -> List[Any]:
    return [int(part) if part.isdigit() else part.casefold() for part in re.split(r"(\d+)", value)]


def size_sort_index(size_code: str) -> int:
    return _SIZE_PRIORITY.get(size_code.strip().upper(), UNKNOWN_SIZE_SORT)


def sort_size_codes(size_codes: Iterable[str]) -> List[str]:
    """Dedupe and order sizes XXS..6XL, then anything else in natural order."""
    unique = list(dict.fromkeys(code for code in size_codes if code))
    return sorted(unique, key=lambda code: (size_sort_index(code), _natural_key(code)))


def format_color_name(color_code: str) -> str:
    """'HTHR_NAVY' -> 'Heather Navy'."""
    words = [word for word in re.split(r"[_\s]+", color_code) if word]
    name = " ".join(word[:1].upper() + word[1:].lower() for word in words)
    for pattern, replacement in _COLOR_ABBREVIATIONS:
        name = pattern.sub(replacement, name)
    return name


def parse_warehouses(value: Any) -> List[WarehouseStock]:
    """Read the stored JSON warehouse list, skipping entries without an id."""
    if not isinstance(value, list):
        return []
    entries: List[WarehouseStock] = []
    for item in value:
        if not isinstance(item, dict):
            continue
        warehouse_id = item.get("warehouseId", item.get("warehouse_id"))
        if isinstance(warehouse_id, int) and not isinstance(warehouse_id, bool):
            warehouse_id = str(warehouse_id)
        if not isinstance(warehouse_id, str) or not warehouse_id.strip():
            continue
        entries.append(
            WarehouseStock(
                warehouse_id=warehouse_id,
                warehouse_name=item.get("warehouseName", item.get("warehouse_name")),
                quantity=item.get("quantity", 0),
            )
        )
    return entries


def warehouse_sum(row: InventoryRow) -> int:
    return sum(stock.quantity for stock in row.warehouses)


def has_total_mismatch(row: InventoryRow) -> bool:
    """True when warehouse detail is present and disagrees with total_qty."""
    return bool(row.warehouses) and warehouse_sum(row) != row.total_qty


def find_total_mismatches(rows: Iterable[InventoryRow]) -> List[InventoryRow]:
    return [row for row in rows if has_total_mismatch(row)]


def record_total_mismatches(
    supplier: SupplierSource,
    supplier_part_id: str,
    rows: Sequence[InventoryRow],
) -> List[InventoryRow]:
    """Log and count rows whose totals disagree with their warehouse detail."""
    mismatches = find_total_mismatches(rows)
    for row in mismatches:
        inventory_total_mismatches_total.labels(supplier=supplier.value).inc()
        logger.warning(
            f"[Inventory] totalQty mismatch for {supplier.value}:{supplier_part_id} "
            f"{row.color_code}/{row.size_code}: total={row.total_qty} warehouses={warehouse_sum(row)}"
        )
    return mismatches


def row_quantity(row: InventoryRow) -> int:
    return row.total_qty if row.total_qty else warehouse_sum(row)


def format_inventory(
    supplier: SupplierSource,
    supplier_part_id: str,
    rows: Sequence[InventoryRow],
) -> InventorySummary:
    """Normalize warehouse ids/names on every row and build the warehouse directory.

    The directory lists each warehouse once (first appearance wins) with
    quantity 0; it is a roster, not a total.
    """
    record_total_mismatches(supplier, supplier_part_id, rows)

    formatted: List[InventoryRow] = []
    directory: Dict[str, WarehouseStock] = {}
    for row in rows:
        warehouses: List[WarehouseStock] = []
        for stock in row.warehouses:
            warehouse_id, name = normalize_warehouse_id(supplier, stock.warehouse_id, stock.warehouse_name)
            if not warehouse_id:
                continue
            display = resolve_warehouse_display_name(supplier, warehouse_id, name)
            warehouses.append(WarehouseStock(warehouse_id=warehouse_id, warehouse_name=display, quantity=stock.quantity))
            if warehouse_id not in directory:
                directory[warehouse_id] = WarehouseStock(warehouse_id=warehouse_id, warehouse_name=display, quantity=0)
        formatted.append(row.model_copy(update={"warehouses": warehouses}))

    return InventorySummary(rows=formatted, warehouses=list(directory.values()))


def derive_colors(
    rows: Sequence[InventoryRow],
    existing: Sequence[ProductColorway] = (),
) -> List[ProductColorway]:
    """Product colors plus any color that only shows up in inventory, sorted by code."""
    merged: Dict[str, ProductColorway] = {}
    for color in existing:
        merged.setdefault(color.color_code.upper(), color)
    for row in rows:
        key = row.color_code.upper()
        if key not in merged:
            merged[key] = ProductColorway(color_code=row.color_code, color_name=format_color_name(row.color_code))
    return sorted(merged.values(), key=lambda color: color.color_code)


def derive_sizes(
    rows: Sequence[InventoryRow],
    existing: Sequence[ProductSizeEntry] = (),
) -> List[ProductSizeEntry]:
    merged: Dict[str, ProductSizeEntry] = {}
    for size in existing:
        merged.setdefault(size.code.upper(), size)
    for row in rows:
        key = row.size_code.upper()
        if key not in merged:
            merged[key] = ProductSizeEntry(code=row.size_code, display=row.size_code, sort=size_sort_index(row.size_code))
    return sorted(merged.values(), key=lambda size: (size.sort, _natural_key(size.code)))


@dataclass
class WarehouseMatrixRow:
    warehouse_id: str
    display_name: str
    size_cells: Dict[str, int] = field(default_factory=dict)
    total_qty: int = 0


@dataclass
class InventoryMatrix:
    warehouses: List[WarehouseMatrixRow]
    sizes: List[str]
    totals_by_size: Dict[str, int]
    grand_total: int


def build_inventory_matrix(
    supplier: SupplierSource,
    rows: Sequence[InventoryRow],
    size_order: Optional[Sequence[str]] = None,
    directory: Optional[Sequence[WarehouseStock]] = None,
) -> InventoryMatrix:
    """Warehouse x size grid for one color's rows.

    Rows are keyed by display name so aliases of one facility ("1" and "DAL")
    collapse into a single line. Directory warehouses with no stock still get
    a row.
    """
    by_name: Dict[str, WarehouseMatrixRow] = {}
    totals_by_size: Dict[str, int] = {}
    grand_total = 0

    for row in rows:
        for stock in row.warehouses:
            display = resolve_warehouse_display_name(supplier, stock.warehouse_id, stock.warehouse_name)
            entry = by_name.setdefault(display, WarehouseMatrixRow(warehouse_id=stock.warehouse_id, display_name=display))
            entry.size_cells[row.size_code] = entry.size_cells.get(row.size_code, 0) + stock.quantity
            entry.total_qty += stock.quantity
            totals_by_size[row.size_code] = totals_by_size.get(row.size_code, 0) + stock.quantity
            grand_total += stock.quantity

    for stock in directory or []:
        display = resolve_warehouse_display_name(supplier, stock.warehouse_id, stock.warehouse_name)
        by_name.setdefault(display, WarehouseMatrixRow(warehouse_id=stock.warehouse_id, display_name=display))

    sizes = sort_size_codes(size_order if size_order else totals_by_size.keys())
    return InventoryMatrix(
        warehouses=sorted(by_name.values(), key=lambda entry: entry.display_name),
        sizes=sizes,
        totals_by_size=totals_by_size,
        grand_total=grand_total,
    )
