"""Per-supplier warehouse identifier normalization.

Suppliers report the same physical warehouse under several historical ids
(numeric codes, short alpha codes). Each facility is declared once with all
of its aliases; everything else resolves through the lookup built from those
declarations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from exceptions import ValidationError
from catalog.models import SupplierSource


@dataclass(frozen=True)
class WarehouseDefinition:
    canonical_id: str
    display_name: str
    aliases: Tuple[str, ...] = field(default_factory=tuple)


PRIMARY_WAREHOUSES: List[WarehouseDefinition] = [
    WarehouseDefinition("DAL", "Dallas, TX", ("1", "DAL")),
    WarehouseDefinition("CIN", "Cincinnati, OH", ("2", "CIN")),
    WarehouseDefinition("PHX", "Phoenix, AZ", ("3", "PHX")),
    WarehouseDefinition("RNO", "Reno, NV", ("4", "RNO")),
    WarehouseDefinition("ATL", "Atlanta, GA", ("5", "ATL")),
    WarehouseDefinition("CHI", "Chicago, IL", ("6", "CHI")),
    WarehouseDefinition("LAX", "Los Angeles, CA", ("7", "LAX")),
    WarehouseDefinition("SEA", "Seattle, WA", ("12", "SEA")),
    WarehouseDefinition("JAX", "Jacksonville, FL", ("31", "JAX")),
]

# Remote supplier reports two-letter state abbreviations per distribution center
REMOTE_WAREHOUSES: List[WarehouseDefinition] = [
    WarehouseDefinition("IL", "Lockport, IL", ("IL",)),
    WarehouseDefinition("KS", "Olathe, KS", ("KS",)),
    WarehouseDefinition("NV", "Reno, NV", ("NV",)),
    WarehouseDefinition("TX", "Fort Worth, TX", ("TX",)),
    WarehouseDefinition("GA", "McDonough, GA", ("GA",)),
    WarehouseDefinition("NJ", "Robbinsville, NJ", ("NJ",)),
    WarehouseDefinition("OH", "West Chester, OH", ("OH",)),
]

WAREHOUSE_DEFINITIONS: Dict[SupplierSource, List[WarehouseDefinition]] = {
    SupplierSource.PRIMARY: PRIMARY_WAREHOUSES,
    SupplierSource.REMOTE: REMOTE_WAREHOUSES,
}


def build_warehouse_lookup(definitions: Iterable[WarehouseDefinition]) -> Dict[str, WarehouseDefinition]:
    """Map every alias (uppercased) and canonical id to its definition.

    An alias claimed by two definitions with different display names is a
    table error. So is a display name declared twice: ids for one facility
    belong in a single definition.
    """
    lookup: Dict[str, WarehouseDefinition] = {}
    seen_names: Dict[str, str] = {}
    for definition in definitions:
        owner = seen_names.get(definition.display_name)
        if owner is not None and owner != definition.canonical_id:
            raise ValidationError(
                f"Display name '{definition.display_name}' declared by both {owner} and {definition.canonical_id}",
                detail={"display_name": definition.display_name},
            )
        seen_names[definition.display_name] = definition.canonical_id

        keys = {alias.strip().upper() for alias in definition.aliases}
        keys.add(definition.canonical_id.strip().upper())
        for key in keys:
            if not key:
                raise ValidationError(
                    "Empty warehouse alias",
                    detail={"canonical_id": definition.canonical_id},
                )
            existing = lookup.get(key)
            if existing is not None and existing.display_name != definition.display_name:
                raise ValidationError(
                    f"Warehouse alias '{key}' maps to both '{existing.display_name}' and '{definition.display_name}'",
                    detail={"alias": key},
                )
            lookup[key] = definition
    return lookup


_LOOKUPS: Dict[SupplierSource, Dict[str, WarehouseDefinition]] = {
    supplier: build_warehouse_lookup(definitions)
    for supplier, definitions in WAREHOUSE_DEFINITIONS.items()
}


def _lookup(supplier: object, warehouse_id: str) -> Optional[WarehouseDefinition]:
    source = SupplierSource.parse(supplier)
    if source is None or not warehouse_id:
        return None
    return _LOOKUPS[source].get(warehouse_id.strip().upper())


def resolve_warehouse_display_name(
    supplier: object,
    warehouse_id: str,
    warehouse_name: Optional[str] = None,
) -> str:
    """Display name for a supplier-local warehouse id.

    An explicit non-blank name reported alongside the id wins. Unknown ids
    come back unchanged.
    """
    if warehouse_name and warehouse_name.strip():
        return warehouse_name.strip()
    definition = _lookup(supplier, warehouse_id)
    if definition is not None:
        return definition.display_name
    return (warehouse_id or "").strip()


def normalize_warehouse_id(
    supplier: object,
    warehouse_id: str,
    warehouse_name: Optional[str] = None,
) -> Tuple[str, Optional[str]]:
    """Canonical (id, name) pair for a warehouse id; unknown ids are uppercased."""
    trimmed = (warehouse_id or "").strip()
    name = warehouse_name.strip() if warehouse_name and warehouse_name.strip() else None
    if not trimmed:
        return "", name
    definition = _lookup(supplier, trimmed)
    if definition is not None:
        return definition.canonical_id, name or definition.display_name
    return trimmed.upper(), name


def display_name_groups(supplier: object) -> Dict[str, List[str]]:
    """Display name -> sorted ids that resolve to it, for auditing the table."""
    source = SupplierSource.parse(supplier)
    if source is None:
        return {}
    groups: Dict[str, List[str]] = {}
    for key, definition in _LOOKUPS[source].items():
        groups.setdefault(definition.display_name, []).append(key)
    return {name: sorted(ids) for name, ids in sorted(groups.items())}
