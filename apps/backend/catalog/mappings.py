"""Curated canonical mapping table used to seed style numbers.

The file is a JSON list of records::

    {"canonicalSku": "PC54", "name": "Core Cotton Tee", "brand": "Port & Company",
     "aliases": ["PC54", "PORT54"], "suppliers": {"REMOTE": {"style": "B00054"}}}
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field, field_validator

from exceptions import ValidationError

logger = logging.getLogger(__name__)


class SupplierStyleMapping(BaseModel):
    style: str


class CanonicalMappingRecord(BaseModel):
    canonical_sku: str = Field(..., alias="canonicalSku")
    name: str
    brand: Optional[str] = None
    aliases: List[str] = Field(default_factory=list)
    suppliers: Dict[str, SupplierStyleMapping] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}

    @field_validator("canonical_sku", mode="before")
    @classmethod
    def _normalize_sku(cls, value: str) -> str:
        return str(value or "").strip().upper()

    @field_validator("suppliers", mode="before")
    @classmethod
    def _normalize_suppliers(cls, value: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        normalized: Dict[str, Any] = {}
        for supplier, mapping in (value or {}).items():
            style = (mapping or {}).get("style") if isinstance(mapping, dict) else None
            if not style or not str(style).strip():
                continue
            normalized[str(supplier).strip().upper()] = {"style": str(style).strip().upper()}
        return normalized


@dataclass
class ResolvedSearchTerm:
    exact_match: Optional[CanonicalMappingRecord] = None
    candidates: List[CanonicalMappingRecord] = field(default_factory=list)


class CanonicalMappingTable:
    """Validated, indexed mapping records. Build once and pass it around."""

    def __init__(self, records: List[CanonicalMappingRecord]):
        self.records = records
        self._by_alias: Dict[str, CanonicalMappingRecord] = {}
        self._by_supplier_style: Dict[str, str] = {}
        self._warned: Set[str] = set()
        self._validate_and_index()

    @classmethod
    def empty(cls) -> "CanonicalMappingTable":
        return cls([])

    @classmethod
    def from_data(cls, data: Any) -> "CanonicalMappingTable":
        if not isinstance(data, list):
            raise ValidationError("Canonical mapping must be a JSON list")
        try:
            records = [CanonicalMappingRecord.model_validate(item) for item in data]
        except ValueError as e:
            raise ValidationError(f"Invalid canonical mapping record: {e}") from e
        return cls(records)

    @classmethod
    def from_file(cls, path: str) -> "CanonicalMappingTable":
        raw = Path(path).read_text(encoding="utf-8")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Canonical mapping at {path} is not valid JSON: {e}") from e
        table = cls.from_data(data)
        logger.info(f"[CanonicalMapping] Loaded {len(table.records)} records from {path}")
        return table

    def _validate_and_index(self) -> None:
        seen: Set[str] = set()
        for record in self.records:
            if not record.canonical_sku:
                raise ValidationError("canonicalSku is required", detail={"name": record.name})
            if record.canonical_sku in seen:
                raise ValidationError(f"Duplicate canonicalSku: {record.canonical_sku}")
            seen.add(record.canonical_sku)

            aliases: List[str] = []
            for alias in record.aliases:
                normalized = alias.strip().upper()
                if not normalized:
                    continue
                if normalized in aliases:
                    logger.warning(
                        f"[CanonicalMapping] Duplicate alias '{normalized}' for {record.canonical_sku}; ignoring"
                    )
                    continue
                aliases.append(normalized)
            record.aliases = aliases

            for alias in [record.canonical_sku, *aliases]:
                owner = self._by_alias.get(alias)
                if owner is not None and owner.canonical_sku != record.canonical_sku:
                    raise ValidationError(
                        f"Alias '{alias}' is assigned to both {owner.canonical_sku} and {record.canonical_sku}",
                        detail={"alias": alias},
                    )
                self._by_alias[alias] = record

            for supplier, mapping in record.suppliers.items():
                key = f"{supplier}:{mapping.style}"
                owner_sku = self._by_supplier_style.get(key)
                if owner_sku is not None and owner_sku != record.canonical_sku:
                    raise ValidationError(
                        f"Supplier/style '{key}' is mapped to both {owner_sku} and {record.canonical_sku}",
                        detail={"supplier_style": key},
                    )
                self._by_supplier_style[key] = record.canonical_sku

    def find_by_sku(self, canonical_sku: str) -> Optional[CanonicalMappingRecord]:
        normalized = (canonical_sku or "").strip().upper()
        for record in self.records:
            if record.canonical_sku == normalized:
                return record
        return None

    def find_by_alias(self, value: str) -> Optional[CanonicalMappingRecord]:
        return self._by_alias.get((value or "").strip().upper())

    def lookup_style_number(self, supplier: str, supplier_part_id: str) -> Optional[str]:
        """Supplier/style entry first, then any alias. Warns once per unmapped key."""
        part = (supplier_part_id or "").strip().upper()
        key = f"{(supplier or '').strip().upper()}:{part}"
        mapped = self._by_supplier_style.get(key)
        if mapped is None:
            record = self._by_alias.get(part)
            mapped = record.canonical_sku if record else None
        if mapped is None and key not in self._warned:
            self._warned.add(key)
            logger.warning(f"[CanonicalMapping] No mapping entry for {key}; using heuristic style number")
        return mapped

    def resolve_search_term(self, term: str) -> ResolvedSearchTerm:
        normalized = (term or "").strip().upper()
        if not normalized:
            return ResolvedSearchTerm()
        exact = self.find_by_alias(normalized)
        if exact is not None:
            return ResolvedSearchTerm(exact_match=exact, candidates=[exact])
        candidates = [
            record
            for record in self.records
            if normalized in record.canonical_sku or any(normalized in alias for alias in record.aliases)
        ]
        return ResolvedSearchTerm(candidates=candidates)


def load_mapping_table(path: Optional[str]) -> CanonicalMappingTable:
    """Table from CANONICAL_MAPPING_PATH, or an empty one when unset."""
    if not path:
        return CanonicalMappingTable.empty()
    return CanonicalMappingTable.from_file(path)
