"""Canonical style registry: one identity per style number, linked to supplier parts."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from catalog.mappings import CanonicalMappingTable
from catalog.models import SupplierSource
from exceptions import ConflictError, ValidationError
from models import CanonicalStyle, SupplierProductLink
from models.catalog import utc_now

logger = logging.getLogger(__name__)

_LETTER_PREFIXED_DIGITS = re.compile(r"^[A-Z]?\d{4,}$")
_NON_ALNUM = re.compile(r"[^A-Z0-9]")
_WHITESPACE = re.compile(r"\s+")


def normalize_code(value: Optional[str]) -> str:
    return (value or "").strip().upper()


def normalize_display(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


class CanonicalStyleRegistry:
    def __init__(self, session: AsyncSession, mappings: Optional[CanonicalMappingTable] = None):
        self.session = session
        self.mappings = mappings or CanonicalMappingTable.empty()

    async def ensure_canonical_style_link(
        self,
        supplier: Any,
        supplier_part_id: str,
        style_number: str,
        display_name: Optional[str] = None,
        brand: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> CanonicalStyle:
        """Find or create the style and attach the supplier part to it.

        Repeating a call is a no-op apart from filling display fields that
        are still unset. Re-pointing a part, or giving a style a second part
        from the same supplier, raises ConflictError and changes nothing.
        """
        source = SupplierSource.parse(supplier)
        if source is None:
            raise ValidationError(f"Unknown supplier: {supplier}", detail={"supplier": str(supplier)})
        part_id = normalize_code(supplier_part_id)
        if not part_id:
            raise ValidationError("supplier_part_id is required", detail={"field": "supplier_part_id"})
        style_key = normalize_code(style_number)
        if not style_key:
            raise ValidationError("style_number is required", detail={"field": "style_number"})

        try:
            return await self._ensure_link(source, part_id, style_key, display_name, brand, details)
        except IntegrityError:
            # A concurrent writer created the style or link first; re-resolve once
            await self.session.rollback()
            logger.info(f"[CanonicalStyles] Unique constraint race on {style_key}/{source.value}:{part_id}; retrying")
            return await self._ensure_link(source, part_id, style_key, display_name, brand, details)

    async def _ensure_link(
        self,
        source: SupplierSource,
        part_id: str,
        style_key: str,
        display_name: Optional[str],
        brand: Optional[str],
        details: Optional[Dict[str, Any]],
    ) -> CanonicalStyle:
        display_name = normalize_display(display_name)
        brand = normalize_display(brand)

        style = await self.find_canonical_style_by_style_number(style_key)
        link = await self._get_link(source, part_id)

        if link is not None and (style is None or link.canonical_style_id != style.id):
            current = await self.get_canonical_style(link.canonical_style_id)
            raise ConflictError(
                f"{source.value} part {part_id} is already linked to {current.style_number if current else link.canonical_style_id}",
                detail={
                    "supplier": source.value,
                    "supplier_part_id": part_id,
                    "linked_style_number": current.style_number if current else None,
                    "requested_style_number": style_key,
                },
            )

        if style is not None and link is None:
            existing = await self._get_style_link_for_supplier(style.id, source)
            if existing is not None:
                raise ConflictError(
                    f"{style_key} already has a {source.value} link ({existing.supplier_part_id})",
                    detail={
                        "supplier": source.value,
                        "supplier_part_id": part_id,
                        "linked_supplier_part_id": existing.supplier_part_id,
                        "style_number": style_key,
                    },
                )

        changed = False
        if style is None:
            style = CanonicalStyle(style_number=style_key, display_name=display_name, brand=brand)
            self.session.add(style)
            await self.session.flush()
            changed = True
            logger.info(f"[CanonicalStyles] Created canonical style {style_key}")
        else:
            # First writer wins: only backfill unset fields
            if style.display_name is None and display_name:
                style.display_name = display_name
                changed = True
            if style.brand is None and brand:
                style.brand = brand
                changed = True
            if changed:
                style.updated_at = utc_now()
                self.session.add(style)

        if link is None:
            self.session.add(
                SupplierProductLink(
                    canonical_style_id=style.id,
                    supplier=source.value,
                    supplier_part_id=part_id,
                    details=details,
                )
            )
            changed = True
            logger.info(f"[CanonicalStyles] Linked {source.value}:{part_id} -> {style_key}")

        if changed:
            await self.session.commit()
            await self.session.refresh(style)
        return style

    def guess_canonical_style_number(self, supplier: Any, supplier_part_id: str, brand: Optional[str] = None) -> str:
        """Style number for seeding when none is supplied: mapping table, then heuristics."""
        part = normalize_code(supplier_part_id)
        source = SupplierSource.parse(supplier)
        supplier_key = source.value if source else normalize_code(str(supplier))
        mapped = self.mappings.lookup_style_number(supplier_key, part)
        if mapped:
            return mapped

        if _LETTER_PREFIXED_DIGITS.match(part):
            return re.sub(r"^[A-Z]", "", part)

        brand_prefix = normalize_display(brand)
        if brand_prefix:
            prefix = _WHITESPACE.sub("", brand_prefix).upper()[:3]
            compact = _NON_ALNUM.sub("", part)
            return f"{prefix}-{compact or part}"

        return part

    async def find_canonical_style_by_style_number(self, style_number: str) -> Optional[CanonicalStyle]:
        key = normalize_code(style_number)
        if not key:
            return None
        result = await self.session.exec(select(CanonicalStyle).where(CanonicalStyle.style_number == key))
        return result.first()

    async def get_canonical_style(self, canonical_style_id: int) -> Optional[CanonicalStyle]:
        return await self.session.get(CanonicalStyle, canonical_style_id)

    async def find_canonical_style_for_supplier_part(self, supplier: Any, supplier_part_id: str) -> Optional[CanonicalStyle]:
        source = SupplierSource.parse(supplier)
        if source is None:
            return None
        link = await self._get_link(source, normalize_code(supplier_part_id))
        if link is None:
            return None
        return await self.get_canonical_style(link.canonical_style_id)

    async def find_canonical_style_by_any_supplier_part(self, supplier_part_id: str) -> Optional[CanonicalStyle]:
        part_id = normalize_code(supplier_part_id)
        if not part_id:
            return None
        result = await self.session.exec(
            select(SupplierProductLink)
            .where(SupplierProductLink.supplier_part_id == part_id)
            .order_by(SupplierProductLink.id)
        )
        link = result.first()
        if link is None:
            return None
        return await self.get_canonical_style(link.canonical_style_id)

    async def list_supplier_links(self, canonical_style_id: int) -> List[SupplierProductLink]:
        result = await self.session.exec(
            select(SupplierProductLink)
            .where(SupplierProductLink.canonical_style_id == canonical_style_id)
            .order_by(SupplierProductLink.supplier_part_id)
        )
        return list(result.all())

    async def count_canonical_styles(self) -> int:
        result = await self.session.exec(select(func.count()).select_from(CanonicalStyle))
        return int(result.one())

    async def count_supplier_links(self) -> int:
        result = await self.session.exec(select(func.count()).select_from(SupplierProductLink))
        return int(result.one())

    async def _get_link(self, source: SupplierSource, part_id: str) -> Optional[SupplierProductLink]:
        result = await self.session.exec(
            select(SupplierProductLink).where(
                SupplierProductLink.supplier == source.value,
                SupplierProductLink.supplier_part_id == part_id,
            )
        )
        return result.first()

    async def _get_style_link_for_supplier(self, canonical_style_id: int, source: SupplierSource) -> Optional[SupplierProductLink]:
        result = await self.session.exec(
            select(SupplierProductLink).where(
                SupplierProductLink.canonical_style_id == canonical_style_id,
                SupplierProductLink.supplier == source.value,
            )
        )
        return result.first()
