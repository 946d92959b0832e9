"""
Catalog service: search, canonical detail aggregation and supplier product bundles.

Detail requests fan out to one supplier strategy per link and run them
concurrently. A failing supplier only marks its own entry; the rest of the
response is still served.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlmodel.ext.asyncio.session import AsyncSession

from catalog.cache import TTLCache
from catalog.config import CatalogSettings
from catalog.inventory import format_inventory
from catalog.mappings import CanonicalMappingTable
from catalog.models import (
    SUPPLIER_PRIORITY,
    CanonicalProductDetail,
    CanonicalStyleSummary,
    CatalogHealth,
    SearchResponse,
    SupplierDetail,
    SupplierProductBundle,
    SupplierSource,
)
from catalog.repository import CatalogRepository
from catalog.search import SEARCH_CACHE_NAMESPACE, SearchRankingEngine
from catalog.styles import CanonicalStyleRegistry, normalize_code
from catalog.suppliers import SsActivewearClient, SupplierRegistry, SupplierStrategy, build_supplier_registry
from exceptions import CatalogError, ResourceNotFoundError, ValidationError
from models import CanonicalStyle
from observability.logging import supplier_context
from observability.sentry_config import capture_exception

logger = logging.getLogger(__name__)


def summarize_style(style: CanonicalStyle) -> CanonicalStyleSummary:
    return CanonicalStyleSummary(
        id=style.id,
        style_number=style.style_number,
        display_name=style.display_name,
        brand=style.brand,
    )


def _priority(detail: SupplierDetail) -> int:
    return SUPPLIER_PRIORITY.index(detail.supplier)


class CatalogService:
    def __init__(
        self,
        session: AsyncSession,
        cache: Optional[TTLCache] = None,
        settings: Optional[CatalogSettings] = None,
        client: Optional[SsActivewearClient] = None,
        mappings: Optional[CanonicalMappingTable] = None,
    ):
        self.session = session
        self.cache = cache
        self.settings = settings or CatalogSettings.from_env()
        self.client = client or SsActivewearClient(
            self.settings.ssactivewear,
            cache=cache,
            cache_ttl_seconds=self.settings.product_cache_ttl_seconds,
        )
        self.repository = CatalogRepository(session)
        self.styles = CanonicalStyleRegistry(session, mappings)
        self.suppliers: SupplierRegistry = build_supplier_registry(self.repository, self.client)
        self.search_engine = SearchRankingEngine(
            session,
            repository=self.repository,
            cache=cache,
            cache_ttl_seconds=self.settings.search_cache_ttl_seconds,
            mappings=mappings,
        )

    async def search(self, query: Optional[str], **options: Any) -> SearchResponse:
        return await self.search_engine.search_canonical_styles(query, **options)

    async def get_detail(self, canonical_style_id: int) -> CanonicalProductDetail:
        style = await self.styles.get_canonical_style(canonical_style_id)
        if style is None:
            raise ResourceNotFoundError(
                f"Canonical style {canonical_style_id} not found",
                detail={"canonical_style_id": canonical_style_id},
            )

        entries = await self._fetch_linked(style)
        return CanonicalProductDetail(canonical_style=summarize_style(style), suppliers=entries)

    async def load_supplier_products(self, identifier: str) -> SupplierProductBundle:
        """Every supplier's product for a part id or style number.

        Linked styles are served through their links. Unlinked identifiers are
        looked up directly with each strategy whose format check accepts them.
        """
        normalized = normalize_code(identifier)
        if not normalized:
            raise ValidationError("identifier is required", detail={"identifier": identifier})

        style = await self.styles.find_canonical_style_by_any_supplier_part(normalized)
        if style is None:
            style = await self.styles.find_canonical_style_by_style_number(normalized)

        if style is not None:
            entries = await self._fetch_linked(style)
            return SupplierProductBundle(identifier=normalized, canonical_style=summarize_style(style), products=entries)

        strategies = self.suppliers.classify(normalized, SUPPLIER_PRIORITY)
        entries = await self._gather((strategy, normalized) for strategy in strategies)
        found = [entry for entry in entries if entry.product is not None or entry.inventory.rows]
        if not found:
            errors = [entry.error for entry in entries if entry.error]
            raise ResourceNotFoundError(
                f"No supplier product found for {normalized}",
                detail={"identifier": normalized, "errors": errors},
            )
        return SupplierProductBundle(identifier=normalized, products=found)

    async def ensure_canonical_style_link(
        self,
        supplier: Any,
        supplier_part_id: str,
        style_number: str,
        display_name: Optional[str] = None,
        brand: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> CanonicalStyle:
        style = await self.styles.ensure_canonical_style_link(
            supplier,
            supplier_part_id,
            style_number,
            display_name=display_name,
            brand=brand,
            details=details,
        )
        if self.cache is not None:
            cleared = self.cache.clear_prefix(f"{SEARCH_CACHE_NAMESPACE}:")
            if cleared:
                logger.debug(f"[CatalogService] Cleared {cleared} cached searches after linking")
        return style

    async def search_products(self, query: Optional[str], limit: int = 20) -> List[Dict[str, Optional[str]]]:
        """Loose lookup over ingested primary products, outside canonical search."""
        return await self.repository.search_products(query, limit=limit)

    async def catalog_health(self) -> CatalogHealth:
        cache_stats: Dict[str, Any] = {}
        if self.cache is not None:
            purged = self.cache.purge_expired()
            cache_stats = {**self.cache.stats(), "purged_expired": purged}
        return CatalogHealth(
            canonical_styles=await self.styles.count_canonical_styles(),
            supplier_links=await self.styles.count_supplier_links(),
            cache=cache_stats,
            remote_configured=self.client.config.is_configured,
        )

    async def _fetch_linked(self, style: CanonicalStyle) -> List[SupplierDetail]:
        links = await self.styles.list_supplier_links(style.id)
        jobs = []
        for link in links:
            try:
                strategy = self.suppliers.for_supplier(link.supplier)
            except ValidationError:
                logger.warning(f"[CatalogService] Skipping link {link.id} with unknown supplier {link.supplier}")
                continue
            jobs.append((strategy, link.supplier_part_id))
        return await self._gather(jobs)

    async def _gather(self, jobs: Iterable[tuple]) -> List[SupplierDetail]:
        entries = await asyncio.gather(*(self._fetch_one(strategy, part_id) for strategy, part_id in jobs))
        return sorted(entries, key=_priority)

    async def _fetch_one(self, strategy: SupplierStrategy, supplier_part_id: str) -> SupplierDetail:
        supplier: SupplierSource = strategy.supplier
        try:
            with supplier_context(supplier.value, supplier_part_id):
                fetched = await strategy.fetch(supplier_part_id)
        except CatalogError as e:
            logger.warning(f"[CatalogService] {supplier.value} fetch failed for {supplier_part_id}: {e.message}")
            return SupplierDetail(
                supplier=supplier,
                supplier_part_id=supplier_part_id,
                error=e.message,
                warnings=[f"{supplier.value} data unavailable: {e.message}"],
            )
        except Exception as e:
            logger.error(f"[CatalogService] Unexpected {supplier.value} error for {supplier_part_id}: {e}", exc_info=True)
            capture_exception(e, tags={"supplier": supplier.value}, extra={"supplier_part_id": supplier_part_id})
            return SupplierDetail(
                supplier=supplier,
                supplier_part_id=supplier_part_id,
                error=str(e) or e.__class__.__name__,
                warnings=[f"{supplier.value} data unavailable"],
            )

        warnings = list(fetched.warnings)
        if fetched.product is None:
            warnings.append(f"No {supplier.value} product data for {supplier_part_id}")
        return SupplierDetail(
            supplier=supplier,
            supplier_part_id=supplier_part_id,
            product=fetched.product,
            inventory=format_inventory(supplier, supplier_part_id, fetched.inventory),
            source=fetched.source,
            warnings=warnings,
        )
