"""Ranked search over canonical styles and their supplier links."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import or_
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from catalog.cache import TTLCache
from catalog.mappings import CanonicalMappingRecord, CanonicalMappingTable
from catalog.models import SUPPLIER_PRIORITY, SearchHit, SearchResponse, SupplierRef, SupplierSource
from catalog.repository import CatalogRepository
from exceptions import ValidationError
from models import CanonicalStyle, SupplierProductLink
from observability.metrics import search_requests_total, search_results_count

logger = logging.getLogger(__name__)

SEARCH_CACHE_NAMESPACE = "search:v1"
SORT_KEYS = ("relevance", "supplier", "price", "stock")

# Code tiers are mutually exclusive; only the best one applies
EXACT_CODE_SCORE = 120
PREFIX_CODE_SCORE = 95
SUBSTRING_CODE_SCORE = 70
TOKEN_IN_CODE_SCORE = 25
TOKEN_IN_BRAND_SCORE = 18
TOKEN_IN_NAME_SCORE = 16
ALL_TOKENS_BONUS = 5
COVERAGE_PER_SUPPLIER = 4
COVERAGE_CAP = 12


@dataclass
class NormalizedQuery:
    raw: str
    exact: str
    tokens: List[str]

    @property
    def is_empty(self) -> bool:
        return not self.exact


def normalize_query(query: Optional[str]) -> NormalizedQuery:
    trimmed = (query or "").strip()
    tokens = [token.lower() for token in trimmed.split()]
    return NormalizedQuery(raw=trimmed, exact=trimmed.upper(), tokens=tokens)


@dataclass
class ScoreCard:
    score: int = 0
    rules: List[str] = field(default_factory=list)
    code_tier: Optional[str] = None
    matched_tokens: int = 0
    all_tokens_matched: bool = False
    matched_part_ids: List[str] = field(default_factory=list)

    @property
    def included(self) -> bool:
        return self.code_tier is not None or self.matched_tokens > 0 or self.all_tokens_matched


def score_candidate(
    query: NormalizedQuery,
    style_number: str,
    display_name: Optional[str],
    brand: Optional[str],
    part_ids: Sequence[str],
    linked_supplier_count: int,
    aliases: Sequence[str] = (),
) -> ScoreCard:
    """Additive score for one canonical style. See the weight constants above.

    Mapped aliases count as codes. Each token scores once, for the first of
    code, brand, name it is found in.
    """
    card = ScoreCard()
    codes = [style_number.upper(), *[part_id.upper() for part_id in part_ids], *[alias.upper() for alias in aliases]]

    if any(code == query.exact for code in codes):
        card.code_tier = "exact_code"
        card.score += EXACT_CODE_SCORE
    elif any(code.startswith(query.exact) for code in codes):
        card.code_tier = "prefix_code"
        card.score += PREFIX_CODE_SCORE
    elif any(query.exact in code for code in codes):
        card.code_tier = "substring_code"
        card.score += SUBSTRING_CODE_SCORE
    if card.code_tier:
        card.rules.append(card.code_tier)

    lowered_codes = [code.lower() for code in codes]
    lowered_brand = (brand or "").lower()
    lowered_name = (display_name or "").lower()
    for token in query.tokens:
        if any(token in code for code in lowered_codes):
            card.score += TOKEN_IN_CODE_SCORE
            card.rules.append(f"token_code:{token}")
        elif lowered_brand and token in lowered_brand:
            card.score += TOKEN_IN_BRAND_SCORE
            card.rules.append(f"token_brand:{token}")
        elif lowered_name and token in lowered_name:
            card.score += TOKEN_IN_NAME_SCORE
            card.rules.append(f"token_name:{token}")
        else:
            continue
        card.matched_tokens += 1

    if query.tokens and card.matched_tokens == len(query.tokens):
        card.all_tokens_matched = True
        card.score += ALL_TOKENS_BONUS
        card.rules.append("all_tokens")

    coverage = min(linked_supplier_count * COVERAGE_PER_SUPPLIER, COVERAGE_CAP)
    if coverage:
        card.score += coverage
        card.rules.append(f"coverage:{linked_supplier_count}")

    card.matched_part_ids = [
        part_id
        for part_id in part_ids
        if query.exact in part_id.upper() or any(token in part_id.lower() for token in query.tokens)
    ]
    return card


def parse_supplier_filter(suppliers: Optional[Iterable[str]]) -> List[SupplierSource]:
    """Recognized suppliers only; unknown values are dropped."""
    parsed: List[SupplierSource] = []
    for value in suppliers or []:
        for piece in str(value).split(","):
            source = SupplierSource.parse(piece)
            if source is not None and source not in parsed:
                parsed.append(source)
    return parsed


def sort_hits(hits: List[SearchHit], sort: str) -> List[SearchHit]:
    ordered = sorted(hits, key=lambda hit: (-hit.score, hit.style_number))
    if sort == "supplier":
        ordered.sort(key=lambda hit: -len({ref.supplier for ref in hit.suppliers}))
    elif sort == "price":
        ordered.sort(key=lambda hit: (hit.min_price is None, hit.min_price or 0.0))
    elif sort == "stock":
        ordered.sort(key=lambda hit: -hit.total_stock)
    return ordered


class SearchRankingEngine:
    def __init__(
        self,
        session: AsyncSession,
        repository: Optional[CatalogRepository] = None,
        cache: Optional[TTLCache] = None,
        cache_ttl_seconds: float = 60.0,
        mappings: Optional[CanonicalMappingTable] = None,
    ):
        self.session = session
        self.repository = repository or CatalogRepository(session)
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds
        self.mappings = mappings or CanonicalMappingTable.empty()

    async def search_canonical_styles(
        self,
        query: Optional[str],
        limit: int = 20,
        offset: int = 0,
        suppliers: Optional[Iterable[str]] = None,
        sort: str = "relevance",
        in_stock_only: bool = False,
    ) -> SearchResponse:
        if limit is None or limit <= 0:
            raise ValidationError("limit must be positive", detail={"limit": limit})
        if offset is None or offset < 0:
            raise ValidationError("offset must not be negative", detail={"offset": offset})
        if sort not in SORT_KEYS:
            raise ValidationError(f"Unknown sort key: {sort}", detail={"sort": sort, "allowed": list(SORT_KEYS)})

        normalized = normalize_query(query)
        if normalized.is_empty:
            search_requests_total.labels(outcome="empty").inc()
            return SearchResponse()

        scope = parse_supplier_filter(suppliers)

        async def load() -> SearchResponse:
            return await self._search(normalized, limit, offset, scope, sort, in_stock_only)

        if self.cache is None or self.cache_ttl_seconds <= 0:
            return await load()
        supplier_key = ",".join(sorted(source.value for source in scope)) or "ALL"
        key = f"{SEARCH_CACHE_NAMESPACE}:{normalized.exact}:{limit}:{offset}:{supplier_key}:{sort}:{in_stock_only}"
        return await self.cache.cached(key, self.cache_ttl_seconds, load)

    async def _search(
        self,
        query: NormalizedQuery,
        limit: int,
        offset: int,
        scope: List[SupplierSource],
        sort: str,
        in_stock_only: bool,
    ) -> SearchResponse:
        mapped = self.mappings.resolve_search_term(query.raw).candidates
        styles = await self._candidate_styles(query, mapped)
        links_by_style = await self._links_for(style.id for style in styles)

        all_part_ids = [link.supplier_part_id for links in links_by_style.values() for link in links]
        stock = await self.repository.get_aggregate_stock(all_part_ids)
        costs = await self.repository.get_base_costs(all_part_ids)

        hits: List[SearchHit] = []
        for style in styles:
            links = links_by_style.get(style.id, [])
            scoped = [link for link in links if not scope or SupplierSource.parse(link.supplier) in scope]
            if not scoped:
                continue

            part_ids = [link.supplier_part_id for link in links]
            card = score_candidate(
                query,
                style.style_number,
                style.display_name,
                style.brand,
                part_ids,
                len({link.supplier for link in links}),
                aliases=mapped_aliases(mapped, style.style_number, part_ids),
            )
            if not card.included:
                continue

            refs = sorted(
                (SupplierRef(supplier=SupplierSource.parse(link.supplier), supplier_part_id=link.supplier_part_id) for link in scoped),
                key=lambda ref: (SUPPLIER_PRIORITY.index(ref.supplier), ref.supplier_part_id),
            )
            matched = [ref.supplier for ref in refs if ref.supplier_part_id in card.matched_part_ids]
            prices = [costs.get(link.supplier_part_id) for link in links]
            known_prices = [price for price in prices if price is not None]

            hits.append(
                SearchHit(
                    canonical_style_id=style.id,
                    style_number=style.style_number,
                    display_name=style.display_name,
                    brand=style.brand,
                    score=card.score,
                    matched_suppliers=list(dict.fromkeys(matched or [ref.supplier for ref in refs])),
                    suppliers=refs,
                    matched_rules=card.rules,
                    total_stock=sum(stock.get(link.supplier_part_id, 0) for link in links),
                    min_price=min(known_prices) if known_prices else None,
                    exact_match=card.code_tier == "exact_code",
                )
            )

        ordered = sort_hits(hits, sort)
        if in_stock_only:
            ordered = [hit for hit in ordered if hit.total_stock > 0]

        # After filtering: a direct hit is always one of the results
        exact_hits = [hit for hit in ordered if hit.exact_match]
        direct_hit = exact_hits[0] if len(exact_hits) == 1 else None

        total = len(ordered)
        search_results_count.observe(total)
        search_requests_total.labels(outcome="direct_hit" if direct_hit else ("results" if total else "empty")).inc()
        logger.debug(f"[Search] '{query.raw}' -> {total} results (direct_hit={bool(direct_hit)})")

        return SearchResponse(items=ordered[offset:offset + limit], total=total, direct_hit=direct_hit)

    async def _candidate_styles(
        self,
        query: NormalizedQuery,
        mapped: Sequence[CanonicalMappingRecord] = (),
    ) -> List[CanonicalStyle]:
        terms = [query.raw, *query.tokens]
        conditions = []
        for term in dict.fromkeys(terms):
            pattern = f"%{term}%"
            part_match = select(SupplierProductLink.canonical_style_id).where(
                SupplierProductLink.supplier_part_id.ilike(pattern)
            )
            conditions.extend(
                [
                    CanonicalStyle.style_number.ilike(pattern),
                    CanonicalStyle.display_name.ilike(pattern),
                    CanonicalStyle.brand.ilike(pattern),
                    CanonicalStyle.id.in_(part_match),
                ]
            )

        mapped_codes = sorted({code for record in mapped for code in mapped_style_codes(record)})
        if mapped_codes:
            conditions.append(CanonicalStyle.style_number.in_(mapped_codes))
            conditions.append(
                CanonicalStyle.id.in_(
                    select(SupplierProductLink.canonical_style_id).where(
                        SupplierProductLink.supplier_part_id.in_(mapped_codes)
                    )
                )
            )

        result = await self.session.exec(
            select(CanonicalStyle).where(or_(*conditions)).order_by(CanonicalStyle.style_number)
        )
        return list(result.all())

    async def _links_for(self, style_ids: Iterable[int]) -> Dict[int, List[SupplierProductLink]]:
        ids = list(style_ids)
        grouped: Dict[int, List[SupplierProductLink]] = {style_id: [] for style_id in ids}
        if not ids:
            return grouped
        result = await self.session.exec(
            select(SupplierProductLink).where(SupplierProductLink.canonical_style_id.in_(ids))
        )
        for link in result.all():
            grouped[link.canonical_style_id].append(link)
        return grouped


def mapped_style_codes(record: CanonicalMappingRecord) -> List[str]:
    """Style numbers and supplier part ids a mapping record points at."""
    return [record.canonical_sku, *[mapping.style for mapping in record.suppliers.values()]]


def mapped_aliases(
    mapped: Sequence[CanonicalMappingRecord],
    style_number: str,
    part_ids: Sequence[str],
) -> List[str]:
    """Aliases of the mapping records that point at this style or one of its parts."""
    codes = {style_number.upper(), *[part_id.upper() for part_id in part_ids]}
    aliases: List[str] = []
    for record in mapped:
        if codes.intersection(mapped_style_codes(record)):
            aliases.extend([record.canonical_sku, *record.aliases])
    return aliases
