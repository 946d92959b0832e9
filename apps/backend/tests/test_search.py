"""Search ranking over canonical styles."""
import pytest
import pytest_asyncio

from catalog.cache import TTLCache
from catalog.mappings import CanonicalMappingTable
from catalog.search import SearchRankingEngine, normalize_query, parse_supplier_filter, score_candidate
from catalog.styles import CanonicalStyleRegistry
from catalog.models import SupplierSource
from exceptions import ValidationError


@pytest_asyncio.fixture(name="catalog")
async def catalog_fixture(session, seed_product):
    registry = CanonicalStyleRegistry(session)

    await seed_product("PC43", price=3.12, inventory=[("BLACK", "M", 10, [("1", 10)])])
    await registry.ensure_canonical_style_link(
        "PRIMARY", "PC43", "PC43", display_name="Core Cotton Tee", brand="Port & Company"
    )

    await seed_product("PC450", price=2.00, inventory=[("BLACK", "M", 0, [])])
    await registry.ensure_canonical_style_link(
        "PRIMARY", "PC450", "PC450", display_name="Fan Favorite Tee", brand="Port & Company"
    )

    await seed_product("G500", price=2.50, inventory=[("WHITE", "L", 4, [("2", 4)])])
    await registry.ensure_canonical_style_link("PRIMARY", "G500", "5000", display_name="Heavy Cotton Tee", brand="Gildan")
    await registry.ensure_canonical_style_link("REMOTE", "B00760", "5000")

    await registry.ensure_canonical_style_link("PRIMARY", "5280", "5280", display_name="Essential-T", brand="Hanes")
    await registry.ensure_canonical_style_link("PRIMARY", "HANES-PACK", "HANES-PACK", display_name="Multipack")
    return registry


def test_normalize_query():
    query = normalize_query("  Gildan   5000 gildan ")
    assert query.exact == "GILDAN   5000 GILDAN"
    assert query.tokens == ["gildan", "5000", "gildan"]
    assert normalize_query("   ").is_empty


def test_parse_supplier_filter_ignores_unknown():
    assert parse_supplier_filter(["remote", "BOGUS", "PRIMARY,remote"]) == [SupplierSource.REMOTE, SupplierSource.PRIMARY]
    assert parse_supplier_filter(None) == []


def test_code_tiers_are_exclusive():
    card = score_candidate(normalize_query("PC43"), "PC43", None, None, ["PC43", "PC43X"], 1)
    assert card.code_tier == "exact_code"
    assert card.rules.count("exact_code") == 1
    assert "prefix_code" not in card.rules
    assert card.score == 120 + 25 + 5 + 4


def test_coverage_is_capped():
    card = score_candidate(normalize_query("5000"), "5000", None, None, ["G500"], 5)
    assert card.score == 120 + 25 + 5 + 12


def test_token_scores_once_for_first_matching_field():
    card = score_candidate(normalize_query("hanes"), "5280", "Hanes Essential-T", "Hanes", ["5280"], 1)

    assert card.rules == ["token_brand:hanes", "all_tokens", "coverage:1"]
    assert card.score == 18 + 5 + 4


def test_repeated_tokens_each_score():
    card = score_candidate(normalize_query("gildan gildan"), "5000", "Heavy Cotton Tee", "Gildan", ["G500"], 1)
    assert card.score == 18 + 18 + 5 + 4


def test_candidate_without_any_match_is_dropped():
    card = score_candidate(normalize_query("zzz"), "PC43", "Core Cotton Tee", "Port & Company", ["PC43"], 1)
    assert card.included is False
    assert card.matched_tokens == 0


@pytest.mark.asyncio
async def test_exact_code_is_direct_hit(session, catalog):
    result = await SearchRankingEngine(session).search_canonical_styles("pc43")

    assert result.total == 1
    hit = result.items[0]
    assert hit.style_number == "PC43"
    assert hit.score == 154
    assert hit.exact_match is True
    assert "exact_code" in hit.matched_rules
    assert hit.total_stock == 10
    assert hit.min_price == 3.12
    assert result.direct_hit is not None
    assert result.direct_hit.canonical_style_id == hit.canonical_style_id


@pytest.mark.asyncio
async def test_prefix_match_is_not_direct_hit(session, catalog):
    result = await SearchRankingEngine(session).search_canonical_styles("PC4")

    assert [hit.style_number for hit in result.items] == ["PC43", "PC450"]
    assert all(hit.score == 95 + 25 + 5 + 4 for hit in result.items)
    assert result.direct_hit is None


@pytest.mark.asyncio
async def test_brand_match_ranks_below_code_match(session, catalog):
    result = await SearchRankingEngine(session).search_canonical_styles("Hanes")

    assert [hit.style_number for hit in result.items] == ["HANES-PACK", "5280"]
    brand_hit = result.items[1]
    assert brand_hit.score == 18 + 5 + 4
    assert "token_brand:hanes" in brand_hit.matched_rules
    assert brand_hit.exact_match is False
    assert result.direct_hit is None


@pytest.mark.asyncio
async def test_multi_supplier_style_and_token_mix(session, catalog):
    result = await SearchRankingEngine(session).search_canonical_styles("gildan 5000")

    assert result.total == 1
    hit = result.items[0]
    assert hit.style_number == "5000"
    assert hit.score == 18 + 25 + 5 + 8
    assert [ref.supplier for ref in hit.suppliers] == [SupplierSource.PRIMARY, SupplierSource.REMOTE]


@pytest.mark.asyncio
async def test_partial_token_match_is_kept(session, catalog):
    result = await SearchRankingEngine(session).search_canonical_styles("gildan pc43")

    assert [hit.style_number for hit in result.items] == ["PC43", "5000"]
    assert [hit.score for hit in result.items] == [25 + 4, 18 + 8]
    assert all("all_tokens" not in hit.matched_rules for hit in result.items)
    assert result.direct_hit is None


@pytest.mark.asyncio
async def test_supplier_scope(session, catalog):
    engine = SearchRankingEngine(session)

    remote_only = await engine.search_canonical_styles("5000", suppliers=["remote"])
    assert [(ref.supplier, ref.supplier_part_id) for ref in remote_only.items[0].suppliers] == [
        (SupplierSource.REMOTE, "B00760")
    ]

    assert (await engine.search_canonical_styles("PC43", suppliers=["REMOTE"])).total == 0
    assert (await engine.search_canonical_styles("PC43", suppliers=["BOGUS"])).total == 1


@pytest.mark.asyncio
async def test_in_stock_only_filters_before_pagination(session, catalog):
    engine = SearchRankingEngine(session)

    result = await engine.search_canonical_styles("PC4", in_stock_only=True)
    assert [hit.style_number for hit in result.items] == ["PC43"]
    assert result.total == 1


@pytest.mark.asyncio
async def test_pagination_reports_full_total(session, catalog):
    result = await SearchRankingEngine(session).search_canonical_styles("PC4", limit=1, offset=1)
    assert [hit.style_number for hit in result.items] == ["PC450"]
    assert result.total == 2


@pytest.mark.asyncio
async def test_alternate_sorts(session, catalog):
    engine = SearchRankingEngine(session)

    by_price = await engine.search_canonical_styles("tee", sort="price")
    assert [hit.style_number for hit in by_price.items] == ["PC450", "5000", "PC43"]

    by_stock = await engine.search_canonical_styles("tee", sort="stock")
    assert [hit.style_number for hit in by_stock.items] == ["PC43", "5000", "PC450"]

    by_supplier = await engine.search_canonical_styles("tee", sort="supplier")
    assert by_supplier.items[0].style_number == "5000"


@pytest.mark.asyncio
async def test_unknown_price_sorts_last(session, catalog):
    result = await SearchRankingEngine(session).search_canonical_styles("t", sort="price")
    assert result.items[-1].min_price is None


@pytest.mark.asyncio
async def test_empty_query_returns_empty(session, catalog):
    result = await SearchRankingEngine(session).search_canonical_styles("   ")
    assert result.total == 0
    assert result.direct_hit is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "options",
    [{"limit": 0}, {"limit": -5}, {"offset": -1}, {"sort": "popularity"}],
)
async def test_invalid_options_rejected(session, options):
    with pytest.raises(ValidationError):
        await SearchRankingEngine(session).search_canonical_styles("PC43", **options)


@pytest.mark.asyncio
async def test_results_are_cached(session, catalog):
    cache = TTLCache()
    engine = SearchRankingEngine(session, cache=cache, cache_ttl_seconds=60)

    first = await engine.search_canonical_styles("PC43")
    second = await engine.search_canonical_styles("PC43")

    assert first == second
    assert cache.stats()["hits"] == 1
    assert cache.get("search:v1:PC43:20:0:ALL:relevance:False") is not None


@pytest.mark.asyncio
async def test_out_of_stock_exact_match_is_not_a_direct_hit_when_filtered(session, catalog):
    engine = SearchRankingEngine(session)

    unfiltered = await engine.search_canonical_styles("PC450")
    assert unfiltered.direct_hit.style_number == "PC450"

    filtered = await engine.search_canonical_styles("PC450", in_stock_only=True)
    assert filtered.total == 0
    assert filtered.items == []
    assert filtered.direct_hit is None


MAPPINGS = [
    {
        "canonicalSku": "PC54",
        "name": "Core Cotton Tee",
        "brand": "Port & Company",
        "aliases": ["PORT54"],
        "suppliers": {"PRIMARY": {"style": "PC54"}},
    },
    {
        "canonicalSku": "G5000",
        "name": "Heavy Cotton Tee",
        "aliases": ["HEAVY5K"],
        "suppliers": {"REMOTE": {"style": "B00760"}},
    },
]


@pytest.mark.asyncio
async def test_mapped_alias_resolves_to_style(session, catalog):
    await catalog.ensure_canonical_style_link("PRIMARY", "PC54", "PC54", display_name="Core Cotton Tee")
    mappings = CanonicalMappingTable.from_data(MAPPINGS)

    assert (await SearchRankingEngine(session).search_canonical_styles("port54")).total == 0

    result = await SearchRankingEngine(session, mappings=mappings).search_canonical_styles("port54")

    assert [hit.style_number for hit in result.items] == ["PC54"]
    assert result.items[0].exact_match is True
    assert result.items[0].score == 120 + 25 + 5 + 4
    assert result.direct_hit.style_number == "PC54"


@pytest.mark.asyncio
async def test_alias_matches_through_supplier_part(session, catalog):
    mappings = CanonicalMappingTable.from_data(MAPPINGS)

    result = await SearchRankingEngine(session, mappings=mappings).search_canonical_styles("heavy5k")

    assert [hit.style_number for hit in result.items] == ["5000"]
    assert "exact_code" in result.items[0].matched_rules
