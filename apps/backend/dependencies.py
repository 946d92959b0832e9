"""
Shared FastAPI dependencies.

Long-lived catalog objects (cache, settings, remote client, mapping table)
are created once in the application lifespan and kept on ``app.state``.
Request handlers get a CatalogService bound to their own database session.
"""

from fastapi import Depends, Request
from sqlmodel.ext.asyncio.session import AsyncSession

from catalog.cache import TTLCache
from catalog.config import CatalogSettings
from catalog.mappings import CanonicalMappingTable, load_mapping_table
from catalog.service import CatalogService
from catalog.suppliers import SsActivewearClient
from database import get_session


def init_catalog_state(state, settings: CatalogSettings = None) -> None:
    """Populate app state with the shared catalog objects that are not set yet."""
    if getattr(state, "catalog_settings", None) is None:
        state.catalog_settings = settings or CatalogSettings.from_env()
    if getattr(state, "catalog_cache", None) is None:
        state.catalog_cache = TTLCache()
    if getattr(state, "ssactivewear_client", None) is None:
        state.ssactivewear_client = SsActivewearClient(
            state.catalog_settings.ssactivewear,
            cache=state.catalog_cache,
            cache_ttl_seconds=state.catalog_settings.product_cache_ttl_seconds,
        )
    if getattr(state, "canonical_mappings", None) is None:
        state.canonical_mappings = load_mapping_table(state.catalog_settings.mapping_path)


def get_catalog_cache(request: Request) -> TTLCache:
    init_catalog_state(request.app.state)
    return request.app.state.catalog_cache


def get_catalog_settings(request: Request) -> CatalogSettings:
    init_catalog_state(request.app.state)
    return request.app.state.catalog_settings


def get_ssactivewear_client(request: Request) -> SsActivewearClient:
    init_catalog_state(request.app.state)
    return request.app.state.ssactivewear_client


def get_canonical_mappings(request: Request) -> CanonicalMappingTable:
    init_catalog_state(request.app.state)
    return request.app.state.canonical_mappings


async def get_catalog_service(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> CatalogService:
    init_catalog_state(request.app.state)
    state = request.app.state
    return CatalogService(
        session,
        cache=state.catalog_cache,
        settings=state.catalog_settings,
        client=state.ssactivewear_client,
        mappings=state.canonical_mappings,
    )
