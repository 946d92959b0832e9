"""Catalog routes - search, canonical detail, supplier bundles and linking."""
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime
import logging

from catalog.models import (
    CanonicalProductDetail,
    CatalogHealth,
    LinkRequest,
    SearchResponse,
    SupplierProductBundle,
)
from catalog.service import CatalogService
from dependencies import get_catalog_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["catalog"])


class CanonicalStyleRead(BaseModel):
    id: int
    style_number: str
    display_name: Optional[str] = None
    brand: Optional[str] = None
    created_at: datetime
    updated_at: datetime


@router.get("/api/catalog/search", response_model=SearchResponse)
async def search_catalog(
    q: str = Query("", max_length=200),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    suppliers: Optional[List[str]] = Query(None),
    sort: str = Query("relevance"),
    in_stock_only: bool = Query(False),
    service: CatalogService = Depends(get_catalog_service),
):
    """Ranked search over canonical styles. `suppliers` may repeat or be comma separated."""
    return await service.search(
        q,
        limit=limit,
        offset=offset,
        suppliers=suppliers,
        sort=sort,
        in_stock_only=in_stock_only,
    )


class ProductMatch(BaseModel):
    supplier_part_id: str
    name: Optional[str] = None
    brand: Optional[str] = None


class ProductSearchResponse(BaseModel):
    items: List[ProductMatch] = []


# Registered before /api/products/{canonical_style_id}
@router.get("/api/products/search", response_model=ProductSearchResponse)
async def search_products(
    query: str = Query("", max_length=200),
    limit: int = Query(20, ge=1, le=100),
    service: CatalogService = Depends(get_catalog_service),
):
    """Loose product lookup by part id, name or brand. Empty query returns no items."""
    return {"items": await service.search_products(query, limit=limit)}


@router.get("/api/products/{canonical_style_id}", response_model=CanonicalProductDetail)
async def get_canonical_product(
    canonical_style_id: int,
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.get_detail(canonical_style_id)


@router.get("/api/supplier-products/{identifier}", response_model=SupplierProductBundle)
async def get_supplier_products(
    identifier: str,
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.load_supplier_products(identifier)


@router.post("/api/catalog/links", response_model=CanonicalStyleRead)
async def link_supplier_product(
    link_in: LinkRequest,
    service: CatalogService = Depends(get_catalog_service),
):
    style = await service.ensure_canonical_style_link(
        link_in.supplier,
        link_in.supplier_part_id,
        link_in.style_number,
        display_name=link_in.display_name,
        brand=link_in.brand,
        details=link_in.details,
    )
    logger.info(f"[Catalog] Linked {link_in.supplier}:{link_in.supplier_part_id} -> {style.style_number}")
    return style


@router.get("/api/internal/catalog/health", response_model=CatalogHealth)
async def catalog_health(service: CatalogService = Depends(get_catalog_service)):
    return await service.catalog_health()
