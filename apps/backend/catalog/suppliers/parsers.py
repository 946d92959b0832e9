"""Shape remote supplier payloads (REST JSON, PromoStandards XML) into ProductRecord."""

from __future__ import annotations

import html
import re
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from catalog.inventory import size_sort_index
from catalog.models import (
    InventoryRow,
    MediaGroup,
    ProductColorway,
    ProductRecord,
    ProductSizeEntry,
    SkuMapEntry,
    SupplierSource,
    WarehouseStock,
)

CDN_BASE_URL = "https://cdn.ssactivewear.com/"
DEFAULT_COLOR_CODE = "DEFAULT"
IMAGE_FIELDS = ("colorFrontImage", "colorBackImage", "colorSideImage", "colorDirectSideImage")
PRICE_FIELDS = ("customerPrice", "salePrice", "piecePrice", "mapPrice")

_CODE_UNSAFE = re.compile(r"[^A-Z0-9_-]")
_BR_TAG = re.compile(r"<br\s*/?>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]+>")
_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)


class SupplierPayloadError(ValueError):
    """A supplier response could not be shaped into a product."""


def sanitize_code(value: Optional[str], fallback: str) -> str:
    cleaned = _CODE_UNSAFE.sub("_", (value or "").strip().upper())
    return cleaned or fallback


def html_to_lines(value: Optional[str]) -> List[str]:
    if not value:
        return []
    decoded = html.unescape(value)
    lines = [_ANY_TAG.sub("", line).strip() for line in _BR_TAG.split(decoded)]
    return [line for line in lines if line]


def normalize_image_url(raw: Any) -> Optional[str]:
    if not raw or not isinstance(raw, str):
        return None
    if _ABSOLUTE_URL.match(raw):
        return raw
    return CDN_BASE_URL + raw.lstrip("/")


def to_int(value: Any) -> int:
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return 0


def to_price(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = re.sub(r"[^0-9.]", "", value)
        if not cleaned:
            return None
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def _first_price(row: Dict[str, Any]) -> Optional[float]:
    for field_name in PRICE_FIELDS:
        if row.get(field_name) is not None:
            return to_price(row[field_name])
    return None


def _warehouse_stock(row: Dict[str, Any]) -> Tuple[int, List[WarehouseStock]]:
    """Total and per-warehouse stock for one SKU row."""
    warehouses = row.get("warehouses")
    if isinstance(warehouses, list):
        stocks = []
        for entry in warehouses:
            if not isinstance(entry, dict):
                continue
            abbr = str(entry.get("warehouseAbbr") or "").strip()
            if not abbr:
                continue
            stocks.append(WarehouseStock(warehouse_id=abbr, quantity=to_int(entry.get("qty", 0))))
        return sum(stock.quantity for stock in stocks), stocks
    if row.get("qty") is not None:
        return to_int(row.get("qty")), []
    return 0, []


def validate_rest_products(payload: Any) -> List[Dict[str, Any]]:
    if not isinstance(payload, list):
        raise SupplierPayloadError(f"Expected a list of SKU rows, got {type(payload).__name__}")
    rows = [row for row in payload if isinstance(row, dict)]
    if len(rows) != len(payload):
        raise SupplierPayloadError("SKU rows must be JSON objects")
    return rows


def build_product_from_rest(
    product_id: str,
    rows: List[Dict[str, Any]],
    style: Optional[Dict[str, Any]] = None,
    fetched_at: Optional[datetime] = None,
) -> ProductRecord:
    """Fold REST SKU rows (one per color/size) into a single product.

    Rows that cannot be shaped raise SupplierPayloadError, which sends the
    client to the fallback lookup.
    """
    if not rows:
        raise SupplierPayloadError(f"No REST product data available for {product_id}")
    try:
        return _shape_rest_rows(product_id, rows, style, fetched_at)
    except SupplierPayloadError:
        raise
    except (TypeError, ValueError, KeyError, AttributeError, PydanticValidationError) as e:
        raise SupplierPayloadError(f"Unexpected REST payload for {product_id}: {e}") from e


def _shape_rest_rows(
    product_id: str,
    rows: List[Dict[str, Any]],
    style: Optional[Dict[str, Any]],
    fetched_at: Optional[datetime],
) -> ProductRecord:
    fetched_at = fetched_at or datetime.now(timezone.utc)
    style = style or {}
    first = rows[0]

    colors: Dict[str, ProductColorway] = {}
    sizes: Dict[str, ProductSizeEntry] = {}
    sku_map: Dict[Tuple[str, str], SkuMapEntry] = {}
    media: Dict[str, List[str]] = {}
    inventory: Dict[Tuple[str, str], InventoryRow] = {}
    prices: List[float] = []

    for row in rows:
        color_name = str(row.get("colorName") or "Default")
        color_code = sanitize_code(color_name, f"{product_id}_COLOR")
        if color_code not in colors:
            colors[color_code] = ProductColorway(
                color_code=color_code,
                color_name=color_name,
                supplier_variant_id=str(row["colorCode"]) if row.get("colorCode") else None,
                swatch_url=normalize_image_url(row.get("colorSwatchImage")),
            )

        size_name = str(row.get("sizeName") or "OSFA")
        size_code = sanitize_code(size_name, "OSFA")
        if size_code not in sizes:
            sizes[size_code] = ProductSizeEntry(code=size_code, display=size_name, sort=to_int(row.get("sizeOrder", 0)))

        key = (color_code, size_code)
        if key not in sku_map:
            sku_map[key] = SkuMapEntry(
                supplier_part_id=product_id,
                color_code=color_code,
                size_code=size_code,
                supplier_sku=str(row.get("sku") or f"{product_id}_{color_code}_{size_code}"),
            )

        urls = media.setdefault(color_code, [])
        for field_name in IMAGE_FIELDS:
            url = normalize_image_url(row.get(field_name))
            if url and url not in urls:
                urls.append(url)

        total, stocks = _warehouse_stock(row)
        if key in inventory:
            existing = inventory[key]
            existing.total_qty += total
            existing.warehouses.extend(stocks)
        else:
            inventory[key] = InventoryRow(
                color_code=color_code,
                size_code=size_code,
                total_qty=total,
                warehouses=stocks,
                fetched_at=fetched_at,
            )

        price = _first_price(row)
        if price is not None:
            prices.append(price)

    attributes: Dict[str, Any] = {}
    if prices:
        attributes["piecePrice"] = min(prices)
        if max(prices) != min(prices):
            attributes["maxPiecePrice"] = max(prices)

    return ProductRecord(
        supplier=SupplierSource.REMOTE,
        supplier_part_id=product_id,
        name=str(style.get("title") or first.get("styleName") or product_id),
        brand=str(style.get("brandName") or first.get("brandName") or "") or None,
        default_color=next(iter(colors), DEFAULT_COLOR_CODE),
        colors=list(colors.values()),
        sizes=sorted(sizes.values(), key=lambda size: size.sort),
        media=[MediaGroup(color_code=code, urls=urls) for code, urls in media.items() if urls],
        sku_map=list(sku_map.values()),
        description=html_to_lines(style.get("description")),
        attributes=attributes,
        inventory=list(inventory.values()),
    )


# PromoStandards fallback

def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1].split(":")[-1]


def _child(node: Optional[ET.Element], name: str) -> Optional[ET.Element]:
    if node is None:
        return None
    for child in node:
        if _local(child.tag) == name:
            return child
    return None


def _children(node: Optional[ET.Element], name: str) -> Iterable[ET.Element]:
    if node is None:
        return []
    return [child for child in node if _local(child.tag) == name]


def _text(node: Optional[ET.Element], name: str) -> Optional[str]:
    child = _child(node, name)
    if child is None or child.text is None:
        return None
    value = html.unescape(child.text).strip()
    return value or None


def _brand(product: ET.Element) -> Optional[str]:
    node = _child(product, "productBrand")
    if node is None:
        return None
    nested = _text(node, "brandName")
    if nested:
        return nested
    if not node.text:
        return None
    return html.unescape(node.text).strip() or None


def parse_product_xml(xml_text: str, product_id: str) -> ProductRecord:
    """Parse a GetProduct SOAP response. Colors and sizes come from the part list."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise SupplierPayloadError(f"Invalid XML: {e}") from e

    body = root if _local(root.tag) == "Body" else _child(root, "Body")
    response = _child(body, "GetProductResponse")
    if response is None:
        raise SupplierPayloadError("Invalid PromoStandards GetProduct response")
    product = _child(response, "Product")
    if product is None:
        raise SupplierPayloadError("Product data not found in response")

    colors: Dict[str, ProductColorway] = {}
    sizes: Dict[str, ProductSizeEntry] = {}
    sku_map: Dict[Tuple[str, str], SkuMapEntry] = {}
    media: Dict[str, List[str]] = {}

    primary_image = normalize_image_url(_text(product, "primaryImageUrl"))
    if primary_image:
        media[DEFAULT_COLOR_CODE] = [primary_image]

    for part in _children(_child(product, "ProductPartArray"), "ProductPart"):
        color = next(iter(_children(_child(part, "ColorArray"), "Color")), None)
        color_name = (_text(color, "colorName") or _text(color, "standardColorName")) if color is not None else None
        color_code = sanitize_code(color_name, DEFAULT_COLOR_CODE) if color_name else DEFAULT_COLOR_CODE
        if color_code not in colors:
            colors[color_code] = ProductColorway(
                color_code=color_code,
                color_name=color_name or "Default",
                supplier_variant_id=_text(color, "standardColorName") if color_name else None,
            )

        size_name = _text(_child(part, "ApparelSize"), "labelSize") or "OSFA"
        size_code = sanitize_code(size_name, "OSFA")
        sizes.setdefault(size_code, ProductSizeEntry(code=size_code, display=size_name, sort=size_sort_index(size_name)))

        sku_map.setdefault(
            (color_code, size_code),
            SkuMapEntry(
                supplier_part_id=product_id,
                color_code=color_code,
                size_code=size_code,
                supplier_sku=_text(part, "partId") or _text(part, "gtin") or f"{product_id}_{color_code}_{size_code}",
            ),
        )

    if not colors:
        colors[DEFAULT_COLOR_CODE] = ProductColorway(color_code=DEFAULT_COLOR_CODE, color_name="Default")

    return ProductRecord(
        supplier=SupplierSource.REMOTE,
        supplier_part_id=product_id,
        name=_text(product, "productName") or product_id,
        brand=_brand(product),
        default_color=next(iter(colors)),
        colors=list(colors.values()),
        sizes=sorted(sizes.values(), key=lambda size: size.sort),
        media=[MediaGroup(color_code=code, urls=urls) for code, urls in media.items()],
        sku_map=list(sku_map.values()),
        description=html_to_lines(_text(product, "description")),
    )
