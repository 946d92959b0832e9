"""S&S Activewear client: REST v2 with a PromoStandards GetProduct fallback.

The REST path resolves a style (``/styles``) and then pulls SKU rows
(``/products``). Any REST failure that leaves us without a usable product
drops to the single-product XML lookup, tagged ``source="fallback"`` with a
warning. Results are memoized in the shared TTL cache; failures never are.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional
from xml.sax.saxutils import escape

import httpx

from catalog.cache import TTLCache
from catalog.config import (
    SsActivewearConfig,
    is_ssactivewear_part,
    normalize_identifier,
    to_ssa_product_id,
    to_style_number,
)
from catalog.models import ProductFetchResult, SupplierSource
from catalog.suppliers.parsers import (
    SupplierPayloadError,
    build_product_from_rest,
    parse_product_xml,
    validate_rest_products,
)
from exceptions import UpstreamUnavailableError, ValidationError
from observability.metrics import (
    supplier_fallbacks_total,
    supplier_request_duration_seconds,
    supplier_request_errors_total,
)

logger = logging.getLogger(__name__)

SUPPLIER = SupplierSource.REMOTE.value
RETRYABLE_STATUS = {429, 500, 502, 503, 504}
AUTH_STATUS = {401, 403}
RATE_LIMIT_MIN_REMAINING = 1
RATE_LIMIT_DEFAULT_WAIT_SECONDS = 1.1

PRODUCT_DATA_NAMESPACE = "http://www.promostandards.org/WSDL/ProductDataService/2.0.0/"
SHARED_NAMESPACE = "http://www.promostandards.org/WSDL/ProductDataService/2.0.0/SharedObjects/"

_DIGITS = re.compile(r"^\d+$")


class SupplierHTTPError(Exception):
    """Non-success from the supplier after retries; status is None for transport failures."""

    def __init__(self, message: str, status: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.url = url


def product_cache_key(product_id: str) -> str:
    return f"product:{SUPPLIER}:{product_id}"


class SsActivewearClient:
    supplier = SupplierSource.REMOTE

    def __init__(
        self,
        config: SsActivewearConfig,
        cache: Optional[TTLCache] = None,
        cache_ttl_seconds: float = 300.0,
        retry_backoff_seconds: float = 1.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds
        self.retry_backoff_seconds = retry_backoff_seconds
        self._clock = clock or time.monotonic
        self._next_allowed_at = 0.0

        if not config.is_configured:
            logger.warning("[SsActivewear] Credentials not set; remote lookups will fail")

    def handles(self, supplier_part_id: str) -> bool:
        return is_ssactivewear_part(supplier_part_id)

    async def fetch_product_with_fallback(self, supplier_part_id: str) -> ProductFetchResult:
        if not self.handles(supplier_part_id):
            raise ValidationError(
                "Not a remote supplier part id",
                detail={"supplier_part_id": supplier_part_id},
            )
        product_id = to_ssa_product_id(supplier_part_id)

        if self.cache is None:
            return await self._fetch_uncached(product_id)
        return await self.cache.cached(
            product_cache_key(product_id),
            self.cache_ttl_seconds,
            lambda: self._fetch_uncached(product_id),
        )

    async def _fetch_uncached(self, product_id: str) -> ProductFetchResult:
        if not self.config.is_configured:
            raise UpstreamUnavailableError(
                "S&S Activewear credentials are not configured",
                supplier=SUPPLIER,
                detail={"supplier_part_id": product_id},
            )

        async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
            try:
                product = await self._fetch_rest_product(client, product_id)
                return ProductFetchResult(product=product, source="rest")
            except (SupplierHTTPError, SupplierPayloadError) as e:
                rest_error = e
                if isinstance(e, SupplierHTTPError) and e.status in AUTH_STATUS:
                    reason = "auth"
                elif isinstance(e, SupplierPayloadError):
                    reason = "malformed"
                else:
                    reason = "http"
                rest_status = getattr(e, "status", None)
                logger.warning(f"[SsActivewear] REST lookup for {product_id} failed ({reason}): {e}")

            try:
                product = await self._fetch_promostandards_product(client, product_id)
            except (SupplierHTTPError, SupplierPayloadError) as fallback_error:
                fallback_status = getattr(fallback_error, "status", None)
                logger.error(f"[SsActivewear] Fallback lookup for {product_id} failed: {fallback_error}")
                raise UpstreamUnavailableError(
                    f"S&S Activewear unavailable for {product_id}",
                    upstream_status=rest_status if rest_status is not None else fallback_status,
                    supplier=SUPPLIER,
                    detail={
                        "supplier_part_id": product_id,
                        "rest_error": str(rest_error),
                        "fallback_error": str(fallback_error),
                    },
                ) from fallback_error

        supplier_fallbacks_total.labels(supplier=SUPPLIER, reason=reason).inc()
        warning = f"REST product data unavailable ({rest_error}); served PromoStandards product data"
        return ProductFetchResult(product=product, source="fallback", warnings=[warning])

    # REST

    async def _fetch_rest_product(self, client: httpx.AsyncClient, product_id: str):
        style_number = to_style_number(product_id)
        lookup_keys: List[str] = []
        _add_lookup(lookup_keys, style_number)

        style = await self._fetch_style(client, style_number)
        if style:
            _add_lookup(lookup_keys, style.get("partNumber"))
            _add_lookup(lookup_keys, style.get("styleID"))
            if style.get("brandName") and style.get("styleName"):
                _add_lookup(lookup_keys, f"{style['brandName']} {style['styleName']}")

        rows = await self._fetch_products(client, lookup_keys)
        if style is None and rows:
            first = rows[0]
            style = await self._fetch_style(
                client,
                style_number,
                hints={"styleID": first.get("styleID"), "brandName": first.get("brandName"), "styleName": first.get("styleName")},
            )
        return build_product_from_rest(product_id, rows, style)

    async def _fetch_style(
        self,
        client: httpx.AsyncClient,
        identifier: str,
        hints: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Style metadata, or None when no lookup matched.

        Style data is optional for shaping, so only auth failures escape.
        """
        key = normalize_identifier(identifier)
        attempts = [(f"/styles/{key}", {}), ("/styles", {"partnumber": key})]
        if _DIGITS.match(key):
            attempts.append(("/styles", {"styleid": key}))
        attempts.append(("/styles", {"search": key}))

        candidates: List[Dict[str, Any]] = []
        for path, params in attempts:
            try:
                data = await self._get_json(client, path, params)
            except SupplierHTTPError as e:
                if e.status in AUTH_STATUS:
                    raise
                continue
            except SupplierPayloadError:
                continue
            if isinstance(data, dict):
                candidates.append(data)
            elif isinstance(data, list):
                candidates.extend(item for item in data if isinstance(item, dict))
        return select_matching_style(candidates, hints)

    async def _fetch_products(self, client: httpx.AsyncClient, lookup_keys: List[str]) -> List[Dict[str, Any]]:
        attempts = []
        for key in lookup_keys:
            attempts.append({"style": key})
            attempts.append({"partnumber": key})
            if _DIGITS.match(key):
                attempts.append({"styleid": key})

        last_error: Optional[Exception] = None
        for params in attempts:
            try:
                data = await self._get_json(client, "/products", params)
                rows = validate_rest_products(data)
            except SupplierHTTPError as e:
                if e.status in AUTH_STATUS:
                    raise
                last_error = e
                continue
            except SupplierPayloadError as e:
                last_error = e
                continue
            if rows:
                return rows

        if last_error is not None:
            raise last_error
        raise SupplierPayloadError(f"No REST product rows for {', '.join(lookup_keys)}")

    async def _get_json(self, client: httpx.AsyncClient, path: str, params: Dict[str, str]) -> Any:
        url = f"{self.config.rest_base_url}/{path.lstrip('/')}"
        response = await self._send(
            client,
            "GET",
            url,
            endpoint=path.split("?")[0] if not path.startswith("/styles/") else "/styles/{key}",
            params={k: v for k, v in params.items() if v},
            auth=(self.config.account_number, self.config.api_key),
        )
        try:
            return response.json()
        except ValueError as e:
            raise SupplierPayloadError(f"Invalid JSON from {path}: {e}") from e

    async def _send(self, client: httpx.AsyncClient, method: str, url: str, endpoint: str, **kwargs) -> httpx.Response:
        """One logical request with bounded retries on 429/5xx and transport errors."""
        max_attempts = self.config.max_attempts
        last_status: Optional[int] = None
        for attempt in range(max_attempts):
            await self._respect_rate_limit()
            start = time.time()
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.RequestError as e:
                error_type = "timeout" if isinstance(e, httpx.TimeoutException) else "transport"
                supplier_request_errors_total.labels(supplier=SUPPLIER, error_type=error_type).inc()
                if attempt + 1 >= max_attempts:
                    raise SupplierHTTPError(f"{error_type} error calling {endpoint}: {e}", status=None, url=url) from e
                wait_time = self.retry_backoff_seconds * (2 ** attempt)
                logger.warning(f"[SsActivewear] {error_type} error: {e}. Retrying in {wait_time}s... (Attempt {attempt + 1}/{max_attempts})")
                await asyncio.sleep(wait_time)
                continue
            finally:
                supplier_request_duration_seconds.labels(supplier=SUPPLIER, endpoint=endpoint).observe(time.time() - start)

            self._update_rate_limit(response)
            if response.status_code < 400:
                return response

            last_status = response.status_code
            if response.status_code in RETRYABLE_STATUS:
                supplier_request_errors_total.labels(supplier=SUPPLIER, error_type="http_5xx" if last_status >= 500 else "http_429").inc()
                if attempt + 1 >= max_attempts:
                    break
                wait_time = _retry_after(response, self.retry_backoff_seconds * (2 ** attempt))
                logger.warning(f"[SsActivewear] {endpoint} returned {last_status}. Retrying in {wait_time}s... (Attempt {attempt + 1}/{max_attempts})")
                await asyncio.sleep(wait_time)
                continue

            # Non-retriable (400, 401, 403, 404, ...)
            supplier_request_errors_total.labels(supplier=SUPPLIER, error_type="http_4xx").inc()
            raise SupplierHTTPError(f"{endpoint} returned {last_status}", status=last_status, url=url)

        raise SupplierHTTPError(
            f"{endpoint} still failing after {max_attempts} attempts (last status {last_status})",
            status=last_status,
            url=url,
        )

    async def _respect_rate_limit(self) -> None:
        wait = self._next_allowed_at - self._clock()
        if wait > 0:
            logger.info(f"[SsActivewear] Rate limit window, waiting {wait:.2f}s")
            await asyncio.sleep(wait)

    def _update_rate_limit(self, response: httpx.Response) -> None:
        remaining = _header_float(response, "X-Rate-Limit-Remaining")
        if remaining is None or remaining > RATE_LIMIT_MIN_REMAINING:
            return
        reset = _header_float(response, "X-Rate-Limit-Reset")
        wait = max(reset, RATE_LIMIT_DEFAULT_WAIT_SECONDS) if reset and reset > 0 else RATE_LIMIT_DEFAULT_WAIT_SECONDS
        self._next_allowed_at = self._clock() + wait

    # PromoStandards

    def build_get_product_envelope(self, product_id: str) -> str:
        return (
            '<?xml version="1.0" encoding="utf-8"?>'
            '<soapenv:Envelope xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/">'
            "<soapenv:Header/>"
            "<soapenv:Body>"
            f'<GetProductRequest xmlns="{PRODUCT_DATA_NAMESPACE}" xmlns:shared="{SHARED_NAMESPACE}">'
            "<shared:wsVersion>2.0.0</shared:wsVersion>"
            f"<shared:id>{escape(self.config.account_number or '')}</shared:id>"
            f"<shared:password>{escape(self.config.api_key or '')}</shared:password>"
            "<shared:localizationCountry>US</shared:localizationCountry>"
            "<shared:localizationLanguage>EN</shared:localizationLanguage>"
            f"<shared:productId>{escape(product_id)}</shared:productId>"
            "</GetProductRequest>"
            "</soapenv:Body>"
            "</soapenv:Envelope>"
        )

    async def _fetch_promostandards_product(self, client: httpx.AsyncClient, product_id: str):
        response = await self._send(
            client,
            "POST",
            self.config.promostandards_product_url,
            endpoint="promostandards:getProduct",
            content=self.build_get_product_envelope(product_id),
            headers={"Content-Type": "text/xml; charset=utf-8", "SOAPAction": "getProduct"},
        )
        return parse_product_xml(response.text, product_id)


def select_matching_style(styles: List[Dict[str, Any]], hints: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """Prefer the style matching the hinted styleID, then brand, then style name."""
    if not styles:
        return None
    hints = hints or {}
    if hints.get("styleID") is not None:
        target = str(hints["styleID"]).strip()
        for style in styles:
            if str(style.get("styleID", "")).strip() == target:
                return style
    for field_name in ("brandName", "styleName"):
        if hints.get(field_name):
            target = str(hints[field_name]).strip().upper()
            for style in styles:
                if str(style.get(field_name) or "").strip().upper() == target:
                    return style
    return styles[0]


def _add_lookup(keys: List[str], value: Any) -> None:
    if value is None:
        return
    normalized = normalize_identifier(str(value))
    if normalized and normalized not in keys:
        keys.append(normalized)


def _header_float(response: httpx.Response, name: str) -> Optional[float]:
    raw = response.headers.get(name)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _retry_after(response: httpx.Response, default: float) -> float:
    value = _header_float(response, "Retry-After")
    return value if value is not None and value >= 0 else default
