"""Tests for the S&S Activewear client (REST with PromoStandards fallback)."""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
import httpx

from catalog.cache import TTLCache
from catalog.config import SsActivewearConfig, is_ssactivewear_part, to_ssa_product_id, to_style_number
from catalog.suppliers.parsers import SupplierPayloadError, build_product_from_rest, parse_product_xml
from catalog.suppliers.ssactivewear import SsActivewearClient, product_cache_key, select_matching_style
from exceptions import UpstreamUnavailableError, ValidationError

STYLE = {
    "styleID": 39,
    "partNumber": "00760",
    "brandName": "Gildan",
    "styleName": "5000",
    "title": "Heavy Cotton T-Shirt",
    "description": "Soft &amp; sturdy<br/>Taped neck",
}

ROWS = [
    {
        "sku": "B00760003",
        "colorName": "Black",
        "colorCode": "03",
        "sizeName": "M",
        "sizeOrder": "3",
        "piecePrice": 3.10,
        "colorFrontImage": "Images/Color/black_fm.jpg",
        "warehouses": [{"warehouseAbbr": "IL", "qty": 5}, {"warehouseAbbr": "KS", "qty": 2}],
    },
    {
        "sku": "B00760004",
        "colorName": "Black",
        "colorCode": "03",
        "sizeName": "L",
        "sizeOrder": "4",
        "piecePrice": "3.40",
        "warehouses": [{"warehouseAbbr": "IL", "qty": 1}],
    },
]

PRODUCT_XML = """<?xml version="1.0" encoding="utf-8"?>
<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/">
  <s:Body>
    <GetProductResponse xmlns="http://www.promostandards.org/WSDL/ProductDataService/2.0.0/"
        xmlns:shared="http://www.promostandards.org/WSDL/ProductDataService/2.0.0/SharedObjects/">
      <Product>
        <shared:productId>B00760</shared:productId>
        <shared:productName>Heavy Cotton T-Shirt</shared:productName>
        <shared:description>Classic fit&lt;br/&gt;Preshrunk</shared:description>
        <shared:productBrand>Gildan</shared:productBrand>
        <shared:primaryImageUrl>Images/Style/39_fm.jpg</shared:primaryImageUrl>
        <shared:ProductPartArray>
          <shared:ProductPart>
            <shared:partId>B00760003</shared:partId>
            <shared:ColorArray><shared:Color><shared:colorName>Black</shared:colorName></shared:Color></shared:ColorArray>
            <shared:ApparelSize><shared:labelSize>L</shared:labelSize></shared:ApparelSize>
          </shared:ProductPart>
          <shared:ProductPart>
            <shared:partId>B00760002</shared:partId>
            <shared:ColorArray><shared:Color><shared:colorName>Black</shared:colorName></shared:Color></shared:ColorArray>
            <shared:ApparelSize><shared:labelSize>S</shared:labelSize></shared:ApparelSize>
          </shared:ProductPart>
        </shared:ProductPartArray>
      </Product>
    </GetProductResponse>
  </s:Body>
</s:Envelope>"""


def _response(method, url, status=200, json=None, text=None, headers=None):
    request = httpx.Request(method, url)
    if json is not None:
        return httpx.Response(status, json=json, request=request, headers=headers)
    return httpx.Response(status, text=text or "", request=request, headers=headers)


class FakeSupplier:
    """Routes mocked client.request calls; records every call."""

    def __init__(self, styles=None, products=None, fallback=None):
        self.styles = styles or (lambda method, url, params: _response(method, url, 404))
        self.products = products or (lambda method, url, params: _response(method, url, json=ROWS))
        self.fallback = fallback or (lambda method, url, params: _response(method, url, text=PRODUCT_XML))
        self.calls = []

    async def request(self, method, url, **kwargs):
        params = kwargs.get("params") or {}
        self.calls.append((method, url, dict(params)))
        if method == "POST":
            return self.fallback(method, url, params)
        if "/styles" in url:
            return self.styles(method, url, params)
        return self.products(method, url, params)

    def count(self, fragment):
        return len([call for call in self.calls if fragment in call[1]])


def _patched(fake):
    patcher = patch("httpx.AsyncClient")
    mock_client_class = patcher.start()
    mock_client = MagicMock()
    mock_client.request = AsyncMock(side_effect=fake.request)
    mock_client_class.return_value.__aenter__.return_value = mock_client
    return patcher, mock_client_class


@pytest.fixture
def supplier(request):
    fake = FakeSupplier(**getattr(request, "param", {}))
    patcher, mock_client_class = _patched(fake)
    fake.client_class = mock_client_class
    yield fake
    patcher.stop()


class TestIdentifiers:
    def test_format_check(self):
        assert is_ssactivewear_part("B00760")
        assert is_ssactivewear_part("5000")
        assert not is_ssactivewear_part("PC43")
        assert not is_ssactivewear_part("B")
        assert not is_ssactivewear_part("")

    def test_product_id_helpers(self):
        assert to_ssa_product_id("b00760") == "B00760"
        assert to_ssa_product_id("760") == "B00760"
        assert to_ssa_product_id("A230") == "A230"
        assert to_style_number("B00760") == "00760"
        assert to_style_number("A230") == "A230"
        with pytest.raises(ValidationError):
            to_ssa_product_id("  ")

    def test_select_matching_style(self):
        styles = [{"styleID": 1, "brandName": "Jerzees"}, {"styleID": 39, "brandName": "Gildan"}]
        assert select_matching_style(styles, {"styleID": 39})["brandName"] == "Gildan"
        assert select_matching_style(styles, {"brandName": "gildan"})["styleID"] == 39
        assert select_matching_style(styles)["styleID"] == 1
        assert select_matching_style([]) is None


class TestSsActivewearClient:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "supplier",
        [{"styles": lambda method, url, params: _response(method, url, json=[STYLE])}],
        indirect=True,
    )
    async def test_rest_product_is_shaped(self, remote_config, supplier):
        client = SsActivewearClient(remote_config, retry_backoff_seconds=0)

        result = await client.fetch_product_with_fallback("b00760")

        assert result.source == "rest"
        assert result.warnings == []
        product = result.product
        assert product.supplier_part_id == "B00760"
        assert product.name == "Heavy Cotton T-Shirt"
        assert product.brand == "Gildan"
        assert product.description == ["Soft & sturdy", "Taped neck"]
        assert [c.color_code for c in product.colors] == ["BLACK"]
        assert product.colors[0].supplier_variant_id == "03"
        assert [s.code for s in product.sizes] == ["M", "L"]
        assert product.media[0].urls == ["https://cdn.ssactivewear.com/Images/Color/black_fm.jpg"]
        assert product.attributes == {"piecePrice": 3.1, "maxPiecePrice": 3.4}
        assert product.inventory[0].total_qty == 7
        assert [(w.warehouse_id, w.quantity) for w in product.inventory[0].warehouses] == [("IL", 5), ("KS", 2)]

        get_call = supplier.calls[0]
        assert get_call[0] == "GET"
        assert get_call[1] == "https://api.test/V2/styles/00760"
        supplier.client_class.assert_called_with(timeout=5)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "supplier",
        [{"products": lambda method, url, params: _response(method, url, json={"message": "unexpected"})}],
        indirect=True,
    )
    async def test_malformed_rest_payload_falls_back(self, remote_config, supplier):
        client = SsActivewearClient(remote_config, retry_backoff_seconds=0)

        result = await client.fetch_product_with_fallback("B00760")

        assert result.source == "fallback"
        assert len(result.warnings) == 1
        assert "PromoStandards" in result.warnings[0]
        assert [c.color_code for c in result.product.colors] == ["BLACK"]
        assert [s.code for s in result.product.sizes] == ["S", "L"]
        assert result.product.sku_map[0].supplier_sku == "B00760003"
        assert result.product.description == ["Classic fit", "Preshrunk"]
        assert result.product.media[0].urls == ["https://cdn.ssactivewear.com/Images/Style/39_fm.jpg"]

        post = [call for call in supplier.calls if call[0] == "POST"]
        assert len(post) == 1
        assert post[0][1] == "https://promostandards.test/productdata"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "supplier",
        [{"products": lambda method, url, params: _response(method, url, 400, json={"message": "bad request"})}],
        indirect=True,
    )
    async def test_client_errors_are_not_retried(self, remote_config, supplier):
        client = SsActivewearClient(remote_config, retry_backoff_seconds=0)

        result = await client.fetch_product_with_fallback("B00760")

        assert result.source == "fallback"
        gets = [(url, tuple(sorted(params.items()))) for method, url, params in supplier.calls if method == "GET"]
        assert len(gets) == len(set(gets))
        # style, partnumber and styleid lookups for the one key
        assert supplier.count("/products") == 3

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self, remote_config):
        attempts = {"count": 0}

        def flaky_products(method, url, params):
            attempts["count"] += 1
            if attempts["count"] == 1:
                return _response(method, url, 503, json={"message": "busy"})
            return _response(method, url, json=ROWS)

        fake = FakeSupplier(products=flaky_products)
        patcher, _ = _patched(fake)
        try:
            client = SsActivewearClient(remote_config, retry_backoff_seconds=0)
            result = await client.fetch_product_with_fallback("B00760")
        finally:
            patcher.stop()

        assert result.source == "rest"
        assert attempts["count"] == 2

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self, remote_config):
        attempts = {"count": 0}

        def unstable_products(method, url, params):
            attempts["count"] += 1
            if attempts["count"] == 1:
                raise httpx.ConnectError("connection reset", request=httpx.Request(method, url))
            return _response(method, url, json=ROWS)

        fake = FakeSupplier(products=unstable_products)
        patcher, _ = _patched(fake)
        try:
            client = SsActivewearClient(remote_config, retry_backoff_seconds=0)
            result = await client.fetch_product_with_fallback("B00760")
        finally:
            patcher.stop()

        assert result.source == "rest"
        assert attempts["count"] == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "supplier",
        [
            {
                "products": lambda method, url, params: _response(method, url, 500, json={"message": "down"}),
                "fallback": lambda method, url, params: _response(method, url, 500, text="down"),
            }
        ],
        indirect=True,
    )
    async def test_both_paths_failing_raises_upstream_unavailable(self, remote_config, supplier):
        cache = TTLCache()
        client = SsActivewearClient(remote_config, cache=cache, retry_backoff_seconds=0)

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await client.fetch_product_with_fallback("B00760")

        assert exc_info.value.upstream_status == 500
        assert exc_info.value.status_code == 502
        # Every logical request used all of its attempts
        assert len([call for call in supplier.calls if call[0] == "POST"]) == remote_config.max_attempts
        assert cache.stats()["size"] == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "supplier",
        [{"styles": lambda method, url, params: _response(method, url, 401, json={"message": "unauthorized"})}],
        indirect=True,
    )
    async def test_auth_failure_skips_to_fallback(self, remote_config, supplier):
        client = SsActivewearClient(remote_config, retry_backoff_seconds=0)

        result = await client.fetch_product_with_fallback("B00760")

        assert result.source == "fallback"
        assert supplier.count("/styles") == 1
        assert supplier.count("/products") == 0

    @pytest.mark.asyncio
    async def test_non_remote_part_rejected_before_network(self, remote_config):
        with patch("httpx.AsyncClient") as mock_client_class:
            client = SsActivewearClient(remote_config)
            with pytest.raises(ValidationError):
                await client.fetch_product_with_fallback("PC43")
            mock_client_class.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_credentials_raise_upstream_unavailable(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            client = SsActivewearClient(SsActivewearConfig())
            with pytest.raises(UpstreamUnavailableError):
                await client.fetch_product_with_fallback("B00760")
            mock_client_class.assert_not_called()

    @pytest.mark.asyncio
    async def test_results_are_cached_per_product(self, remote_config, supplier):
        cache = TTLCache()
        client = SsActivewearClient(remote_config, cache=cache, retry_backoff_seconds=0)

        first = await client.fetch_product_with_fallback("B00760")
        calls_after_first = len(supplier.calls)
        second = await client.fetch_product_with_fallback(" b00760 ")

        assert second is first
        assert len(supplier.calls) == calls_after_first
        assert cache.get(product_cache_key("B00760")) is first

    def test_rate_limit_headers_delay_next_request(self, remote_config, clock):
        client = SsActivewearClient(remote_config, clock=clock)
        client._update_rate_limit(
            _response("GET", "https://api.test/V2/products", headers={"X-Rate-Limit-Remaining": "0", "X-Rate-Limit-Reset": "5"})
        )
        assert client._next_allowed_at == clock() + 5

        client._update_rate_limit(
            _response("GET", "https://api.test/V2/products", headers={"X-Rate-Limit-Remaining": "40"})
        )
        assert client._next_allowed_at == clock() + 5

    @pytest.mark.asyncio
    async def test_rate_limit_wait_is_honored(self, remote_config, clock):
        client = SsActivewearClient(remote_config, clock=clock)
        client._next_allowed_at = clock() + 2.5

        with patch("catalog.suppliers.ssactivewear.asyncio.sleep", new=AsyncMock()) as mock_sleep:
            await client._respect_rate_limit()

        mock_sleep.assert_awaited_once_with(2.5)

    def test_envelope_escapes_credentials(self):
        client = SsActivewearClient(SsActivewearConfig(account_number="12&3", api_key="k<ey>"))
        envelope = client.build_get_product_envelope("B00760")

        assert "<shared:id>12&amp;3</shared:id>" in envelope
        assert "<shared:password>k&lt;ey&gt;</shared:password>" in envelope
        assert "<shared:productId>B00760</shared:productId>" in envelope


class TestPromoStandardsParser:
    def test_invalid_xml(self):
        with pytest.raises(SupplierPayloadError):
            parse_product_xml("<not-xml", "B00760")

    def test_missing_product_node(self):
        xml = (
            '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/"><s:Body>'
            "<GetProductResponse/></s:Body></s:Envelope>"
        )
        with pytest.raises(SupplierPayloadError):
            parse_product_xml(xml, "B00760")

    def test_product_without_parts_gets_default_color(self):
        xml = (
            '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/"><s:Body>'
            "<GetProductResponse><Product><productName>Blank</productName></Product></GetProductResponse>"
            "</s:Body></s:Envelope>"
        )
        product = parse_product_xml(xml, "B00760")
        assert product.name == "Blank"
        assert [c.color_code for c in product.colors] == ["DEFAULT"]
        assert product.default_color == "DEFAULT"

    def test_parts_without_colors_share_the_default_color(self):
        xml = (
            '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/"><s:Body>'
            "<GetProductResponse><Product><productName>Blank</productName><ProductPartArray>"
            "<ProductPart><partId>B00760002</partId><ApparelSize><labelSize>S</labelSize></ApparelSize></ProductPart>"
            "<ProductPart><partId>B00760004</partId><ApparelSize><labelSize>L</labelSize></ApparelSize></ProductPart>"
            "</ProductPartArray></Product></GetProductResponse>"
            "</s:Body></s:Envelope>"
        )
        product = parse_product_xml(xml, "B00760")

        color_codes = {c.color_code for c in product.colors}
        assert color_codes == {"DEFAULT"}
        assert product.default_color == "DEFAULT"
        assert [s.code for s in product.sizes] == ["S", "L"]
        assert all(entry.color_code in color_codes for entry in product.sku_map)


class TestRestShaping:
    def test_unexpected_field_types_are_tolerated(self):
        rows = [{"colorName": "Black", "sizeName": "M", "colorFrontImage": 12345, "colorSwatchImage": ["x"], "piecePrice": True}]

        product = build_product_from_rest("B00760", rows)

        assert [c.color_code for c in product.colors] == ["BLACK"]
        assert product.colors[0].swatch_url is None
        assert product.media == []
        assert product.attributes == {}

    def test_unshapeable_payload_becomes_payload_error(self):
        with pytest.raises(SupplierPayloadError):
            build_product_from_rest("B00760", ROWS, style="not-a-style")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "supplier",
        [{"products": lambda method, url, params: _response(method, url, json=[{"colorName": "Black", "sizeName": "M", "colorFrontImage": 12345}])}],
        indirect=True,
    )
    async def test_oddly_typed_rest_row_does_not_escape(self, remote_config, supplier):
        client = SsActivewearClient(remote_config, retry_backoff_seconds=0)

        result = await client.fetch_product_with_fallback("B00760")

        assert result.source == "rest"
        assert [s.code for s in result.product.sizes] == ["M"]

    @pytest.mark.asyncio
    async def test_shaping_failure_falls_back(self, remote_config, supplier):
        client = SsActivewearClient(remote_config, retry_backoff_seconds=0)

        with patch("catalog.suppliers.parsers.to_price", side_effect=TypeError("unsupported price")):
            result = await client.fetch_product_with_fallback("B00760")

        assert result.source == "fallback"
        assert "Unexpected REST payload" in result.warnings[0]
