"""Environment-backed settings for the catalog and the remote supplier."""

from __future__ import annotations

import os
import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from exceptions import ValidationError

DEFAULT_REST_BASE_URL = "https://api.ssactivewear.com/V2"
DEFAULT_PROMOSTANDARDS_PRODUCT_URL = "https://promostandards.ssactivewear.com/productdata/v2/productdataservice.svc"

# Remote supplier ids: "B" + 5-digit style number, e.g. B00060 for Gildan 5000
_B_PREFIX_STYLE = re.compile(r"^B\d{5}$")
_DIGITS_ONLY = re.compile(r"^\d+$")
_NON_DIGITS = re.compile(r"[^0-9]")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class SsActivewearConfig(BaseModel):
    account_number: Optional[str] = None
    api_key: Optional[str] = None
    rest_base_url: str = DEFAULT_REST_BASE_URL
    promostandards_product_url: str = DEFAULT_PROMOSTANDARDS_PRODUCT_URL
    timeout_seconds: float = Field(20.0, gt=0)
    max_attempts: int = Field(3, ge=1, le=10)

    @field_validator("account_number", "api_key", mode="before")
    @classmethod
    def _strip_credentials(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator("rest_base_url", "promostandards_product_url", mode="before")
    @classmethod
    def _strip_url(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().rstrip("/") if isinstance(value, str) else value

    @property
    def is_configured(self) -> bool:
        return bool(self.account_number and self.api_key)

    @classmethod
    def from_env(cls) -> "SsActivewearConfig":
        return cls(
            account_number=os.getenv("SSACTIVEWEAR_ACCOUNT_NUMBER"),
            api_key=os.getenv("SSACTIVEWEAR_API_KEY"),
            rest_base_url=os.getenv("SSACTIVEWEAR_REST_BASE_URL") or DEFAULT_REST_BASE_URL,
            promostandards_product_url=(
                os.getenv("SSACTIVEWEAR_PROMOSTANDARDS_PRODUCT_URL") or DEFAULT_PROMOSTANDARDS_PRODUCT_URL
            ),
            timeout_seconds=_env_float("SSACTIVEWEAR_TIMEOUT_SECONDS", 20.0),
            max_attempts=_env_int("SSACTIVEWEAR_MAX_ATTEMPTS", 3),
        )


class CatalogSettings(BaseModel):
    product_cache_ttl_seconds: float = Field(300.0, ge=0)
    search_cache_ttl_seconds: float = Field(60.0, ge=0)
    mapping_path: Optional[str] = None
    ssactivewear: SsActivewearConfig = Field(default_factory=SsActivewearConfig)

    @classmethod
    def from_env(cls) -> "CatalogSettings":
        return cls(
            product_cache_ttl_seconds=_env_float("CATALOG_PRODUCT_CACHE_TTL_SECONDS", 300.0),
            search_cache_ttl_seconds=_env_float("CATALOG_SEARCH_CACHE_TTL_SECONDS", 60.0),
            mapping_path=os.getenv("CANONICAL_MAPPING_PATH") or None,
            ssactivewear=SsActivewearConfig.from_env(),
        )


def normalize_identifier(value: str) -> str:
    return (value or "").strip().upper()


def to_ssa_product_id(product_id: str) -> str:
    """Normalize to the remote supplier's part id.

    B-prefixed ids are kept, bare digits are padded to five and prefixed with
    B, anything with letters (e.g. A230) is the literal manufacturer style.
    """
    normalized = normalize_identifier(product_id)
    if not normalized:
        raise ValidationError("Product ID is required", detail={"supplier_part_id": product_id})
    if _B_PREFIX_STYLE.match(normalized):
        return normalized
    if _DIGITS_ONLY.match(normalized):
        return f"B{normalized.zfill(5)}"
    return normalized


def to_style_number(product_id: str) -> str:
    """Style key the REST endpoints expect: B00060 -> 00060."""
    normalized = normalize_identifier(product_id)
    if _B_PREFIX_STYLE.match(normalized):
        return normalized[1:]
    return normalized


def is_ssactivewear_part(part_id: str) -> bool:
    """Format check for remote supplier part ids: B-prefixed, or at least four digits."""
    normalized = normalize_identifier(part_id)
    if normalized.startswith("B") and len(normalized) > 1:
        return True
    return len(_NON_DIGITS.sub("", normalized)) >= 4
