"""Data models exchanged between the cart automation components."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple

from cart_monitor.utils.constants import BASE_SKU_ID, MONITOR_MODE_CART


class FailureKind(str, Enum):
    """Why a single variant could not be added to the cart."""

    OUT_OF_STOCK = "OutOfStock"
    SELECTOR_NOT_FOUND = "SelectorNotFound"
    CONFIRMATION_TIMEOUT = "ConfirmationTimeout"
    NAVIGATION_TIMEOUT = "NavigationTimeout"
    TIMEOUT = "Timeout"
    UNKNOWN = "Unknown"


@dataclass
class Account:
    """Marketplace account whose cookie jar drives one browser context."""

    id: str
    name: str = ""
    cookies: list[dict[str, Any]] = field(default_factory=list)
    is_active: bool = True


@dataclass(frozen=True)
class SkuOption:
    """One property value of a variant, e.g. 颜色 = 红色."""

    prop_name: str
    value_name: str
    value_id: str | None = None


@dataclass(frozen=True)
class SkuSelection:
    """Ordered property choices identifying one purchasable variant."""

    options: tuple[SkuOption, ...] = ()

    @property
    def properties(self) -> dict[str, str]:
        return {opt.prop_name: opt.value_name for opt in self.options}

    @property
    def display(self) -> str:
        """Human readable form: ``颜色:红色;尺码:M``."""
        if not self.options:
            return "默认"
        return ";".join(f"{opt.prop_name}:{opt.value_name}" for opt in self.options)

    @property
    def is_default(self) -> bool:
        return not self.options


@dataclass
class SkuAddResult:
    """Outcome of one add-to-cart attempt."""

    sku_properties: str
    success: bool
    error: FailureKind | None = None
    detail: str | None = None
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "skuProperties": self.sku_properties,
            "success": self.success,
        }
        if self.error is not None:
            data["error"] = self.error.value
        if self.detail:
            data["detail"] = self.detail
        if self.skipped:
            data["skipped"] = True
        return data


@dataclass
class CartAddAllResult:
    """Batch report for one product; counts always add up to ``total_skus``."""

    total_skus: int
    success_count: int
    failed_count: int
    results: list[SkuAddResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalSkus": self.total_skus,
            "successCount": self.success_count,
            "failedCount": self.failed_count,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class ProgressEvent:
    """Emitted after each variant of a batch has been handled."""

    index: int
    total: int
    result: SkuAddResult


@dataclass
class ProductSummary:
    """Product level fields read from the detail page."""

    product_id: str
    title: str | None = None
    price: float | None = None
    image: str | None = None
    url: str | None = None


@dataclass
class CartLineItem:
    """One visible line of the cart listing."""

    product_id: str
    sku_id: str | None = None
    title: str | None = None
    price: float | None = None
    original_price: float | None = None
    sku_properties: str = ""
    quantity: int = 1
    link: str | None = None
    image: str | None = None


class ProductKey(NamedTuple):
    """Unique key of a persisted product row."""

    product_id: str
    sku_id: str
    owner_account_id: str


@dataclass
class ProductRow:
    """Persisted product state crossing the repository boundary."""

    product_id: str
    sku_id: str
    owner_account_id: str
    monitor_mode: str = MONITOR_MODE_CART
    url: str | None = None
    title: str | None = None
    image: str | None = None
    price: float | None = None
    original_price: float | None = None
    sku_properties: str | None = None
    quantity: int | None = None
    is_active: bool = True
    last_error: str | None = None
    last_seen: datetime | None = None
    variants: list[dict[str, Any]] | None = None

    @property
    def key(self) -> ProductKey:
        return ProductKey(self.product_id, self.sku_id, self.owner_account_id)

    @property
    def is_base(self) -> bool:
        return self.sku_id == BASE_SKU_ID

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SnapshotReport:
    """What one cart snapshot pass read and wrote."""

    items: list[CartLineItem] = field(default_factory=list)
    upserted: int = 0
    missing: list[str] = field(default_factory=list)
