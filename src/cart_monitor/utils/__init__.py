"""Utility modules."""

from cart_monitor.utils.config import Settings, get_settings
from cart_monitor.utils.constants import (
    BASE_SKU_ID,
    CART_URL,
    ITEM_URL_TEMPLATE,
    MONITOR_MODE_CART,
)
from cart_monitor.utils.logging import bound_context, get_logger, setup_logging
from cart_monitor.utils.parsers import (
    clean_text,
    normalize_sku_properties,
    parse_int,
    parse_price,
    query_param,
)


__all__ = [
    "BASE_SKU_ID",
    "CART_URL",
    "ITEM_URL_TEMPLATE",
    "MONITOR_MODE_CART",
    "Settings",
    "bound_context",
    "clean_text",
    "get_logger",
    "get_settings",
    "normalize_sku_properties",
    "parse_int",
    "parse_price",
    "query_param",
    "setup_logging",
]
