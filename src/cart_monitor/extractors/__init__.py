"""Page extractors built on selector-fallback strategy chains."""

from cart_monitor.extractors.base import PageSnapshot, Strategy, StrategyChain
from cart_monitor.extractors.cart import CartExtractor, CartReadout
from cart_monitor.extractors.sku import SkuEnumeration, SkuEnumerator


__all__ = [
    "CartExtractor",
    "CartReadout",
    "PageSnapshot",
    "SkuEnumeration",
    "SkuEnumerator",
    "Strategy",
    "StrategyChain",
]
