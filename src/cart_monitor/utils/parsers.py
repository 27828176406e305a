"""Shared parsing utilities for page text and links."""

from __future__ import annotations

import re
from urllib.parse import parse_qs, urlparse


_WHITESPACE_RE = re.compile(r"\s+")
_SEMICOLON_RE = re.compile(r"[;；]+")
_PRICE_RE = re.compile(r"\d+(?:,\d{3})*(?:\.\d+)?")


def clean_text(text: str | None) -> str:
    """Collapse runs of whitespace and strip."""
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def normalize_sku_properties(text: str | None) -> str:
    """
    Normalize a variant property string for comparison.

    Full-width and repeated semicolons collapse to one ``;`` and the spaces
    around separators are dropped, so ``"颜色:红 ； 尺码:M"`` and
    ``"颜色:红;尺码:M"`` compare equal.
    """
    value = clean_text(text)
    value = _SEMICOLON_RE.sub(";", value)
    return re.sub(r"\s*;\s*", ";", value).strip()


def parse_price(price_text: str | None) -> float | None:
    """
    Parse the first price-looking number in a text.

    Handles "¥1,299.00", "￥ 59.9" and "59.90元".

    Returns:
        Parsed price, or None if the text holds no number
    """
    if not price_text:
        return None
    match = _PRICE_RE.search(price_text)
    if match is None:
        return None
    try:
        return float(match.group(0).replace(",", ""))
    except ValueError:
        return None


def parse_split_price(integer_part: str | None, decimal_part: str | None) -> float | None:
    """Join a price rendered as separate integer and decimal spans."""
    whole = re.sub(r"[^\d]", "", integer_part or "")
    if not whole:
        return None
    frac = re.sub(r"[^\d]", "", decimal_part or "") or "0"
    return float(f"{whole}.{frac}")


def parse_int(text: str | None, default: int = 0) -> int:
    """Parse the digits of a counter such as a cart badge or quantity input."""
    digits = re.sub(r"[^\d]", "", text or "")
    if not digits:
        return default
    return int(digits)


def query_param(href: str | None, key: str) -> str | None:
    """Read a single query parameter from a (possibly protocol-relative) link."""
    if not href:
        return None
    if href.startswith("//"):
        href = f"https:{href}"
    values = parse_qs(urlparse(href).query).get(key)
    if not values:
        return None
    return values[0] or None


def absolute_url(src: str | None) -> str | None:
    """Complete protocol-relative URLs used by image and item links."""
    if not src:
        return None
    if src.startswith("//"):
        return f"https:{src}"
    return src
