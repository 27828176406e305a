"""Cookie jar parsing and injection into a browser page."""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
from typing import TYPE_CHECKING, Any

import nodriver.cdp.network as net

from cart_monitor.exceptions import InvalidCookiesError
from cart_monitor.utils.constants import DEFAULT_COOKIE_DOMAIN
from cart_monitor.utils.logging import get_logger


if TYPE_CHECKING:
    import nodriver as uc

logger = get_logger(__name__)

CookieJar = list[dict[str, Any]]

# Cookies the marketplace sets only for a logged-in session
LOGIN_COOKIE_NAMES = frozenset(
    {"_m_h5_tk", "_m_h5_tk_enc", "login", "munb", "lgc", "tracknick", "cookie2"}
)

# Browser-extension exports use lowercase / snake_case same-site values
_SAME_SITE = {
    "strict": net.CookieSameSite.STRICT,
    "lax": net.CookieSameSite.LAX,
    "none": net.CookieSameSite.NONE,
    "no_restriction": net.CookieSameSite.NONE,
}


def _decode(raw: str) -> Any:
    text = raw.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    try:
        decoded = base64.b64decode(text, validate=True).decode("utf-8")
        return json.loads(decoded)
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidCookiesError("Cookie jar is neither JSON nor base64 JSON") from e


def parse_cookie_jar(
    raw: str | bytes | list[dict[str, Any]] | None,
    default_domain: str = DEFAULT_COOKIE_DOMAIN,
) -> CookieJar:
    """
    Parse a stored cookie jar into an ordered list of cookie dicts.

    Accepts a list of dicts, a JSON array string, a base64 encoded JSON array,
    or an object with a ``cookies`` array. ``domain`` falls back to
    ``default_domain`` and ``path`` to ``/``.

    Raises:
        InvalidCookiesError: Input cannot be parsed or holds no usable cookie
    """
    if raw is None:
        raise InvalidCookiesError("No cookies supplied")
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    data: Any = _decode(raw) if isinstance(raw, str) else raw
    if isinstance(data, dict):
        data = data.get("cookies")
    if not isinstance(data, list):
        raise InvalidCookiesError("Cookie jar must be a list of cookies")

    jar: CookieJar = []
    for item in data:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        value = item.get("value")
        if not name or value is None:
            continue
        cookie: dict[str, Any] = {
            "name": str(name),
            "value": str(value),
            "domain": item.get("domain") or default_domain,
            "path": item.get("path") or "/",
        }
        if "secure" in item:
            cookie["secure"] = bool(item["secure"])
        http_only = item.get("httpOnly", item.get("http_only"))
        if http_only is not None:
            cookie["httpOnly"] = bool(http_only)
        expires = item.get("expires", item.get("expirationDate"))
        if isinstance(expires, (int, float)) and expires > 0:
            cookie["expires"] = float(expires)
        same_site = item.get("sameSite", item.get("same_site"))
        if isinstance(same_site, str) and same_site.lower() in _SAME_SITE:
            cookie["sameSite"] = same_site.lower()
        jar.append(cookie)

    if not jar:
        raise InvalidCookiesError("Cookie jar holds no usable cookies")
    return jar


def cookie_signature(raw: str | list[dict[str, Any]]) -> str:
    """Short fingerprint of a cookie jar that is safe to log."""
    text = raw if isinstance(raw, str) else json.dumps(raw, ensure_ascii=False)
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]
    return f"{len(text)}:{digest}"


def has_login_cookies(cookies: CookieJar) -> bool:
    """Whether the jar carries any cookie of a logged-in session."""
    return any(c["name"] in LOGIN_COOKIE_NAMES for c in cookies)


def to_cookie_params(cookies: CookieJar) -> list[net.CookieParam]:
    """Convert parsed cookies into CDP ``Network.setCookies`` parameters."""
    params = []
    for c in cookies:
        params.append(
            net.CookieParam(
                name=c["name"],
                value=c["value"],
                domain=c["domain"],
                path=c["path"],
                secure=c.get("secure"),
                http_only=c.get("httpOnly"),
                same_site=_SAME_SITE.get(c.get("sameSite", "")),
                expires=(
                    net.TimeSinceEpoch(c["expires"]) if "expires" in c else None
                ),
            )
        )
    return params


class CredentialInjector:
    """Turns a stored cookie jar into session state of a browser page."""

    def __init__(self, default_domain: str = DEFAULT_COOKIE_DOMAIN) -> None:
        self.default_domain = default_domain

    def parse(self, raw: str | bytes | list[dict[str, Any]] | None) -> CookieJar:
        return parse_cookie_jar(raw, default_domain=self.default_domain)

    async def inject(
        self,
        page: uc.Tab,
        raw: str | bytes | list[dict[str, Any]] | None,
    ) -> CookieJar:
        """
        Parse the jar and set every cookie on the page before navigation.

        Returns:
            The parsed cookie jar
        """
        cookies = self.parse(raw)
        if not has_login_cookies(cookies):
            logger.warning(
                "Cookie jar has no login cookies, session will likely be anonymous",
                count=len(cookies),
            )

        await page.send(net.set_cookies(to_cookie_params(cookies)))
        logger.info(
            "Cookies injected",
            count=len(cookies),
            signature=cookie_signature(cookies),
        )
        return cookies
