"""Constants used throughout the cart monitor."""

from __future__ import annotations

import re


# =============================================================================
# URLs
# =============================================================================

ITEM_URL_TEMPLATE = "https://item.taobao.com/item.htm?id={product_id}"
CART_URL = "https://cart.taobao.com/cart.htm"

DEFAULT_COOKIE_DOMAIN = ".taobao.com"

# =============================================================================
# Persistence
# =============================================================================

# Sentinel sku id for the row that represents a multi-SKU product as a whole
BASE_SKU_ID = "__BASE__"

MONITOR_MODE_CART = "CART"

MISSING_IN_CART_ERROR = "not found in cart"

# =============================================================================
# Auth / challenge detection
# =============================================================================

AUTH_URL_PATTERN = re.compile(
    r"login\.taobao\.com|login\.tmall\.com|passport\.taobao\.com|sec\.taobao\.com"
    r"|captcha|verify|risk",
    re.IGNORECASE,
)
AUTH_TITLE_PATTERN = re.compile(r"登录|Login|安全验证|验证码")
AUTH_BODY_PATTERN = re.compile(r"请先登录|登录后|扫码登录|安全验证|滑动验证|请完成验证")

# Elements that only exist on a login form or slider challenge
AUTH_MARKER_SELECTORS = (
    "#fm-login-id",
    'input[name="fm-login-id"]',
    "#fm-login-password",
    "#login-form",
    ".login-box",
    ".qrcode-login",
    'iframe[src*="login.taobao.com"]',
    'iframe[src*="login.tmall.com"]',
    "#nc_1_n1z",
    ".nc-container",
    ".J_MIDDLEWARE_FRAME_WIDGET",
)

# =============================================================================
# Overlays
# =============================================================================

OVERLAY_CLOSE_SELECTORS = (
    '[class*="closeIcon"]',
    '[class*="dialogClose"]',
    '[class*="featureTip"] [class*="close"]',
    ".next-dialog-close",
    ".baxia-dialog-close",
    '[aria-label="关闭"]',
)

# =============================================================================
# Add-to-cart feedback
# =============================================================================

ADD_CART_SUCCESS_PATTERN = re.compile(
    r"成功(加入|添加|放入).{0,6}购物车|已(加入|添加|放入).{0,6}购物车"
    r"|加入购物车成功|已放入购物车"
)
OUT_OF_STOCK_PATTERN = re.compile(r"库存不足|已售罄|无货|补货|暂时缺货")
INCOMPLETE_SELECTION_PATTERN = re.compile(
    r"(请选择|请先选择|请选择您要的).*(规格|属性|颜色|尺码|尺寸|型号|版本|套餐|款式)"
)
THROTTLED_PATTERN = re.compile(r"操作太频繁|系统繁忙|休息一下|太火爆|请稍后再试")
UNAVAILABLE_PATTERN = re.compile(r"下架|不存在|失效|已删除|已结束")

# Class fragments that mark an option as disabled
DISABLED_CLASS_PATTERN = re.compile(r"disabled|invalid|soldout", re.IGNORECASE)

# =============================================================================
# Default Values
# =============================================================================

# Timeouts (in milliseconds)
NAVIGATION_TIMEOUT = 30000
CONFIRMATION_TIMEOUT = 8000
SELECTION_APPLY_TIMEOUT = 2200

# Polling (in seconds)
CONFIRMATION_POLL_INTERVAL = 0.2
PRICE_POLL_INTERVAL = 0.08
PRICE_STABLE_ROUNDS = 2
PRICE_MAX_POLLS = 15

# Retry settings
DEFAULT_MAX_ATTEMPTS = 2
SELECTION_CLICK_ATTEMPTS = 4

# Property labels longer than this are treated as noise
MAX_PROPERTY_LABEL_LENGTH = 40
