"""
Cart Monitor - Cart-based price monitoring over an attached Chrome session.

Usage:
    from cart_monitor import CartMonitor

    async with CartMonitor() as monitor:
        result = await monitor.add_all_skus_to_cart(account_id, product_id, cookies)
        report = await monitor.update_prices_from_cart(account_id, cookies)
"""

__version__ = "0.1.0"

from cart_monitor.core.browser import BrowserManager
from cart_monitor.core.cart_adder import AddAllOptions
from cart_monitor.core.monitor import CartMonitor
from cart_monitor.core.session import SessionManager


__all__ = [
    "AddAllOptions",
    "BrowserManager",
    "CartMonitor",
    "SessionManager",
    "__version__",
]
