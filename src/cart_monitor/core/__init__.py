"""Core module - Browser attachment and cart automation engine."""

from cart_monitor.core.aggregator import ResultAggregator, aggregate_results
from cart_monitor.core.browser import BrowserManager, BrowserSession
from cart_monitor.core.cart_adder import AddAllOptions, CartAdder
from cart_monitor.core.credentials import CredentialInjector, parse_cookie_jar
from cart_monitor.core.human import HumanPacer
from cart_monitor.core.monitor import CartMonitor
from cart_monitor.core.mutator import CartMutator
from cart_monitor.core.session import SessionManager
from cart_monitor.core.snapshot import CartSnapshotReader


__all__ = [
    "AddAllOptions",
    "BrowserManager",
    "BrowserSession",
    "CartAdder",
    "CartMonitor",
    "CartMutator",
    "CartSnapshotReader",
    "CredentialInjector",
    "HumanPacer",
    "ResultAggregator",
    "SessionManager",
    "aggregate_results",
    "parse_cookie_jar",
]
