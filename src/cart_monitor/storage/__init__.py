"""Persistence layer for monitored products."""

from cart_monitor.storage.base import ProductRepository
from cart_monitor.storage.database import close_db, get_session, init_db
from cart_monitor.storage.repository import SqlAlchemyProductRepository


__all__ = [
    "ProductRepository",
    "SqlAlchemyProductRepository",
    "close_db",
    "get_session",
    "init_db",
]
