"""Order monitoring for the merchant delivery portal."""

from typing import Any

__all__ = ["MonitoringSession", "scrape_orders"]


def __getattr__(name: str) -> Any:
    if name == "MonitoringSession":
        from order_watch.monitoring import MonitoringSession as _MonitoringSession

        return _MonitoringSession
    if name == "scrape_orders":
        from order_watch.scraper import scrape_orders as _scrape_orders

        return _scrape_orders
    raise AttributeError(name)
