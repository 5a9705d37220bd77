"""
Schniffer - Campsite Availability Monitor

Watches campsite reservation back ends for newly opened availability:

1. Providers (schniffer.providers)
   - recreation.gov and ReserveCalifornia adapters over one shared httpx client
   - Each adapter decides how to bucket requested days into fetch windows

2. Monitor (schniffer.monitor)
   - Polling loop that coalesces subscriptions per campground
   - Diff engine, adhoc scrapes, catalog sync and the daily digest
"""
from .common.config import Config, load_config

__version__ = "1.0.0"

__all__ = [
    "Config",
    "load_config",
]
