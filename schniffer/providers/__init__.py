"""
Reservation back-end adapters
"""
from .base import Provider, create_http_client
from .recreation_gov import RecreationGov
from .reserve_california import ReserveCalifornia
from .registry import ProviderRegistry, build_registry

__all__ = [
    "Provider",
    "create_http_client",
    "RecreationGov",
    "ReserveCalifornia",
    "ProviderRegistry",
    "build_registry",
]
