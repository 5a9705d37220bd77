"""Registry of reservation back ends. Add new adapters to PROVIDER_CLASSES."""
import logging
from typing import Dict, List, Type
import httpx

from .base import Provider
from .recreation_gov import RecreationGov
from .reserve_california import ReserveCalifornia
from ..common.config import Config
from ..common.errors import UnknownProviderError

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: Dict[str, Type[Provider]] = {
    RecreationGov.name: RecreationGov,
    ReserveCalifornia.name: ReserveCalifornia,
}


class ProviderRegistry:
    """Name -> adapter. Built once at startup, read-only afterwards."""

    def __init__(self):
        self._providers: Dict[str, Provider] = {}

    def register(self, name: str, provider: Provider):
        self._providers[name] = provider
        logger.info(f"Registered provider: {name}")

    def get(self, name: str) -> Provider:
        if name not in self._providers:
            raise UnknownProviderError(f"Unknown provider: {name}. Available: {self.names()}")
        return self._providers[name]

    def names(self) -> List[str]:
        return list(self._providers)

    def __contains__(self, name: str) -> bool:
        return name in self._providers

    def __iter__(self):
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)


def build_registry(config: Config, client: httpx.AsyncClient) -> ProviderRegistry:
    """Instantiate every enabled provider over the shared HTTP client"""
    registry = ProviderRegistry()
    for name in config.enabled_providers:
        provider_cls = PROVIDER_CLASSES.get(name)
        if provider_cls is None:
            raise UnknownProviderError(f"Unknown provider: {name}")
        registry.register(
            name,
            provider_cls(client, requests_per_second=config.provider(name).requests_per_second)
        )
    return registry
