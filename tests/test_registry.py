"""
Tests for the provider registry (schniffer/providers/registry.py)
"""
import pytest

import httpx

from schniffer.common.config import Config, ProviderConfig
from schniffer.common.errors import UnknownProviderError
from schniffer.providers.recreation_gov import RecreationGov
from schniffer.providers.registry import ProviderRegistry, build_registry


class TestProviderRegistry:
    def test_register_and_get(self):
        registry = ProviderRegistry()
        provider = RecreationGov(httpx.AsyncClient())
        registry.register("recreation_gov", provider)
        assert registry.get("recreation_gov") is provider
        assert "recreation_gov" in registry
        assert len(registry) == 1
        assert list(registry) == [provider]

    def test_unknown_provider(self):
        with pytest.raises(UnknownProviderError):
            ProviderRegistry().get("campflare")


class TestBuildRegistry:
    def test_enabled_providers_only(self):
        config = Config(providers={
            "recreation_gov": ProviderConfig(requests_per_second=3.0),
            "reservecalifornia": ProviderConfig(enabled=False),
        })
        registry = build_registry(config, httpx.AsyncClient())
        assert registry.names() == ["recreation_gov"]
        assert registry.get("recreation_gov").rate_limiter.rate == 3.0

    def test_adapters_share_client(self):
        client = httpx.AsyncClient()
        registry = build_registry(Config(), client)
        assert registry.names() == ["recreation_gov", "reservecalifornia"]
        assert all(provider.client is client for provider in registry)
