"""
Application wiring

Builds the shared HTTP client, store, registry, notifier and engine
components from one Config, and runs every background loop until shutdown.
"""
import asyncio
import logging
import signal
from typing import Optional

import httpx

from .common.config import Config
from .common.notifications import ChatClient, ConsoleChat, WebhookChat, Notifier
from .common.store import Store, MemoryStore
from .monitor.adhoc import AdhocScraper
from .monitor.locks import PairLocks
from .monitor.manager import AvailabilityManager
from .monitor.sync import CatalogSync
from .providers.base import create_http_client
from .providers.registry import ProviderRegistry, build_registry

logger = logging.getLogger(__name__)


def build_chat(config: Config, client: Optional[httpx.AsyncClient] = None) -> ChatClient:
    webhook = config.notifications.webhook
    if webhook.enabled and webhook.url:
        logger.info("Webhook notifications enabled")
        return WebhookChat(webhook.url, client=client)
    if webhook.enabled:
        logger.warning("Webhook notifications enabled but missing URL")
    return ConsoleChat()


class AppContext:
    """Everything a running monitor needs, built once"""

    def __init__(
        self,
        config: Config,
        store: Optional[Store] = None,
        registry: Optional[ProviderRegistry] = None,
        chat: Optional[ChatClient] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.config = config
        self.client = client or create_http_client(config.http)
        self.store = store or MemoryStore(config.storage.state_file)
        self.registry = registry or build_registry(config, self.client)
        self.notifier = Notifier(chat or build_chat(config, self.client), config.notifications)
        self.locks = PairLocks()
        self.manager = AvailabilityManager(config, self.store, self.registry, self.notifier, self.locks)
        self.catalog = CatalogSync(config, self.store, self.registry, self.notifier)
        self.adhoc = AdhocScraper(self.manager, self.store, self.locks, config.adhoc)
        self.shutdown = asyncio.Event()

    async def __aenter__(self):
        if isinstance(self.store, MemoryStore):
            self.store.open()
        await self.notifier.start()
        return self

    async def __aexit__(self, *args):
        await self.adhoc.wait_idle()
        await self.notifier.stop()
        await self.store.close()
        await self.client.aclose()

    def install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.shutdown.set)
            except NotImplementedError:
                logger.debug(f"Signal handler for {sig.name} not supported here")

    async def run(self):
        """Run every loop until the shutdown event is set"""
        loops = [self.manager.polling_task().run(self.shutdown)]
        if self.config.digest.enabled:
            loops.append(self.manager.digest_task().run(self.shutdown))
        if self.config.catalog_sync.enabled:
            for name in self.registry.names():
                loops.append(self.catalog.run_provider(name, self.shutdown))

        logger.info(f"Schniffer running with providers: {', '.join(self.registry.names())}")
        await asyncio.gather(*loops)
        logger.info("All loops stopped")
