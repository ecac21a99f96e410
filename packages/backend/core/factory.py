"""Service factory for dependency injection.

Builds the storage adapter, runtime clients, registry and the services on
top of them from one Settings value. Components are created on first use
and shared for the factory's lifetime.
"""

import logging
from functools import cached_property

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from .config import Settings

logger = logging.getLogger(__name__)


class ServiceFactory:
    """Creates and caches the service graph.

    Usage:
        from core.config import settings
        from core.factory import ServiceFactory

        factory = ServiceFactory(settings)
        await factory.startup()

        detection = await factory.detector.detect_all()
        snapshot = await factory.aggregator.snapshot()

        await factory.shutdown()

    Tests pass prebuilt components (an in-memory adapter, clients with a
    mock transport) to replace the defaults.
    """

    def __init__(
        self,
        settings: Settings,
        adapter=None,
        engine: AsyncEngine | None = None,
        ollama=None,
        lmstudio=None,
        hub_transport=None,
        platform: str | None = None,
        home=None,
    ):
        """Initialize the factory.

        Args:
            settings: Application settings
            adapter: Storage adapter; defaults to STORAGE_BACKEND
            engine: Database engine; defaults to DATABASE_URL
            ollama: Ollama client; defaults to OLLAMA_URL
            lmstudio: LM Studio client; defaults to LMSTUDIO_URL
            hub_transport: httpx transport for Hugging Face downloads
            platform: sys.platform override for runtime path candidates
            home: Home directory override for runtime path candidates
        """
        self._settings = settings
        self._adapter = adapter
        self._engine = engine
        self._ollama = ollama
        self._lmstudio = lmstudio
        self._hub_transport = hub_transport
        self._platform = platform
        self._home = home

    @property
    def settings(self) -> Settings:
        return self._settings

    def create_storage_adapter(self):
        """Create the storage adapter for the configured backend."""
        from storage.factory import get_adapter

        logger.info("Creating %s storage adapter", self._settings.STORAGE_BACKEND)
        return get_adapter(self._settings.STORAGE_BACKEND)

    @cached_property
    def adapter(self):
        return self._adapter or self.create_storage_adapter()

    @cached_property
    def engine(self) -> AsyncEngine:
        if self._engine is not None:
            return self._engine
        from persistence.database import create_engine

        logger.info("Opening registry database %s", self._settings.DATABASE_URL)
        return create_engine(self._settings.DATABASE_URL)

    @cached_property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        from persistence.database import create_session_factory

        return create_session_factory(self.engine)

    @cached_property
    def ollama(self):
        if self._ollama is not None:
            return self._ollama
        from adapters.runtimes import OllamaClient

        return OllamaClient(
            base_url=self._settings.OLLAMA_URL,
            timeout=self._settings.PROBE_TIMEOUT,
            create_timeout=self._settings.CREATE_TIMEOUT,
        )

    @cached_property
    def lmstudio(self):
        if self._lmstudio is not None:
            return self._lmstudio
        from adapters.runtimes import LMStudioClient

        return LMStudioClient(
            base_url=self._settings.LMSTUDIO_URL,
            api_key=self._settings.LMSTUDIO_API_KEY,
            timeout=self._settings.PROBE_TIMEOUT,
        )

    @cached_property
    def resolver(self):
        from services.path_resolver import PathResolver

        return PathResolver(self._settings, self.adapter, platform=self._platform, home=self._home)

    @cached_property
    def detector(self):
        from services.detector import ModelDetector

        return ModelDetector(self._settings, self.adapter, self.resolver)

    @cached_property
    def registry(self):
        from services.registry import CentralRegistry

        return CentralRegistry(self._settings, self.adapter, self.session_factory)

    @cached_property
    def importer(self):
        from services.importer import ModelImporter

        return ModelImporter(
            self._settings,
            self.adapter,
            self.registry,
            self.resolver,
            self.detector,
            self.ollama,
        )

    @cached_property
    def downloader(self):
        from services.downloader import ModelDownloader

        return ModelDownloader(self._settings, self.adapter, self.registry, transport=self._hub_transport)

    @cached_property
    def configurator(self):
        from services.configurator import StorageConfigurator

        return StorageConfigurator(self._settings, self.adapter, self.registry, self.resolver)

    @cached_property
    def aggregator(self):
        from services.aggregator import UnifiedAggregator

        return UnifiedAggregator(
            self._settings,
            self.registry,
            self.detector,
            [self.ollama, self.lmstudio],
        )

    async def startup(self) -> None:
        """Create the central store and the registry tables."""
        from persistence.database import init_db

        await self.registry.ensure_store()
        await init_db(self.engine)

    async def shutdown(self) -> None:
        """Close runtime clients and the database engine."""
        await self.ollama.close()
        await self.lmstudio.close()
        if "downloader" in self.__dict__:
            await self.downloader.close()
        await self.engine.dispose()


_factory: ServiceFactory | None = None


def get_factory() -> ServiceFactory:
    """Get the service factory for the global settings."""
    global _factory
    if _factory is None:
        from .config import settings

        _factory = ServiceFactory(settings)
    return _factory


def reset_factory() -> None:
    """Forget the global factory. Used in tests."""
    global _factory
    _factory = None
