"""Model adapter lifecycle: exclusive instances per task or a shared pool.

Native model handles are not assumed to be thread safe, so a bundle is only
ever used by one file task at a time. ``exclusive-per-task`` builds a fresh
bundle per task; ``shared-pool`` builds a fixed number up front and lends
them out.
"""
import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Set

from facerecognizer.core.config import Settings
from facerecognizer.core.exceptions import ModelUnavailableError
from facerecognizer.core.logging import get_logger
from facerecognizer.domain.interfaces.recognition.models import FaceModels, ModelFactory

logger = get_logger(__name__)


async def _build(factory: ModelFactory) -> FaceModels:
    try:
        return await asyncio.to_thread(factory)
    except ModelUnavailableError:
        raise
    except Exception as e:
        raise ModelUnavailableError(f"Failed to load face models: {e}") from e


class ModelProvider(ABC):
    """Hands out model bundles to file tasks."""

    @abstractmethod
    async def start(self) -> None:
        """
        Load models eagerly so a broken installation fails before any file is processed.

        Raises:
            ModelUnavailableError: If the models cannot be loaded
        """
        pass

    @abstractmethod
    def checkout(self) -> "AsyncIterator[FaceModels]":
        """Async context manager yielding a bundle for the caller's exclusive use."""
        pass

    async def close(self) -> None:
        pass


class ExclusiveModelProvider(ModelProvider):
    """Builds a new bundle for every checkout."""

    def __init__(self, factory: ModelFactory) -> None:
        self._factory = factory

    async def start(self) -> None:
        await _build(self._factory)
        logger.info("Face models loaded", lifecycle="exclusive-per-task")

    @asynccontextmanager
    async def checkout(self) -> AsyncIterator[FaceModels]:
        yield await _build(self._factory)


class SharedModelPool(ModelProvider):
    """A fixed set of bundles lent out one task at a time.

    A bundle whose task was cancelled while it was in use may still be busy
    on a worker thread; it is dropped and a replacement is built.
    """

    def __init__(self, factory: ModelFactory, size: int) -> None:
        self._factory = factory
        self._size = max(1, size)
        self._pool: "asyncio.Queue[FaceModels]" = asyncio.Queue()
        self._refills: Set[asyncio.Task] = set()

    @property
    def available(self) -> int:
        return self._pool.qsize()

    async def start(self) -> None:
        bundles = await asyncio.gather(*(_build(self._factory) for _ in range(self._size)))
        for models in bundles:
            self._pool.put_nowait(models)
        logger.info("Face models loaded", lifecycle="shared-pool", pool_size=self._size)

    async def _refill(self) -> None:
        try:
            self._pool.put_nowait(await _build(self._factory))
        except ModelUnavailableError as e:
            logger.error("Failed to replace pooled face models", error=str(e))

    @asynccontextmanager
    async def checkout(self) -> AsyncIterator[FaceModels]:
        models = await self._pool.get()
        reusable = True
        try:
            yield models
        except asyncio.CancelledError:
            reusable = False
            raise
        finally:
            if reusable:
                self._pool.put_nowait(models)
            else:
                task = asyncio.get_running_loop().create_task(self._refill())
                self._refills.add(task)
                task.add_done_callback(self._refills.discard)

    async def close(self) -> None:
        for task in list(self._refills):
            task.cancel()
        while not self._pool.empty():
            self._pool.get_nowait()


def create_model_provider(factory: ModelFactory, settings: Settings) -> ModelProvider:
    """Build the provider named by ``MODEL_LIFECYCLE``."""
    if settings.MODEL_LIFECYCLE == "shared-pool":
        return SharedModelPool(factory, settings.model_pool_size)
    return ExclusiveModelProvider(factory)
