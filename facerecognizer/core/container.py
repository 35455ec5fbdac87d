"""Service container for dependency injection."""
from typing import Optional

from facerecognizer.core.config import Settings, settings as default_settings
from facerecognizer.core.logging import get_logger
from facerecognizer.domain.interfaces.recognition.models import ModelFactory
from facerecognizer.domain.interfaces.storage.registry import IdentityRegistry
from facerecognizer.domain.interfaces.telemetry import TelemetrySink
from facerecognizer.infrastructure.registry import create_registry
from facerecognizer.services.dedup import DedupGate
from facerecognizer.services.model_provider import ModelProvider, create_model_provider
from facerecognizer.services.names import NameDirectory
from facerecognizer.services.pipeline import FaceRecognitionPipeline
from facerecognizer.services.telemetry import create_telemetry_sink

logger = get_logger(__name__)


def load_default_model_factory(settings: Settings) -> ModelFactory:
    """Get the dlib model factory; imported lazily so dlib stays optional until models are needed."""
    from facerecognizer.infrastructure.models.dlib_models import DlibModelFactory
    return DlibModelFactory(settings)


class ServiceContainer:
    """Container for application services.

    This container manages the lifecycle and dependencies of all services in the application.
    It ensures proper initialization order and provides a single source of truth for service instances.

    Example:
        ```python
        container = ServiceContainer(settings)
        await container.initialize()
        report = await container.pipeline.process_path(Path("photos"))
        await container.cleanup()
        ```
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        model_factory: Optional[ModelFactory] = None,
        telemetry: Optional[TelemetrySink] = None,
        names: Optional[NameDirectory] = None,
        annotate: bool = False,
    ) -> None:
        self.settings = settings or default_settings
        self._model_factory = model_factory
        self._annotate = annotate
        self.names = names
        self.telemetry: TelemetrySink = telemetry or create_telemetry_sink(self.settings.TELEMETRY_SINK)

        self.registry: Optional[IdentityRegistry] = None
        self.dedup_gate: Optional[DedupGate] = None
        self.model_provider: Optional[ModelProvider] = None
        self.pipeline: Optional[FaceRecognitionPipeline] = None

    async def initialize_registry(self) -> IdentityRegistry:
        """Open the registry only; enough for lookups that need no models."""
        if self.registry is None:
            registry = create_registry(self.settings)
            await registry.initialize()
            self.registry = registry
            logger.info("Registry ready", backend=self.settings.REGISTRY_BACKEND)
        return self.registry

    async def initialize(self) -> None:
        """Initialize all services in the correct order.

        Raises:
            StorageError: If the registry cannot be opened
            ModelUnavailableError: If the face models cannot be loaded
        """
        registry = await self.initialize_registry()
        self.dedup_gate = DedupGate(registry)

        factory = self._model_factory or load_default_model_factory(self.settings)
        provider = create_model_provider(factory, self.settings)
        await provider.start()
        self.model_provider = provider

        self.pipeline = FaceRecognitionPipeline(
            registry=registry,
            gate=self.dedup_gate,
            models=provider,
            telemetry=self.telemetry,
            settings=self.settings,
            names=self.names,
            annotate=self._annotate,
        )

    async def cleanup(self) -> None:
        """Cleanup all services in reverse order of initialization."""
        if self.pipeline:
            await self.pipeline.close()
            self.pipeline = None

        if self.model_provider:
            await self.model_provider.close()
            self.model_provider = None

        self.dedup_gate = None

        if self.registry:
            await self.registry.close()
            self.registry = None
