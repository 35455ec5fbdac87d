"""Shared fixtures."""
import pytest

from facerecognizer.core.config import Settings
from facerecognizer.infrastructure.registry import InMemoryIdentityRegistry
from facerecognizer.services.dedup import DedupGate
from facerecognizer.services.model_provider import ExclusiveModelProvider
from facerecognizer.services.pipeline import FaceRecognitionPipeline
from facerecognizer.services.telemetry import InMemoryTelemetrySink

from fakes import FakeModelFactory


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment's data directory."""
    return Settings(
        DATA_DIR=tmp_path / "data",
        REGISTRY_BACKEND="memory",
        MAX_CONCURRENCY=2,
        FILE_TIMEOUT_SECONDS=10,
        STORAGE_RETRY_BACKOFF=0,
        TELEMETRY_SINK="memory",
    )


@pytest.fixture
def registry():
    return InMemoryIdentityRegistry()


@pytest.fixture
def model_factory():
    return FakeModelFactory()


@pytest.fixture
def telemetry():
    return InMemoryTelemetrySink()


@pytest.fixture
async def pipeline(registry, model_factory, telemetry, settings):
    """Pipeline over an in-memory registry and fake models."""
    service = FaceRecognitionPipeline(
        registry=registry,
        gate=DedupGate(registry),
        models=ExclusiveModelProvider(model_factory),
        telemetry=telemetry,
        settings=settings,
    )
    yield service
    await service.close()
