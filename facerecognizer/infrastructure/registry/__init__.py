"""Identity registry backends."""
from facerecognizer.core.config import Settings
from facerecognizer.domain.interfaces.storage.registry import IdentityRegistry

from .file import FileIdentityRegistry
from .memory import InMemoryIdentityRegistry
from .sql import SqlIdentityRegistry


def create_registry(settings: Settings) -> IdentityRegistry:
    """Build the registry backend named by ``REGISTRY_BACKEND``."""
    backends = {
        "sqlite": lambda: SqlIdentityRegistry(
            settings.database_url,
            threshold=settings.MATCH_THRESHOLD,
            serialize_matcher=settings.SERIALIZE_MATCHER,
        ),
        "memory": lambda: InMemoryIdentityRegistry(
            threshold=settings.MATCH_THRESHOLD,
            serialize_matcher=settings.SERIALIZE_MATCHER,
        ),
        "file": lambda: FileIdentityRegistry(
            settings.registry_file,
            threshold=settings.MATCH_THRESHOLD,
            serialize_matcher=settings.SERIALIZE_MATCHER,
        ),
    }
    return backends[settings.REGISTRY_BACKEND]()


__all__ = [
    "FileIdentityRegistry",
    "InMemoryIdentityRegistry",
    "SqlIdentityRegistry",
    "create_registry",
]
