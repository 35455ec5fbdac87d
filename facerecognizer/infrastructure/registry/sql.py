"""Identity registry backed by a relational database (SQLite by default)."""
import asyncio
from contextlib import asynccontextmanager, nullcontext
from datetime import timezone
from typing import AsyncGenerator, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from facerecognizer.core.exceptions import EncodingNotFoundError, StorageError
from facerecognizer.core.logging import get_logger
from facerecognizer.domain.entities.face import FaceEncoding, Rectangle, SourceFile
from facerecognizer.domain.interfaces.storage.registry import IdentityRegistry
from facerecognizer.domain.value_objects.recognition import MatchResult, RegistryStats, SimilarFace
from facerecognizer.infrastructure.database.models import ProcessedFile
from facerecognizer.infrastructure.database.session import (
    create_engine,
    create_schema,
    create_session_factory,
    get_db_session,
)
from facerecognizer.infrastructure.database.unit_of_work import UnitOfWork
from facerecognizer.services.matching import (
    DEFAULT_MATCH_THRESHOLD,
    build_match_result,
    find_nearest,
    rank_similar,
)

logger = get_logger(__name__)


def _to_source_file(row: ProcessedFile) -> SourceFile:
    processed_at = row.processed_at
    if processed_at.tzinfo is None:
        # SQLite drops the offset, values are written in UTC
        processed_at = processed_at.replace(tzinfo=timezone.utc)
    return SourceFile(
        id=row.id,
        content_hash=row.hash,
        path=row.path,
        processed_at=processed_at,
    )


class SqlIdentityRegistry(IdentityRegistry):
    """SQLAlchemy implementation of the identity registry.

    The connection pool is shared by every file task. Reads run concurrently;
    writes go through one lock so SQLite never sees two writers at once.

    Example:
        ```python
        registry = SqlIdentityRegistry("sqlite+aiosqlite:///faces.sqlite")
        await registry.initialize()
        result = await registry.match_or_register(encoding)
        ```
    """

    def __init__(
        self,
        database_url: str,
        threshold: float = DEFAULT_MATCH_THRESHOLD,
        serialize_matcher: bool = False,
        echo: bool = False,
    ) -> None:
        """
        Initialize the registry.

        Args:
            database_url: SQLAlchemy async database URL
            threshold: Match threshold for euclidean distance
            serialize_matcher: Hold a lock across the match read and the encoding insert
            echo: Whether to log emitted SQL
        """
        self._database_url = database_url
        self._threshold = threshold
        self._serialize_matcher = serialize_matcher
        self._echo = echo
        self._engine = None
        self._session_factory = None
        self._write_lock = asyncio.Lock()
        self._match_lock = asyncio.Lock()

    async def initialize(self) -> None:
        try:
            self._engine = create_engine(self._database_url, echo=self._echo)
            self._session_factory = create_session_factory(self._engine)
            await create_schema(self._engine)
        except (SQLAlchemyError, OSError) as e:
            logger.error("Registry initialization failed", error=str(e), exc_info=True)
            raise StorageError(f"Failed to initialize registry: {e}") from e

        logger.info("Identity registry ready", backend="sql")

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @asynccontextmanager
    async def _unit_of_work(self) -> AsyncGenerator[UnitOfWork, None]:
        if self._session_factory is None:
            raise StorageError("Registry is not initialized")
        try:
            async with get_db_session(self._session_factory) as session:
                async with UnitOfWork(session) as uow:
                    yield uow
        except SQLAlchemyError as e:
            raise StorageError(f"Registry query failed: {e}") from e

    async def find_file(self, content_hash: bytes) -> Optional[SourceFile]:
        async with self._unit_of_work() as uow:
            row = await uow.files.get_latest_by_hash(content_hash)
            return _to_source_file(row) if row is not None else None

    async def add_file(self, content_hash: bytes, path: str) -> int:
        async with self._write_lock:
            async with self._unit_of_work() as uow:
                row = await uow.files.create(content_hash, path)
                file_id = row.id

        logger.info("Inserted a new hash for file", path=path, file_id=file_id)
        return file_id

    async def add_location(self, rectangle: Rectangle) -> int:
        async with self._write_lock:
            async with self._unit_of_work() as uow:
                row = await uow.locations.create(rectangle)
                location_id = row.id

        logger.debug("Inserted a new face location", location_id=location_id)
        return location_id

    async def add_encoding(self, encoding: FaceEncoding) -> int:
        async with self._write_lock:
            async with self._unit_of_work() as uow:
                row = await uow.encodings.create(encoding.vector)
                encoding_id = row.id

        logger.debug("Inserted a new face encoding", encoding_id=encoding_id)
        return encoding_id

    async def add_face(self, file_id: int, location_id: int, encoding_id: int) -> int:
        async with self._write_lock:
            async with self._unit_of_work() as uow:
                row = await uow.faces.create(file_id, location_id, encoding_id)
                face_id = row.id

        logger.debug(
            "Inserted a new face",
            face_id=face_id,
            file_id=file_id,
            location_id=location_id,
            encoding_id=encoding_id
        )
        return face_id

    async def match_or_register(self, encoding: FaceEncoding) -> MatchResult:
        guard = self._match_lock if self._serialize_matcher else nullcontext()
        async with guard:
            async with self._unit_of_work() as uow:
                ids, matrix = await uow.encodings.load_matrix()
            nearest = find_nearest(encoding.vector, ids, matrix)
            encoding_id = await self.add_encoding(encoding)

        return build_match_result(encoding_id, nearest, self._threshold)

    async def locate_similar(self, encoding_id: int, limit: int = 30) -> List[SimilarFace]:
        async with self._unit_of_work() as uow:
            target = await uow.encodings.get(encoding_id)
            if target is None:
                raise EncodingNotFoundError(
                    f"Face encoding not found: {encoding_id}",
                    details={"encoding_id": encoding_id}
                )
            query = target.vector
            ids, matrix = await uow.encodings.load_matrix()

        return rank_similar(encoding_id, query, ids, matrix, self._threshold, limit)

    async def get_encoding(self, encoding_id: int) -> FaceEncoding:
        async with self._unit_of_work() as uow:
            row = await uow.encodings.get(encoding_id)
            if row is None:
                raise EncodingNotFoundError(
                    f"Face encoding not found: {encoding_id}",
                    details={"encoding_id": encoding_id}
                )
            return FaceEncoding(vector=row.vector)

    async def stats(self) -> RegistryStats:
        async with self._unit_of_work() as uow:
            return RegistryStats(
                files=await uow.files.count(),
                locations=await uow.locations.count(),
                encodings=await uow.encodings.count(),
                faces=await uow.faces.count(),
            )
