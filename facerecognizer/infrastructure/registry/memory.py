"""Identity registry kept in process memory."""
import asyncio
import itertools
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Dict, List, Optional

from facerecognizer.core.exceptions import DuplicateRegistrationError, EncodingNotFoundError
from facerecognizer.core.logging import get_logger
from facerecognizer.domain.entities.face import (
    FaceEncoding,
    FaceRecord,
    Rectangle,
    SourceFile,
)
from facerecognizer.domain.interfaces.storage.registry import IdentityRegistry
from facerecognizer.domain.value_objects.recognition import MatchResult, RegistryStats, SimilarFace
from facerecognizer.services.matching import (
    DEFAULT_MATCH_THRESHOLD,
    build_match_result,
    find_nearest,
    rank_similar,
    stack_vectors,
)

logger = get_logger(__name__)


class InMemoryIdentityRegistry(IdentityRegistry):
    """Registry holding every row in dictionaries.

    Nothing survives the process; useful for dry runs and tests.
    """

    def __init__(
        self,
        threshold: float = DEFAULT_MATCH_THRESHOLD,
        serialize_matcher: bool = False,
    ) -> None:
        self._threshold = threshold
        self._serialize_matcher = serialize_matcher
        self._lock = asyncio.Lock()
        self._match_lock = asyncio.Lock()
        self._files: Dict[int, SourceFile] = {}
        self._files_by_hash: Dict[bytes, int] = {}
        self._locations: Dict[int, Rectangle] = {}
        self._encodings: Dict[int, FaceEncoding] = {}
        self._faces: Dict[int, FaceRecord] = {}
        self._reset_sequences()

    async def initialize(self) -> None:
        logger.info("Identity registry ready", backend="memory")

    async def close(self) -> None:
        pass

    async def _persist(self, table: str, row_id: int, row: object) -> None:
        """Hook for subclasses that store the state.

        Called with the lock held, before the row is visible to readers. An
        exception leaves the tables unchanged.
        """
        pass

    def _reset_sequences(self) -> None:
        """Continue numbering after the highest identifier of each table."""
        self._sequences = {
            name: itertools.count(max(table, default=0) + 1)
            for name, table in self._tables().items()
        }

    def _tables(self) -> Dict[str, Dict[int, object]]:
        return {
            "files": self._files,
            "locations": self._locations,
            "encodings": self._encodings,
            "faces": self._faces,
        }

    def _next_id(self, table: str) -> int:
        return next(self._sequences[table])

    async def find_file(self, content_hash: bytes) -> Optional[SourceFile]:
        file_id = self._files_by_hash.get(content_hash)
        return self._files[file_id] if file_id is not None else None

    async def _insert(self, table: str, row_id: int, row: object) -> None:
        await self._persist(table, row_id, row)
        self._tables()[table][row_id] = row

    async def add_file(self, content_hash: bytes, path: str) -> int:
        async with self._lock:
            if content_hash in self._files_by_hash:
                raise DuplicateRegistrationError(
                    f"Content already registered: {path}",
                    details={"path": path, "hash": content_hash.hex()}
                )
            file_id = self._next_id("files")
            await self._insert("files", file_id, SourceFile(
                id=file_id,
                content_hash=content_hash,
                path=path,
                processed_at=datetime.now(timezone.utc),
            ))
            self._files_by_hash[content_hash] = file_id

        logger.info("Inserted a new hash for file", path=path, file_id=file_id)
        return file_id

    async def add_location(self, rectangle: Rectangle) -> int:
        async with self._lock:
            location_id = self._next_id("locations")
            await self._insert("locations", location_id, rectangle)
        return location_id

    async def add_encoding(self, encoding: FaceEncoding) -> int:
        async with self._lock:
            encoding_id = self._next_id("encodings")
            await self._insert("encodings", encoding_id, encoding)
        return encoding_id

    async def add_face(self, file_id: int, location_id: int, encoding_id: int) -> int:
        async with self._lock:
            face_id = self._next_id("faces")
            await self._insert("faces", face_id, FaceRecord(
                id=face_id,
                file_id=file_id,
                location_id=location_id,
                encoding_id=encoding_id,
            ))
        return face_id

    def _snapshot_matrix(self):
        ids = list(self._encodings)
        return ids, stack_vectors([self._encodings[i].vector for i in ids])

    async def match_or_register(self, encoding: FaceEncoding) -> MatchResult:
        guard = self._match_lock if self._serialize_matcher else nullcontext()
        async with guard:
            ids, matrix = self._snapshot_matrix()
            nearest = find_nearest(encoding.vector, ids, matrix)
            encoding_id = await self.add_encoding(encoding)

        return build_match_result(encoding_id, nearest, self._threshold)

    async def locate_similar(self, encoding_id: int, limit: int = 30) -> List[SimilarFace]:
        query = (await self.get_encoding(encoding_id)).vector
        ids, matrix = self._snapshot_matrix()
        return rank_similar(encoding_id, query, ids, matrix, self._threshold, limit)

    async def get_encoding(self, encoding_id: int) -> FaceEncoding:
        try:
            return self._encodings[encoding_id]
        except KeyError:
            raise EncodingNotFoundError(
                f"Face encoding not found: {encoding_id}",
                details={"encoding_id": encoding_id}
            ) from None

    async def stats(self) -> RegistryStats:
        return RegistryStats(
            files=len(self._files),
            locations=len(self._locations),
            encodings=len(self._encodings),
            faces=len(self._faces),
        )
