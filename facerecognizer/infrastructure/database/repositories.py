"""Database repositories for the identity registry."""
from typing import List, Optional, Tuple

import numpy as np
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from facerecognizer.core.exceptions import DuplicateRegistrationError
from facerecognizer.domain.entities.face import Rectangle
from facerecognizer.infrastructure.database.models import (
    Face,
    FaceEncoding,
    FaceLocation,
    ProcessedFile,
)
from facerecognizer.services.matching import stack_vectors


class ProcessedFileRepository:
    """Repository for processed file operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository.

        Args:
            session: Database session
        """
        self._session = session

    async def get_latest_by_hash(self, content_hash: bytes) -> Optional[ProcessedFile]:
        """Get the most recent file row with the given content hash.

        Args:
            content_hash: Digest of the decoded image content

        Returns:
            Optional[ProcessedFile]: Found file, or None
        """
        stmt = (
            select(ProcessedFile)
            .where(ProcessedFile.hash == content_hash)
            .order_by(ProcessedFile.processed_at.desc(), ProcessedFile.id.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, content_hash: bytes, path: str) -> ProcessedFile:
        """Create a new processed file row.

        Args:
            content_hash: Digest of the decoded image content
            path: Path the content was read from

        Returns:
            ProcessedFile: Created row

        Raises:
            DuplicateRegistrationError: If the hash is already registered
        """
        processed_file = ProcessedFile(hash=content_hash, path=path)
        self._session.add(processed_file)
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise DuplicateRegistrationError(
                f"Content already registered: {path}",
                details={"path": path, "hash": content_hash.hex()}
            ) from e
        return processed_file

    async def count(self) -> int:
        result = await self._session.execute(select(func.count()).select_from(ProcessedFile))
        return result.scalar_one()


class FaceLocationRepository:
    """Repository for face location operations."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, rectangle: Rectangle) -> FaceLocation:
        """Create a face location row from a detector rectangle."""
        location = FaceLocation(
            top=rectangle.top,
            left=rectangle.left,
            bottom=rectangle.bottom,
            right=rectangle.right
        )
        self._session.add(location)
        await self._session.flush()
        return location

    async def count(self) -> int:
        result = await self._session.execute(select(func.count()).select_from(FaceLocation))
        return result.scalar_one()


class FaceEncodingRepository:
    """Repository for face encoding operations."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, vector: np.ndarray) -> FaceEncoding:
        """Create a face encoding row.

        Args:
            vector: 128-component encoding vector

        Returns:
            FaceEncoding: Created row
        """
        encoding = FaceEncoding(vector=vector)
        self._session.add(encoding)
        await self._session.flush()
        return encoding

    async def get(self, encoding_id: int) -> Optional[FaceEncoding]:
        return await self._session.get(FaceEncoding, encoding_id)

    async def load_matrix(self) -> Tuple[List[int], np.ndarray]:
        """Load every stored encoding.

        Returns:
            Tuple of (encoding ids, ``(n, 128)`` float32 matrix in the same order)
        """
        stmt = select(FaceEncoding.id, FaceEncoding.vector).order_by(FaceEncoding.id)
        result = await self._session.execute(stmt)
        ids: List[int] = []
        vectors: List[np.ndarray] = []
        for encoding_id, vector in result.all():
            ids.append(encoding_id)
            vectors.append(vector)
        return ids, stack_vectors(vectors)

    async def count(self) -> int:
        result = await self._session.execute(select(func.count()).select_from(FaceEncoding))
        return result.scalar_one()


class FaceRepository:
    """Repository for face link operations."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, file_id: int, location_id: int, encoding_id: int) -> Face:
        """Create a face row linking a file, a location and an encoding."""
        face = Face(
            file_id=file_id,
            location_id=location_id,
            encoding_id=encoding_id
        )
        self._session.add(face)
        await self._session.flush()
        return face

    async def count(self) -> int:
        result = await self._session.execute(select(func.count()).select_from(Face))
        return result.scalar_one()
