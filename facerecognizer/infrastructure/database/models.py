"""SQLAlchemy models for the identity registry."""
from datetime import datetime, timezone
from typing import Optional

import numpy as np
from sqlalchemy import DateTime, ForeignKey, Index, Integer, LargeBinary, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from facerecognizer.core.exceptions import DimensionMismatchError
from facerecognizer.domain.entities.face import ENCODING_DIMENSIONS

# Encodings are stored as 128 little-endian float32 values.
VECTOR_DTYPE = np.dtype("<f4")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Float32Vector(TypeDecorator):
    """A fixed-length float vector stored as a raw float32 blob."""

    impl = LargeBinary
    cache_ok = True

    def process_bind_param(self, value: Optional[np.ndarray], dialect) -> Optional[bytes]:
        if value is None:
            return None
        array = np.asarray(value, dtype=VECTOR_DTYPE)
        if array.shape != (ENCODING_DIMENSIONS,):
            raise DimensionMismatchError(
                f"Face encoding must have exactly {ENCODING_DIMENSIONS} components, got shape {array.shape}"
            )
        return array.tobytes()

    def process_result_value(self, value: Optional[bytes], dialect) -> Optional[np.ndarray]:
        if value is None:
            return None
        return np.frombuffer(value, dtype=VECTOR_DTYPE)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class ProcessedFile(Base):
    """A file whose decoded content has been processed."""

    __tablename__ = "ProcessedFiles"

    id: Mapped[int] = mapped_column("Id", Integer, primary_key=True, autoincrement=True)
    hash: Mapped[bytes] = mapped_column(
        "Hash",
        LargeBinary,
        unique=True,
        nullable=False,
        comment="Digest of the decoded pixel content"
    )
    path: Mapped[str] = mapped_column("Path", String, nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        "ProcessedAt",
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False
    )

    faces: Mapped[list["Face"]] = relationship(back_populates="file")


class FaceLocation(Base):
    """Pixel rectangle of a detected face."""

    __tablename__ = "FaceLocations"

    id: Mapped[int] = mapped_column("Id", Integer, primary_key=True, autoincrement=True)
    top: Mapped[int] = mapped_column("Top", Integer, nullable=False)
    left: Mapped[int] = mapped_column("Left", Integer, nullable=False)
    bottom: Mapped[int] = mapped_column("Bottom", Integer, nullable=False)
    right: Mapped[int] = mapped_column("Right", Integer, nullable=False)


class FaceEncoding(Base):
    """A 128-component face encoding."""

    __tablename__ = "FaceEncodings"

    id: Mapped[int] = mapped_column("Id", Integer, primary_key=True, autoincrement=True)
    vector: Mapped[np.ndarray] = mapped_column("Vector", Float32Vector, nullable=False)


class Face(Base):
    """Links a detected face to its file, location and encoding."""

    __tablename__ = "Faces"
    __table_args__ = (
        Index("idx_faces_file", "FileId"),
        Index("idx_faces_encoding", "EncodingId"),
    )

    id: Mapped[int] = mapped_column("Id", Integer, primary_key=True, autoincrement=True)
    file_id: Mapped[int] = mapped_column("FileId", ForeignKey("ProcessedFiles.Id"), nullable=False)
    location_id: Mapped[int] = mapped_column("LocationId", ForeignKey("FaceLocations.Id"), nullable=False)
    encoding_id: Mapped[int] = mapped_column("EncodingId", ForeignKey("FaceEncodings.Id"), nullable=False)

    file: Mapped[ProcessedFile] = relationship(back_populates="faces")
