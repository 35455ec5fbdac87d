"""Identity registry persisted to a single JSON document."""
import asyncio
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

from pydantic import BaseModel, Field, ValidationError

from facerecognizer.core.exceptions import StorageError
from facerecognizer.core.logging import get_logger
from facerecognizer.domain.entities.face import FaceEncoding, FaceRecord, Rectangle, SourceFile
from facerecognizer.infrastructure.registry.memory import InMemoryIdentityRegistry
from facerecognizer.services.matching import DEFAULT_MATCH_THRESHOLD

logger = get_logger(__name__)

SNAPSHOT_VERSION = 1


class _StoredFile(BaseModel):
    id: int
    content_hash: str  # hex digest
    path: str
    processed_at: datetime


class _StoredLocation(BaseModel):
    id: int
    rectangle: Rectangle


class _StoredEncoding(BaseModel):
    id: int
    vector: List[float]


class RegistrySnapshot(BaseModel):
    """On-disk layout of the flat-file registry."""
    version: int = SNAPSHOT_VERSION
    files: List[_StoredFile] = Field(default_factory=list)
    locations: List[_StoredLocation] = Field(default_factory=list)
    encodings: List[_StoredEncoding] = Field(default_factory=list)
    faces: List[FaceRecord] = Field(default_factory=list)


class FileIdentityRegistry(InMemoryIdentityRegistry):
    """In-memory registry that rewrites its JSON file on every insert.

    A row becomes visible only after the document holding it was written. The
    document goes to a temporary file that replaces the registry file, so a
    crash never leaves a half written document behind.
    """

    def __init__(
        self,
        path: Path,
        threshold: float = DEFAULT_MATCH_THRESHOLD,
        serialize_matcher: bool = False,
    ) -> None:
        super().__init__(threshold=threshold, serialize_matcher=serialize_matcher)
        self._path = Path(path)

    async def initialize(self) -> None:
        if self._path.exists():
            try:
                snapshot = RegistrySnapshot.model_validate_json(self._path.read_bytes())
            except (OSError, ValidationError) as e:
                raise StorageError(
                    f"Failed to read registry file: {e}",
                    details={"path": str(self._path)}
                ) from e
            self._restore(snapshot)
        else:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(f"Failed to create registry directory: {e}") from e

        logger.info("Identity registry ready", backend="file", path=str(self._path))

    def _restore(self, snapshot: RegistrySnapshot) -> None:
        self._files = {
            f.id: SourceFile(
                id=f.id,
                content_hash=bytes.fromhex(f.content_hash),
                path=f.path,
                processed_at=f.processed_at,
            )
            for f in snapshot.files
        }
        self._files_by_hash = {f.content_hash: f.id for f in self._files.values()}
        self._locations = {loc.id: loc.rectangle for loc in snapshot.locations}
        self._encodings = {enc.id: FaceEncoding(vector=enc.vector) for enc in snapshot.encodings}
        self._faces = {face.id: face for face in snapshot.faces}
        self._reset_sequences()

    @staticmethod
    def _snapshot(tables: Dict[str, Dict[int, Any]]) -> RegistrySnapshot:
        return RegistrySnapshot(
            files=[
                _StoredFile(
                    id=f.id,
                    content_hash=f.content_hash.hex(),
                    path=f.path,
                    processed_at=f.processed_at,
                )
                for f in tables["files"].values()
            ],
            locations=[_StoredLocation(id=i, rectangle=r) for i, r in tables["locations"].items()],
            encodings=[_StoredEncoding(id=i, vector=e.to_list()) for i, e in tables["encodings"].items()],
            faces=list(tables["faces"].values()),
        )

    def _write(self, tables: Dict[str, Dict[int, Any]]) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(self._snapshot(tables).model_dump_json(), encoding="utf-8")
        os.replace(tmp_path, self._path)

    async def _persist(self, table: str, row_id: int, row: object) -> None:
        """Write the registry including the pending row, off the event loop."""
        tables = self._tables()
        tables[table] = {**tables[table], row_id: row}
        try:
            await asyncio.to_thread(self._write, tables)
        except OSError as e:
            raise StorageError(
                f"Failed to write registry file: {e}",
                details={"path": str(self._path)}
            ) from e
