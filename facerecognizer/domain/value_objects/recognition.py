"""Face recognition value objects."""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from facerecognizer.domain.entities.face import Rectangle


class MatchResult(BaseModel):
    """Outcome of matching a new encoding against every stored one.

    The new encoding is always stored; ``encoding_id`` is its row. When an
    earlier encoding lies within the threshold, ``matched_encoding_id`` and
    ``distance`` describe the nearest one.
    """
    encoding_id: int = Field(..., description="Identifier of the newly stored encoding")
    matched_encoding_id: Optional[int] = Field(None, description="Nearest stored encoding within the threshold")
    distance: Optional[float] = Field(None, description="Distance to the nearest stored encoding")

    @property
    def matched(self) -> bool:
        return self.matched_encoding_id is not None


class SimilarFace(BaseModel):
    """A stored encoding and its distance to the encoding being located."""
    encoding_id: int
    distance: float


class RegistryStats(BaseModel):
    """Row counts per registry table."""
    files: int = 0
    locations: int = 0
    encodings: int = 0
    faces: int = 0


class GateDecision(BaseModel):
    """Whether a file should be processed, and the file row to attach faces to."""
    file_id: int
    skip: bool
    reason: str


class ProcessingStage(str, Enum):
    PENDING = "pending"
    HASHING = "hashing"
    DETECTING = "detecting"
    LANDMARK_EXTRACTION = "landmark_extraction"
    ENCODING = "encoding"
    MATCH_OR_REGISTER = "match_or_register"
    PERSISTED = "persisted"


class FileStatus(str, Enum):
    PERSISTED = "persisted"
    SKIPPED = "skipped"
    FAILED = "failed"


class FaceObservation(BaseModel):
    """One face persisted for a file."""
    face_id: int
    location: Rectangle
    match: MatchResult
    name: Optional[str] = None


class FileOutcome(BaseModel):
    """Terminal state of one file task."""
    path: str
    status: FileStatus
    stage: ProcessingStage
    file_id: Optional[int] = None
    faces: List[FaceObservation] = Field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None
    reason: Optional[str] = None


class BatchReport(BaseModel):
    """Aggregated outcomes of a batch run."""
    total_files: int = 0
    persisted_files: int = 0
    skipped_files: int = 0
    failed_files: int = 0
    total_faces: int = 0
    matched_faces: int = 0
    peak_in_flight: int = 0
    elapsed_seconds: float = 0.0
    failures: List[FileOutcome] = Field(default_factory=list)

    def add(self, outcome: FileOutcome) -> None:
        """Count a finished file."""
        self.total_files += 1
        if outcome.status is FileStatus.PERSISTED:
            self.persisted_files += 1
            self.total_faces += len(outcome.faces)
            self.matched_faces += sum(1 for face in outcome.faces if face.match.matched)
        elif outcome.status is FileStatus.SKIPPED:
            self.skipped_files += 1
        else:
            self.failed_files += 1
            self.failures.append(outcome)
