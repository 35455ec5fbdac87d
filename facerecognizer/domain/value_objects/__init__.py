"""Value objects package."""
from .recognition import (
    BatchReport,
    FaceObservation,
    FileOutcome,
    FileStatus,
    GateDecision,
    MatchResult,
    ProcessingStage,
    RegistryStats,
    SimilarFace,
)

__all__ = [
    "BatchReport",
    "FaceObservation",
    "FileOutcome",
    "FileStatus",
    "GateDecision",
    "MatchResult",
    "ProcessingStage",
    "RegistryStats",
    "SimilarFace",
]
