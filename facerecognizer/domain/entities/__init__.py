"""Domain entities package."""
from .face import (
    ENCODING_DIMENSIONS,
    FaceEncoding,
    FaceLandmarks,
    FaceRecord,
    Point,
    Rectangle,
    SourceFile,
)

__all__ = [
    "ENCODING_DIMENSIONS",
    "FaceEncoding",
    "FaceLandmarks",
    "FaceRecord",
    "Point",
    "Rectangle",
    "SourceFile",
]
