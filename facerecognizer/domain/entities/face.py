"""Core face domain entities."""
from datetime import datetime
from typing import List, Sequence, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

from facerecognizer.core.exceptions import DimensionMismatchError

ENCODING_DIMENSIONS = 128


class Rectangle(BaseModel):
    """Pixel-space face location, kept exactly as the detector reported it."""
    top: int = Field(..., description="Top edge of the face rectangle")
    left: int = Field(..., description="Left edge of the face rectangle")
    bottom: int = Field(..., description="Bottom edge of the face rectangle")
    right: int = Field(..., description="Right edge of the face rectangle")

    model_config = ConfigDict(frozen=True)


class Point(BaseModel):
    """A single facial landmark."""
    x: int
    y: int

    model_config = ConfigDict(frozen=True)


class FaceLandmarks(BaseModel):
    """Landmark points predicted for one detected face."""
    rectangle: Rectangle = Field(..., description="Rectangle the landmarks were predicted in")
    points: List[Point] = Field(..., description="Ordered landmark points, conventionally 68")


class FaceEncoding(BaseModel):
    """A 128-component face feature vector."""
    vector: np.ndarray = Field(..., description="Face encoding vector")

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator("vector", mode="before")
    @classmethod
    def validate_vector(cls, v: Union[np.ndarray, Sequence[float]]) -> np.ndarray:
        """Convert to a float64 array and reject anything that is not 128 long."""
        array = np.array(v, dtype=np.float64)
        if array.ndim != 1 or array.shape[0] != ENCODING_DIMENSIONS:
            raise DimensionMismatchError(
                f"Face encoding must have exactly {ENCODING_DIMENSIONS} components, got shape {array.shape}",
                details={"shape": array.shape},
            )
        array.setflags(write=False)
        return array

    def to_list(self) -> List[float]:
        """Plain list of floats, e.g. for JSON serialization."""
        return self.vector.tolist()


class SourceFile(BaseModel):
    """A processed file, identified by the hash of its decoded pixels."""
    id: int
    content_hash: bytes = Field(..., description="Digest of the decoded pixel content")
    path: str = Field(..., description="Path the content was first seen at")
    processed_at: datetime


class FaceRecord(BaseModel):
    """Links one detected face to its source file, location and encoding."""
    id: int
    file_id: int
    location_id: int
    encoding_id: int
