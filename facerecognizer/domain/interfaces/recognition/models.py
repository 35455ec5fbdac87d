"""Model adapter interfaces.

Detection, landmark prediction and encoding are opaque capabilities. The
pipeline only relies on the contracts below, so any implementation (native
dlib models in production, fixed fakes in tests) can be plugged in.

All methods are synchronous: they are CPU bound and the pipeline runs them
on worker threads.
"""
from abc import ABC, abstractmethod
from typing import Callable, List, NamedTuple

import numpy as np

from ...entities.face import FaceEncoding, FaceLandmarks, Rectangle


class Detector(ABC):
    """Locates faces in an image."""

    @abstractmethod
    def locate_faces(self, image: np.ndarray) -> List[Rectangle]:
        """
        Locate every face in the image.

        Args:
            image: HxWx3 uint8 RGB image

        Returns:
            Face rectangles in detector order, possibly empty
        """
        pass


class LandmarkPredictor(ABC):
    """Predicts facial landmarks inside a detected rectangle."""

    @abstractmethod
    def landmarks(self, image: np.ndarray, rectangle: Rectangle) -> FaceLandmarks:
        """
        Predict the landmark points of one face.

        Args:
            image: HxWx3 uint8 RGB image
            rectangle: Face rectangle returned by a Detector

        Returns:
            A fixed-size ordered set of points (the count is model defined)
        """
        pass


class Encoder(ABC):
    """Computes face encodings from landmarks."""

    @abstractmethod
    def encode(
        self,
        image: np.ndarray,
        landmarks: List[FaceLandmarks],
        jitter_count: int = 0,
    ) -> List[FaceEncoding]:
        """
        Compute one encoding per landmark set.

        Args:
            image: HxWx3 uint8 RGB image
            landmarks: Landmark sets from a LandmarkPredictor
            jitter_count: Number of jittered resamples to average, passed through unchanged

        Returns:
            128-component encodings in the order of ``landmarks``
        """
        pass


class FaceModels(NamedTuple):
    """One set of model adapters, used by a single task at a time."""
    detector: Detector
    landmark_predictor: LandmarkPredictor
    encoder: Encoder


ModelFactory = Callable[[], FaceModels]
