"""dlib implementations of the face model adapters.

Three pretrained model files are expected under ``MODEL_DIR``:

- ``mmod_human_face_detector.dat`` (CNN detector, unused with the HOG detector)
- ``shape_predictor_68_face_landmarks.dat``
- ``dlib_face_recognition_resnet_model_v1.dat`` (128-d ResNet encoder)
"""
from pathlib import Path
from typing import List, Optional

import numpy as np

from facerecognizer.core.config import Settings
from facerecognizer.core.exceptions import ModelUnavailableError
from facerecognizer.core.logging import get_logger
from facerecognizer.domain.entities.face import FaceEncoding, FaceLandmarks, Point, Rectangle
from facerecognizer.domain.interfaces.recognition.models import (
    Detector,
    Encoder,
    FaceModels,
    LandmarkPredictor,
)

logger = get_logger(__name__)

CNN_DETECTOR_FILE = "mmod_human_face_detector.dat"
SHAPE_PREDICTOR_FILE = "shape_predictor_68_face_landmarks.dat"
ENCODER_FILE = "dlib_face_recognition_resnet_model_v1.dat"


def _import_dlib():
    try:
        import dlib
    except ImportError as e:
        raise ModelUnavailableError(
            "dlib is not installed; install it with `pip install face-recognizer[dlib]`"
        ) from e
    return dlib


def _to_rectangle(rect) -> Rectangle:
    return Rectangle(top=rect.top(), left=rect.left(), bottom=rect.bottom(), right=rect.right())


class DlibCnnDetector(Detector):
    """Max-margin CNN detector; slower but finds rotated and small faces."""

    def __init__(self, model_path: Path, upsample: int = 1) -> None:
        dlib = _import_dlib()
        self._detector = dlib.cnn_face_detection_model_v1(str(model_path))
        self._upsample = upsample

    def locate_faces(self, image: np.ndarray) -> List[Rectangle]:
        return [_to_rectangle(d.rect) for d in self._detector(image, self._upsample)]


class DlibHogDetector(Detector):
    """HOG + linear SVM frontal face detector."""

    def __init__(self, upsample: int = 1) -> None:
        dlib = _import_dlib()
        self._detector = dlib.get_frontal_face_detector()
        self._upsample = upsample

    def locate_faces(self, image: np.ndarray) -> List[Rectangle]:
        return [_to_rectangle(rect) for rect in self._detector(image, self._upsample)]


class DlibLandmarkPredictor(LandmarkPredictor):
    def __init__(self, model_path: Path) -> None:
        self._dlib = _import_dlib()
        self._predictor = self._dlib.shape_predictor(str(model_path))

    def landmarks(self, image: np.ndarray, rectangle: Rectangle) -> FaceLandmarks:
        rect = self._dlib.rectangle(rectangle.left, rectangle.top, rectangle.right, rectangle.bottom)
        shape = self._predictor(image, rect)
        return FaceLandmarks(
            rectangle=rectangle,
            points=[Point(x=p.x, y=p.y) for p in shape.parts()]
        )


class DlibEncoder(Encoder):
    def __init__(self, model_path: Path) -> None:
        self._dlib = _import_dlib()
        self._model = self._dlib.face_recognition_model_v1(str(model_path))

    def encode(
        self,
        image: np.ndarray,
        landmarks: List[FaceLandmarks],
        jitter_count: int = 0,
    ) -> List[FaceEncoding]:
        if not landmarks:
            return []
        dlib = self._dlib
        shapes = dlib.full_object_detections()
        for face in landmarks:
            rect = face.rectangle
            shapes.append(dlib.full_object_detection(
                dlib.rectangle(rect.left, rect.top, rect.right, rect.bottom),
                dlib.points([dlib.point(p.x, p.y) for p in face.points])
            ))
        descriptors = self._model.compute_face_descriptor(image, shapes, jitter_count)
        return [FaceEncoding(vector=np.array(d)) for d in descriptors]


class DlibModelFactory:
    """Builds a fresh bundle of dlib models on every call."""

    def __init__(self, settings: Settings, model_dir: Optional[Path] = None) -> None:
        self.settings = settings
        self.model_dir = Path(model_dir or settings.MODEL_DIR)

    def _model_path(self, filename: str) -> Path:
        path = self.model_dir / filename
        if not path.is_file():
            raise ModelUnavailableError(
                f"Model file not found: {path}",
                details={"model_dir": str(self.model_dir), "file": filename}
            )
        return path

    def __call__(self) -> FaceModels:
        if self.settings.DETECTOR_MODEL == "cnn":
            detector: Detector = DlibCnnDetector(
                self._model_path(CNN_DETECTOR_FILE), self.settings.DETECTOR_UPSAMPLE
            )
        else:
            detector = DlibHogDetector(self.settings.DETECTOR_UPSAMPLE)

        models = FaceModels(
            detector=detector,
            landmark_predictor=DlibLandmarkPredictor(self._model_path(SHAPE_PREDICTOR_FILE)),
            encoder=DlibEncoder(self._model_path(ENCODER_FILE)),
        )
        logger.debug("Loaded dlib models", model_dir=str(self.model_dir), detector=self.settings.DETECTOR_MODEL)
        return models
