"""Draw detected faces onto a copy of the input image."""
from pathlib import Path
from typing import Iterable, Tuple

import cv2
import numpy as np

from facerecognizer.core.utils.image import save_image
from facerecognizer.domain.entities.face import FaceLandmarks

BOX_COLOR = (255, 0, 0)  # red, RGB
BOX_THICKNESS = 2
POINT_RADIUS = 2


def annotated_path(input_path: Path) -> Path:
    """``photo.jpg`` -> ``photo_new.jpg`` next to the input."""
    return input_path.with_name(f"{input_path.stem}_new{input_path.suffix}")


def draw_faces(image: np.ndarray, faces: Iterable[FaceLandmarks], color: Tuple[int, int, int] = BOX_COLOR) -> np.ndarray:
    """Return a copy of ``image`` with face rectangles and landmark points drawn."""
    img_draw = image.copy()
    for face in faces:
        rect = face.rectangle
        cv2.rectangle(img_draw, (rect.left, rect.top), (rect.right, rect.bottom), color, BOX_THICKNESS)
        for point in face.points:
            cv2.circle(img_draw, (point.x, point.y), POINT_RADIUS, color, -1)
    return img_draw


def write_annotated(image: np.ndarray, faces: Iterable[FaceLandmarks], input_path: Path) -> Path:
    """Draw the faces and save the result beside the input; returns the written path."""
    output_path = annotated_path(input_path)
    save_image(draw_faces(image, faces), output_path)
    return output_path
