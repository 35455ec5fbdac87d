"""
Image processing utility functions.
"""
from pathlib import Path
from typing import Union

import cv2
import numpy as np

from facerecognizer.core.exceptions import DecodeError


def bytes_to_numpy_array(image_bytes: bytes, flags: int = cv2.IMREAD_COLOR) -> np.ndarray:
    """Convert image bytes to an RGB numpy array.

    Args:
        image_bytes: Raw (encoded) image bytes
        flags: OpenCV imread flags (default: COLOR)

    Returns:
        numpy.ndarray: Image as a contiguous HxWx3 uint8 RGB array

    Raises:
        DecodeError: If the image cannot be decoded
    """
    np_array = np.frombuffer(image_bytes, np.uint8)
    if np_array.size == 0:
        raise DecodeError("Empty image data")

    try:
        img = cv2.imdecode(np_array, flags)
    except cv2.error as e:
        raise DecodeError(f"Invalid image format: {e}") from e

    if img is None:
        raise DecodeError("Failed to decode image bytes")

    # OpenCV decodes to BGR, the models expect RGB
    return np.ascontiguousarray(cv2.cvtColor(img, cv2.COLOR_BGR2RGB))


def load_image(path: Union[str, Path]) -> np.ndarray:
    """Read and decode an image file.

    Raises:
        DecodeError: If the file cannot be read or is not a decodable image
    """
    try:
        image_bytes = Path(path).read_bytes()
    except OSError as e:
        raise DecodeError(f"Failed to read image file: {e}", details={"path": str(path)}) from e

    try:
        return bytes_to_numpy_array(image_bytes)
    except DecodeError as e:
        raise DecodeError(str(e), details={"path": str(path)}) from e


def save_image(image: np.ndarray, path: Union[str, Path]) -> None:
    """Write an RGB image to disk, the format is taken from the file suffix."""
    if not cv2.imwrite(str(path), cv2.cvtColor(image, cv2.COLOR_RGB2BGR)):
        raise OSError(f"Failed to write image: {path}")
