"""Service interfaces package."""
from .recognition import Detector, Encoder, FaceModels, LandmarkPredictor, ModelFactory
from .storage import IdentityRegistry
from .telemetry import TelemetrySink

__all__ = [
    "Detector",
    "Encoder",
    "FaceModels",
    "IdentityRegistry",
    "LandmarkPredictor",
    "ModelFactory",
    "TelemetrySink",
]
