from .models import Detector, Encoder, FaceModels, LandmarkPredictor, ModelFactory

__all__ = ["Detector", "Encoder", "FaceModels", "LandmarkPredictor", "ModelFactory"]
