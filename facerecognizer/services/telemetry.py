"""Telemetry sinks for pipeline stage timings."""
import threading
from collections import deque
from typing import Deque, Dict, List

from pydantic import BaseModel

from facerecognizer.core.logging import get_logger
from facerecognizer.domain.interfaces.telemetry import Labels, TelemetrySink

logger = get_logger(__name__)

FACE_DETECTION_METRIC = "face_recognition.duration_ms"
LANDMARK_PREDICTION_METRIC = "landmarks_prediction.duration_ms"
FACE_ENCODING_METRIC = "face_encoding.duration_ms"

RECENT_RECORDS = 256


class NullTelemetrySink(TelemetrySink):
    """Discards every measurement."""

    def record_duration(self, metric_name: str, milliseconds: float, labels: Labels = ()) -> None:
        pass


class LoggingTelemetrySink(TelemetrySink):
    """Emits each measurement as a debug log event."""

    def record_duration(self, metric_name: str, milliseconds: float, labels: Labels = ()) -> None:
        logger.debug(
            "Stage duration",
            metric=metric_name,
            duration_ms=round(milliseconds, 3),
            **dict(labels)
        )


class MetricSummary(BaseModel):
    """Aggregate of one metric's measurements."""
    name: str
    count: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0

    @property
    def mean_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0


class InMemoryTelemetrySink(TelemetrySink):
    """Aggregates measurements per metric and keeps only the most recent ones."""

    def __init__(self, recent_size: int = RECENT_RECORDS) -> None:
        self._lock = threading.Lock()
        self._summaries: Dict[str, MetricSummary] = {}
        self._recent: Deque[tuple] = deque(maxlen=recent_size)

    def record_duration(self, metric_name: str, milliseconds: float, labels: Labels = ()) -> None:
        milliseconds = float(milliseconds)
        with self._lock:
            item = self._summaries.get(metric_name)
            if item is None:
                item = self._summaries[metric_name] = MetricSummary(name=metric_name)
            item.count += 1
            item.total_ms += milliseconds
            item.max_ms = max(item.max_ms, milliseconds)
            self._recent.append((metric_name, milliseconds, tuple(labels)))

    @property
    def recent(self) -> List[tuple]:
        """The latest ``(metric_name, milliseconds, labels)`` tuples in arrival order."""
        with self._lock:
            return list(self._recent)

    def summary(self) -> Dict[str, MetricSummary]:
        with self._lock:
            return {name: item.model_copy() for name, item in self._summaries.items()}


def create_telemetry_sink(kind: str) -> TelemetrySink:
    """Build the sink named by ``TELEMETRY_SINK``."""
    sinks = {
        "memory": InMemoryTelemetrySink,
        "log": LoggingTelemetrySink,
        "none": NullTelemetrySink,
    }
    return sinks[kind]()
