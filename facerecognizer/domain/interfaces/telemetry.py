"""Telemetry sink interface."""
from abc import ABC, abstractmethod
from typing import Sequence, Tuple

Labels = Sequence[Tuple[str, str]]


class TelemetrySink(ABC):
    """Receives stage timings from the pipeline.

    Sinks are a side channel: the pipeline ignores their failures.
    """

    @abstractmethod
    def record_duration(self, metric_name: str, milliseconds: float, labels: Labels = ()) -> None:
        """
        Record the wall-clock duration of one stage call.

        Args:
            metric_name: Metric name, e.g. ``face_encoding.duration_ms``
            milliseconds: Elapsed time
            labels: Ordered key-value pairs giving context such as the file
        """
        pass
