"""Tests for telemetry sinks."""
import pytest

from facerecognizer.services.telemetry import (
    FACE_DETECTION_METRIC,
    FACE_ENCODING_METRIC,
    InMemoryTelemetrySink,
    LoggingTelemetrySink,
    NullTelemetrySink,
    create_telemetry_sink,
)


class TestInMemoryTelemetrySink:
    def test_records_and_summarizes(self):
        sink = InMemoryTelemetrySink()
        sink.record_duration(FACE_DETECTION_METRIC, 10.0, (("file", "a.png"),))
        sink.record_duration(FACE_DETECTION_METRIC, 30.0)
        sink.record_duration(FACE_ENCODING_METRIC, 5.0)

        assert sink.recent[0] == (FACE_DETECTION_METRIC, 10.0, (("file", "a.png"),))
        summary = sink.summary()
        detection = summary[FACE_DETECTION_METRIC]
        assert detection.count == 2
        assert detection.mean_ms == pytest.approx(20.0)
        assert detection.max_ms == 30.0
        assert summary[FACE_ENCODING_METRIC].count == 1

    def test_empty_summary(self):
        assert InMemoryTelemetrySink().summary() == {}

    def test_recent_window_is_bounded(self):
        """Should keep only the latest records while the summary keeps counting."""
        sink = InMemoryTelemetrySink(recent_size=3)
        for i in range(10):
            sink.record_duration(FACE_DETECTION_METRIC, float(i))

        assert [ms for _, ms, _ in sink.recent] == [7.0, 8.0, 9.0]
        detection = sink.summary()[FACE_DETECTION_METRIC]
        assert detection.count == 10
        assert detection.total_ms == 45.0
        assert detection.max_ms == 9.0

    def test_summary_is_a_copy(self):
        sink = InMemoryTelemetrySink()
        sink.record_duration(FACE_DETECTION_METRIC, 1.0)
        sink.summary()[FACE_DETECTION_METRIC].count = 99
        assert sink.summary()[FACE_DETECTION_METRIC].count == 1


def test_other_sinks_accept_measurements():
    NullTelemetrySink().record_duration(FACE_DETECTION_METRIC, 1.0)
    LoggingTelemetrySink().record_duration(FACE_DETECTION_METRIC, 1.0, (("file", "a.png"),))


@pytest.mark.parametrize(
    "kind,expected",
    [("memory", InMemoryTelemetrySink), ("log", LoggingTelemetrySink), ("none", NullTelemetrySink)],
)
def test_create_telemetry_sink(kind, expected):
    assert isinstance(create_telemetry_sink(kind), expected)
