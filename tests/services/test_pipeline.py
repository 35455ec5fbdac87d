"""Tests for the face recognition pipeline."""
import math

import pytest

from facerecognizer.core.exceptions import StorageError
from facerecognizer.domain.value_objects.recognition import FileStatus, ProcessingStage
from facerecognizer.infrastructure.registry import (
    FileIdentityRegistry,
    InMemoryIdentityRegistry,
    SqlIdentityRegistry,
)
from facerecognizer.services.dedup import DedupGate
from facerecognizer.services.model_provider import ExclusiveModelProvider
from facerecognizer.services.names import NameDirectory
from facerecognizer.services.pipeline import FaceRecognitionPipeline, discover_files
from facerecognizer.services.telemetry import (
    FACE_DETECTION_METRIC,
    FACE_ENCODING_METRIC,
    LANDMARK_PREDICTION_METRIC,
    InMemoryTelemetrySink,
)

from fakes import (
    FailingTelemetrySink,
    FailingWriteRegistry,
    FakeModelFactory,
    PermitRecordingRegistry,
    SlowDetector,
    SplitDetector,
    solid_image,
    write_image,
)


@pytest.fixture
async def make_pipeline(settings):
    """Build pipelines with custom collaborators; all are closed at teardown."""
    created = []

    def factory(registry=None, model_factory=None, telemetry=None, names=None, annotate=False, **overrides):
        registry = registry or InMemoryIdentityRegistry()
        pipeline = FaceRecognitionPipeline(
            registry=registry,
            gate=DedupGate(registry),
            models=ExclusiveModelProvider(model_factory or FakeModelFactory()),
            telemetry=telemetry or InMemoryTelemetrySink(),
            settings=settings.model_copy(update=overrides),
            names=names,
            annotate=annotate,
        )
        created.append(pipeline)
        return pipeline

    yield factory
    for pipeline in created:
        await pipeline.close()


class FlakyRegistry(InMemoryIdentityRegistry):
    """Fails the first ``failures`` location inserts."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    async def add_location(self, rectangle):
        if self.failures > 0:
            self.failures -= 1
            raise StorageError("database is locked")
        return await super().add_location(rectangle)


class TestDiscoverFiles:
    def test_single_file(self, tmp_path):
        path = write_image(tmp_path / "a.png", solid_image(1))
        assert discover_files(path) == [path]

    def test_directory_is_searched_recursively_and_sorted(self, tmp_path):
        b = write_image(tmp_path / "b.png", solid_image(1))
        a = write_image(tmp_path / "nested" / "a.png", solid_image(2))
        assert discover_files(tmp_path) == sorted([a, b])

    def test_annotated_outputs_can_be_excluded(self, tmp_path):
        a = write_image(tmp_path / "a.png", solid_image(1))
        write_image(tmp_path / "a_new.png", solid_image(1))
        assert discover_files(tmp_path, skip_annotated=True) == [a]

    def test_missing_path(self, tmp_path):
        assert discover_files(tmp_path / "missing") == []


class TestFaceRecognitionPipeline:
    """Test suite for end-to-end pipeline behaviour over fake models."""

    async def test_end_to_end_with_duplicate_content(self, pipeline, registry, tmp_path):
        """Two identical images and one different image give two file rows."""
        write_image(tmp_path / "a.png", solid_image(100))
        write_image(tmp_path / "b.png", solid_image(100))
        write_image(tmp_path / "c.png", solid_image(200))

        report = await pipeline.process_path(tmp_path)

        assert report.total_files == 3
        assert report.persisted_files == 2
        assert report.skipped_files == 1
        assert report.failed_files == 0
        assert report.total_faces == 2
        assert report.matched_faces == 0

        stats = await registry.stats()
        assert (stats.files, stats.locations, stats.encodings, stats.faces) == (2, 2, 2, 2)

    async def test_second_run_is_idempotent(self, pipeline, registry, tmp_path):
        write_image(tmp_path / "a.png", solid_image(100))
        write_image(tmp_path / "c.png", solid_image(200))

        await pipeline.process_path(tmp_path)
        before = await registry.stats()
        outcomes = []
        report = await pipeline.process_path(tmp_path, on_outcome=outcomes.append)

        assert report.skipped_files == 2
        assert {o.reason for o in outcomes} == {"already-processed"}
        assert await registry.stats() == before

    async def test_similar_face_matches_earlier_encoding(self, pipeline, tmp_path):
        first = await pipeline.process_file(write_image(tmp_path / "a.png", solid_image(100)))
        second = await pipeline.process_file(write_image(tmp_path / "b.png", solid_image(105)))

        match = second.faces[0].match
        assert match.matched
        assert match.matched_encoding_id == first.faces[0].match.encoding_id
        assert match.distance == pytest.approx(math.sqrt(128) * 5 / 255, abs=1e-6)

    async def test_distant_face_registers_new_identity(self, pipeline, tmp_path):
        await pipeline.process_file(write_image(tmp_path / "a.png", solid_image(100)))
        outcome = await pipeline.process_file(write_image(tmp_path / "b.png", solid_image(200)))
        assert not outcome.faces[0].match.matched

    async def test_image_without_faces(self, pipeline, registry, tmp_path):
        outcome = await pipeline.process_file(write_image(tmp_path / "black.png", solid_image(0)))
        assert outcome.status is FileStatus.PERSISTED
        assert outcome.faces == []
        stats = await registry.stats()
        assert (stats.files, stats.encodings) == (1, 0)

    async def test_multiple_faces_in_one_file(self, make_pipeline, tmp_path):
        image = solid_image(50, size=32)
        image[:, 16:] = 200
        pipeline = make_pipeline(model_factory=FakeModelFactory(detector=SplitDetector()))

        outcome = await pipeline.process_file(write_image(tmp_path / "pair.png", image))

        assert len(outcome.faces) == 2
        assert [f.location.left for f in outcome.faces] == [0, 16]
        assert not any(f.match.matched for f in outcome.faces)

    async def test_concurrency_is_bounded(self, make_pipeline, tmp_path):
        """At most MAX_CONCURRENCY files hold a permit, whatever the thread pool allows."""
        registry = PermitRecordingRegistry(delay=0.02)
        pipeline = make_pipeline(registry=registry, MAX_CONCURRENCY=2)
        for gray in range(10, 70, 10):
            write_image(tmp_path / f"{gray}.png", solid_image(gray))

        report = await pipeline.process_path(tmp_path)

        assert report.persisted_files == 6
        assert registry.peak == 2
        assert report.peak_in_flight == 2

    async def test_decode_failure_is_isolated(self, pipeline, tmp_path):
        (tmp_path / "notes.txt").write_text("not an image")
        write_image(tmp_path / "a.png", solid_image(100))

        report = await pipeline.process_path(tmp_path)

        assert report.persisted_files == 1
        assert report.failed_files == 1
        failure = report.failures[0]
        assert failure.path.endswith("notes.txt")
        assert failure.error_type == "DecodeError"
        assert failure.stage is ProcessingStage.HASHING

    async def test_timeout_fails_only_the_slow_file(self, make_pipeline, tmp_path):
        pipeline = make_pipeline(
            model_factory=FakeModelFactory(detector=SlowDetector(delay=0.5)),
            FILE_TIMEOUT_SECONDS=0.1,
        )

        outcome = await pipeline.process_file(write_image(tmp_path / "a.png", solid_image(100)))

        assert outcome.status is FileStatus.FAILED
        assert outcome.error_type == "FileTimeoutError"
        assert outcome.stage is ProcessingStage.DETECTING
        assert outcome.file_id is not None

    async def test_failed_file_is_skipped_on_rerun_unless_forced(self, make_pipeline, tmp_path):
        registry = InMemoryIdentityRegistry()
        path = write_image(tmp_path / "a.png", solid_image(100))
        slow = make_pipeline(
            registry=registry,
            model_factory=FakeModelFactory(detector=SlowDetector(delay=0.5)),
            FILE_TIMEOUT_SECONDS=0.1,
        )
        await slow.process_file(path)

        pipeline = make_pipeline(registry=registry)
        assert (await pipeline.process_file(path)).status is FileStatus.SKIPPED
        assert (await pipeline.process_file(path, force=True)).status is FileStatus.PERSISTED

    async def test_telemetry_records_stage_durations(self, pipeline, telemetry, tmp_path):
        path = write_image(tmp_path / "a.png", solid_image(100))
        await pipeline.process_file(path)

        names = [name for name, _, _ in telemetry.recent]
        assert names == [FACE_DETECTION_METRIC, LANDMARK_PREDICTION_METRIC, FACE_ENCODING_METRIC]
        assert all(ms >= 0 for _, ms, _ in telemetry.recent)
        assert telemetry.recent[0][2] == (("file", str(path)),)
        assert ("face", "0") in telemetry.recent[1][2]

    async def test_telemetry_failure_does_not_fail_file(self, make_pipeline, tmp_path):
        sink = FailingTelemetrySink()
        pipeline = make_pipeline(telemetry=sink)

        outcome = await pipeline.process_file(write_image(tmp_path / "a.png", solid_image(100)))

        assert outcome.status is FileStatus.PERSISTED
        assert len(outcome.faces) == 1
        assert sink.calls == 3

    async def test_force_reprocess_reuses_file_row(self, pipeline, registry, tmp_path):
        path = write_image(tmp_path / "a.png", solid_image(100))
        first = await pipeline.process_file(path)
        again = await pipeline.process_file(path, force=True)

        assert again.status is FileStatus.PERSISTED
        assert again.reason == "forced"
        assert again.file_id == first.file_id
        assert again.faces[0].match.matched_encoding_id == first.faces[0].match.encoding_id
        assert again.faces[0].match.distance == 0.0
        stats = await registry.stats()
        assert (stats.files, stats.encodings, stats.faces) == (1, 2, 2)

    async def test_annotate_writes_new_image(self, make_pipeline, tmp_path):
        pipeline = make_pipeline(annotate=True)
        write_image(tmp_path / "a.png", solid_image(100))

        report = await pipeline.process_path(tmp_path)
        output = tmp_path / "a_new.png"

        assert output.is_file()
        assert report.total_files == 1
        # A second run leaves earlier annotated output alone
        assert (await pipeline.process_path(tmp_path)).total_files == 1

    async def test_storage_error_is_retried(self, make_pipeline, tmp_path):
        registry = FlakyRegistry(failures=1)
        pipeline = make_pipeline(registry=registry, STORAGE_RETRY_ATTEMPTS=1)

        outcome = await pipeline.process_file(write_image(tmp_path / "a.png", solid_image(100)))

        assert outcome.status is FileStatus.PERSISTED
        assert (await registry.stats()).locations == 1

    async def test_storage_error_after_retries_fails_file(self, make_pipeline, tmp_path):
        pipeline = make_pipeline(registry=FlakyRegistry(failures=5), STORAGE_RETRY_ATTEMPTS=1)

        outcome = await pipeline.process_file(write_image(tmp_path / "a.png", solid_image(100)))

        assert outcome.status is FileStatus.FAILED
        assert outcome.error_type == "StorageError"
        assert outcome.stage is ProcessingStage.MATCH_OR_REGISTER

    async def test_model_load_failure_fails_file(self, make_pipeline, tmp_path):
        pipeline = make_pipeline(model_factory=FakeModelFactory(fail=True))

        outcome = await pipeline.process_file(write_image(tmp_path / "a.png", solid_image(100)))

        assert outcome.status is FileStatus.FAILED
        assert outcome.error_type == "ModelUnavailableError"

    async def test_known_name_is_reported(self, make_pipeline, tmp_path):
        pipeline = make_pipeline(names=NameDirectory({1: "Ada"}))
        await pipeline.process_file(write_image(tmp_path / "a.png", solid_image(100)))

        outcome = await pipeline.process_file(write_image(tmp_path / "b.png", solid_image(102)))

        assert outcome.faces[0].name == "Ada"

    async def test_jitter_count_is_passed_to_encoder(self, make_pipeline, tmp_path):
        model_factory = FakeModelFactory()
        pipeline = make_pipeline(model_factory=model_factory, ENCODING_JITTERS=3)

        await pipeline.process_file(write_image(tmp_path / "a.png", solid_image(100)))

        assert model_factory.encoder.jitters == [3]

    async def test_on_outcome_is_called_per_file(self, pipeline, tmp_path):
        write_image(tmp_path / "a.png", solid_image(100))
        write_image(tmp_path / "b.png", solid_image(200))
        seen = []

        await pipeline.process_path(tmp_path, on_outcome=seen.append)

        assert sorted(o.path for o in seen) == sorted(str(p) for p in tmp_path.glob("*.png"))

    async def test_failing_outcome_callback_does_not_stop_batch(self, pipeline, tmp_path):
        for gray in (50, 150, 250):
            write_image(tmp_path / f"{gray}.png", solid_image(gray))

        def on_outcome(outcome):
            raise RuntimeError("progress display closed")

        report = await pipeline.process_path(tmp_path, on_outcome=on_outcome)

        assert report.total_files == 3
        assert report.persisted_files == 3

    async def test_retried_registry_write_leaves_no_orphan_row(self, make_pipeline, tmp_path):
        """A write that fails and is retried must not match the face against itself."""
        path = tmp_path / "registry.json"
        registry = FailingWriteRegistry(path, table="encodings", failures=1)
        await registry.initialize()
        pipeline = make_pipeline(registry=registry, STORAGE_RETRY_ATTEMPTS=1)

        outcome = await pipeline.process_file(write_image(tmp_path / "photos" / "a.png", solid_image(100)))

        assert outcome.status is FileStatus.PERSISTED
        assert not outcome.faces[0].match.matched
        stats = await registry.stats()
        assert (stats.files, stats.encodings, stats.faces) == (1, 1, 1)

        reopened = FileIdentityRegistry(path)
        await reopened.initialize()
        assert (await reopened.stats()).encodings == 1


@pytest.fixture(params=["sqlite", "memory"])
async def backend_registry(request, tmp_path):
    """An initialized registry of each backend used by default."""
    if request.param == "sqlite":
        registry = SqlIdentityRegistry(f"sqlite+aiosqlite:///{tmp_path / 'faces.sqlite'}")
    else:
        registry = InMemoryIdentityRegistry()
    await registry.initialize()
    yield registry
    await registry.close()


class TestPipelineOverRegistryBackends:
    """End-to-end runs against real registry backends."""

    async def test_concurrent_identical_files_register_once(self, make_pipeline, backend_registry, tmp_path):
        photos = tmp_path / "photos"
        for i in range(6):
            write_image(photos / f"same_{i}.png", solid_image(100))
        write_image(photos / "other.png", solid_image(200))
        pipeline = make_pipeline(registry=backend_registry, MAX_CONCURRENCY=4)

        report = await pipeline.process_path(photos)

        assert report.failed_files == 0
        assert report.persisted_files == 2
        assert report.skipped_files == 5
        stats = await backend_registry.stats()
        assert (stats.files, stats.locations, stats.encodings, stats.faces) == (2, 2, 2, 2)

        rerun = await pipeline.process_path(photos)

        assert rerun.skipped_files == 7
        assert await backend_registry.stats() == stats
