"""Face recognition pipeline: dedup, detect, landmark, encode, match, persist.

One file goes through the stages strictly in order. Many files are processed
concurrently, bounded by a semaphore whose size matches the worker thread
pool that runs the CPU bound steps (decoding, hashing and model calls).
Storage calls are awaited on the event loop.

Example:
    ```python
    pipeline = FaceRecognitionPipeline(registry, DedupGate(registry), models, telemetry)
    report = await pipeline.process_path(Path("photos"))
    await pipeline.close()
    ```
"""
import asyncio
import functools
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, TypeVar

import numpy as np

from facerecognizer.core.config import Settings, settings as default_settings
from facerecognizer.core.exceptions import FaceRecognitionError, FileTimeoutError, StorageError
from facerecognizer.core.logging import get_logger
from facerecognizer.core.utils.image import load_image
from facerecognizer.domain.entities.face import FaceEncoding, FaceLandmarks, Rectangle
from facerecognizer.domain.interfaces.storage.registry import IdentityRegistry
from facerecognizer.domain.interfaces.telemetry import Labels, TelemetrySink
from facerecognizer.domain.value_objects.recognition import (
    BatchReport,
    FaceObservation,
    FileOutcome,
    FileStatus,
    ProcessingStage,
)
from facerecognizer.services.annotation import write_annotated
from facerecognizer.services.dedup import DedupGate
from facerecognizer.services.model_provider import ModelProvider
from facerecognizer.services.names import NameDirectory
from facerecognizer.services.telemetry import (
    FACE_DETECTION_METRIC,
    FACE_ENCODING_METRIC,
    LANDMARK_PREDICTION_METRIC,
)

logger = get_logger(__name__)

T = TypeVar("T")


def discover_files(input_path: Path, skip_annotated: bool = False) -> List[Path]:
    """
    List the files to process.

    Args:
        input_path: A single file, or a directory searched recursively
        skip_annotated: Leave out ``*_new.*`` files written by earlier annotated runs

    Returns:
        Sorted file paths
    """
    if input_path.is_file():
        return [input_path]
    if not input_path.is_dir():
        return []
    paths = sorted(p for p in input_path.rglob("*") if p.is_file())
    if skip_annotated:
        paths = [p for p in paths if not p.stem.endswith("_new")]
    return paths


class _FileTask:
    """Mutable progress of one file, readable after a timeout."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.stage = ProcessingStage.PENDING
        self.file_id: Optional[int] = None

    @property
    def labels(self) -> Labels:
        return (("file", str(self.path)),)


class _DetectedFace:
    def __init__(self, landmarks: FaceLandmarks, encodings: List[FaceEncoding]) -> None:
        self.landmarks = landmarks
        self.encodings = encodings


class FaceRecognitionPipeline:
    """Orchestrates per-file processing and fans it out over many files.

    The pipeline keeps no persistent state of its own; every row is owned by
    the registry.
    """

    def __init__(
        self,
        registry: IdentityRegistry,
        gate: DedupGate,
        models: ModelProvider,
        telemetry: TelemetrySink,
        settings: Optional[Settings] = None,
        names: Optional[NameDirectory] = None,
        annotate: bool = False,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            registry: Identity registry receiving every row
            gate: Dedup gate deciding which files to process
            models: Provider of model adapter bundles
            telemetry: Sink for stage durations
            settings: Concurrency, timeout and retry settings
            names: Known names, reported when a face matches
            annotate: Write ``<stem>_new<suffix>`` images with the faces drawn
        """
        self._registry = registry
        self._gate = gate
        self._models = models
        self._telemetry = telemetry
        self._settings = settings or default_settings
        self._names = names or NameDirectory()
        self._annotate = annotate
        self._concurrency = self._settings.worker_count
        self._executor = ThreadPoolExecutor(
            max_workers=self._concurrency,
            thread_name_prefix="face-worker"
        )
        self._in_flight = 0

    @property
    def concurrency(self) -> int:
        return self._concurrency

    async def close(self) -> None:
        """Stop the worker threads; blocked native calls are not waited for."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    async def _run_blocking(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(func, *args))

    def _record(self, metric_name: str, milliseconds: float, labels: Labels) -> None:
        try:
            self._telemetry.record_duration(metric_name, milliseconds, labels)
        except Exception as e:
            logger.warning("Telemetry sink failed", metric=metric_name, error=str(e))

    def _notify(self, on_outcome: Callable[[FileOutcome], None], outcome: FileOutcome) -> None:
        try:
            on_outcome(outcome)
        except Exception as e:
            logger.warning("Outcome callback failed", path=outcome.path, error=str(e))

    async def _timed(self, metric_name: str, labels: Labels, func: Callable[..., T], *args: Any) -> T:
        start = time.perf_counter()
        try:
            return await self._run_blocking(func, *args)
        finally:
            self._record(metric_name, (time.perf_counter() - start) * 1000.0, labels)

    async def _with_retry(self, operation: Callable[..., Any], *args: Any) -> Any:
        """Run a registry write, retrying storage failures after a backoff."""
        attempts = max(0, self._settings.STORAGE_RETRY_ATTEMPTS)
        for attempt in range(attempts + 1):
            try:
                return await operation(*args)
            except StorageError as e:
                if attempt >= attempts:
                    raise
                logger.warning(
                    "Storage operation failed, retrying",
                    operation=getattr(operation, "__name__", str(operation)),
                    attempt=attempt + 1,
                    error=str(e)
                )
                await asyncio.sleep(self._settings.STORAGE_RETRY_BACKOFF * (attempt + 1))

    async def process_path(
        self,
        input_path: Path,
        force: bool = False,
        on_outcome: Optional[Callable[[FileOutcome], None]] = None,
    ) -> BatchReport:
        """Process a single file or every file under a directory."""
        paths = discover_files(Path(input_path), skip_annotated=self._annotate)
        logger.info("Discovered files", input=str(input_path), count=len(paths))
        return await self.process_files(paths, force=force, on_outcome=on_outcome)

    async def process_files(
        self,
        paths: Iterable[Path],
        force: bool = False,
        on_outcome: Optional[Callable[[FileOutcome], None]] = None,
    ) -> BatchReport:
        """
        Process files concurrently.

        At most ``concurrency`` files hold a permit at once. A failure in one
        file is reported in its outcome and never affects the others.

        Args:
            paths: Files to process
            force: Reprocess content that was seen before
            on_outcome: Called with each outcome as it completes

        Returns:
            BatchReport summarizing every outcome
        """
        report = BatchReport()
        semaphore = asyncio.Semaphore(self._concurrency)
        start = time.perf_counter()

        async def run(path: Path) -> FileOutcome:
            async with semaphore:
                self._in_flight += 1
                report.peak_in_flight = max(report.peak_in_flight, self._in_flight)
                try:
                    return await self.process_file(path, force=force)
                finally:
                    self._in_flight -= 1

        tasks = [asyncio.create_task(run(Path(path))) for path in paths]
        for next_done in asyncio.as_completed(tasks):
            outcome = await next_done
            report.add(outcome)
            if on_outcome is not None:
                self._notify(on_outcome, outcome)

        report.elapsed_seconds = time.perf_counter() - start
        logger.info(
            "Recognizing faces finished",
            files=report.total_files,
            persisted=report.persisted_files,
            skipped=report.skipped_files,
            failed=report.failed_files,
            faces=report.total_faces,
            elapsed_seconds=round(report.elapsed_seconds, 3)
        )
        return report

    async def process_file(self, path: Path, force: bool = False) -> FileOutcome:
        """
        Process one file, never raising for file-level problems.

        Returns:
            FileOutcome in a terminal state: persisted, skipped or failed
        """
        task = _FileTask(Path(path))
        try:
            return await asyncio.wait_for(self._process(task, force), timeout=self._settings.file_timeout)
        except asyncio.TimeoutError:
            error = FileTimeoutError(
                f"Processing exceeded {self._settings.file_timeout}s",
                details={"path": str(task.path), "stage": task.stage.value}
            )
            return self._failed(task, error)
        except FaceRecognitionError as e:
            return self._failed(task, e)
        except Exception as e:
            logger.error("Unexpected error while processing file", path=str(task.path), exc_info=True)
            return self._failed(task, e)

    def _failed(self, task: _FileTask, error: BaseException) -> FileOutcome:
        logger.error(
            "Failed to process file",
            path=str(task.path),
            stage=task.stage.value,
            error_type=type(error).__name__,
            error=str(error)
        )
        return FileOutcome(
            path=str(task.path),
            status=FileStatus.FAILED,
            stage=task.stage,
            file_id=task.file_id,
            error=str(error),
            error_type=type(error).__name__,
        )

    async def _process(self, task: _FileTask, force: bool) -> FileOutcome:
        logger.info("Processing file", path=str(task.path))

        task.stage = ProcessingStage.HASHING
        image = await self._run_blocking(load_image, task.path)
        content_hash = await self._run_blocking(self._gate.fingerprint, image)
        decision = await self._gate.check(content_hash, str(task.path), force=force)
        task.file_id = decision.file_id
        if decision.skip:
            return FileOutcome(
                path=str(task.path),
                status=FileStatus.SKIPPED,
                stage=task.stage,
                file_id=decision.file_id,
                reason=decision.reason,
            )

        detected = await self._run_models(task, image)

        task.stage = ProcessingStage.MATCH_OR_REGISTER
        observations: List[FaceObservation] = []
        for face in detected:
            for encoding in face.encodings:
                observations.append(await self._persist_face(task, face.landmarks.rectangle, encoding))

        if self._annotate:
            output_path = await self._run_blocking(
                write_annotated, image, [face.landmarks for face in detected], task.path
            )
            logger.info("Saved annotated image", path=str(output_path))

        task.stage = ProcessingStage.PERSISTED
        logger.info(
            "Processed file",
            path=str(task.path),
            file_id=task.file_id,
            faces=len(observations)
        )
        return FileOutcome(
            path=str(task.path),
            status=FileStatus.PERSISTED,
            stage=task.stage,
            file_id=task.file_id,
            faces=observations,
            reason=decision.reason,
        )

    async def _run_models(self, task: _FileTask, image: np.ndarray) -> List[_DetectedFace]:
        """Detect, then landmark and encode each face, holding one model bundle throughout."""
        detected: List[_DetectedFace] = []
        task.stage = ProcessingStage.DETECTING
        async with self._models.checkout() as models:
            rectangles = await self._timed(
                FACE_DETECTION_METRIC, task.labels, models.detector.locate_faces, image
            )
            logger.info("Found faces", path=str(task.path), count=len(rectangles))

            for index, rectangle in enumerate(rectangles):
                labels = tuple(task.labels) + (("face", str(index)),)

                task.stage = ProcessingStage.LANDMARK_EXTRACTION
                landmarks = await self._timed(
                    LANDMARK_PREDICTION_METRIC, labels, models.landmark_predictor.landmarks, image, rectangle
                )

                task.stage = ProcessingStage.ENCODING
                encodings = await self._timed(
                    FACE_ENCODING_METRIC,
                    labels,
                    models.encoder.encode,
                    image,
                    [landmarks],
                    self._settings.ENCODING_JITTERS,
                )
                detected.append(_DetectedFace(landmarks, list(encodings)))
        return detected

    async def _persist_face(self, task: _FileTask, rectangle: Rectangle, encoding: FaceEncoding) -> FaceObservation:
        location_id = await self._with_retry(self._registry.add_location, rectangle)
        match = await self._with_retry(self._registry.match_or_register, encoding)
        face_id = await self._with_retry(self._registry.add_face, task.file_id, location_id, match.encoding_id)

        name = self._names.lookup(match.matched_encoding_id)
        if match.matched:
            logger.info(
                "Found person in registry",
                path=str(task.path),
                encoding_id=match.encoding_id,
                matched_encoding_id=match.matched_encoding_id,
                distance=round(match.distance, 4),
                name=name
            )
        else:
            logger.info(
                "Registered new face",
                path=str(task.path),
                encoding_id=match.encoding_id
            )

        return FaceObservation(face_id=face_id, location=rectangle, match=match, name=name)
