#!/usr/bin/env python
"""
Face Recognizer

Detects faces in image files, deduplicates content, matches each face against
every stored encoding and records the results in the identity registry.

Usage:
    face-recognizer recognize <file-or-directory> [--names-path NAMES] [--skip-processed-check] [--annotate]
    face-recognizer locate <encoding-id> [--limit N]
"""
import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from facerecognizer.core.config import Settings
from facerecognizer.core.container import ServiceContainer
from facerecognizer.core.exceptions import (
    ConfigurationError,
    EncodingNotFoundError,
    FaceRecognitionError,
)
from facerecognizer.core.logging import get_logger, setup_logging
from facerecognizer.domain.value_objects.recognition import BatchReport, FileOutcome
from facerecognizer.services.names import NameDirectory
from facerecognizer.services.pipeline import discover_files
from facerecognizer.services.telemetry import InMemoryTelemetrySink

logger = get_logger(__name__)


def build_settings(args: argparse.Namespace) -> Settings:
    """Load settings from the environment, applying command line overrides."""
    overrides = {}
    if getattr(args, "concurrency", None):
        overrides["MAX_CONCURRENCY"] = args.concurrency
    if getattr(args, "timeout", None) is not None:
        overrides["FILE_TIMEOUT_SECONDS"] = args.timeout
    return Settings(**overrides)


def print_stats(report: BatchReport, container: ServiceContainer) -> None:
    """Print statistics about the recognition run."""
    print("\n===== Recognition Statistics =====")
    print(f"Total files: {report.total_files}")
    print(f"Processed files: {report.persisted_files}")
    print(f"Skipped files (already processed): {report.skipped_files}")
    print(f"Failed files: {report.failed_files}")
    print(f"Faces found: {report.total_faces}")
    print(f"Faces matched to a known encoding: {report.matched_faces}")
    print(f"Peak concurrent files: {report.peak_in_flight}")
    print(f"Total time: {report.elapsed_seconds:.2f} seconds")

    if report.persisted_files > 0:
        print(f"Average time per file: {report.elapsed_seconds / report.persisted_files:.2f} seconds")

    if isinstance(container.telemetry, InMemoryTelemetrySink):
        for item in container.telemetry.summary().values():
            print(f"{item.name}: mean {item.mean_ms:.2f} ms, max {item.max_ms:.2f} ms over {item.count} calls")

    for failure in report.failures:
        print(f"Failed: {failure.path} at {failure.stage.value}: {failure.error_type}: {failure.error}")

    print("==================================")


async def recognize(args: argparse.Namespace, settings: Settings) -> int:
    """Run the pipeline over a file or directory."""
    input_path = Path(args.input)
    if not input_path.exists():
        logger.error("Input path does not exist", path=str(input_path))
        return 1

    try:
        names = NameDirectory.load(Path(args.names_path)) if args.names_path else None
    except ConfigurationError as e:
        logger.error("Failed to load names", error=str(e))
        return 1

    container = ServiceContainer(settings, names=names, annotate=args.annotate)
    try:
        try:
            await container.initialize()
        except FaceRecognitionError as e:
            logger.error("Failed to start", error_type=type(e).__name__, error=str(e))
            return 1

        total = len(discover_files(input_path, skip_annotated=args.annotate))
        with tqdm(total=total, desc="Recognizing faces", unit="file") as progress:
            def on_outcome(outcome: FileOutcome) -> None:
                progress.update(1)

            report = await container.pipeline.process_path(
                input_path,
                force=args.skip_processed_check,
                on_outcome=on_outcome
            )

        print_stats(report, container)
        return 0
    finally:
        await container.cleanup()


async def locate(args: argparse.Namespace, settings: Settings) -> int:
    """Print the stored encodings closest to the given one."""
    container = ServiceContainer(settings)
    try:
        try:
            registry = await container.initialize_registry()
        except FaceRecognitionError as e:
            logger.error("Failed to start", error_type=type(e).__name__, error=str(e))
            return 1

        limit = args.limit or settings.LOCATE_LIMIT
        try:
            similar = await registry.locate_similar(args.encoding_id, limit=limit)
        except EncodingNotFoundError as e:
            logger.error("Encoding not found", encoding_id=args.encoding_id, error=str(e))
            return 1

        for item in similar:
            print(f"{item.encoding_id}: distance: {item.distance}")
        return 0
    finally:
        await container.cleanup()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="face-recognizer",
        description="Recognize and deduplicate faces in image files"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    recognize_parser = subparsers.add_parser("recognize", help="Detect and match faces in files")
    recognize_parser.add_argument("input", help="Image file or directory (searched recursively)")
    recognize_parser.add_argument("--names-path", help="File of '<encoding-id>|<name>' lines")
    recognize_parser.add_argument(
        "--skip-processed-check",
        action="store_true",
        help="Process files even if their content was processed before"
    )
    recognize_parser.add_argument(
        "--annotate",
        action="store_true",
        help="Write <name>_new<ext> images with faces and landmarks drawn"
    )
    recognize_parser.add_argument("--concurrency", type=int, help="Maximum files processed at once")
    recognize_parser.add_argument("--timeout", type=float, help="Per-file timeout in seconds, 0 disables it")

    locate_parser = subparsers.add_parser("locate", help="List encodings similar to a stored one")
    locate_parser.add_argument("encoding_id", type=int, help="Stored encoding id")
    locate_parser.add_argument("--limit", type=int, help="Maximum number of results")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    settings = build_settings(args)
    setup_logging(settings)

    commands = {"recognize": recognize, "locate": locate}
    return asyncio.run(commands[args.command](args, settings))


if __name__ == "__main__":
    sys.exit(main())
