"""Tests for face domain entities."""
import math

import numpy as np
import pytest

from facerecognizer.core.exceptions import DimensionMismatchError
from facerecognizer.domain.entities.face import ENCODING_DIMENSIONS, FaceEncoding, Rectangle
from facerecognizer.domain.value_objects.recognition import (
    BatchReport,
    FaceObservation,
    FileOutcome,
    FileStatus,
    MatchResult,
    ProcessingStage,
)
from facerecognizer.services.matching import euclidean_distance


class TestFaceEncoding:
    """Test suite for the 128-component encoding."""

    @pytest.mark.parametrize("length", [0, 127, 129, 512])
    def test_rejects_wrong_dimension(self, length):
        with pytest.raises(DimensionMismatchError):
            FaceEncoding(vector=np.zeros(length))

    def test_rejects_matrix(self):
        with pytest.raises(DimensionMismatchError):
            FaceEncoding(vector=np.zeros((2, 64)))

    def test_accepts_list_and_converts_to_float64(self):
        encoding = FaceEncoding(vector=[0.5] * ENCODING_DIMENSIONS)
        assert encoding.vector.dtype == np.float64
        assert encoding.to_list() == [0.5] * ENCODING_DIMENSIONS

    def test_vector_is_read_only_copy(self):
        """Should not alias or allow mutation of the stored vector."""
        source = np.zeros(ENCODING_DIMENSIONS)
        encoding = FaceEncoding(vector=source)
        source[0] = 1.0
        assert encoding.vector[0] == 0.0
        with pytest.raises(ValueError):
            encoding.vector[0] = 1.0

    def test_distance_properties(self):
        """Distance is zero to itself, symmetric and sqrt(128) between zeros and ones."""
        zeros = FaceEncoding(vector=np.zeros(ENCODING_DIMENSIONS))
        ones = FaceEncoding(vector=np.ones(ENCODING_DIMENSIONS))
        assert euclidean_distance(zeros.vector, zeros.vector) == 0.0
        assert euclidean_distance(zeros.vector, ones.vector) == euclidean_distance(ones.vector, zeros.vector)
        assert euclidean_distance(zeros.vector, ones.vector) == pytest.approx(math.sqrt(128))


class TestBatchReport:
    def test_counts_outcomes(self):
        report = BatchReport()
        rect = Rectangle(top=0, left=0, bottom=1, right=1)
        report.add(FileOutcome(
            path="a.png",
            status=FileStatus.PERSISTED,
            stage=ProcessingStage.PERSISTED,
            faces=[
                FaceObservation(face_id=1, location=rect, match=MatchResult(encoding_id=1)),
                FaceObservation(
                    face_id=2,
                    location=rect,
                    match=MatchResult(encoding_id=2, matched_encoding_id=1, distance=0.1),
                ),
            ],
        ))
        report.add(FileOutcome(path="b.png", status=FileStatus.SKIPPED, stage=ProcessingStage.HASHING))
        failed = FileOutcome(path="c.png", status=FileStatus.FAILED, stage=ProcessingStage.HASHING, error="bad")
        report.add(failed)

        assert report.total_files == 3
        assert report.persisted_files == 1
        assert report.skipped_files == 1
        assert report.failed_files == 1
        assert report.total_faces == 2
        assert report.matched_faces == 1
        assert report.failures == [failed]
