"""Euclidean matching over stored face encodings.

Every registry backend ends up with the same two inputs: the identifiers of
the stored encodings and a ``(n, 128)`` matrix of their vectors. The
functions here turn those into match decisions with a linear scan.
"""
from typing import List, Optional, Sequence, Tuple

import numpy as np

from facerecognizer.domain.entities.face import ENCODING_DIMENSIONS
from facerecognizer.domain.value_objects.recognition import MatchResult, SimilarFace

DEFAULT_MATCH_THRESHOLD = 0.6


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    """sqrt(sum((a_i - b_i)^2))"""
    return float(np.linalg.norm(np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)))


def distances_to(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Distances from ``query`` to every row of ``matrix``, computed in float64."""
    if matrix.size == 0:
        return np.empty(0, dtype=np.float64)
    diff = matrix.astype(np.float64, copy=False) - np.asarray(query, dtype=np.float64)
    return np.sqrt(np.einsum("ij,ij->i", diff, diff))


def stack_vectors(vectors: Sequence[np.ndarray]) -> np.ndarray:
    """Stack vectors into a ``(n, 128)`` matrix; empty input gives a ``(0, 128)`` matrix."""
    if not vectors:
        return np.empty((0, ENCODING_DIMENSIONS), dtype=np.float64)
    return np.vstack(vectors)


def find_nearest(
    query: np.ndarray,
    ids: Sequence[int],
    matrix: np.ndarray,
) -> Optional[Tuple[int, float]]:
    """
    Find the stored encoding nearest to ``query``.

    Args:
        query: Encoding vector being matched
        ids: Identifiers, one per row of ``matrix``
        matrix: Stored encoding vectors

    Returns:
        ``(id_min, d_min)`` or None when nothing is stored
    """
    distances = distances_to(query, matrix)
    if distances.size == 0:
        return None
    index = int(np.argmin(distances))
    return ids[index], float(distances[index])


def build_match_result(
    encoding_id: int,
    nearest: Optional[Tuple[int, float]],
    threshold: float = DEFAULT_MATCH_THRESHOLD,
) -> MatchResult:
    """Classify the nearest neighbour: a match only when strictly below the threshold."""
    if nearest is not None and nearest[1] < threshold:
        return MatchResult(
            encoding_id=encoding_id,
            matched_encoding_id=nearest[0],
            distance=nearest[1],
        )
    return MatchResult(encoding_id=encoding_id)


def rank_similar(
    encoding_id: int,
    query: np.ndarray,
    ids: Sequence[int],
    matrix: np.ndarray,
    threshold: float = DEFAULT_MATCH_THRESHOLD,
    limit: int = 30,
) -> List[SimilarFace]:
    """
    Rank other encodings that are within the threshold of ``query``.

    Returns:
        Up to ``limit`` encodings, nearest first, never including ``encoding_id`` itself
    """
    distances = distances_to(query, matrix)
    candidates = [
        (ids[i], float(distances[i]))
        for i in range(distances.size)
        if ids[i] != encoding_id and distances[i] < threshold
    ]
    candidates.sort(key=lambda item: (item[1], item[0]))
    return [SimilarFace(encoding_id=cid, distance=d) for cid, d in candidates[:max(0, limit)]]
