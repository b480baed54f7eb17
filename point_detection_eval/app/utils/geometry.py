"""Geometry helper utilities for boxes, points and ROI polygons."""
from __future__ import annotations

from typing import Iterable, Sequence, Tuple

try:  # pragma: no cover - import guarded for optional dependency
    import cv2
    import numpy as np
except ImportError as exc:  # pragma: no cover
    raise ImportError(
        "opencv-python and numpy are required for geometry utilities. Install the package "
        "with `pip install -e .`."
    ) from exc

from ..models import DetectionRecord, Point


def detection_centroids(detections: Sequence[DetectionRecord]) -> np.ndarray:
    """Return an ``(M, 2)`` array with the centroid of every detection box."""

    if not detections:
        return np.zeros((0, 2), dtype=np.float64)
    return np.array([detection.centroid for detection in detections], dtype=np.float64)


def as_point_array(points: Iterable[Point]) -> np.ndarray:
    array = np.asarray(list(points), dtype=np.float64)
    if array.size == 0:
        return np.zeros((0, 2), dtype=np.float64)
    if array.ndim != 2 or array.shape[1] != 2:
        raise ValueError(f"Expected a sequence of (x, y) points, got shape {array.shape}")
    return array


def pairwise_distances(first: np.ndarray, second: np.ndarray) -> np.ndarray:
    """Euclidean distance matrix between two ``(N, 2)`` and ``(M, 2)`` point sets."""

    delta = first[:, np.newaxis, :] - second[np.newaxis, :, :]
    return np.sqrt(np.sum(delta * delta, axis=-1))


class RoiMask:
    """Rasterized region of interest, queried per point.

    The polygon is filled into a binary image of the given size; a point is
    inside when the pixel nearest to it is set. Points outside the image are
    always outside the region.
    """

    def __init__(self, polygon: Sequence[Point], image_shape: Tuple[int, ...]) -> None:
        height, width = int(image_shape[0]), int(image_shape[1])
        if len(polygon) < 3:
            raise ValueError("ROI polygon needs at least three vertices")
        self.polygon = [(float(x), float(y)) for x, y in polygon]
        contour = np.round(np.array(self.polygon, dtype=np.float64)).astype(np.int32)
        self.mask = np.zeros((height, width), dtype=np.uint8)
        cv2.fillPoly(self.mask, [contour.reshape(-1, 1, 2)], 1)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.mask.shape[0], self.mask.shape[1]

    def __call__(self, point: Point) -> bool:
        col = int(round(float(point[0])))
        row = int(round(float(point[1])))
        height, width = self.mask.shape
        if row < 0 or col < 0 or row >= height or col >= width:
            return False
        return bool(self.mask[row, col])

    def coverage(self) -> float:
        """Fraction of the image covered by the region."""

        return float(self.mask.mean()) if self.mask.size else 0.0
