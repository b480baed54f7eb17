from __future__ import annotations

import numpy as np
import pytest

from point_detection_eval.app.models import Box, DetectionRecord
from point_detection_eval.app.utils.geometry import (
    RoiMask,
    as_point_array,
    detection_centroids,
    pairwise_distances,
)


def test_roi_mask_contains_points_inside_polygon() -> None:
    mask = RoiMask([(10, 10), (60, 10), (60, 40), (10, 40)], (50, 80, 3))

    assert mask.shape == (50, 80)
    assert mask((30, 25))
    assert mask((10.4, 10.2))
    assert not mask((5, 5))
    assert not mask((70, 25))


def test_roi_mask_rejects_points_outside_image() -> None:
    mask = RoiMask([(0, 0), (79, 0), (79, 49), (0, 49)], (50, 80))

    assert mask((0, 0))
    assert not mask((-1, 10))
    assert not mask((10, 50))
    assert not mask((80, 10))


def test_roi_mask_requires_a_polygon() -> None:
    with pytest.raises(ValueError):
        RoiMask([(0, 0), (10, 10)], (20, 20))


def test_roi_mask_coverage() -> None:
    full = RoiMask([(0, 0), (19, 0), (19, 19), (0, 19)], (20, 20))
    assert full.coverage() == pytest.approx(1.0)


def test_detection_centroids_and_distances() -> None:
    centroids = detection_centroids(
        [DetectionRecord(box=Box(0, 0, 4, 4)), DetectionRecord(box=Box(10, 0, 2, 6))]
    )

    np.testing.assert_allclose(centroids, [[2.0, 2.0], [11.0, 3.0]])
    distances = pairwise_distances(as_point_array([(2, 5)]), centroids)
    np.testing.assert_allclose(distances, [[3.0, np.hypot(9.0, 2.0)]])
    assert detection_centroids([]).shape == (0, 2)


def test_as_point_array_validates_shape() -> None:
    assert as_point_array([]).shape == (0, 2)
    with pytest.raises(ValueError):
        as_point_array([(1, 2, 3)])
