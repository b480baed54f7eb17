"""Greedy point matching between annotated points and detection centroids."""
from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

import numpy as np

from ..models import UNMATCHED, DetectionRecord, MatchResult, Point
from ..utils.geometry import as_point_array, detection_centroids, pairwise_distances

LOGGER = logging.getLogger(__name__)

RoiPredicate = Callable[[Point], bool]


def match(
    ground_truth_points: Sequence[Point],
    detections: Sequence[DetectionRecord],
    roi_mask: Optional[RoiPredicate],
    threshold: float,
) -> MatchResult:
    """Assign annotated points to detections by repeatedly taking the closest free pair.

    Matching strategy:
    - Drop annotated points for which ``roi_mask`` is false; they are never counted
    - Compute distances between every kept point and every detection centroid
    - Visit candidate pairs with distance <= threshold in ascending order of
      (distance, annotation index, detection index)
    - Accept a pair when neither end is assigned yet (one-to-one)

    This is a greedy assignment, not a minimum-cost one.
    """

    if threshold < 0:
        raise ValueError(f"Distance threshold must be non-negative, got {threshold}")

    all_points = as_point_array(ground_truth_points)
    if roi_mask is None:
        keep = np.ones(len(all_points), dtype=bool)
    else:
        keep = np.array([bool(roi_mask((x, y))) for x, y in all_points], dtype=bool)
    source_indices = np.flatnonzero(keep).astype(np.int64)
    gt = all_points[keep]
    dt = detection_centroids(detections)

    gt_assignment = np.full(len(gt), UNMATCHED, dtype=np.int64)
    dt_assignment = np.full(len(dt), UNMATCHED, dtype=np.int64)

    if len(gt) and len(dt):
        distances = pairwise_distances(gt, dt)
        gt_idx, dt_idx = np.nonzero(distances <= threshold)
        candidate_distances = distances[gt_idx, dt_idx]
        # lexsort uses the last key as primary
        order = np.lexsort((dt_idx, gt_idx, candidate_distances))
        for gi, di in zip(gt_idx[order], dt_idx[order]):
            if gt_assignment[gi] != UNMATCHED or dt_assignment[di] != UNMATCHED:
                continue
            gt_assignment[gi] = di
            dt_assignment[di] = gi

    result = MatchResult(
        ground_truth=gt,
        gt_assignment=gt_assignment,
        detections=dt,
        dt_assignment=dt_assignment,
        gt_source_indices=source_indices,
        threshold=float(threshold),
    )
    LOGGER.debug(
        "Matched %d of %d annotated points (%d outside ROI) to %d detections at threshold %.2f",
        result.true_positives,
        len(gt),
        len(all_points) - len(gt),
        len(dt),
        threshold,
    )
    return result
