"""Shared data models for point-based detection evaluation."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

Point = Tuple[float, float]

UNMATCHED = -1


def nan_to_none(value: float) -> Optional[float]:
    """Map NaN (undefined metric) to ``None`` so it survives strict JSON."""

    if value is None or math.isnan(value):
        return None
    return float(value)


def none_to_nan(value: Optional[float]) -> float:
    return math.nan if value is None else float(value)


@dataclass(frozen=True)
class Box:
    """Axis-aligned box in (x, y, width, height) format."""

    x: float
    y: float
    width: float
    height: float

    @property
    def centroid(self) -> Point:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    @property
    def diagonal(self) -> float:
        return math.hypot(self.width, self.height)

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> "Box":
        if len(values) != 4:
            raise ValueError(f"Expected [x, y, width, height], got {list(values)!r}")
        x, y, width, height = (float(v) for v in values)
        return cls(x=x, y=y, width=width, height=height)

    def to_list(self) -> List[float]:
        return [float(self.x), float(self.y), float(self.width), float(self.height)]


@dataclass(frozen=True)
class DetectionRecord:
    """A proposal or a final detection: a box plus an optional confidence."""

    box: Box
    score: Optional[float] = None

    @property
    def centroid(self) -> Point:
        return self.box.centroid

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> "DetectionRecord":
        if len(values) not in (4, 5):
            raise ValueError(f"Expected [x, y, width, height(, score)], got {list(values)!r}")
        box = Box.from_sequence(values[:4])
        if box.width < 0 or box.height < 0:
            raise ValueError(f"Detection box has negative dimensions: {box.to_list()}")
        score = float(values[4]) if len(values) == 5 else None
        return cls(box=box, score=score)

    def to_list(self) -> List[float]:
        values = self.box.to_list()
        if self.score is not None:
            values.append(float(self.score))
        return values


@dataclass(frozen=True)
class MatchResult:
    """Assignment between ROI-filtered annotated points and detection centroids.

    ``gt_assignment[i]`` holds the index of the detection assigned to annotated
    point ``i`` (or ``UNMATCHED``); ``dt_assignment[j]`` mirrors it for the
    detections. ``gt_source_indices`` maps the kept points back to their
    position in the unfiltered annotation list.
    """

    ground_truth: np.ndarray
    gt_assignment: np.ndarray
    detections: np.ndarray
    dt_assignment: np.ndarray
    gt_source_indices: np.ndarray
    threshold: float

    @property
    def true_positives(self) -> int:
        return int(np.count_nonzero(self.gt_assignment != UNMATCHED))

    @property
    def matched_detections(self) -> int:
        return int(np.count_nonzero(self.dt_assignment != UNMATCHED))

    @property
    def false_negatives(self) -> int:
        return int(np.count_nonzero(self.gt_assignment == UNMATCHED))

    @property
    def false_positives(self) -> int:
        return int(np.count_nonzero(self.dt_assignment == UNMATCHED))

    def matched_pairs(self) -> List[Tuple[int, int]]:
        """Return ``(gt_index, dt_index)`` pairs ordered by annotation index."""

        return [
            (int(gt_idx), int(dt_idx))
            for gt_idx, dt_idx in enumerate(self.gt_assignment)
            if dt_idx != UNMATCHED
        ]

    def matched_distances(self) -> np.ndarray:
        pairs = self.matched_pairs()
        if not pairs:
            return np.zeros(0, dtype=np.float64)
        gt_idx = np.array([p[0] for p in pairs])
        dt_idx = np.array([p[1] for p in pairs])
        delta = self.ground_truth[gt_idx] - self.detections[dt_idx]
        return np.sqrt(np.sum(delta * delta, axis=1))

    def to_dict(self) -> Dict[str, Any]:
        # Points are stored as [x, y, assigned_index] rows, with -1 when unmatched.
        return {
            "gt": [
                [float(x), float(y), int(a)]
                for (x, y), a in zip(self.ground_truth.tolist(), self.gt_assignment.tolist())
            ],
            "dt": [
                [float(x), float(y), int(a)]
                for (x, y), a in zip(self.detections.tolist(), self.dt_assignment.tolist())
            ],
            "gt_source_indices": [int(i) for i in self.gt_source_indices.tolist()],
            "threshold": float(self.threshold),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "MatchResult":
        gt_rows = np.asarray(payload.get("gt", []), dtype=np.float64).reshape(-1, 3)
        dt_rows = np.asarray(payload.get("dt", []), dtype=np.float64).reshape(-1, 3)
        return cls(
            ground_truth=gt_rows[:, :2].copy(),
            gt_assignment=gt_rows[:, 2].astype(np.int64),
            detections=dt_rows[:, :2].copy(),
            dt_assignment=dt_rows[:, 2].astype(np.int64),
            gt_source_indices=np.asarray(payload.get("gt_source_indices", []), dtype=np.int64),
            threshold=float(payload["threshold"]),
        )


@dataclass(frozen=True)
class StageMetrics:
    """Scalar summary of one matching; undefined ratios are NaN."""

    precision: float
    recall: float
    f_score: float
    num_detected: int
    num_annotated: int
    true_positives: int
    false_positives: int
    false_negatives: int

    @property
    def ratio(self) -> float:
        if self.num_annotated == 0:
            return math.nan
        return self.num_detected / self.num_annotated

    def to_dict(self) -> Dict[str, Any]:
        return {
            "precision": nan_to_none(self.precision),
            "recall": nan_to_none(self.recall),
            "f_score": nan_to_none(self.f_score),
            "num_detected": self.num_detected,
            "num_annotated": self.num_annotated,
            "tp": self.true_positives,
            "fp": self.false_positives,
            "fn": self.false_negatives,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "StageMetrics":
        return cls(
            precision=none_to_nan(payload.get("precision")),
            recall=none_to_nan(payload.get("recall")),
            f_score=none_to_nan(payload.get("f_score")),
            num_detected=int(payload["num_detected"]),
            num_annotated=int(payload["num_annotated"]),
            true_positives=int(payload["tp"]),
            false_positives=int(payload["fp"]),
            false_negatives=int(payload["fn"]),
        )


@dataclass(frozen=True)
class ImageResult:
    """Everything recorded for one evaluated image."""

    image_name: str
    num_annotations: int
    distance_threshold: float
    scale_factor: float
    proposal_metrics: StageMetrics
    detection_metrics: StageMetrics
    image_size: Tuple[int, ...]
    proposals: MatchResult
    detections: MatchResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image_name": self.image_name,
            "num_annotations": self.num_annotations,
            "distance_threshold": self.distance_threshold,
            "scale_factor": self.scale_factor,
            "proposal_metrics": self.proposal_metrics.to_dict(),
            "detection_metrics": self.detection_metrics.to_dict(),
            "image_size": list(self.image_size),
            "proposals": self.proposals.to_dict(),
            "detections": self.detections.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ImageResult":
        return cls(
            image_name=str(payload["image_name"]),
            num_annotations=int(payload["num_annotations"]),
            distance_threshold=float(payload["distance_threshold"]),
            scale_factor=float(payload["scale_factor"]),
            proposal_metrics=StageMetrics.from_dict(payload["proposal_metrics"]),
            detection_metrics=StageMetrics.from_dict(payload["detection_metrics"]),
            image_size=tuple(int(v) for v in payload.get("image_size", [])),
            proposals=MatchResult.from_dict(payload["proposals"]),
            detections=MatchResult.from_dict(payload["detections"]),
        )
