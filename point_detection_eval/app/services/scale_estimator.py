"""Per-image scale factor and distance threshold from reference object sizes."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional, Sequence

import numpy as np
import yaml

from ..errors import InvalidInputError
from ..models import Box

LOGGER = logging.getLogger(__name__)


class ScaleOverrideTable(Mapping[str, float]):
    """Read-only mapping from image identifier to a manually chosen scale factor."""

    def __init__(self, overrides: Optional[Mapping[str, float]] = None) -> None:
        values: Dict[str, float] = {}
        for image_id, scale in (overrides or {}).items():
            scale_value = float(scale)
            if scale_value <= 0:
                raise ValueError(f"Scale override for '{image_id}' must be positive, got {scale}")
            values[str(image_id)] = scale_value
        self._values = MappingProxyType(values)

    @classmethod
    def from_yaml(cls, path: Path) -> "ScaleOverrideTable":
        with path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle) or {}
        overrides = payload.get("scale_overrides", payload) if isinstance(payload, dict) else None
        if not isinstance(overrides, dict):
            raise ValueError(f"Scale override file {path} must contain a mapping")
        LOGGER.info("Loaded %d scale overrides from %s", len(overrides), path)
        return cls(overrides)

    def __getitem__(self, image_id: str) -> float:
        return self._values[image_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)


def _diagonals(reference_boxes: Sequence[Box]) -> np.ndarray:
    if not reference_boxes:
        raise InvalidInputError("Reference box set is empty")
    for box in reference_boxes:
        if box.width <= 0 or box.height <= 0:
            raise InvalidInputError(f"Reference box has non-positive dimensions: {box.to_list()}")
    return np.array([box.diagonal for box in reference_boxes], dtype=np.float64)


def estimate_scale(
    reference_boxes: Sequence[Box],
    window_size: float,
    override: Optional[float] = None,
    *,
    dynamic: bool = True,
) -> float:
    """Return the factor that brings the smallest reference object up to the window size.

    The smallest diagonal is converted to a square side (``d / sqrt(2)``) and the
    factor is ``ceil(window_size / side)``. Without dynamic scaling the factor is
    1. A given ``override`` replaces the result unconditionally.
    """

    diagonals = _diagonals(reference_boxes)
    if dynamic:
        min_size = float(diagonals.min()) / math.sqrt(2.0)
        scale_factor = float(math.ceil(window_size / min_size))
    else:
        scale_factor = 1.0
    if override is not None:
        return float(override)
    return scale_factor


def distance_threshold(reference_boxes: Sequence[Box]) -> float:
    """Median diagonal of the (unscaled) reference boxes."""

    return float(np.median(_diagonals(reference_boxes)))


@dataclass(frozen=True)
class ScaleEstimate:
    scale_factor: float
    distance_threshold: float
    computed_scale: float
    overridden: bool


class ScaleEstimator:
    """Applies the scale heuristic and the manual override table for a run."""

    def __init__(
        self,
        window_size: float,
        overrides: Optional[ScaleOverrideTable] = None,
        *,
        dynamic: bool = True,
        manual_override: bool = True,
    ) -> None:
        if window_size <= 0:
            raise ValueError(f"Window size must be positive, got {window_size}")
        self.window_size = float(window_size)
        self.overrides = overrides if overrides is not None else ScaleOverrideTable()
        self.dynamic = dynamic
        self.manual_override = manual_override

    def estimate(self, image_id: str, reference_boxes: Sequence[Box]) -> ScaleEstimate:
        try:
            computed = estimate_scale(reference_boxes, self.window_size, dynamic=self.dynamic)
            threshold = distance_threshold(reference_boxes)
        except InvalidInputError as exc:
            exc.image_id = image_id
            raise
        override = self.overrides.get(image_id) if self.manual_override else None
        LOGGER.info(" >> minimum diagonal: %g, scale factor: %g", min(b.diagonal for b in reference_boxes), computed)
        if override is not None:
            LOGGER.info(" >> override scale factor: %g", override)
        LOGGER.info(" >> distance threshold: %g", threshold)
        return ScaleEstimate(
            scale_factor=float(override) if override is not None else computed,
            distance_threshold=threshold,
            computed_scale=computed,
            overridden=override is not None,
        )
