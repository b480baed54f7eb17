"""Rendering of matching results on top of the evaluated image."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple

import cv2
import numpy as np

from ..models import UNMATCHED, MatchResult
from ..utils.geometry import RoiMask

LOGGER = logging.getLogger(__name__)

# BGR
TP_ANNOTATION_COLOR = (255, 255, 0)
FN_COLOR = (0, 255, 255)
TP_DETECTION_COLOR = (0, 255, 0)
FP_COLOR = (0, 0, 255)


def _point(values: np.ndarray) -> Tuple[int, int]:
    return int(round(float(values[0]))), int(round(float(values[1])))


def render_matches(
    image: np.ndarray,
    result: MatchResult,
    roi: Optional[RoiMask] = None,
    title: str = "",
    marker_size: int = 12,
) -> np.ndarray:
    """Draw annotated points (+) and detections (x), colored by match status."""

    if roi is not None:
        weights = 0.5 * roi.mask.astype(np.float32) + 0.5
        if image.ndim == 3:
            weights = weights[:, :, np.newaxis]
        output = np.clip(image.astype(np.float32) * weights, 0, 255).astype(np.uint8)
    else:
        output = image.copy()

    for point, assigned in zip(result.ground_truth, result.gt_assignment):
        color = TP_ANNOTATION_COLOR if assigned != UNMATCHED else FN_COLOR
        cv2.drawMarker(output, _point(point), color, cv2.MARKER_CROSS, marker_size, 2)
    for point, assigned in zip(result.detections, result.dt_assignment):
        color = TP_DETECTION_COLOR if assigned != UNMATCHED else FP_COLOR
        cv2.drawMarker(output, _point(point), color, cv2.MARKER_TILTED_CROSS, marker_size, 2)

    legend = [
        (f"TP (annotated): {result.true_positives}", TP_ANNOTATION_COLOR),
        (f"FN: {result.false_negatives}", FN_COLOR),
        (f"TP (det): {result.matched_detections}", TP_DETECTION_COLOR),
        (f"FP: {result.false_positives}", FP_COLOR),
    ]
    y_offset = 30
    if title:
        cv2.putText(output, title, (10, y_offset), cv2.FONT_HERSHEY_SIMPLEX, 0.8, (255, 255, 255), 2, lineType=cv2.LINE_AA)
        y_offset += 30
    for text, color in legend:
        cv2.putText(output, text, (10, y_offset), cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2, lineType=cv2.LINE_AA)
        y_offset += 25
    return output


def save_visualization(
    output_dir: Path,
    image_id: str,
    stage: str,
    image: np.ndarray,
    result: MatchResult,
    roi: Optional[RoiMask] = None,
    title: str = "",
) -> Optional[Path]:
    """Render and write ``<image_id>-<stage>.jpg`` into ``output_dir``.

    Returns ``None`` when OpenCV cannot encode or write the image.
    """

    output_dir.mkdir(parents=True, exist_ok=True)
    target = output_dir / f"{image_id}-{stage}.jpg"
    rendered = render_matches(image, result, roi=roi, title=title)
    temp_path = output_dir / f"{image_id}-{stage}.tmp.jpg"
    if not cv2.imwrite(str(temp_path), rendered):
        LOGGER.warning("Unable to write visualization %s", target)
        return None
    temp_path.replace(target)
    LOGGER.debug("Saved visualization %s", target)
    return target
