from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from point_detection_eval.app.models import Box, DetectionRecord
from point_detection_eval.app.services import visualizer
from point_detection_eval.app.services.matcher import match
from point_detection_eval.app.utils.geometry import RoiMask


def build_match():
    roi = RoiMask([(150, 100), (290, 100), (290, 190), (150, 190)], (200, 300))
    result = match([(200, 120), (280, 120)], [DetectionRecord(box=Box(199, 119, 2, 2))], roi, 5.0)
    return roi, result


def test_render_dims_outside_roi() -> None:
    roi, result = build_match()
    image = np.full((200, 300, 3), 200, dtype=np.uint8)

    rendered = visualizer.render_matches(image, result, roi=roi)

    assert rendered.shape == image.shape
    assert rendered[195, 5].tolist() == [100, 100, 100]
    assert rendered[170, 250].tolist() == [200, 200, 200]


def test_save_visualization_writes_jpeg(tmp_path: Path) -> None:
    roi, result = build_match()

    path = visualizer.save_visualization(
        tmp_path, "sample-a", "detections", np.zeros((200, 300, 3), dtype=np.uint8), result, roi
    )

    assert path == tmp_path / "sample-a-detections.jpg"
    assert path.exists()


def test_save_visualization_reports_failed_write(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    roi, result = build_match()
    monkeypatch.setattr(visualizer.cv2, "imwrite", lambda path, image: False)

    path = visualizer.save_visualization(
        tmp_path, "sample-a", "detections", np.zeros((200, 300, 3), dtype=np.uint8), result, roi
    )

    assert path is None
    assert list(tmp_path.iterdir()) == []
