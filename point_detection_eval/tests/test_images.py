from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np
import pytest

from point_detection_eval.app.errors import ImageValidationError, SetupError
from point_detection_eval.app.utils.images import enhance_image, list_images, load_image


def test_list_images_sorted_and_filtered(tmp_path: Path) -> None:
    for name in ["b.png", "a.jpg", "c.JPEG", "a.json", "info.yaml"]:
        (tmp_path / name).write_bytes(b"")

    assert [path.name for path in list_images(tmp_path)] == ["a.jpg", "b.png", "c.JPEG"]


def test_load_image_with_enhancement(tmp_path: Path) -> None:
    gradient = np.tile(np.linspace(60, 120, 64, dtype=np.uint8), (48, 1))
    path = tmp_path / "frame.png"
    cv2.imwrite(str(path), cv2.cvtColor(gradient, cv2.COLOR_GRAY2BGR))

    plain = load_image(path)
    enhanced = load_image(path, enhance=True)

    assert plain.image_id == "frame"
    assert plain.shape == (48, 64, 3)
    assert enhanced.shape == plain.shape
    assert not np.array_equal(enhanced.data, plain.data)


def test_enhance_grayscale_image() -> None:
    gray = np.tile(np.linspace(60, 120, 32, dtype=np.uint8), (32, 1))

    assert enhance_image(gray).shape == (32, 32)


def test_unreadable_image_is_validation_error(tmp_path: Path) -> None:
    path = tmp_path / "broken.jpg"
    path.write_bytes(b"not an image")

    with pytest.raises(ImageValidationError) as excinfo:
        load_image(path)
    assert excinfo.value.image_id == "broken"


def test_list_images_rejects_shared_identifiers(tmp_path: Path) -> None:
    (tmp_path / "a.jpg").write_bytes(b"")
    (tmp_path / "a.png").write_bytes(b"")

    with pytest.raises(SetupError):
        list_images(tmp_path)
