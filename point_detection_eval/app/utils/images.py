"""Image loading and optional contrast enhancement."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Tuple

import cv2
import numpy as np

from ..errors import ImageValidationError, SetupError

LOGGER = logging.getLogger(__name__)

IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png")


@dataclass
class LoadedImage:
    image_id: str
    path: Path
    data: np.ndarray

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(int(v) for v in self.data.shape)


def list_images(dataset_dir: Path, suffixes: Iterable[str] = IMAGE_SUFFIXES) -> List[Path]:
    """Return dataset images sorted by name.

    The file stem is the image identifier, so two images differing only by
    extension are rejected.
    """

    allowed = {suffix.lower() for suffix in suffixes}
    images = sorted(path for path in dataset_dir.iterdir() if path.is_file() and path.suffix.lower() in allowed)
    seen: Dict[str, Path] = {}
    for path in images:
        if path.stem in seen:
            raise SetupError(f"Images {seen[path.stem].name} and {path.name} share the identifier '{path.stem}'")
        seen[path.stem] = path
    return images


def enhance_image(image: np.ndarray, clip_limit: float = 2.0, tile_grid: int = 8) -> np.ndarray:
    """Apply CLAHE to the luminance channel (or to the image itself when grayscale)."""

    clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=(tile_grid, tile_grid))
    if image.ndim == 2:
        return clahe.apply(image)
    lab = cv2.cvtColor(image, cv2.COLOR_BGR2LAB)
    lab[:, :, 0] = clahe.apply(lab[:, :, 0])
    return cv2.cvtColor(lab, cv2.COLOR_LAB2BGR)


def load_image(path: Path, enhance: bool = False) -> LoadedImage:
    """Read an image from disk, optionally enhanced."""

    data = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if data is None:
        raise ImageValidationError(f"Unable to read image: {path}", path.stem)
    if enhance:
        data = enhance_image(data)
    LOGGER.debug("Loaded image %s with shape %s", path, data.shape)
    return LoadedImage(image_id=path.stem, path=path, data=data)
