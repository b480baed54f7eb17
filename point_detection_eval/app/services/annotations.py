"""Annotation and reference-size readers with schema validation."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, ValidationError

from ..errors import AnnotationFormatError, InvalidInputError, SetupError
from ..models import Box, Point

LOGGER = logging.getLogger(__name__)

SIDECAR_SUFFIXES = (".json", ".yaml", ".yml")
REFERENCE_FILENAMES = ("info.json", "info.yaml", "info.yml")


def load_mapping_file(path: Path) -> Any:
    """Parse a JSON or YAML document based on the file suffix."""

    suffix = path.suffix.lower()
    with path.open("r", encoding="utf-8") as handle:
        if suffix == ".json":
            return json.load(handle)
        if suffix in {".yaml", ".yml"}:
            return yaml.safe_load(handle)
    raise ValueError(f"Unsupported file type: {path} (expected .json/.yaml/.yml)")


class AnnotationRecord(BaseModel):
    """ROI polygon plus the points of each annotator for one image."""

    roi: List[Tuple[float, float]] = Field(min_length=3)
    annotations: Dict[str, List[Tuple[float, float]]]

    def points_for(self, annotator: str) -> List[Point]:
        return [(float(x), float(y)) for x, y in self.annotations[annotator]]


def find_sidecar(image_path: Path) -> Optional[Path]:
    for suffix in SIDECAR_SUFFIXES:
        candidate = image_path.with_suffix(suffix)
        if candidate.exists():
            return candidate
    return None


def load_annotations(image_path: Path, expected_annotator: str) -> AnnotationRecord:
    """Load and validate the annotation sidecar of ``image_path``.

    Exactly one annotator, named ``expected_annotator``, must be present.
    """

    image_id = image_path.stem
    sidecar = find_sidecar(image_path)
    if sidecar is None:
        raise AnnotationFormatError(f"No annotation file found for {image_path}", image_id)
    try:
        payload = load_mapping_file(sidecar)
        record = AnnotationRecord.model_validate(payload)
    except (OSError, ValidationError, ValueError, yaml.YAMLError) as exc:
        raise AnnotationFormatError(f"Invalid annotations in {sidecar}: {exc}", image_id) from exc

    annotators = sorted(record.annotations)
    if annotators != [expected_annotator]:
        raise AnnotationFormatError(
            f"Invalid annotations in {sidecar}: expected exactly annotator "
            f"'{expected_annotator}', found {annotators}",
            image_id,
        )
    return record


class ReferenceEntry(BaseModel):
    image_name: str
    boxes: List[Tuple[float, float, float, float]]


class ReferenceSizeStore:
    """Per-image reference boxes used for scale and threshold estimation."""

    def __init__(self, entries: Dict[str, List[Box]]) -> None:
        self._entries = entries

    @classmethod
    def from_file(cls, path: Path) -> "ReferenceSizeStore":
        try:
            payload = load_mapping_file(path)
            if isinstance(payload, dict):
                payload = payload.get("images", [])
            raw_entries = [ReferenceEntry.model_validate(item) for item in payload]
        except (OSError, ValidationError, ValueError, TypeError, yaml.YAMLError) as exc:
            raise SetupError(f"Invalid reference size file {path}: {exc}") from exc

        entries: Dict[str, List[Box]] = {}
        for entry in raw_entries:
            if entry.image_name in entries:
                raise SetupError(f"Duplicate reference entry for image '{entry.image_name}' in {path}")
            entries[entry.image_name] = [Box.from_sequence(values) for values in entry.boxes]
        LOGGER.info("Loaded reference sizes for %d images from %s", len(entries), path)
        return cls(entries)

    @classmethod
    def from_dataset_dir(cls, dataset_dir: Path) -> "ReferenceSizeStore":
        for name in REFERENCE_FILENAMES:
            candidate = dataset_dir / name
            if candidate.exists():
                return cls.from_file(candidate)
        raise SetupError(f"No reference size file ({', '.join(REFERENCE_FILENAMES)}) in {dataset_dir}")

    def boxes_for(self, image_id: str) -> List[Box]:
        boxes = self._entries.get(image_id)
        if boxes is None:
            raise InvalidInputError(f"No reference size information for image '{image_id}'", image_id)
        return list(boxes)

    def __contains__(self, image_id: object) -> bool:
        return image_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
