"""Adapters for the external proposal and classification stages."""
from __future__ import annotations

import importlib
import logging
from pathlib import Path
from typing import Any, List, Optional, Protocol, Sequence

from ..errors import MissingArtifactError, SetupError
from ..models import DetectionRecord
from ..utils.images import LoadedImage
from .annotations import load_mapping_file

LOGGER = logging.getLogger(__name__)

PRECOMPUTED = "precomputed"


class ProposalStage(Protocol):
    """Region proposal generator; boxes are returned in original image coordinates."""

    identifier: str

    def propose(self, image: LoadedImage, scale_factor: float) -> List[DetectionRecord]:
        ...


class ClassificationStage(Protocol):
    """Second-stage scorer returning a filtered/re-scored subset of the proposals."""

    identifier: str

    def classify(self, image: LoadedImage, proposals: Sequence[DetectionRecord]) -> List[DetectionRecord]:
        ...


def require_artifact(path: Optional[Path], label: str) -> Optional[Path]:
    """Fail before any processing when an explicitly given artifact is missing."""

    if path is None:
        return None
    if not path.exists():
        raise MissingArtifactError(f"Pre-trained {label} does not exist: {path}")
    LOGGER.info(" >> Using pre-trained %s: %s", label, path)
    return path


class PrecomputedProposalStage:
    """Reads proposals written by an external detector, one JSON/YAML file per image.

    Each file holds a list of ``[x, y, width, height(, score)]`` rows, either at
    the top level or under a ``detections`` key.
    """

    SUFFIXES = (".json", ".yaml", ".yml")

    def __init__(self, detections_dir: Path, identifier: Optional[str] = None) -> None:
        if not detections_dir.is_dir():
            raise MissingArtifactError(f"Precomputed proposals directory does not exist: {detections_dir}")
        self.detections_dir = detections_dir
        self.identifier = identifier or f"{PRECOMPUTED}-{detections_dir.name}"

    def propose(self, image: LoadedImage, scale_factor: float) -> List[DetectionRecord]:
        for suffix in self.SUFFIXES:
            path = self.detections_dir / f"{image.image_id}{suffix}"
            if path.exists():
                break
        else:
            LOGGER.warning("No precomputed proposals for %s in %s", image.image_id, self.detections_dir)
            return []
        payload = load_mapping_file(path)
        if isinstance(payload, dict):
            payload = payload.get("detections", [])
        return [DetectionRecord.from_sequence(row) for row in payload]


class ScoreThresholdClassifier:
    """Keeps proposals whose score reaches a threshold; unscored proposals are dropped."""

    def __init__(self, min_score: float = 0.0) -> None:
        self.min_score = float(min_score)
        self.identifier = f"score{self.min_score:g}"

    def classify(self, image: LoadedImage, proposals: Sequence[DetectionRecord]) -> List[DetectionRecord]:
        kept = [p for p in proposals if p.score is not None and p.score >= self.min_score]
        LOGGER.debug("Classifier kept %d of %d proposals for %s", len(kept), len(proposals), image.image_id)
        return kept


def import_factory(target: str) -> Any:
    """Resolve ``package.module:attribute``."""

    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise SetupError(f"Stage target must look like 'package.module:factory', got '{target}'")
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attribute)
    except (ImportError, AttributeError) as exc:
        raise SetupError(f"Unable to import stage factory '{target}': {exc}") from exc


def _with_identifier(stage: Any, fallback: str) -> Any:
    if not getattr(stage, "identifier", None):
        stage.identifier = fallback
    return stage


def create_proposal_stage(
    target: str,
    artifact: Optional[Path] = None,
    detections_dir: Optional[Path] = None,
) -> ProposalStage:
    """Build the proposal stage named by ``target``."""

    if target == PRECOMPUTED:
        if detections_dir is None:
            raise SetupError("The precomputed proposal stage needs a detections directory")
        return PrecomputedProposalStage(detections_dir)
    factory = import_factory(target)
    LOGGER.info("Loading proposal stage %s (artifact: %s)", target, artifact)
    return _with_identifier(factory(artifact), artifact.stem if artifact else target)


def create_classification_stage(
    target: str,
    artifact: Optional[Path] = None,
    min_score: float = 0.0,
) -> ClassificationStage:
    """Build the classification stage named by ``target``."""

    if target == PRECOMPUTED:
        return ScoreThresholdClassifier(min_score)
    factory = import_factory(target)
    LOGGER.info("Loading classification stage %s (artifact: %s)", target, artifact)
    return _with_identifier(factory(artifact), artifact.stem if artifact else target)
