from __future__ import annotations

import json
import math
from pathlib import Path

import numpy as np
import pytest

from point_detection_eval.app.errors import MissingArtifactError, SetupError
from point_detection_eval.app.models import Box, DetectionRecord
from point_detection_eval.app.services.detector import (
    PrecomputedProposalStage,
    ScoreThresholdClassifier,
    create_classification_stage,
    create_proposal_stage,
    import_factory,
    require_artifact,
)
from point_detection_eval.app.utils.images import LoadedImage


def loaded(image_id: str = "sample-a") -> LoadedImage:
    return LoadedImage(image_id=image_id, path=Path(f"{image_id}.jpg"), data=np.zeros((10, 10, 3), dtype=np.uint8))


def test_precomputed_stage_reads_rows(tmp_path: Path) -> None:
    (tmp_path / "sample-a.json").write_text(
        json.dumps({"detections": [[1, 2, 3, 4, 0.5], [5, 5, 2, 2]]}), encoding="utf-8"
    )
    stage = PrecomputedProposalStage(tmp_path)

    proposals = stage.propose(loaded(), 1.0)

    assert proposals == [
        DetectionRecord(box=Box(1, 2, 3, 4), score=0.5),
        DetectionRecord(box=Box(5, 5, 2, 2)),
    ]
    assert stage.identifier == f"precomputed-{tmp_path.name}"


def test_precomputed_stage_missing_file_yields_no_proposals(tmp_path: Path) -> None:
    assert PrecomputedProposalStage(tmp_path).propose(loaded("other"), 1.0) == []


def test_precomputed_stage_requires_directory(tmp_path: Path) -> None:
    with pytest.raises(MissingArtifactError):
        PrecomputedProposalStage(tmp_path / "missing")


def test_score_classifier_filters_proposals() -> None:
    proposals = [
        DetectionRecord(box=Box(0, 0, 1, 1), score=0.9),
        DetectionRecord(box=Box(0, 0, 1, 1), score=0.2),
        DetectionRecord(box=Box(0, 0, 1, 1)),
    ]
    classifier = ScoreThresholdClassifier(0.5)

    assert classifier.classify(loaded(), proposals) == proposals[:1]
    assert classifier.identifier == "score0.5"


def test_require_artifact(tmp_path: Path) -> None:
    artifact = tmp_path / "model.xml"
    assert require_artifact(None, "classifier") is None
    with pytest.raises(MissingArtifactError):
        require_artifact(artifact, "classifier")
    artifact.write_text("<model/>", encoding="utf-8")
    assert require_artifact(artifact, "classifier") == artifact


@pytest.mark.parametrize("target", ["no_colon", ":factory", "missing_module_xyz:factory", "math:missing"])
def test_import_factory_errors(target: str) -> None:
    with pytest.raises(SetupError):
        import_factory(target)


def test_import_factory_resolves_attribute() -> None:
    assert import_factory("math:sqrt") is math.sqrt


def test_custom_stage_factories(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "custom_stages.py").write_text(
        "\n".join(
            [
                "class Keep:",
                "    def __init__(self, artifact):",
                "        self.artifact = artifact",
                "    def classify(self, image, proposals):",
                "        return list(proposals)",
                "",
                "def build(artifact):",
                "    return Keep(artifact)",
            ]
        ),
        encoding="utf-8",
    )
    monkeypatch.syspath_prepend(str(tmp_path))
    artifact = tmp_path / "svm-v3.yaml"

    stage = create_classification_stage("custom_stages:build", artifact)

    assert stage.artifact == artifact
    assert stage.identifier == "svm-v3"
    assert create_classification_stage("precomputed", min_score=0.3).identifier == "score0.3"


def test_precomputed_proposals_need_directory() -> None:
    with pytest.raises(SetupError):
        create_proposal_stage("precomputed")
