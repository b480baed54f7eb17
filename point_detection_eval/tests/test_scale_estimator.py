from __future__ import annotations

import itertools
from pathlib import Path

import pytest

from point_detection_eval.app.config.settings import AppSettings
from point_detection_eval.app.errors import InvalidInputError
from point_detection_eval.app.models import Box
from point_detection_eval.app.services.scale_estimator import (
    ScaleEstimator,
    ScaleOverrideTable,
    distance_threshold,
    estimate_scale,
)

# diagonals 50, 10 and 5
BOXES = [Box(0, 0, 30, 40), Box(5, 5, 6, 8), Box(1, 2, 3, 4)]


def test_estimate_scale_uses_smallest_diagonal() -> None:
    # min diagonal 5 -> side 5 / sqrt(2) ~= 3.54 -> 30 / 3.54 ~= 8.49
    assert estimate_scale(BOXES, 30) == 9.0
    assert estimate_scale(BOXES[:2], 30) == 5.0


def test_estimate_scale_without_dynamic_scaling() -> None:
    assert estimate_scale(BOXES, 30, dynamic=False) == 1.0


def test_override_replaces_computed_scale() -> None:
    assert estimate_scale(BOXES, 30, override=0.75) == 0.75
    assert estimate_scale(BOXES, 30, override=1.0, dynamic=True) == 1.0


def test_distance_threshold_is_median_diagonal() -> None:
    assert distance_threshold(BOXES) == pytest.approx(10.0)
    assert distance_threshold(BOXES[:2]) == pytest.approx(30.0)


def test_distance_threshold_permutation_invariant() -> None:
    boxes = BOXES + [Box(0, 0, 9, 12), Box(0, 0, 1, 1)]
    expected = distance_threshold(boxes)
    for permutation in itertools.permutations(boxes):
        assert distance_threshold(list(permutation)) == expected


@pytest.mark.parametrize(
    "boxes",
    [
        [],
        [Box(0, 0, 0, 5)],
        [Box(0, 0, 5, 5), Box(0, 0, 5, -1)],
    ],
)
def test_degenerate_reference_boxes_rejected(boxes) -> None:
    with pytest.raises(InvalidInputError):
        estimate_scale(boxes, 30)
    with pytest.raises(InvalidInputError):
        distance_threshold(boxes)


def test_estimator_applies_override_but_not_to_threshold() -> None:
    estimator = ScaleEstimator(30, ScaleOverrideTable({"img-1": 0.5}))

    overridden = estimator.estimate("img-1", BOXES)
    plain = estimator.estimate("img-2", BOXES)

    assert overridden.scale_factor == 0.5
    assert overridden.computed_scale == 9.0
    assert overridden.overridden
    assert plain.scale_factor == 9.0
    assert not plain.overridden
    assert overridden.distance_threshold == plain.distance_threshold


def test_estimator_ignores_overrides_when_disabled() -> None:
    estimator = ScaleEstimator(30, ScaleOverrideTable({"img-1": 0.5}), manual_override=False)

    assert estimator.estimate("img-1", BOXES).scale_factor == 9.0


def test_estimator_tags_invalid_input_with_image() -> None:
    estimator = ScaleEstimator(30)
    with pytest.raises(InvalidInputError) as excinfo:
        estimator.estimate("img-9", [])
    assert excinfo.value.image_id == "img-9"


def test_override_table_is_read_only() -> None:
    table = ScaleOverrideTable({"a": 2})
    with pytest.raises(TypeError):
        table["b"] = 3.0  # type: ignore[index]
    assert table.get("missing") is None
    assert dict(table) == {"a": 2.0}


def test_override_table_rejects_non_positive_values() -> None:
    with pytest.raises(ValueError):
        ScaleOverrideTable({"a": 0})


def test_override_table_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "overrides.yaml"
    path.write_text("scale_overrides:\n  sample-a: 0.75\n  sample-b: 3\n", encoding="utf-8")

    table = ScaleOverrideTable.from_yaml(path)

    assert table["sample-a"] == 0.75
    assert table["sample-b"] == 3.0


def test_default_override_table_ships_with_package() -> None:
    table = ScaleOverrideTable.from_yaml(AppSettings().scale_override_path)

    assert len(table) == 10
    assert table["sample5-2012-12"] == 4.0
    assert table["sample1-2012-11"] == 0.5
