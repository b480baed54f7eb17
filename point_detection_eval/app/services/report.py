"""Plain-text tabular summary of evaluation results."""
from __future__ import annotations

import math
from typing import Dict, List, Sequence

from ..models import ImageResult, StageMetrics
from .metrics import STAGES, summarize_dataset

UNDEFINED = "n/a"

COLUMNS = [
    ("image", 18),
    ("annot", 6),
    ("scale", 6),
    ("thresh", 7),
    ("prop P%", 8),
    ("prop R%", 8),
    ("prop F%", 8),
    ("prop N", 7),
    ("det P%", 8),
    ("det R%", 8),
    ("det F%", 8),
    ("det N", 6),
    ("ratio%", 8),
]


def format_percent(value: float) -> str:
    if value is None or math.isnan(value):
        return UNDEFINED
    return f"{100.0 * value:.2f}"


def _row(values: Sequence[str]) -> str:
    return " | ".join(str(value).rjust(width) for value, (_, width) in zip(values, COLUMNS))


def _stage_cells(metrics: StageMetrics) -> List[str]:
    return [
        format_percent(metrics.precision),
        format_percent(metrics.recall),
        format_percent(metrics.f_score),
        str(metrics.num_detected),
    ]


def format_results_table(records: Sequence[ImageResult]) -> str:
    """Render one row per image followed by micro and macro summary rows."""

    header = _row([name for name, _ in COLUMNS])
    lines = [header, "-" * len(header)]
    for record in records:
        lines.append(
            _row(
                [
                    record.image_name,
                    str(record.num_annotations),
                    f"{record.scale_factor:g}",
                    f"{record.distance_threshold:.1f}",
                    *_stage_cells(record.proposal_metrics),
                    *_stage_cells(record.detection_metrics),
                    format_percent(record.detection_metrics.ratio),
                ]
            )
        )

    summaries: Dict[str, Dict[str, float]] = {stage: summarize_dataset(records, stage) for stage in STAGES}
    lines.append("-" * len(header))
    for label, prefix in (("micro", "micro_"), ("mean", "mean_")):
        cells = [label, str(summaries["detections"]["num_annotated"]), "", ""]
        for stage in STAGES:
            summary = summaries[stage]
            cells.extend(
                [
                    format_percent(summary[f"{prefix}precision"]),
                    format_percent(summary[f"{prefix}recall"]),
                    format_percent(summary[f"{prefix}f_score"]),
                    str(summary["num_detected"]) if prefix == "micro_" else "",
                ]
            )
        annotated = summaries["detections"]["num_annotated"]
        ratio = summaries["detections"]["num_detected"] / annotated if annotated else math.nan
        cells.append(format_percent(ratio) if prefix == "micro_" else "")
        lines.append(_row(cells))
    return "\n".join(lines)
