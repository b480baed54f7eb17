"""Precision/recall/F-score reduction of matching results.

Undefined ratios (zero denominators) are reported as NaN and never replaced
with zero, so an image without annotations or without detections stays
distinguishable from an image where the detector failed.
"""
from __future__ import annotations

import math
from typing import Dict, Iterable, List

import numpy as np

from ..errors import EvaluationError
from ..models import ImageResult, MatchResult, StageMetrics

STAGES = ("proposals", "detections")


def _ratio(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return math.nan
    return numerator / denominator


def compute_prf(tp: int, fp: int, fn: int) -> Dict[str, float]:
    """Return precision, recall and F-score for the given counts."""

    precision = _ratio(tp, tp + fp)
    recall = _ratio(tp, tp + fn)
    # NaN operands propagate through the sum and the product
    f_score = _ratio(2.0 * precision * recall, precision + recall)
    return {"precision": precision, "recall": recall, "f_score": f_score}


def summarize(match_result: MatchResult) -> StageMetrics:
    """Reduce a matching to scalar metrics."""

    tp = match_result.true_positives
    fn = match_result.false_negatives
    fp = match_result.false_positives
    if tp != match_result.matched_detections:
        raise EvaluationError(
            f"Sanity check failed: {tp} matched annotations vs "
            f"{match_result.matched_detections} matched detections"
        )

    scores = compute_prf(tp, fp, fn)
    return StageMetrics(
        precision=scores["precision"],
        recall=scores["recall"],
        f_score=scores["f_score"],
        num_detected=tp + fp,
        num_annotated=tp + fn,
        true_positives=tp,
        false_positives=fp,
        false_negatives=fn,
    )


def stage_metrics(result: ImageResult, stage: str) -> StageMetrics:
    if stage == "proposals":
        return result.proposal_metrics
    if stage == "detections":
        return result.detection_metrics
    raise ValueError(f"Unknown stage '{stage}', expected one of {STAGES}")


def _nanmean(values: List[float]) -> float:
    defined = [value for value in values if not math.isnan(value)]
    if not defined:
        return math.nan
    return float(np.mean(defined))


def summarize_dataset(results: Iterable[ImageResult], stage: str) -> Dict[str, float]:
    """Aggregate per-image metrics of one stage across a dataset.

    Returns micro-averaged scores (from summed TP/FP/FN), macro means over the
    images where each score is defined, and how many images left it undefined.

    Example:
        >>> summary = summarize_dataset(store.finalize(), "detections")
        >>> print(f"micro F: {summary['micro_f_score']:.3f}")
    """

    metrics = [stage_metrics(result, stage) for result in results]
    tp = sum(item.true_positives for item in metrics)
    fp = sum(item.false_positives for item in metrics)
    fn = sum(item.false_negatives for item in metrics)
    micro = compute_prf(tp, fp, fn)

    summary: Dict[str, float] = {
        "num_images": len(metrics),
        "tp": tp,
        "fp": fp,
        "fn": fn,
        "num_detected": tp + fp,
        "num_annotated": tp + fn,
        "micro_precision": micro["precision"],
        "micro_recall": micro["recall"],
        "micro_f_score": micro["f_score"],
    }
    for name in ("precision", "recall", "f_score"):
        values = [getattr(item, name) for item in metrics]
        summary[f"mean_{name}"] = _nanmean(values)
        summary[f"undefined_{name}"] = sum(1 for value in values if math.isnan(value))
    return summary
