"""Entry point: run the detection pipeline on a dataset and evaluate it against point annotations."""
from __future__ import annotations

import argparse
import logging
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from .config.settings import AppSettings, load_settings
from .errors import EvaluationError, ImageValidationError, SetupError
from .models import ImageResult, StageMetrics
from .services.annotations import ReferenceSizeStore, load_annotations
from .services.detector import (
    ClassificationStage,
    ProposalStage,
    create_classification_stage,
    create_proposal_stage,
    require_artifact,
)
from .services.matcher import match
from .services.metrics import summarize
from .services.report import format_results_table
from .services.result_cache import CacheKey, FileCacheStore, ResultCache
from .services.result_store import ResultStore
from .services.scale_estimator import ScaleEstimator, ScaleOverrideTable
from .services.visualizer import save_visualization
from .utils.geometry import RoiMask
from .utils.images import list_images, load_image

LOGGER = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Evaluate detections against point annotations")
    parser.add_argument("--dataset-dir", type=str, default=None, help="Directory with test images and annotations")
    parser.add_argument("--output-dir", type=str, default=None, help="Directory for results, cache and figures")
    parser.add_argument("--cache-dir", type=str, default=None, help="Stage cache directory")
    parser.add_argument("--reference-sizes", type=str, default=None, help="Reference box file (JSON/YAML)")
    parser.add_argument("--annotator", type=str, default=None, help="Expected annotator name")
    parser.add_argument("--proposal-stage", type=str, default=None, help="'precomputed' or 'package.module:factory'")
    parser.add_argument("--proposals-dir", type=str, default=None, help="Precomputed proposal files")
    parser.add_argument("--detector-file", type=str, default=None, help="Pre-trained proposal detector")
    parser.add_argument("--classification-stage", type=str, default=None, help="'precomputed' or 'package.module:factory'")
    parser.add_argument("--classifier-file", type=str, default=None, help="Pre-trained classifier")
    parser.add_argument("--min-score", type=float, default=None, help="Score threshold for the precomputed classifier")
    parser.add_argument("--window-size", type=float, default=None, help="Detector window size in pixels")
    parser.add_argument("--no-dynamic-scale", action="store_true", help="Use scale factor 1 instead of the heuristic")
    parser.add_argument("--no-scale-override", action="store_true", help="Ignore the manual scale override table")
    parser.add_argument("--scale-overrides", type=str, default=None, help="YAML file with manual scale factors")
    parser.add_argument("--enhance", action="store_true", help="Enhance images with CLAHE")
    parser.add_argument("--visualize-proposals", action="store_true", help="Write proposal match images")
    parser.add_argument("--visualize-detections", action="store_true", help="Write detection match images")
    parser.add_argument("--skip-invalid", action="store_true", help="Skip images with invalid inputs instead of aborting")
    parser.add_argument("--log-format", choices=["text", "json"], default=None, help="Logging format")
    return parser


def setup_logging(settings: AppSettings) -> None:
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    if settings.log_format == "json":
        formatter = logging.Formatter('{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}')
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    logging.basicConfig(level=log_level, handlers=[handler])


def resolve_settings(args: argparse.Namespace) -> AppSettings:
    overrides = {}
    path_options = {
        "dataset_dir": args.dataset_dir,
        "output_dir": args.output_dir,
        "cache_dir": args.cache_dir,
        "reference_sizes_path": args.reference_sizes,
        "proposals_dir": args.proposals_dir,
        "detector_file": args.detector_file,
        "classifier_file": args.classifier_file,
        "scale_override_path": args.scale_overrides,
    }
    for key, value in path_options.items():
        if value:
            overrides[key] = Path(value)
    if args.annotator:
        overrides["annotator"] = args.annotator
    if args.proposal_stage:
        overrides["proposal_stage"] = args.proposal_stage
    if args.classification_stage:
        overrides["classification_stage"] = args.classification_stage
    if args.min_score is not None:
        overrides["min_score"] = args.min_score
    if args.window_size is not None:
        overrides["window_size"] = args.window_size
    if args.no_dynamic_scale:
        overrides["dynamic_scale_factor"] = False
    if args.no_scale_override:
        overrides["manual_scale_override"] = False
    if args.enhance:
        overrides["enhance_images"] = True
    if args.visualize_proposals:
        overrides["visualize_proposals"] = True
    if args.visualize_detections:
        overrides["visualize_detections"] = True
    if args.skip_invalid:
        overrides["on_invalid_image"] = "skip"
    if args.log_format:
        overrides["log_format"] = args.log_format

    return load_settings(**overrides)


@dataclass
class EvaluationContext:
    """Components shared by every image of a run; read-only after construction."""

    settings: AppSettings
    estimator: ScaleEstimator
    references: ReferenceSizeStore
    cache: ResultCache
    proposal_stage: ProposalStage
    classification_stage: ClassificationStage

    @property
    def proposal_identifier(self) -> str:
        return self.proposal_stage.identifier

    @property
    def classifier_identifier(self) -> str:
        classifier = self.settings.classifier_identifier or self.classification_stage.identifier
        # detections depend on both stages
        return f"{self.proposal_identifier}+{classifier}"

    @property
    def run_identifier(self) -> str:
        identifier = re.sub(r"[^A-Za-z0-9._-]+", "-", self.classifier_identifier)
        if self.settings.enhance_images:
            identifier += "-clahe"
        return identifier


@dataclass
class ImageOutcome:
    """Per-image result of a run: either an evaluation or the validation error that stopped it."""

    image_id: str
    result: Optional[ImageResult] = None
    error: Optional[ImageValidationError] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


def build_context(settings: AppSettings) -> EvaluationContext:
    """Check preconditions and assemble the run components; raises SetupError on failure."""

    detector_file = require_artifact(settings.detector_file, "proposal detector")
    classifier_file = require_artifact(settings.classifier_file, "classifier")

    if settings.manual_scale_override:
        try:
            overrides = ScaleOverrideTable.from_yaml(settings.scale_override_path)
        except (OSError, ValueError) as exc:
            raise SetupError(f"Unable to load scale overrides: {exc}") from exc
    else:
        overrides = ScaleOverrideTable()
    estimator = ScaleEstimator(
        settings.window_size,
        overrides,
        dynamic=settings.dynamic_scale_factor,
        manual_override=settings.manual_scale_override,
    )

    if settings.reference_sizes_path is not None:
        references = ReferenceSizeStore.from_file(settings.reference_sizes_path)
    else:
        references = ReferenceSizeStore.from_dataset_dir(settings.dataset_dir)

    proposal_stage = create_proposal_stage(settings.proposal_stage, detector_file, settings.proposals_dir)
    classification_stage = create_classification_stage(
        settings.classification_stage, classifier_file, settings.min_score
    )
    cache = ResultCache(FileCacheStore(settings.resolved_cache_dir))
    return EvaluationContext(
        settings=settings,
        estimator=estimator,
        references=references,
        cache=cache,
        proposal_stage=proposal_stage,
        classification_stage=classification_stage,
    )


def _log_stage(label: str, metrics: StageMetrics) -> None:
    LOGGER.info(
        "%s; precision: %.2f %%, recall: %.2f %%, number detected: %d, number annotated: %d, ratio: %.2f %%",
        label,
        100 * metrics.precision,
        100 * metrics.recall,
        metrics.num_detected,
        metrics.num_annotated,
        100 * metrics.ratio,
    )


def evaluate_image(image_path: Path, context: EvaluationContext) -> ImageResult:
    """Run both stages on one image and match their output against its annotations."""

    settings = context.settings
    image = load_image(image_path, enhance=settings.enhance_images)
    record = load_annotations(image_path, settings.annotator)
    points = record.points_for(settings.annotator)

    boxes = context.references.boxes_for(image.image_id)
    estimate = context.estimator.estimate(image.image_id, boxes)
    scale = estimate.scale_factor
    threshold = estimate.distance_threshold
    roi = RoiMask(record.roi, image.shape)

    proposals = context.cache.get_or_compute(
        CacheKey(image.image_id, "proposals", scale, context.proposal_identifier, settings.enhance_images),
        lambda: context.proposal_stage.propose(image, scale),
    )
    detections = context.cache.get_or_compute(
        CacheKey(image.image_id, "detections", scale, context.classifier_identifier, settings.enhance_images),
        lambda: context.classification_stage.classify(image, proposals),
    )
    LOGGER.info(" >> %d regions, %d detections; %d annotations", len(proposals), len(detections), len(points))

    proposal_match = match(points, proposals, roi, threshold)
    proposal_metrics = summarize(proposal_match)
    _log_stage("proposals", proposal_metrics)

    detection_match = match(points, detections, roi, threshold)
    detection_metrics = summarize(detection_match)
    _log_stage("detections", detection_metrics)

    if settings.visualize_proposals:
        save_visualization(
            settings.output_dir, image.image_id, "proposals", image.data, proposal_match, roi,
            title=f"{image.image_id}: proposals",
        )
    if settings.visualize_detections:
        save_visualization(
            settings.output_dir, image.image_id, "detections", image.data, detection_match, roi,
            title=f"{image.image_id}: final detections",
        )

    return ImageResult(
        image_name=image.image_id,
        num_annotations=detection_metrics.num_annotated,
        distance_threshold=threshold,
        scale_factor=scale,
        proposal_metrics=proposal_metrics,
        detection_metrics=detection_metrics,
        image_size=image.shape,
        proposals=proposal_match,
        detections=detection_match,
    )


def process_dataset(
    image_paths: Sequence[Path],
    context: EvaluationContext,
    store: ResultStore,
) -> List[ImageOutcome]:
    """Evaluate images in order, applying the configured policy to invalid ones."""

    outcomes: List[ImageOutcome] = []
    for index, image_path in enumerate(image_paths, start=1):
        LOGGER.info("Test image #%d: %s", index, image_path.stem)
        try:
            result = evaluate_image(image_path, context)
        except ImageValidationError as exc:
            if context.settings.on_invalid_image == "abort":
                LOGGER.error("Aborting run at image %s: %s", image_path.stem, exc)
                raise
            LOGGER.warning("Skipping image %s: %s", image_path.stem, exc)
            outcomes.append(ImageOutcome(image_id=image_path.stem, error=exc))
            continue
        store.append(result)
        outcomes.append(ImageOutcome(image_id=image_path.stem, result=result))
    return outcomes


def run_evaluation(settings: AppSettings) -> Path:
    """Evaluate the whole dataset and return the path of the results file."""

    LOGGER.info("Starting evaluation of %s", settings.dataset_dir)
    context = build_context(settings)
    image_paths = list_images(settings.dataset_dir)
    LOGGER.info("Found %d test images", len(image_paths))

    store = ResultStore(
        metadata={
            "dataset_dir": str(settings.dataset_dir),
            "annotator": settings.annotator,
            "proposal_identifier": context.proposal_identifier,
            "classifier_identifier": context.classifier_identifier,
            "window_size": settings.window_size,
            "dynamic_scale_factor": settings.dynamic_scale_factor,
            "manual_scale_override": settings.manual_scale_override,
            "enhance_images": settings.enhance_images,
        }
    )
    outcomes = process_dataset(image_paths, context, store)
    skipped = [outcome.image_id for outcome in outcomes if not outcome.ok]
    if skipped:
        LOGGER.warning("Skipped %d images: %s", len(skipped), ", ".join(skipped))
    LOGGER.info("Cache hits: %d, misses: %d", context.cache.hits, context.cache.misses)

    results_path = store.save(settings.output_dir / f"results-{context.run_identifier}.json")
    print(format_results_table(store.finalize()))
    return results_path


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    settings = resolve_settings(args)
    setup_logging(settings)

    try:
        run_evaluation(settings)
    except EvaluationError as exc:
        LOGGER.error("Evaluation failed: %s", exc)
        sys.exit(1)
    LOGGER.info("Evaluation completed")


if __name__ == "__main__":  # pragma: no cover
    main()
