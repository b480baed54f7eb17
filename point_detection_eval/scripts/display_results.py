#!/usr/bin/env python3
"""Print a stored evaluation results file as a table."""
from __future__ import annotations

import argparse
import json
from pathlib import Path

from point_detection_eval.app.models import nan_to_none
from point_detection_eval.app.services.metrics import STAGES, summarize_dataset
from point_detection_eval.app.services.report import format_results_table
from point_detection_eval.app.services.result_store import load_results


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Display point-based evaluation results")
    parser.add_argument("results", type=Path, help="Path to a results-*.json file")
    parser.add_argument("--summary-json", action="store_true", help="Also print dataset summaries as JSON")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    records, metadata = load_results(args.results)
    if metadata:
        print(f"Classifier: {metadata.get('classifier_identifier', 'unknown')} | images: {len(records)}")
    print(format_results_table(records))
    if args.summary_json:
        summaries = {
            stage: {
                key: nan_to_none(value) if isinstance(value, float) else value
                for key, value in summarize_dataset(records, stage).items()
            }
            for stage in STAGES
        }
        print(json.dumps(summaries, indent=2))


if __name__ == "__main__":
    main()
