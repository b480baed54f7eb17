"""Append-only collection and persistence of per-image evaluation results."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..models import ImageResult

LOGGER = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class ResultStore:
    """Collects image results in processing order for the reporting tool."""

    def __init__(self, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.metadata: Dict[str, Any] = dict(metadata or {})
        self._records: List[ImageResult] = []
        self._finalized = False

    def append(self, image_result: ImageResult) -> None:
        if self._finalized:
            raise RuntimeError("Cannot append to a finalized result store")
        self._records.append(image_result)

    def finalize(self) -> Tuple[ImageResult, ...]:
        self._finalized = True
        return tuple(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def save(self, path: Path) -> Path:
        """Write all records to ``path`` atomically and return it."""

        records = self.finalize()
        payload = {
            "schema_version": SCHEMA_VERSION,
            "generated_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "metadata": self.metadata,
            "records": [record.to_dict() for record in records],
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_name(f"{path.name}.tmp")
        # undefined metrics are already null here
        try:
            temp_path.write_text(json.dumps(payload, indent=2, allow_nan=False), encoding="utf-8")
            temp_path.replace(path)
        finally:
            if temp_path.exists():
                temp_path.unlink()
        LOGGER.info("Saved %d image results to %s", len(records), path)
        return path


def load_results(path: Path) -> Tuple[List[ImageResult], Dict[str, Any]]:
    """Read a results file written by :meth:`ResultStore.save`."""

    with path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict) or not isinstance(payload.get("records"), list):
        raise ValueError(f"{path} is not a results file")
    metadata = payload.get("metadata", {})
    records = [ImageResult.from_dict(item) for item in payload["records"]]
    return records, metadata if isinstance(metadata, dict) else {}
