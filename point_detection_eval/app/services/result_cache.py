"""Compute-once caching of per-image proposals and detections."""
from __future__ import annotations

import hashlib
import json
import logging
import re
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from ..models import DetectionRecord

LOGGER = logging.getLogger(__name__)

CACHE_STAGES = ("proposals", "detections")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._=-]+")


@dataclass(frozen=True)
class CacheKey:
    """Every parameter that changes the output of a pipeline stage for one image."""

    image_id: str
    stage: str
    scale_factor: float
    identifier: str
    enhanced: bool

    def __post_init__(self) -> None:
        if self.stage not in CACHE_STAGES:
            raise ValueError(f"Unknown cache stage '{self.stage}', expected one of {CACHE_STAGES}")
        object.__setattr__(self, "scale_factor", float(self.scale_factor))

    def as_string(self) -> str:
        # repr() of a float round-trips exactly, so distinct scales never share a key
        return (
            f"{self.image_id}|{self.stage}|scale={self.scale_factor!r}"
            f"|{self.identifier}|enhance={int(self.enhanced)}"
        )

    def filename(self) -> str:
        raw = self.as_string()
        digest = hashlib.sha1(raw.encode("utf-8")).hexdigest()[:12]
        readable = _UNSAFE_CHARS.sub("_", f"{self.image_id}-{self.stage}-{self.identifier}")
        return f"{readable}-{digest}.json"


class CacheStore(Protocol):
    """Key-value storage behind :class:`ResultCache`."""

    def load(self, key: CacheKey) -> Optional[List[DetectionRecord]]:
        ...

    def save(self, key: CacheKey, records: Sequence[DetectionRecord]) -> None:
        ...


class InMemoryCacheStore:
    """Dictionary-backed store, mainly for tests."""

    def __init__(self) -> None:
        self.entries: Dict[CacheKey, Tuple[DetectionRecord, ...]] = {}

    def load(self, key: CacheKey) -> Optional[List[DetectionRecord]]:
        records = self.entries.get(key)
        return list(records) if records is not None else None

    def save(self, key: CacheKey, records: Sequence[DetectionRecord]) -> None:
        self.entries[key] = tuple(records)


class FileCacheStore:
    """One JSON file per key inside a cache directory.

    Files are written to a temporary name and renamed into place, so a reader
    never observes a partial entry. Unreadable or mismatching files are
    reported and treated as missing.
    """

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir = cache_dir

    def path_for(self, key: CacheKey) -> Path:
        return self.cache_dir / key.filename()

    def load(self, key: CacheKey) -> Optional[List[DetectionRecord]]:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            if payload.get("key") != asdict(key):
                raise ValueError("stored key does not match requested key")
            return [DetectionRecord.from_sequence(row) for row in payload["records"]]
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            LOGGER.warning("Ignoring unreadable cache entry %s: %s", path, exc)
            return None

    def save(self, key: CacheKey, records: Sequence[DetectionRecord]) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        target = self.path_for(key)
        temp_path = target.with_name(f"{target.name}.{uuid.uuid4().hex}.tmp")
        payload = {"key": asdict(key), "records": [record.to_list() for record in records]}
        try:
            temp_path.write_text(json.dumps(payload), encoding="utf-8")
            temp_path.replace(target)
        finally:
            if temp_path.exists():
                temp_path.unlink()
        LOGGER.debug("Cached %d records to %s", len(records), target)


class ResultCache:
    """Returns stored stage outputs, computing and persisting them on first request."""

    def __init__(self, store: CacheStore) -> None:
        self.store = store
        self._memo: Dict[CacheKey, Tuple[DetectionRecord, ...]] = {}
        self.hits = 0
        self.misses = 0

    def get_or_compute(
        self,
        key: CacheKey,
        compute: Callable[[], Sequence[DetectionRecord]],
    ) -> List[DetectionRecord]:
        memoized = self._memo.get(key)
        if memoized is not None:
            self.hits += 1
            return list(memoized)

        cached = self.store.load(key)
        if cached is not None:
            LOGGER.info(" >> loaded %d cached %s", len(cached), key.stage)
            self.hits += 1
            self._memo[key] = tuple(cached)
            return list(cached)

        self.misses += 1
        records = tuple(compute())
        try:
            self.store.save(key, records)
        except (OSError, TypeError, ValueError) as exc:
            LOGGER.warning("Unable to persist cache entry for %s: %s", key.as_string(), exc)
        self._memo[key] = records
        return list(records)
