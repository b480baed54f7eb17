"""Configuration utilities for point-based detection evaluation."""
from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Run configuration sourced from environment variables or defaults."""

    model_config = SettingsConfigDict(env_prefix="POINTEVAL_", case_sensitive=False)

    dataset_dir: Path = Field(default=Path("dataset-sara"), description="Directory with test images and annotations.")
    output_dir: Path = Field(default=Path("experiment2-output"), description="Directory for results and figures.")
    cache_dir: Optional[Path] = Field(default=None, description="Stage cache directory; defaults to <output_dir>/cache.")
    reference_sizes_path: Optional[Path] = Field(
        default=None,
        description="Reference box file; defaults to info.json/info.yaml inside the dataset directory.",
    )
    annotator: str = Field(default="Sara", min_length=1, description="Only annotator accepted in annotation files.")

    proposal_stage: str = Field(default="precomputed", description="'precomputed' or 'package.module:factory'.")
    proposals_dir: Optional[Path] = Field(default=None, description="Per-image proposal files for the precomputed stage.")
    detector_file: Optional[Path] = Field(default=None, description="Pre-trained proposal detector artifact.")
    classification_stage: str = Field(default="precomputed", description="'precomputed' or 'package.module:factory'.")
    classifier_file: Optional[Path] = Field(default=None, description="Pre-trained classifier artifact.")
    classifier_identifier: Optional[str] = Field(default=None, description="Overrides the identifier used in cache keys.")
    min_score: float = Field(default=0.0, description="Score threshold of the precomputed classification stage.")

    window_size: float = Field(default=30.0, gt=0.0, description="Detector window size in pixels.")
    dynamic_scale_factor: bool = Field(default=True, description="Estimate the scale factor from reference boxes.")
    manual_scale_override: bool = Field(default=True, description="Apply the manual scale override table.")
    scale_override_path: Path = Field(
        default=Path(__file__).resolve().parent / "scale_overrides.yaml",
        description="YAML file with manual scale factors.",
    )
    enhance_images: bool = Field(default=False, description="Apply CLAHE before running the stages.")

    visualize_proposals: bool = Field(default=False)
    visualize_detections: bool = Field(default=False)
    on_invalid_image: Literal["abort", "skip"] = Field(default="abort")
    log_format: Literal["text", "json"] = Field(default="text")
    log_level: str = Field(default="INFO")

    @field_validator(
        "dataset_dir",
        "output_dir",
        "cache_dir",
        "reference_sizes_path",
        "proposals_dir",
        "detector_file",
        "classifier_file",
        "scale_override_path",
        mode="before",
    )
    @classmethod
    def _expand_path(cls, value: object) -> Optional[Path]:
        if value is None or value == "":
            return None
        return Path(str(value)).expanduser()

    @property
    def resolved_cache_dir(self) -> Path:
        return self.cache_dir if self.cache_dir is not None else self.output_dir / "cache"


def load_settings(**overrides: object) -> AppSettings:
    """Return application settings, applying optional overrides."""

    return AppSettings(**overrides)
