"""Exception types raised by the evaluation pipeline."""
from __future__ import annotations


class EvaluationError(Exception):
    """Base class for all evaluation failures."""


class SetupError(EvaluationError):
    """Raised for run-level failures that must abort before any image is processed."""


class MissingArtifactError(SetupError):
    """Raised when an explicitly configured detector or classifier file does not exist."""


class ImageValidationError(EvaluationError):
    """Raised when the inputs for a single image are unusable."""

    def __init__(self, message: str, image_id: str | None = None) -> None:
        super().__init__(message)
        self.image_id = image_id


class InvalidInputError(ImageValidationError, ValueError):
    """Raised for degenerate reference boxes or missing per-image information."""


class AnnotationFormatError(InvalidInputError):
    """Raised when an annotation record does not match the expected schema."""
