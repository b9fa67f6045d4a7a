"""Error taxonomy for the screenshot extraction pipeline.

Only ``AggregationFailure`` is fatal for a submission. ``EngineFailure`` and
``ParseAmbiguity`` are recovered close to where they are raised, embedding
problems degrade to the fallback vector, and ``PersistenceFailure`` is reported
without discarding the extracted fields.
"""

from __future__ import annotations

from typing import List, Tuple


class PromoCaptureError(Exception):
    """Base class for all pipeline errors."""


class EngineFailure(PromoCaptureError):
    """OCR could not produce text for a single image."""

    def __init__(self, image_path: str, reason: str) -> None:
        super().__init__(f"OCR failed for {image_path}: {reason}")
        self.image_path = image_path
        self.reason = reason


class ParseAmbiguity(PromoCaptureError):
    """A field candidate was found but could not be interpreted."""

    def __init__(self, field: str, value: str) -> None:
        super().__init__(f"Could not interpret {field}={value!r}")
        self.field = field
        self.value = value


class AggregationFailure(PromoCaptureError):
    """Every image of a submission failed."""

    def __init__(self, failures: List[Tuple[str, str]]) -> None:
        if failures:
            detail = "; ".join(f"{path}: {reason}" for path, reason in failures)
        else:
            detail = "no images supplied"
        super().__init__(f"All images failed ({detail})")
        self.failures = list(failures)


class EmbeddingFailure(PromoCaptureError):
    """The embedding model could not produce a vector."""


class PersistenceFailure(PromoCaptureError):
    """A vector record could not be written."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed writing {path}: {reason}")
        self.path = path
        self.reason = reason
