"""Fuse several screenshots of one promotion into a single record."""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Sequence

from ..domain.classifier import PlatformClassifier
from ..domain.errors import AggregationFailure, EngineFailure
from ..domain.models import (
    ExtractedFields,
    ImageFailure,
    ImageOutcome,
    ImageSuccess,
    MergedOcrResult,
    PlatformMatch,
)
from ..logging import get_logger
from ..metadata.fields import FieldExtractor
from .transcribe import TextExtractor

LOG = get_logger("orchestrator-aggregate")

DEFAULT_MERGE_GATE = 0.8


def resolve_platform(outcomes: Sequence[ImageSuccess]) -> Optional[PlatformMatch]:
    """Majority vote over known detections; ties go to the higher mean confidence."""
    votes: Dict[str, List[PlatformMatch]] = {}
    for outcome in outcomes:
        if outcome.platform.is_known:
            votes.setdefault(outcome.platform.code, []).append(outcome.platform)

    best: Optional[PlatformMatch] = None
    best_count = 0
    for code, matches in votes.items():
        mean_conf = sum(m.confidence for m in matches) / len(matches)
        if len(matches) > best_count or (
            len(matches) == best_count and best is not None and mean_conf > best.confidence
        ):
            best_count = len(matches)
            best = PlatformMatch(name=matches[0].name, code=code, confidence=mean_conf)
    return best


def merge_fields(outcomes: Sequence[ImageSuccess], merged_confidence: float, gate: float) -> ExtractedFields:
    """Keep the first value per field unless a later, confident image supplies one.

    A later image overwrites when its OCR confidence is strictly greater than
    ``gate * merged_confidence`` and its value is non-empty.
    """
    merged = ExtractedFields()
    threshold = merged_confidence * gate
    for outcome in outcomes:
        for name in outcome.fields.present():
            if name == "platform":
                continue
            value = outcome.fields.get(name)
            current = merged.get(name)
            if current is None or (outcome.reading.confidence > threshold and value):
                merged.set(name, value)
    return merged


class MultiImageAggregator:
    """Run OCR, classification and field extraction per image, then merge."""

    def __init__(
        self,
        text_extractor: TextExtractor,
        classifier: PlatformClassifier | Callable[[], PlatformClassifier],
        field_extractor: FieldExtractor,
        *,
        merge_gate: float = DEFAULT_MERGE_GATE,
        max_workers: int = 4,
    ) -> None:
        self.text_extractor = text_extractor
        self._classifier = classifier
        self.field_extractor = field_extractor
        self.merge_gate = merge_gate
        self.max_workers = max(1, int(max_workers))

    def _current_classifier(self) -> PlatformClassifier:
        if isinstance(self._classifier, PlatformClassifier):
            return self._classifier
        return self._classifier()

    def process_image(self, image_path: str, classifier: Optional[PlatformClassifier] = None) -> ImageOutcome:
        classifier = classifier or self._current_classifier()
        try:
            reading = self.text_extractor.extract(image_path)
        except EngineFailure as exc:
            return ImageFailure(image_path=image_path, reason=exc.reason)
        except Exception as exc:
            LOG.error(f"Unexpected OCR error for {image_path}: {exc.__class__.__name__}: {exc}")
            return ImageFailure(image_path=image_path, reason=str(exc))

        platform = classifier.classify(reading.text)
        fields = self.field_extractor.extract(reading.text)
        if platform.is_known:
            fields.platform = platform.name
        LOG.info(
            f"{os.path.basename(image_path)}: platform={platform.code} ({platform.confidence:.2f}%), "
            f"fields={len(fields.present())}"
        )
        return ImageSuccess(reading=reading, platform=platform, fields=fields)

    def collect(self, image_paths: Sequence[str]) -> List[ImageOutcome]:
        """Process all images concurrently and return outcomes in input order."""
        classifier = self._current_classifier()
        workers = min(self.max_workers, len(image_paths)) or 1
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ocr") as pool:
            futures = [pool.submit(self.process_image, path, classifier) for path in image_paths]
            return [f.result() for f in futures]

    def merge(self, outcomes: Sequence[ImageOutcome]) -> MergedOcrResult:
        successes = [o for o in outcomes if isinstance(o, ImageSuccess)]
        failures = [(o.image_path, o.reason) for o in outcomes if isinstance(o, ImageFailure)]
        for path, reason in failures:
            LOG.warning(f"Skipping {path}: {reason}")
        if not successes:
            raise AggregationFailure(failures)

        text = "\n".join(o.reading.text for o in successes)
        confidence = sum(o.reading.confidence for o in successes) / len(successes)
        platform = resolve_platform(successes)
        fields = merge_fields(successes, confidence, self.merge_gate)
        if platform is not None:
            fields.platform = platform.name

        LOG.info(f"Merged {len(successes)}/{len(outcomes)} image(s); confidence={confidence:.2f}")
        LOG.info(f"Detected platform: {platform.code if platform else 'none'}")
        return MergedOcrResult(
            text=text,
            confidence=confidence,
            detected_platform=platform,
            extracted_data=fields,
            image_count=len(successes),
            failed_images=failures,
        )

    def aggregate(self, image_paths: Sequence[str]) -> MergedOcrResult:
        paths = list(image_paths or [])
        if not paths:
            raise AggregationFailure([])
        LOG.info(f"Processing {len(paths)} image(s)")
        return self.merge(self.collect(paths))
