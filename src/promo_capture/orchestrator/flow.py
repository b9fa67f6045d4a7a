"""Pipeline context and end-to-end submission flow."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from ..config import Settings, load_platform_catalog
from ..domain.classifier import PlatformClassifier
from ..domain.errors import PersistenceFailure
from ..domain.models import ClassifierWeights, PlatformSignature, SubmissionResult
from ..logging import get_logger
from ..metadata.fields import FieldExtractor
from .aggregate import MultiImageAggregator
from .embedding import TextEmbedder
from .index import EmbeddingIndex
from .transcribe import OcrEngine, TesseractEngine, TextExtractor, VisionEngine

LOG = get_logger("orchestrator-flow")


class CatalogHolder:
    """Owns the active platform catalog and its classifier.

    Reload policy: ``reload()`` re-reads ``platform_catalog.json`` and swaps in
    a new classifier atomically. A missing file restores the built-in catalog;
    an invalid file keeps the current one. Submissions already running keep
    the classifier they started with.
    """

    def __init__(self, catalog: Sequence[PlatformSignature], weights: ClassifierWeights, *, source_dir: str) -> None:
        self.source_dir = source_dir
        self.weights = weights
        self._lock = threading.Lock()
        self._classifier = PlatformClassifier(catalog, weights)

    @property
    def catalog(self) -> Tuple[PlatformSignature, ...]:
        return self._classifier.catalog

    def classifier(self) -> PlatformClassifier:
        with self._lock:
            return self._classifier

    def reload(self) -> Tuple[PlatformSignature, ...]:
        catalog = load_platform_catalog(self.source_dir, fallback=self.catalog)
        new_classifier = PlatformClassifier(catalog, self.weights)
        with self._lock:
            self._classifier = new_classifier
        LOG.info(f"Platform catalog reloaded ({len(catalog)} signatures)")
        return catalog


@dataclass
class PipelineContext:
    settings: Settings
    catalog: CatalogHolder
    text_extractor: TextExtractor
    field_extractor: FieldExtractor
    embedder: TextEmbedder
    index: EmbeddingIndex


def build_engines(settings: Settings) -> list[OcrEngine]:
    engines: list[OcrEngine] = []
    if settings.ollama_model:
        engines.append(
            VisionEngine(
                ollama_url=settings.ollama_url,
                model=settings.ollama_model,
                timeout=settings.ocr_timeout,
                confidence=settings.vision_confidence,
            )
        )
    engines.append(TesseractEngine(lang=settings.tesseract_lang, tesseract_cmd=settings.tesseract_cmd))
    return engines


def build_pipeline_context(settings: Settings, *, start_embedder: bool = True) -> PipelineContext:
    """Construct the shared context once at startup.

    The embedding model starts loading in the background immediately.
    """
    catalog = CatalogHolder(
        load_platform_catalog(settings.repo_root),
        settings.weights,
        source_dir=settings.repo_root,
    )
    embedder = TextEmbedder(
        settings.embedding_model,
        fallback_dim=settings.embedding_fallback_dim,
        load_timeout=settings.embedding_load_timeout,
    )
    if start_embedder:
        embedder.start()
    context = PipelineContext(
        settings=settings,
        catalog=catalog,
        text_extractor=TextExtractor(build_engines(settings)),
        field_extractor=FieldExtractor(),
        embedder=embedder,
        index=EmbeddingIndex(settings.vectors_dir, embedder),
    )
    log_settings_banner(settings, catalog)
    return context


def log_settings_banner(settings: Settings, catalog: CatalogHolder) -> None:
    LOG.info("Pipeline configuration prepared")
    LOG.info(f"Repository root    : {settings.repo_root}")
    LOG.info(f"Vision OCR model   : {settings.ollama_model or 'disabled'}")
    LOG.info(f"Tesseract language : {settings.tesseract_lang}")
    LOG.info(f"OCR workers        : {settings.max_workers}")
    LOG.info(f"Embedding model    : {settings.embedding_model or 'disabled'}")
    LOG.info(f"Vectors directory  : {settings.vectors_dir}")
    LOG.info(f"Platform catalog   : {', '.join(sig.code for sig in catalog.catalog)}")


class PromotionPipeline:
    """Screenshots in, merged record (and stored vector) out."""

    def __init__(self, context: PipelineContext) -> None:
        self.context = context
        self.aggregator = MultiImageAggregator(
            context.text_extractor,
            context.catalog.classifier,
            context.field_extractor,
            merge_gate=context.settings.merge_gate,
            max_workers=context.settings.max_workers,
        )

    def process(
        self,
        image_paths: Sequence[str],
        platform_id: Optional[int],
        *,
        store: bool = True,
    ) -> SubmissionResult:
        """Aggregate the screenshots and persist a vector record.

        AggregationFailure propagates. A failed write is reported on the
        result while the merged fields are still returned.
        """
        merged = self.aggregator.aggregate(image_paths)
        result = SubmissionResult(merged=merged)
        if not store:
            return result
        try:
            result.record = self.context.index.store(merged, platform_id, list(image_paths))
        except PersistenceFailure as exc:
            LOG.error(f"Vector record not stored: {exc}")
            result.persistence_error = str(exc)
        return result

    def find_similar(self, query: str, limit: int = 5, *, platform_id: Optional[int] = None):
        return self.context.index.find_similar(query, limit, platform_id=platform_id)
