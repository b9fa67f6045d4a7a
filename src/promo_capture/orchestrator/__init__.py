"""High-level orchestration for the screenshot extraction pipeline."""

from .transcribe import TextExtractor, TesseractEngine, VisionEngine
from .aggregate import MultiImageAggregator
from .embedding import TextEmbedder, cosine_similarity, hash_embedding
from .index import EmbeddingIndex
from .flow import CatalogHolder, PipelineContext, PromotionPipeline, build_pipeline_context

__all__ = [
    "TextExtractor",
    "TesseractEngine",
    "VisionEngine",
    "MultiImageAggregator",
    "TextEmbedder",
    "cosine_similarity",
    "hash_embedding",
    "EmbeddingIndex",
    "CatalogHolder",
    "PipelineContext",
    "PromotionPipeline",
    "build_pipeline_context",
]
