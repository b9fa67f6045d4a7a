import json
import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))

from promo_capture.config import Settings
from promo_capture.domain.errors import AggregationFailure
from promo_capture.domain.models import ClassifierWeights
from promo_capture.domain.platforms import DEFAULT_CATALOG
from promo_capture.metadata.fields import FieldExtractor
from promo_capture.orchestrator import index as index_module
from promo_capture.orchestrator.embedding import TextEmbedder
from promo_capture.orchestrator.flow import CatalogHolder, PipelineContext, PromotionPipeline
from promo_capture.orchestrator.index import EmbeddingIndex

READINGS = {
    "list.png": ("ebooking.ctrip.com 携程 EBK 酒店管理\n活动名称：端午特惠\n活动时间：2024-06-01至2024-06-10", 90),
    "detail.png": ("携程 EBK\n佣金比例：0.15\n折扣：8.5折", 85),
}


@pytest.fixture
def pipeline(tmp_path, fake_extractor):
    settings = Settings(repo_root=str(tmp_path), embedding_model=None, vectors_dir=str(tmp_path / "vectors"))
    embedder = TextEmbedder(None)
    context = PipelineContext(
        settings=settings,
        catalog=CatalogHolder(DEFAULT_CATALOG, ClassifierWeights(), source_dir=str(tmp_path)),
        text_extractor=fake_extractor(READINGS),
        field_extractor=FieldExtractor(),
        embedder=embedder,
        index=EmbeddingIndex(settings.vectors_dir, embedder),
    )
    return PromotionPipeline(context)


def test_process_merges_and_stores(pipeline):
    result = pipeline.process(["list.png", "detail.png"], 42)
    data = result.as_dict()
    assert data["detectedPlatform"]["code"] == "ctrip"
    assert data["extractedData"]["activityName"] == "端午特惠"
    assert data["extractedData"]["commissionRate"] == "15%"
    assert data["extractedData"]["discount"] == "8.5折"
    assert data["extractedData"]["platform"] == "携程"
    assert data["vectorId"] == result.record.id
    assert "persistenceError" not in data

    stored = pipeline.context.index.records_for_platform(42)
    assert [r.id for r in stored] == [result.record.id]
    assert stored[0].image_paths == ("list.png", "detail.png")

    similar = pipeline.find_similar(result.record.text, limit=1)
    assert similar[0][0].id == result.record.id


def test_process_without_store_writes_nothing(pipeline):
    result = pipeline.process(["list.png"], 1, store=False)
    assert result.record is None
    assert list(pipeline.context.index.records()) == []


def test_persistence_failure_keeps_merged_fields(pipeline, monkeypatch):
    def boom(*args, **kwargs):
        raise OSError("read-only file system")

    monkeypatch.setattr(index_module.tempfile, "mkstemp", boom)
    result = pipeline.process(["list.png"], 1)
    assert result.record is None
    assert "read-only file system" in result.persistence_error
    assert result.merged.extracted_data.activity_name == "端午特惠"
    assert result.as_dict()["persistenceError"] == result.persistence_error


def test_all_failures_propagate(pipeline):
    with pytest.raises(AggregationFailure):
        pipeline.process(["gone.png"], 1)


def test_catalog_reload(tmp_path):
    holder = CatalogHolder(DEFAULT_CATALOG, ClassifierWeights(), source_dir=str(tmp_path))
    catalog_file = tmp_path / "platform_catalog.json"

    catalog_file.write_text(
        json.dumps([{"name": "Acme", "code": "acme", "keywords": ["acme"], "domains": ["acme.test"]}]),
        encoding="utf-8",
    )
    assert [s.code for s in holder.reload()] == ["acme"]
    assert holder.classifier().classify("https://acme.test acme").code == "acme"

    # invalid file keeps the current catalog
    catalog_file.write_text("{broken", encoding="utf-8")
    assert [s.code for s in holder.reload()] == ["acme"]

    # no file restores the built-in one
    catalog_file.unlink()
    assert holder.reload() == DEFAULT_CATALOG
