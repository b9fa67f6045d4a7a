import json
import os
import sys
import time

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))

from promo_capture.domain.errors import PersistenceFailure
from promo_capture.domain.models import ExtractedFields, MergedOcrResult
from promo_capture.orchestrator import index as index_module
from promo_capture.orchestrator.embedding import TextEmbedder
from promo_capture.orchestrator.index import EmbeddingIndex, record_text


def _merged(name, text="", description=None):
    return MergedOcrResult(
        text=text,
        confidence=90,
        detected_platform=None,
        extracted_data=ExtractedFields(activity_name=name, description=description),
        image_count=1,
    )


@pytest.fixture
def index(tmp_path):
    return EmbeddingIndex(str(tmp_path / "vectors"), TextEmbedder(None))


def test_store_writes_one_json_file_per_record(index):
    rec = index.store(_merged("端午特惠", "携程 EBK"), 3, ["a.png", "b.png"])
    assert rec.id.startswith("vec_")
    assert len(rec.vector) == 256
    path = os.path.join(index.vectors_dir, f"{rec.id}.json")
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    assert data["id"] == rec.id
    assert data["metadata"]["platformId"] == 3
    assert data["metadata"]["imagePaths"] == ["a.png", "b.png"]
    assert data["metadata"]["extractedData"] == {"activityName": "端午特惠"}
    assert data["metadata"]["createdAt"]
    assert index.get(rec.id) == rec


def test_record_ids_are_unique(index):
    ids = {index.store(_merged("同名活动"), None, []).id for _ in range(5)}
    assert len(ids) == 5
    assert index.summary() == {"records": 5, "dimension": 256}


def test_record_text_joins_name_description_and_text():
    merged = _merged("端午特惠", "携程", description="入住两晚送早餐")
    assert record_text(merged) == "端午特惠 入住两晚送早餐 携程"


def test_find_similar_ranks_identical_text_first(index):
    index.store(_merged("美团 暑期大促", "meituan.com"), 1, [])
    target = index.store(_merged("携程 端午特惠", "ebooking.ctrip.com"), 1, [])
    index.store(_merged("Spring flash sale", "fliggy.com"), 2, [])

    results = index.find_similar(target.text, limit=3)
    assert results[0][0].id == target.id
    assert results[0][1] == pytest.approx(1.0)
    sims = [s for _, s in results]
    assert sims == sorted(sims, reverse=True)
    # identical query, identical ranking
    assert [r.id for r, _ in index.find_similar(target.text, limit=3)] == [r.id for r, _ in results]


def test_find_similar_limit_and_platform_filter(index):
    for i in range(4):
        index.store(_merged(f"活动 {i}"), 1 if i % 2 else 2, [])
    assert index.find_similar("活动", limit=0) == []
    assert len(index.find_similar("活动", limit=2)) == 2
    only_one = index.find_similar("活动", limit=10, platform_id=1)
    assert len(only_one) == 2
    assert all(rec.platform_id == 1 for rec, _ in only_one)
    assert len(index.records_for_platform(2)) == 2


def test_equal_similarity_orders_by_creation_then_id(index):
    first = index.store(_merged("同一个活动"), None, [])
    second = index.store(_merged("同一个活动"), None, [])
    results = index.find_similar(first.text, limit=2)
    expected = sorted([first, second], key=lambda r: (r.created_at, r.id))
    assert [r.id for r, _ in results] == [r.id for r in expected]


def test_unreadable_record_is_skipped(index):
    index.store(_merged("正常记录"), None, [])
    with open(os.path.join(index.vectors_dir, "vec_broken.json"), "w", encoding="utf-8") as f:
        f.write("{not json")
    assert len(list(index.records())) == 1
    assert index.get("vec_broken") is None


def test_dimension_pinned_by_first_record(tmp_path, model_embedder):
    vdir = str(tmp_path / "vectors")
    first = EmbeddingIndex(vdir, TextEmbedder(None)).store(_merged("旧记录"), None, [])
    assert len(first.vector) == 256

    # model becomes available later with a different size
    reopened = EmbeddingIndex(vdir, model_embedder(8))
    assert reopened.dimension == 256
    rec = reopened.store(_merged("新记录"), None, [])
    assert len(rec.vector) == 256
    assert len(reopened.find_similar("新记录")) == 2


def test_empty_index_follows_embedder_dimension(tmp_path, model_embedder):
    idx = EmbeddingIndex(str(tmp_path / "vectors"), model_embedder(8))
    assert idx.dimension == 8
    assert len(idx.store(_merged("模型向量"), None, []).vector) == 8


def test_write_failure_raises_persistence_failure(index, monkeypatch):
    def boom(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(index_module.tempfile, "mkstemp", boom)
    with pytest.raises(PersistenceFailure) as info:
        index.store(_merged("写入失败"), None, [])
    assert "disk full" in info.value.reason
    assert list(index.records()) == []


def test_store_while_model_is_loading_uses_model_vectors(tmp_path, monkeypatch):
    class EightDimModel:
        def encode(self, text, **kwargs):
            return [0.25] * 8

    embedder = TextEmbedder("slow-model", load_timeout=5)

    def slow_load():
        time.sleep(0.2)
        embedder._model = EightDimModel()
        embedder._model_dim = 8
        embedder._loaded.set()

    monkeypatch.setattr(embedder, "_load_model", slow_load)
    embedder.start()
    idx = EmbeddingIndex(str(tmp_path / "vectors"), embedder)

    first = idx.store(_merged("加载中"), None, [])
    second = idx.store(_merged("已加载"), None, [])
    assert len(first.vector) == 8
    assert len(second.vector) == 8
    assert idx.dimension == 8
