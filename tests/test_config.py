import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))

from promo_capture import config
from promo_capture.config import load_platform_catalog, load_settings
from promo_capture.domain.platforms import DEFAULT_CATALOG

_KEYS = (
    "OLLAMA_URL", "OLLAMA_MODEL", "OCR_VISION_CONFIDENCE", "TESSERACT_LANG", "TESSERACT_CMD",
    "OCR_TIMEOUT", "OCR_MAX_WORKERS", "EMBEDDING_MODEL", "EMBEDDING_FALLBACK_DIM",
    "EMBEDDING_LOAD_TIMEOUT", "VECTORS_DIR", "PLATFORM_WEIGHT_WORD", "PLATFORM_WEIGHT_SUBSTRING",
    "PLATFORM_WEIGHT_DOMAIN", "PLATFORM_WEIGHT_UI", "PLATFORM_URL_BONUS", "PLATFORM_THRESHOLD",
    "MERGE_CONFIDENCE_GATE",
)


@pytest.fixture
def project(tmp_path, monkeypatch):
    for key in _KEYS:
        monkeypatch.delenv(key, raising=False)
    (tmp_path / "pyproject.toml").write_text("[project]\nname = 'x'\n", encoding="utf-8")
    return tmp_path


def test_defaults(project):
    s = load_settings(str(project))
    assert s.repo_root == str(project)
    assert s.ollama_model is None
    assert s.vision_confidence == 95.0
    assert s.tesseract_lang == "chi_sim+eng"
    assert s.embedding_fallback_dim == 256
    assert s.vectors_dir == os.path.join(str(project), "var", "vectors")
    assert s.weights.threshold == 10.0
    assert s.merge_gate == 0.8


def test_dotenv_values_and_malformed_numbers(project):
    (project / ".env").write_text(
        "# local overrides\n"
        "OLLAMA_MODEL=\"qwen2.5vl:7b\"\n"
        "PLATFORM_THRESHOLD=20\n"
        "MERGE_CONFIDENCE_GATE=abc\n"
        "EMBEDDING_MODEL='none'\n"
        "VECTORS_DIR=store/vectors\n",
        encoding="utf-8",
    )
    s = load_settings(str(project))
    assert s.ollama_model == "qwen2.5vl:7b"
    assert s.weights.threshold == 20.0
    assert s.merge_gate == 0.8
    assert s.embedding_model is None
    assert os.path.isabs(s.vectors_dir)


def test_environment_beats_dotenv(project, monkeypatch):
    (project / ".env").write_text("PLATFORM_URL_BONUS=7\nOCR_MAX_WORKERS=2\n", encoding="utf-8")
    monkeypatch.setenv("PLATFORM_URL_BONUS", "9")
    s = load_settings(str(project))
    assert s.weights.url_bonus == 9.0
    assert s.max_workers == 2


def test_catalog_file_is_found_from_subdirectory(project):
    (project / config.CATALOG_FILENAME).write_text(
        '[{"name": "Acme", "code": "acme", "keywords": ["acme"], "uiElements": ["Acme Console"]}]',
        encoding="utf-8",
    )
    sub = project / "nested" / "dir"
    sub.mkdir(parents=True)
    catalog = load_platform_catalog(str(sub))
    assert [s.code for s in catalog] == ["acme"]
    assert catalog[0].ui_elements == ("Acme Console",)


def test_missing_and_invalid_catalog(project):
    assert load_platform_catalog(str(project)) == DEFAULT_CATALOG
    (project / config.CATALOG_FILENAME).write_text('{"not": "a list"}', encoding="utf-8")
    fallback = DEFAULT_CATALOG[:1]
    assert load_platform_catalog(str(project), fallback=fallback) == fallback
