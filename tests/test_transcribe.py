import json
import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))

from promo_capture.domain.errors import EngineFailure
from promo_capture.orchestrator import transcribe
from promo_capture.orchestrator.transcribe import OcrEngine, TextExtractor, VisionEngine, _lines_from_data


class _StaticEngine(OcrEngine):
    def __init__(self, name, text="", confidence=0.0, error=None):
        self.name = name
        self._text = text
        self._confidence = confidence
        self._error = error
        self.calls = 0

    def recognize(self, image_path):
        self.calls += 1
        if self._error is not None:
            raise self._error
        return self._text, self._confidence


@pytest.fixture
def screenshot(tmp_path):
    path = tmp_path / "shot.png"
    path.write_bytes(b"\x89PNG fake image bytes")
    return str(path)


def test_missing_file_is_engine_failure(tmp_path):
    engine = _StaticEngine("fake", "text", 90)
    with pytest.raises(EngineFailure) as info:
        TextExtractor([engine]).extract(str(tmp_path / "nope.png"))
    assert "does not exist" in info.value.reason
    assert engine.calls == 0


def test_empty_file_is_engine_failure(tmp_path):
    path = tmp_path / "empty.png"
    path.write_bytes(b"")
    with pytest.raises(EngineFailure) as info:
        TextExtractor([_StaticEngine("fake", "text", 90)]).extract(str(path))
    assert "empty" in info.value.reason


def test_directory_is_engine_failure(tmp_path):
    with pytest.raises(EngineFailure):
        TextExtractor([_StaticEngine("fake", "text", 90)]).extract(str(tmp_path))


def test_next_engine_used_after_failure(screenshot):
    first = _StaticEngine("vision", error=RuntimeError("connection refused"))
    second = _StaticEngine("tesseract", "携程 商家中心", 81.5)
    reading = TextExtractor([first, second]).extract(screenshot)
    assert reading.engine == "tesseract"
    assert reading.text == "携程 商家中心"
    assert reading.confidence == 81.5
    assert reading.image_path == screenshot


def test_blank_text_counts_as_failure(screenshot):
    blank = _StaticEngine("vision", "   \n", 95)
    good = _StaticEngine("tesseract", "美团", 70)
    assert TextExtractor([blank, good]).extract(screenshot).engine == "tesseract"


def test_all_engines_failing_combines_reasons(screenshot):
    engines = [_StaticEngine("vision", error=RuntimeError("timeout")), _StaticEngine("tesseract", "")]
    with pytest.raises(EngineFailure) as info:
        TextExtractor(engines).extract(screenshot)
    assert "vision: timeout" in info.value.reason
    assert "tesseract: empty text" in info.value.reason


def test_confidence_is_clamped(screenshot):
    reading = TextExtractor([_StaticEngine("odd", "text", 150)]).extract(screenshot)
    assert reading.confidence == 100


def test_extractor_requires_an_engine():
    with pytest.raises(ValueError):
        TextExtractor([])


def test_lines_from_data_joins_cjk_and_averages_confidence():
    data = {
        "text": ["携", "程", "", "EBK", "活动"],
        "conf": ["90", "80", "-1", "70", "60"],
        "block_num": [1, 1, 1, 1, 2],
        "par_num": [1, 1, 1, 1, 1],
        "line_num": [1, 1, 1, 1, 1],
    }
    text, conf = _lines_from_data(data)
    assert text == "携程 EBK\n活动"
    assert conf == pytest.approx(75.0)


def test_lines_from_data_without_words():
    assert _lines_from_data({"text": [], "conf": []}) == ("", 0.0)


class _FakeStreamResponse:
    encoding = "utf-8"

    def __init__(self, events):
        self._lines = [json.dumps(e, ensure_ascii=False).encode("utf-8") for e in events]

    def raise_for_status(self):
        return None

    def iter_lines(self, decode_unicode=False):
        return iter(self._lines)


def test_vision_engine_streams_ollama_chat(monkeypatch, screenshot):
    captured = {}

    def fake_post(url, json=None, timeout=None, stream=None):
        captured["url"] = url
        captured["payload"] = json
        return _FakeStreamResponse(
            [
                {"message": {"content": "携程 "}},
                {"message": {"content": "促销活动\n<eot>"}},
                {"done": True},
                {"message": {"content": "ignored"}},
            ]
        )

    monkeypatch.setattr(transcribe.requests, "post", fake_post)
    engine = VisionEngine(ollama_url="http://ollama:11434/", model="llava", confidence=93)
    text, conf = engine.recognize(screenshot)
    assert text == "携程 促销活动"
    assert conf == 93
    assert captured["url"] == "http://ollama:11434/api/chat"
    assert captured["payload"]["model"] == "llava"
    assert captured["payload"]["messages"][0]["images"]


def test_vision_engine_error_event_raises(monkeypatch, screenshot):
    monkeypatch.setattr(
        transcribe.requests,
        "post",
        lambda *a, **k: _FakeStreamResponse([{"error": "model not found"}]),
    )
    engine = VisionEngine(ollama_url="http://ollama:11434", model="missing")
    with pytest.raises(RuntimeError):
        engine.recognize(screenshot)
