"""Text extraction from portal screenshots.

Engines are tried in order: a vision model served by Ollama (when configured)
and then Tesseract. The first engine that returns non-empty text wins.
"""

from __future__ import annotations

import base64
import json
import os
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np
import pytesseract
import requests
from pytesseract import Output

from ..domain.errors import EngineFailure
from ..domain.models import RawOcrReading
from ..logging import get_logger

LOG = get_logger("orchestrator-transcribe")


DEFAULT_INSTRUCTION = (
    "Perform OCR on this screenshot of a merchant back-office page. Transcribe ALL visible text "
    "exactly, line by line, keeping Chinese characters, dates, percentages and URLs as shown. "
    "Output plain text only, no explanations. When finished, print <eot> on a new line."
)

LARGE_IMAGE_BYTES = 20 * 1024 * 1024


class OcrEngine:
    """Interface for OCR backends.

    ``recognize`` returns ``(text, confidence)`` with confidence in [0, 100]
    and raises any exception on failure.
    """

    name = "engine"

    def recognize(self, image_path: str) -> Tuple[str, float]:
        raise NotImplementedError


class VisionEngine(OcrEngine):
    """Transcribe via Ollama's /api/chat endpoint with a vision model.

    The model reports no certainty of its own, so a fixed confidence is used.
    """

    name = "vision"

    def __init__(
        self,
        *,
        ollama_url: str,
        model: str,
        timeout: int = 120,
        confidence: float = 95.0,
        instruction: str = DEFAULT_INSTRUCTION,
    ) -> None:
        base = (ollama_url or "").rstrip("/")
        self.url = base if base.endswith("/api/chat") else base + "/api/chat"
        self.model = model
        self.timeout = timeout
        self.confidence = confidence
        self.instruction = instruction

    def recognize(self, image_path: str) -> Tuple[str, float]:
        with open(image_path, "rb") as f:
            img_b64 = base64.b64encode(f.read()).decode("utf-8")
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": self.instruction, "images": [img_b64]}],
            "stream": True,
            "options": {"num_predict": 2048, "temperature": 0, "stop": ["<eot>"]},
        }
        LOG.debug(f"Ollama URL: {self.url}; model: {self.model}; timeout: {self.timeout}s")
        response = requests.post(self.url, json=payload, timeout=self.timeout, stream=True)
        response.raise_for_status()

        chunks: List[str] = []
        for raw_line in response.iter_lines(decode_unicode=False):
            if not raw_line:
                continue
            if isinstance(raw_line, bytes):
                line = raw_line.decode(response.encoding or "utf-8", errors="ignore")
            else:
                line = str(raw_line)
            line = line.strip()
            if line.startswith("data:"):
                line = line[5:].strip()
            try:
                obj = json.loads(line)
            except ValueError:
                chunks.append(line)
                continue
            if obj.get("error"):
                raise RuntimeError(f"Ollama error: {obj['error']}")
            if obj.get("done") is True:
                break
            delta = ""
            msg = obj.get("message") or {}
            if isinstance(msg, dict):
                delta = msg.get("content") or ""
            if not delta:
                # Fallback for /api/generate-style events
                delta = obj.get("response") or ""
            if delta:
                chunks.append(delta)

        text = "".join(chunks).strip()
        if "<eot>" in text:
            text = text.split("<eot>", 1)[0].strip()
        return text, self.confidence


def preprocess(path: str) -> np.ndarray:
    """Load + enhance a screenshot for Tesseract: gray, contrast, upscale small images."""
    img = cv2.imread(path)
    if img is None:
        raise OSError(f"Could not decode image: {path}")
    gray = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)

    # Adaptive contrast helps with light-gray UI text
    clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
    gray = clahe.apply(gray)

    h, w = gray.shape[:2]
    scale = 2 if max(h, w) < 2000 else 1
    if scale != 1:
        gray = cv2.resize(gray, (w * scale, h * scale), interpolation=cv2.INTER_CUBIC)
    return gray


def _lines_from_data(data: dict) -> Tuple[str, float]:
    """Rebuild line text from image_to_data output and average word confidences."""
    lines: dict = {}
    confs: List[float] = []
    for i, word in enumerate(data.get("text", [])):
        try:
            conf = float(data["conf"][i])
        except (KeyError, IndexError, TypeError, ValueError):
            conf = -1.0
        word = (word or "").strip()
        if not word or conf < 0:
            continue
        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        lines.setdefault(key, []).append(word)
        confs.append(conf)
    # CJK words are emitted per character; join without spaces when both sides are non-ASCII
    out_lines: List[str] = []
    for key in sorted(lines):
        words = lines[key]
        buf = words[0]
        for word in words[1:]:
            if buf[-1].isascii() or word[0].isascii():
                buf += " " + word
            else:
                buf += word
        out_lines.append(buf)
    mean_conf = float(np.mean(confs)) if confs else 0.0
    return "\n".join(out_lines), mean_conf


class TesseractEngine(OcrEngine):
    name = "tesseract"

    def __init__(self, *, lang: str = "chi_sim+eng", tesseract_cmd: Optional[str] = None, psm: int = 6) -> None:
        self.lang = lang
        self.config = f"--oem 3 --psm {psm}"
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def recognize(self, image_path: str) -> Tuple[str, float]:
        gray = preprocess(image_path)
        data = pytesseract.image_to_data(gray, lang=self.lang, config=self.config, output_type=Output.DICT)
        return _lines_from_data(data)


class TextExtractor:
    """Turn one image into a RawOcrReading using the first engine that succeeds."""

    def __init__(self, engines: Sequence[OcrEngine]) -> None:
        if not engines:
            raise ValueError("TextExtractor needs at least one OCR engine")
        self.engines = list(engines)

    @staticmethod
    def _check_file(image_path: str) -> None:
        if not image_path or not os.path.exists(image_path):
            raise EngineFailure(image_path, "file does not exist")
        if not os.path.isfile(image_path):
            raise EngineFailure(image_path, "not a regular file")
        try:
            size = os.path.getsize(image_path)
        except OSError as exc:
            raise EngineFailure(image_path, f"cannot stat file: {exc}")
        if size == 0:
            raise EngineFailure(image_path, "file is empty")
        if size > LARGE_IMAGE_BYTES:
            LOG.warning(f"Large image ({size / (1024 * 1024):.2f} MB) may slow down OCR: {image_path}")

    def extract(self, image_path: str) -> RawOcrReading:
        self._check_file(image_path)
        errors: List[str] = []
        for engine in self.engines:
            LOG.info(f"Running {engine.name} OCR on {os.path.basename(image_path)}")
            try:
                text, confidence = engine.recognize(image_path)
            except Exception as exc:
                LOG.warning(f"{engine.name} OCR failed for {image_path}: {exc}")
                errors.append(f"{engine.name}: {exc}")
                continue
            text = (text or "").strip()
            if not text:
                LOG.warning(f"{engine.name} OCR returned no text for {image_path}")
                errors.append(f"{engine.name}: empty text")
                continue
            LOG.info(f"{engine.name} OCR produced {len(text)} characters (confidence {confidence:.2f})")
            return RawOcrReading(image_path=image_path, text=text, confidence=confidence, engine=engine.name)
        raise EngineFailure(image_path, "; ".join(errors) or "no engine produced text")
