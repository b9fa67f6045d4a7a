import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))

from promo_capture.domain.errors import EngineFailure
from promo_capture.domain.models import RawOcrReading
from promo_capture.orchestrator.embedding import TextEmbedder


class FakeModel:
    def __init__(self, dim):
        self.dim = dim

    def encode(self, text, **kwargs):
        return np.full(self.dim, 0.5)


class FakeTextExtractor:
    """Maps image path -> (text, confidence); unknown paths fail like a missing file."""

    def __init__(self, readings):
        self.readings = readings

    def extract(self, image_path):
        if image_path not in self.readings:
            raise EngineFailure(image_path, "file does not exist")
        text, conf = self.readings[image_path]
        return RawOcrReading(image_path=image_path, text=text, confidence=conf, engine="fake")


@pytest.fixture
def model_embedder():
    """Factory for embedders whose model is already loaded with a fake encoder."""

    def make(dim=8):
        embedder = TextEmbedder("fake-model", load_timeout=0.1)
        embedder._model = FakeModel(dim)
        embedder._model_dim = dim
        embedder._loaded.set()
        return embedder

    return make


@pytest.fixture
def fake_extractor():
    return FakeTextExtractor
