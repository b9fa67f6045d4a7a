"""Weighted multi-signal platform classification for screenshot text."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Sequence, Tuple

from ..logging import get_logger
from .models import ClassifierWeights, PlatformMatch, PlatformSignature
from .platforms import DEFAULT_CATALOG

LOG = get_logger("classifier")

SHORT_KEYWORD_LEN = 2


@dataclass(frozen=True)
class SignatureScore:
    signature: PlatformSignature
    score: float
    max_score: float
    confidence: float
    url_hit: bool


def _whole_word(term: str) -> Pattern[str]:
    return re.compile(r"(?<!\w)" + re.escape(term) + r"(?!\w)")


def _whole_word_only(term: str) -> bool:
    """Short Latin keywords (e.g. "LY") only count as standalone words."""
    return len(term) <= SHORT_KEYWORD_LEN and term.isascii()


class _CompiledSignature:
    __slots__ = ("signature", "keywords", "domains", "ui_elements", "urls")

    def __init__(self, signature: PlatformSignature) -> None:
        self.signature = signature
        self.keywords: List[Tuple[str, Pattern[str], bool]] = []
        for kw in signature.keywords:
            low = kw.lower()
            self.keywords.append((low, _whole_word(low), _whole_word_only(low)))
        self.domains = [d.lower() for d in signature.domains]
        self.ui_elements = [u.lower() for u in signature.ui_elements]
        self.urls = [
            (f"http://{d}", f"https://{d}", f"www.{d}") for d in self.domains
        ]


class PlatformClassifier:
    """Score text against every catalog signature and return the best guess.

    Keyword hits count ``whole_word`` when the keyword stands alone and
    ``substring`` otherwise (keywords of at most two Latin letters never score
    as substrings); each cataloged domain found adds ``domain``; each
    UI phrase adds ``ui_element``. A verbatim URL of a cataloged domain adds
    ``url_bonus`` once per domain. The raw score is divided by the signature's
    maximum achievable score and clamped to 100.
    """

    def __init__(
        self,
        catalog: Optional[Sequence[PlatformSignature]] = None,
        weights: Optional[ClassifierWeights] = None,
    ) -> None:
        self.catalog: Tuple[PlatformSignature, ...] = tuple(catalog if catalog is not None else DEFAULT_CATALOG)
        self.weights = weights or ClassifierWeights()
        self._compiled = [_CompiledSignature(sig) for sig in self.catalog]

    def _score(self, compiled: _CompiledSignature, lower_text: str) -> SignatureScore:
        w = self.weights
        score = 0.0
        for low, pattern, word_only in compiled.keywords:
            if pattern.search(lower_text):
                score += w.whole_word
            elif not word_only and low in lower_text:
                score += w.substring
        for domain in compiled.domains:
            if domain in lower_text:
                score += w.domain
        for element in compiled.ui_elements:
            if element in lower_text:
                score += w.ui_element
        url_hit = False
        for variants in compiled.urls:
            if any(v in lower_text for v in variants):
                score += w.url_bonus
                url_hit = True

        max_score = compiled.signature.max_score(w)
        confidence = (score / max_score) * 100.0 if max_score > 0 else 0.0
        return SignatureScore(
            signature=compiled.signature,
            score=score,
            max_score=max_score,
            confidence=min(confidence, 100.0),
            url_hit=url_hit,
        )

    def score_all(self, text: str) -> List[SignatureScore]:
        lower_text = (text or "").lower()
        return [self._score(c, lower_text) for c in self._compiled]

    def classify(self, text: str) -> PlatformMatch:
        if not text or not text.strip():
            return PlatformMatch.unknown()

        scores = self.score_all(text)
        best: Optional[SignatureScore] = None
        for s in scores:
            if best is None or s.confidence > best.confidence:
                best = s

        LOG.debug(
            "Platform scores: "
            + ", ".join(f"{s.signature.code}={s.confidence:.2f}% (raw {s.score:g})" for s in scores)
        )

        if best is None or best.confidence <= 0 or best.confidence < self.weights.threshold:
            return PlatformMatch.unknown()
        return PlatformMatch(
            name=best.signature.name,
            code=best.signature.code,
            confidence=best.confidence,
        )
