from __future__ import annotations

from dataclasses import dataclass, field, fields as dc_fields
from typing import Any, Dict, List, Optional, Tuple, Union


UNKNOWN_CODE = "unknown"
UNKNOWN_NAME = "未知"


def clamp_confidence(value: float) -> float:
    """Clamp a confidence value into [0, 100]."""
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    if v != v:  # NaN
        return 0.0
    return max(0.0, min(100.0, v))


@dataclass(frozen=True)
class RawOcrReading:
    image_path: str
    text: str
    confidence: float
    engine: str = "unknown"

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))


@dataclass(frozen=True)
class ClassifierWeights:
    """Scoring constants for platform classification."""

    whole_word: float = 2.0
    substring: float = 1.0
    domain: float = 3.0
    ui_element: float = 1.5
    url_bonus: float = 5.0
    threshold: float = 10.0


@dataclass(frozen=True)
class PlatformSignature:
    name: str
    code: str
    keywords: Tuple[str, ...] = ()
    domains: Tuple[str, ...] = ()
    ui_elements: Tuple[str, ...] = ()

    def max_score(self, weights: ClassifierWeights) -> float:
        """Best achievable score: every keyword whole-word, every domain and UI phrase hit."""
        return (
            len(self.keywords) * weights.whole_word
            + len(self.domains) * weights.domain
            + len(self.ui_elements) * weights.ui_element
        )


@dataclass(frozen=True)
class PlatformMatch:
    name: str
    code: str
    confidence: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))

    @classmethod
    def unknown(cls) -> "PlatformMatch":
        return cls(name=UNKNOWN_NAME, code=UNKNOWN_CODE, confidence=0.0)

    @property
    def is_known(self) -> bool:
        return self.code != UNKNOWN_CODE

    def as_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "code": self.code, "confidence": round(self.confidence, 2)}


# Attribute name -> external (camelCase) key
_FIELD_KEYS = {
    "activity_name": "activityName",
    "description": "description",
    "start_date": "startDate",
    "end_date": "endDate",
    "discount": "discount",
    "commission_rate": "commissionRate",
    "status": "status",
    "tag": "tag",
    "platform": "platform",
}


@dataclass
class ExtractedFields:
    """Structured promotion fields; ``None`` means the field was not detected."""

    activity_name: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    discount: Optional[str] = None
    commission_rate: Optional[str] = None
    status: Optional[str] = None
    tag: Optional[str] = None
    platform: Optional[str] = None

    @staticmethod
    def field_names() -> List[str]:
        return [f.name for f in dc_fields(ExtractedFields)]

    def get(self, name: str) -> Optional[str]:
        return getattr(self, name)

    def set(self, name: str, value: Optional[str]) -> None:
        if name not in _FIELD_KEYS:
            raise KeyError(name)
        setattr(self, name, value)

    def present(self) -> List[str]:
        return [n for n in self.field_names() if getattr(self, n) is not None]

    def as_dict(self) -> Dict[str, str]:
        return {_FIELD_KEYS[n]: getattr(self, n) for n in self.present()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractedFields":
        out = cls()
        reverse = {v: k for k, v in _FIELD_KEYS.items()}
        for key, value in (data or {}).items():
            attr = reverse.get(key) or (key if key in _FIELD_KEYS else None)
            if attr is not None and value is not None:
                setattr(out, attr, str(value))
        return out


@dataclass
class MergedOcrResult:
    text: str
    confidence: float
    detected_platform: Optional[PlatformMatch]
    extracted_data: ExtractedFields
    image_count: int = 0
    failed_images: List[Tuple[str, str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.confidence = clamp_confidence(self.confidence)

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "text": self.text,
            "confidence": round(self.confidence, 2),
            "extractedData": self.extracted_data.as_dict(),
            "imageCount": self.image_count,
        }
        if self.detected_platform is not None:
            out["detectedPlatform"] = self.detected_platform.as_dict()
        if self.failed_images:
            out["failedImages"] = [{"imagePath": p, "reason": r} for p, r in self.failed_images]
        return out


@dataclass(frozen=True)
class VectorRecord:
    id: str
    text: str
    vector: Tuple[float, ...]
    platform_id: Optional[int]
    image_paths: Tuple[str, ...]
    extracted_data: Dict[str, str]
    created_at: str

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "vector": list(self.vector),
            "metadata": {
                "platformId": self.platform_id,
                "imagePaths": list(self.image_paths),
                "extractedData": dict(self.extracted_data),
                "createdAt": self.created_at,
            },
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "VectorRecord":
        meta = data.get("metadata") or {}
        return cls(
            id=str(data["id"]),
            text=str(data.get("text") or ""),
            vector=tuple(float(x) for x in data["vector"]),
            platform_id=meta.get("platformId"),
            image_paths=tuple(meta.get("imagePaths") or ()),
            extracted_data=dict(meta.get("extractedData") or {}),
            created_at=str(meta.get("createdAt") or ""),
        )


@dataclass(frozen=True)
class ImageSuccess:
    reading: RawOcrReading
    platform: PlatformMatch
    fields: ExtractedFields

    @property
    def image_path(self) -> str:
        return self.reading.image_path


@dataclass(frozen=True)
class ImageFailure:
    image_path: str
    reason: str


ImageOutcome = Union[ImageSuccess, ImageFailure]


@dataclass
class SubmissionResult:
    merged: MergedOcrResult
    record: Optional[VectorRecord] = None
    persistence_error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        out = self.merged.as_dict()
        if self.record is not None:
            out["vectorId"] = self.record.id
        if self.persistence_error:
            out["persistenceError"] = self.persistence_error
        return out
