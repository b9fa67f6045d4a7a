"""Append-only vector index of merged promotion records."""

from __future__ import annotations

import json
import os
import tempfile
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from ..domain.errors import PersistenceFailure
from ..domain.models import MergedOcrResult, VectorRecord
from ..logging import get_logger
from .embedding import TextEmbedder, cosine_similarity

LOG = get_logger("orchestrator-index")

RECORD_SUFFIX = ".json"


def new_record_id() -> str:
    return f"vec_{uuid.uuid4().hex}"


def record_text(merged: MergedOcrResult) -> str:
    data = merged.extracted_data
    return " ".join([data.activity_name or "", data.description or "", merged.text or ""])


class EmbeddingIndex:
    """One JSON file per record under ``vectors_dir``; records are never rewritten.

    Vector size is pinned by the first stored record so the index never mixes
    model and fallback dimensions.
    """

    def __init__(self, vectors_dir: str, embedder: TextEmbedder) -> None:
        self.vectors_dir = os.path.abspath(vectors_dir)
        self.embedder = embedder
        os.makedirs(self.vectors_dir, exist_ok=True)
        self._dimension: Optional[int] = None
        LOG.info(f"Vector index ready at {self.vectors_dir}")

    # ---------------- read side ----------------
    def _record_files(self) -> List[str]:
        try:
            names = os.listdir(self.vectors_dir)
        except OSError as exc:
            LOG.error(f"Failed to list vector directory: {exc}")
            return []
        return sorted(n for n in names if n.endswith(RECORD_SUFFIX) and not n.startswith("."))

    def _load(self, filename: str) -> Optional[VectorRecord]:
        path = os.path.join(self.vectors_dir, filename)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return VectorRecord.from_json(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            LOG.warning(f"Skipping unreadable vector record {filename}: {exc}")
            return None

    def records(self) -> Iterator[VectorRecord]:
        for name in self._record_files():
            rec = self._load(name)
            if rec is not None:
                yield rec

    def records_for_platform(self, platform_id: int) -> List[VectorRecord]:
        return [r for r in self.records() if r.platform_id == platform_id]

    def get(self, record_id: str) -> Optional[VectorRecord]:
        filename = f"{record_id}{RECORD_SUFFIX}"
        if not os.path.isfile(os.path.join(self.vectors_dir, filename)):
            return None
        return self._load(filename)

    def pinned_dimension(self) -> Optional[int]:
        """Vector size fixed by the stored records, or None while the index is empty."""
        if self._dimension is None:
            for rec in self.records():
                self._dimension = len(rec.vector)
                break
        return self._dimension

    @property
    def dimension(self) -> int:
        """Vector size of stored records, or the embedder's size for an empty index."""
        pinned = self.pinned_dimension()
        return pinned if pinned is not None else self.embedder.dimension

    # ---------------- write side ----------------
    def _write(self, record: VectorRecord) -> None:
        final_path = os.path.join(self.vectors_dir, f"{record.id}{RECORD_SUFFIX}")
        if os.path.exists(final_path):
            raise PersistenceFailure(final_path, "record id already exists")
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", suffix=RECORD_SUFFIX, dir=self.vectors_dir)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record.to_json(), f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, final_path)
        except OSError as exc:
            if tmp_path and os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    LOG.debug(f"Could not remove temp file {tmp_path}")
            raise PersistenceFailure(final_path, str(exc)) from exc

    def store(self, merged: MergedOcrResult, platform_id: Optional[int], image_paths: Sequence[str]) -> VectorRecord:
        text = record_text(merged)
        # An empty index takes whatever size the embedder produces (model once loaded)
        vector = self.embedder.embed(text, dimension=self.pinned_dimension())
        record = VectorRecord(
            id=new_record_id(),
            text=text,
            vector=tuple(vector),
            platform_id=platform_id,
            image_paths=tuple(image_paths),
            extracted_data=merged.extracted_data.as_dict(),
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self._write(record)
        self._dimension = len(record.vector)
        LOG.info(f"Stored vector record {record.id} (dimension={len(record.vector)}, platform_id={platform_id})")
        return record

    # ---------------- similarity ----------------
    def find_similar(
        self,
        query: str,
        limit: int = 5,
        *,
        platform_id: Optional[int] = None,
    ) -> List[Tuple[VectorRecord, float]]:
        """Full scan ranked by descending cosine similarity (ties: older first, then id)."""
        if limit <= 0:
            return []
        query_vec = self.embedder.embed(query, dimension=self.pinned_dimension())
        scored: List[Tuple[VectorRecord, float]] = []
        for rec in self.records():
            if platform_id is not None and rec.platform_id != platform_id:
                continue
            if len(rec.vector) != len(query_vec):
                LOG.warning(f"Skipping {rec.id}: dimension {len(rec.vector)} != {len(query_vec)}")
                continue
            scored.append((rec, cosine_similarity(query_vec, rec.vector)))
        scored.sort(key=lambda item: (-item[1], item[0].created_at, item[0].id))
        return scored[:limit]

    def summary(self) -> Dict[str, int]:
        count = sum(1 for _ in self._record_files())
        return {"records": count, "dimension": self.dimension}
