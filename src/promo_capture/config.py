import json
import os
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple, TypeVar

from .domain.models import ClassifierWeights, PlatformSignature
from .domain.platforms import DEFAULT_CATALOG, catalog_from_json
from .logging import get_logger
from .paths import expand_abs, find_project_root, vectors_dir

log = get_logger("config")

CATALOG_FILENAME = "platform_catalog.json"

T = TypeVar("T")


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    This makes running tools from subdirectories still find repository-level
    config files like `.env` and `platform_catalog.json`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Minimal .env reader.

    - Reads key=value pairs, ignores comments (#/;) and blank lines.
    - Trims single/double quotes around the value.
    - Returns mapping; does not mutate environment.
    """
    env: Dict[str, str] = {}
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return env
    try:
        with open(path, "r", encoding="utf-8") as f:
            for raw in f:
                line = raw.strip()
                if not line or line.startswith("#") or line.startswith(";"):
                    continue
                if "=" not in line:
                    continue
                k, v = line.split("=", 1)
                k = k.strip()
                v = v.strip()
                if (v.startswith('"') and v.endswith('"')) or (v.startswith("'") and v.endswith("'")):
                    v = v[1:-1]
                env[k] = v.strip()
        log.debug(f"Loaded {len(env)} key(s) from .env at {path}")
    except OSError as e:
        log.warning(f"Failed reading .env: {e}")
    return env


@dataclass(frozen=True)
class Settings:
    repo_root: str
    ollama_url: str = "http://localhost:11434"
    ollama_model: Optional[str] = None
    vision_confidence: float = 95.0
    ocr_timeout: int = 120
    tesseract_lang: str = "chi_sim+eng"
    tesseract_cmd: Optional[str] = None
    max_workers: int = 4
    embedding_model: Optional[str] = "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2"
    embedding_fallback_dim: int = 256
    embedding_load_timeout: float = 60.0
    vectors_dir: str = ""
    weights: ClassifierWeights = ClassifierWeights()
    merge_gate: float = 0.8


class _Lookup:
    """Environment first, then .env."""

    def __init__(self, dotenv_dir: str) -> None:
        self._env = _read_dotenv(dotenv_dir)

    def raw(self, key: str) -> Optional[str]:
        v = os.environ.get(key)
        if v is None:
            v = self._env.get(key)
        if v is None:
            return None
        v = v.strip()
        return v or None

    def get(self, key: str, default: T, cast: Callable[[str], T]) -> T:
        v = self.raw(key)
        if v is None:
            return default
        try:
            return cast(v)
        except ValueError:
            log.warning(f"Ignoring malformed {key}={v!r}; using default {default!r}")
            return default


def _optional_name(value: Optional[str]) -> Optional[str]:
    if value is None or value.lower() in {"none", "off", "disabled", "false", "0"}:
        return None
    return value


def load_weights(lookup: _Lookup) -> ClassifierWeights:
    d = ClassifierWeights()
    return ClassifierWeights(
        whole_word=lookup.get("PLATFORM_WEIGHT_WORD", d.whole_word, float),
        substring=lookup.get("PLATFORM_WEIGHT_SUBSTRING", d.substring, float),
        domain=lookup.get("PLATFORM_WEIGHT_DOMAIN", d.domain, float),
        ui_element=lookup.get("PLATFORM_WEIGHT_UI", d.ui_element, float),
        url_bonus=lookup.get("PLATFORM_URL_BONUS", d.url_bonus, float),
        threshold=lookup.get("PLATFORM_THRESHOLD", d.threshold, float),
    )


def load_settings(dotenv_dir: str) -> Settings:
    """Resolve all pipeline settings from env/.env with sensible defaults."""
    lookup = _Lookup(dotenv_dir)
    repo_root = find_project_root(dotenv_dir)
    defaults = Settings(repo_root=repo_root)

    vdir = lookup.raw("VECTORS_DIR")
    embedding_model = lookup.raw("EMBEDDING_MODEL")
    settings = Settings(
        repo_root=repo_root,
        ollama_url=lookup.raw("OLLAMA_URL") or defaults.ollama_url,
        ollama_model=_optional_name(lookup.raw("OLLAMA_MODEL")),
        vision_confidence=lookup.get("OCR_VISION_CONFIDENCE", defaults.vision_confidence, float),
        ocr_timeout=lookup.get("OCR_TIMEOUT", defaults.ocr_timeout, int),
        tesseract_lang=lookup.raw("TESSERACT_LANG") or defaults.tesseract_lang,
        tesseract_cmd=lookup.raw("TESSERACT_CMD"),
        max_workers=lookup.get("OCR_MAX_WORKERS", defaults.max_workers, int),
        embedding_model=_optional_name(embedding_model) if embedding_model else defaults.embedding_model,
        embedding_fallback_dim=lookup.get("EMBEDDING_FALLBACK_DIM", defaults.embedding_fallback_dim, int),
        embedding_load_timeout=lookup.get("EMBEDDING_LOAD_TIMEOUT", defaults.embedding_load_timeout, float),
        vectors_dir=expand_abs(vdir) if vdir else vectors_dir(repo_root),
        weights=load_weights(lookup),
        merge_gate=lookup.get("MERGE_CONFIDENCE_GATE", defaults.merge_gate, float),
    )
    return settings


def load_platform_catalog(
    script_dir: str, fallback: Tuple[PlatformSignature, ...] = DEFAULT_CATALOG
) -> Tuple[PlatformSignature, ...]:
    """Return the catalog from platform_catalog.json.

    Without a file the built-in catalog is used; an unreadable or invalid file
    yields ``fallback`` (the caller's current catalog).
    """
    path = _find_upwards(script_dir, CATALOG_FILENAME)
    if not path:
        log.info("No platform_catalog.json found; using built-in platform catalog")
        return DEFAULT_CATALOG
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        catalog = catalog_from_json(data)
        log.info(f"Loaded platform_catalog.json with {len(catalog)} entries from {path}")
        return catalog
    except (OSError, ValueError) as e:
        log.warning(f"Failed to read platform_catalog.json: {e}; keeping current catalog")
    return fallback
