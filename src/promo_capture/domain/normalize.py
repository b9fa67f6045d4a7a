import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from ..logging import get_logger
from .errors import ParseAmbiguity

_LOG = get_logger("normalize")

# Year-first notations: 2024-06-01, 2024.6.1, 2024/06/01, 2024年6月1日
DATE_TOKEN = r"\d{4}\s*[-./年]\s*\d{1,2}\s*[-./月]\s*\d{1,2}\s*日?"
_DATE_PARTS = re.compile(r"(\d{4})\s*[-./年]\s*(\d{1,2})\s*[-./月]\s*(\d{1,2})\s*日?")
_DAY_FIRST = re.compile(r"(\d{1,2})[./](\d{1,2})[./](\d{4})")


def normalize_date_iso(value: str) -> Optional[str]:
    """Normalize common date strings to ISO YYYY-MM-DD.

    Supports:
    - YYYY-MM-DD, YYYY.M.D, YYYY/MM/DD, YYYY年M月D日 (spaces tolerated)
    - DD.MM.YYYY / DD/MM/YYYY
    Impossible calendar dates return None.
    """
    if not value:
        return None
    v = str(value).strip()
    if not v:
        return None
    m = _DATE_PARTS.fullmatch(v)
    if m:
        y, mth, d = m.groups()
    else:
        m = _DAY_FIRST.fullmatch(v)
        if not m:
            return None
        d, mth, y = m.groups()
    try:
        return date(int(y), int(mth), int(d)).isoformat()
    except ValueError:
        _LOG.debug(f"Discarding impossible date {v!r}")
        return None


def parse_iso_date(value: str, *, field: str = "date") -> date:
    """Parse a canonical YYYY-MM-DD string; raise ParseAmbiguity otherwise."""
    try:
        return date.fromisoformat(str(value).strip())
    except (TypeError, ValueError):
        raise ParseAmbiguity(field, str(value))


def _format_number(num: Decimal) -> str:
    text = format(num.normalize(), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def normalize_percentage(value: str) -> Optional[str]:
    """Return a percentage string like '15%' for '15%', '15％', '15' or '0.15'.

    A bare number of at most 1 is read as a fraction and scaled by 100.
    """
    if value is None:
        return None
    s = str(value).strip().replace("％", "%").replace(" ", "")
    if not s:
        return None
    m = re.search(r"\d+(?:\.\d+)?", s)
    if not m:
        return None
    try:
        num = Decimal(m.group(0))
    except InvalidOperation:
        return None
    if "%" not in s and num <= 1:
        num = num * 100
    return f"{_format_number(num)}%"


def normalize_spend_off(threshold: str, reduction: str) -> str:
    """Canonical 'spend X get Y off' form."""
    return f"满{_format_number(Decimal(threshold))}减{_format_number(Decimal(reduction))}"
