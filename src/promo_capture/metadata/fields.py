"""Heuristic field extraction from recognized promotion screenshots.

Every field is resolved by an ordered cascade: labeled patterns first, then
progressively more generic heuristics. The first non-empty candidate wins,
so a weaker pattern never overrides a stronger one even when it appears
earlier in the text.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Callable, List, Optional, Pattern, Sequence, Tuple

from ..domain.errors import ParseAmbiguity
from ..domain.models import ExtractedFields
from ..domain.normalize import (
    DATE_TOKEN,
    normalize_date_iso,
    normalize_percentage,
    normalize_spend_off,
    parse_iso_date,
)
from ..logging import get_logger

LOG = get_logger("fields")


STATUS_ACTIVE = "active"
STATUS_UPCOMING = "upcoming"
STATUS_ENDED = "ended"
STATUS_UNDETERMINED = "undetermined"

STATUS_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    (STATUS_ACTIVE, ("进行中", "已开始", "正在进行", "活动中", "已上线", "热卖中", "火热进行", "in progress", "ongoing")),
    (STATUS_UPCOMING, ("未开始", "即将开始", "预热中", "预售", "即将上线", "未上线", "规划中", "coming soon", "upcoming")),
    (STATUS_ENDED, ("已结束", "已过期", "已下线", "已完成", "已停止", "已截止", "已关闭", "expired")),
)

TAG_OTHER = "other"
TAG_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("flash_sale", ("限时", "闪购", "秒杀", "限量", "限定", "抢购", "flash sale")),
    ("holiday", ("节日", "节庆", "春节", "中秋", "国庆", "元旦", "五一", "十一", "圣诞", "新年", "holiday")),
    ("promotion", ("促销", "特惠", "折扣", "满减", "立减", "优惠", "返券", "赠品", "promotion")),
    ("seasonal", ("春季", "夏季", "秋季", "冬季", "开学季", "毕业季", "暑期", "seasonal")),
    ("new_arrival", ("新品", "首发", "新上市", "新上线", "新款", "首销", "新推出", "new arrival")),
    ("membership", ("会员", "vip", "专享", "特权", "专属", "会员日", "member")),
    ("bestseller", ("爆款", "热销", "热卖", "畅销", "明星产品", "爆品", "bestseller")),
)

_SEP = r"[：:]"
_RANGE_SEP = r"\s*(?:至|到|~|～|-|–|—|to)\s*"
_NUM = r"[0-9]+(?:\.[0-9]+)?"

_NAME_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"(?:活动名称|活动标题|促销名称|优惠活动|activity name|campaign name)\s*" + _SEP + r"\s*([^\n]+)", re.I),
    re.compile(r"(?:活动|促销|优惠|campaign|promotion)\s*" + _SEP + r"\s*([^\n]+)", re.I),
    re.compile(r"^\s*([^\n:：]{2,40}(?:活动|促销|特惠|大促|专场))\s*$", re.M),
)

_DESCRIPTION_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"(?:活动描述|活动详情|活动内容|活动说明|description|details)\s*" + _SEP + r"\s*([^\n]{10,})", re.I),
    re.compile(r"(?:描述|详情|内容|说明)\s*" + _SEP + r"\s*([^\n]{10,})", re.I),
    re.compile(r"(?:活动规则|规则|rules)\s*" + _SEP + r"\s*([^\n]{10,})", re.I),
)

_RANGE_LABELS = r"(?:活动时间|活动期间|活动日期|时间|日期|period|date)"
_LABELED_RANGE = re.compile(
    _RANGE_LABELS + r"\s*" + _SEP + r"?\s*(" + DATE_TOKEN + r")" + _RANGE_SEP + r"(" + DATE_TOKEN + r")",
    re.I,
)
_BARE_RANGE = re.compile(r"(" + DATE_TOKEN + r")" + _RANGE_SEP + r"(" + DATE_TOKEN + r")", re.I)
# A single date under a period label reads as the start
_LABELED_SINGLE = re.compile(r"(?:活动时间|活动期间)\s*" + _SEP + r"?\s*(" + DATE_TOKEN + r")", re.I)

_START_PATTERNS: Tuple[Tuple[Pattern[str], int], ...] = (
    (re.compile(r"(?:开始日期|开始时间|活动开始|上线时间|(?<![a-z])(?:start date|starts?)(?![a-z]))\s*" + _SEP + r"?\s*(" + DATE_TOKEN + r")", re.I), 1),
    (_LABELED_RANGE, 1),
    (_LABELED_SINGLE, 1),
    (_BARE_RANGE, 1),
)
_END_PATTERNS: Tuple[Tuple[Pattern[str], int], ...] = (
    (re.compile(r"(?:结束日期|结束时间|活动结束|下线时间|(?<![a-z])(?:end date|ends?)(?![a-z]))\s*" + _SEP + r"?\s*(" + DATE_TOKEN + r")", re.I), 1),
    (_LABELED_RANGE, 2),
    (_BARE_RANGE, 2),
)

_PCT = _NUM + r"\s*[%％]"
_DISCOUNT_LABELED = re.compile(r"(?:折扣|优惠|促销|discount)\s*" + _SEP + r"?\s*(" + _PCT + r"|" + _NUM + r"\s*折|0?\.[0-9]+)", re.I)
_DISCOUNT_PROMO = re.compile(r"(" + _PCT + r"|" + _NUM + r"\s*折)\s*(?:优惠|促销|特惠)", re.I)
_DISCOUNT_ZHE = re.compile(r"(" + _NUM + r")\s*折")
_SPEND_OFF = (
    re.compile(r"满\s*(" + _NUM + r")\s*元?\s*减\s*(" + _NUM + r")\s*元?"),
    re.compile(r"spend\s*[¥$￥]?\s*(" + _NUM + r")\s*(?:get|save)\s*[¥$￥]?\s*(" + _NUM + r")\s*off", re.I),
)
_PCT_OFF = re.compile(r"(" + _PCT + r")\s*off", re.I)

_COMMISSION_LABELED = re.compile(r"(?:佣金|分成|返点|提成|commission)\s*" + _SEP + r"?\s*(" + _PCT + r")", re.I)
_COMMISSION_SUFFIX = re.compile(r"(" + _PCT + r")\s*(?:佣金|分成|返点|提成|commission)", re.I)
_COMMISSION_RATE = re.compile(r"(?:佣金(?:比例|率)|commission rate)\s*" + _SEP + r"?\s*(" + _NUM + r")\s*([%％])?", re.I)

_NOISE_LINE = re.compile(r"^(?:https?://|www\.)|^[\d\s\-./:：%％年月日至~]+$|[：:]|" + DATE_TOKEN, re.I)


def _clean(value: str) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


def _first_group(patterns: Sequence[Pattern[str]], text: str, *, min_len: int = 1) -> Optional[str]:
    for pattern in patterns:
        m = pattern.search(text)
        if not m:
            continue
        value = _clean(m.group(1))
        if len(value) >= min_len:
            return value
    return None


def _contains(lower_text: str, keyword: str) -> bool:
    return keyword.lower() in lower_text


class FieldExtractor:
    """Apply the per-field cascades to a block of OCR text."""

    def __init__(self, *, today: Optional[Callable[[], date]] = None) -> None:
        self._today = today or date.today

    # ------------------------------------------------------------------
    # Individual fields
    # ------------------------------------------------------------------
    def activity_name(self, text: str) -> Optional[str]:
        name = _first_group(_NAME_PATTERNS, text)
        if name:
            return name
        for raw in text.splitlines():
            line = _clean(raw)
            if 10 <= len(line) <= 50 and not _NOISE_LINE.search(line):
                return line
        return None

    def description(self, text: str) -> Optional[str]:
        return _first_group(_DESCRIPTION_PATTERNS, text, min_len=11)

    @staticmethod
    def _date(patterns: Sequence[Tuple[Pattern[str], int]], text: str) -> Optional[str]:
        for pattern, group in patterns:
            for m in pattern.finditer(text):
                iso = normalize_date_iso(m.group(group))
                if iso:
                    return iso
        return None

    def start_date(self, text: str) -> Optional[str]:
        return self._date(_START_PATTERNS, text)

    def end_date(self, text: str) -> Optional[str]:
        return self._date(_END_PATTERNS, text)

    def discount(self, text: str) -> Optional[str]:
        for pattern in (_DISCOUNT_LABELED, _DISCOUNT_PROMO):
            m = pattern.search(text)
            if m:
                value = _clean(m.group(1)).replace(" ", "")
                return value if value.endswith("折") else normalize_percentage(value)
        m = _DISCOUNT_ZHE.search(text)
        if m:
            return f"{m.group(1)}折"
        for pattern in _SPEND_OFF:
            m = pattern.search(text)
            if m:
                return normalize_spend_off(m.group(1), m.group(2))
        m = _PCT_OFF.search(text)
        if m:
            return normalize_percentage(m.group(1))
        return None

    def commission_rate(self, text: str) -> Optional[str]:
        for pattern in (_COMMISSION_LABELED, _COMMISSION_SUFFIX):
            m = pattern.search(text)
            if m:
                return normalize_percentage(m.group(1))
        m = _COMMISSION_RATE.search(text)
        if m:
            return normalize_percentage(m.group(1) + (m.group(2) or ""))
        return None

    def status(self, text: str, start: Optional[str], end: Optional[str]) -> str:
        lower_text = text.lower()
        for status, keywords in STATUS_KEYWORDS:
            if any(_contains(lower_text, kw) for kw in keywords):
                return status
        return self.infer_status(start, end)

    def infer_status(self, start: Optional[str], end: Optional[str]) -> str:
        """Status from dates alone; unparsable bounds count as missing."""
        bounds: List[Optional[date]] = []
        for name, value in (("startDate", start), ("endDate", end)):
            if not value:
                bounds.append(None)
                continue
            try:
                bounds.append(parse_iso_date(value, field=name))
            except ParseAmbiguity as exc:
                LOG.warning(f"Ignoring date for status inference: {exc}")
                bounds.append(None)
        start_d, end_d = bounds
        if start_d is None and end_d is None:
            return STATUS_UNDETERMINED
        today = self._today()
        if start_d is not None and today < start_d:
            return STATUS_UPCOMING
        if end_d is not None and today > end_d:
            return STATUS_ENDED
        return STATUS_ACTIVE

    @staticmethod
    def tag(text: str) -> str:
        lower_text = text.lower()
        for tag, keywords in TAG_KEYWORDS:
            if any(_contains(lower_text, kw) for kw in keywords):
                return tag
        return TAG_OTHER

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def extract(self, text: str) -> ExtractedFields:
        fields = ExtractedFields()
        if not text or not text.strip():
            return fields
        fields.activity_name = self.activity_name(text)
        fields.description = self.description(text)
        fields.start_date = self.start_date(text)
        fields.end_date = self.end_date(text)
        fields.discount = self.discount(text)
        fields.commission_rate = self.commission_rate(text)
        fields.status = self.status(text, fields.start_date, fields.end_date)
        fields.tag = self.tag(text)
        LOG.debug(f"Extracted {len(fields.present())} field(s): {', '.join(fields.present())}")
        return fields
