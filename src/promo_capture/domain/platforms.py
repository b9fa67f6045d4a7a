"""Built-in catalog of merchant portal signatures.

Keywords, domains and UI phrases are matched case-insensitively against the
recognized screenshot text. A ``platform_catalog.json`` next to the project
replaces this catalog (see :func:`promo_capture.config.load_platform_catalog`).
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Tuple

from ..logging import get_logger
from .models import PlatformSignature

LOG = get_logger("platforms")


DEFAULT_CATALOG: Tuple[PlatformSignature, ...] = (
    PlatformSignature(
        name="携程",
        code="ctrip",
        keywords=(
            "携程", "ctrip", "ebooking", "商家中心", "酒店管理", "EBK", "携程旅行网",
            "trip.com group", "trip.com", "ebooking.", "日房价套餐", "周边游", "自由行",
            "促销活动", "满房保障", "ota活动", "转让收益", "直连房价",
        ),
        domains=("ctrip.com", "ebooking-ctrip.com", "ebooking.ctrip.com"),
        ui_elements=("蓝色顶栏", "Trip.com Group", "促销活动", "日房套餐", "特惠客房"),
    ),
    PlatformSignature(
        name="美团",
        code="meituan",
        keywords=(
            "美团", "meituan", "商家后台", "美团酒店", "酒店商家", "美团旅行",
            "点评", "大众点评", "推广服务", "袋鼠", "商家中心", "酒店管理平台",
            "自助促销", "补贴优惠", "客源保障", "酒店CRM", "酒店营销", "快验通",
        ),
        domains=("meituan.com", "dianping.com", "ebooking.meituan.com"),
        ui_elements=("黄黑配色", "袋鼠图标", "促销频道", "商家工作台"),
    ),
    PlatformSignature(
        name="飞猪",
        code="fliggy",
        keywords=(
            "飞猪", "fliggy", "阿里旅行", "飞猪旅行", "商家中心", "飞猪酒店",
            "阿里", "淘宝旅行", "天猫", "淘宝", "飞猪平台", "达人", "超级会员",
            "酒店直连", "信用住", "飞猪商家",
        ),
        domains=("fliggy.com", "alitrip.com", "taobao.com", "tmall.com", "aliyun.com"),
        ui_elements=("橙色系", "飞猪标志", "橙色猪图标", "淘宝风格"),
    ),
    PlatformSignature(
        name="去哪儿",
        code="qunar",
        keywords=(
            "去哪儿", "qunar", "商家后台", "去哪儿网", "商家管理", "酒店商家",
            "旅游度假", "酒店管理系统", "去哪儿商家", "商家平台", "营销中心",
            "预订引擎", "特价推广", "去哪儿酒店",
        ),
        domains=("qunar.com", "qunarman.com"),
        ui_elements=("蓝绿色调", "去哪儿标志", "商家平台"),
    ),
    PlatformSignature(
        name="艺龙",
        code="elong",
        keywords=(
            "艺龙", "elong", "商家后台", "艺龙旅行", "酒店商家", "艺龙网",
            "商家管理系统", "艺龙酒店", "营销平台", "分销系统",
        ),
        domains=("elong.com", "elongstatic.com"),
        ui_elements=("绿色系", "艺龙标志"),
    ),
    PlatformSignature(
        name="同程",
        code="ly",
        keywords=(
            "同程", "同程旅行", "同程商家", "LY", "同程酒店", "商家后台",
            "同程商家中心", "商家服务", "酒店管理系统", "分销平台",
        ),
        domains=("ly.com", "17u.cn", "tongcheng.com"),
        ui_elements=("蓝色系", "同程标志"),
    ),
    PlatformSignature(
        name="途家",
        code="tujia",
        keywords=(
            "途家", "tujia", "民宿", "短租", "途家商家", "房东后台",
            "途家网", "途家平台", "房屋管理", "房源管理",
        ),
        domains=("tujia.com",),
        ui_elements=("橙色系", "途家标志", "民宿管理"),
    ),
)


def _str_tuple(values: Any) -> Tuple[str, ...]:
    if not isinstance(values, (list, tuple)):
        return ()
    return tuple(str(v) for v in values if str(v).strip())


def catalog_from_json(data: Any) -> Tuple[PlatformSignature, ...]:
    """Build signatures from a JSON list of objects.

    Entries without ``name`` or ``code`` are skipped with a warning; an empty
    result raises ValueError so callers can keep their current catalog.
    """
    if not isinstance(data, list):
        raise ValueError("platform catalog must be a JSON list")
    out: List[PlatformSignature] = []
    for idx, entry in enumerate(data):
        if not isinstance(entry, dict) or not entry.get("name") or not entry.get("code"):
            LOG.warning(f"Skipping catalog entry #{idx}: missing name/code")
            continue
        out.append(
            PlatformSignature(
                name=str(entry["name"]),
                code=str(entry["code"]),
                keywords=_str_tuple(entry.get("keywords")),
                domains=_str_tuple(entry.get("domains")),
                ui_elements=_str_tuple(entry.get("uiElements") or entry.get("ui_elements")),
            )
        )
    if not out:
        raise ValueError("platform catalog contains no usable entries")
    return tuple(out)


def catalog_to_json(catalog: Iterable[PlatformSignature]) -> List[Dict[str, Any]]:
    return [
        {
            "name": sig.name,
            "code": sig.code,
            "keywords": list(sig.keywords),
            "domains": list(sig.domains),
            "uiElements": list(sig.ui_elements),
        }
        for sig in catalog
    ]
