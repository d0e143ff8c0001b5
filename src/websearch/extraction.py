"""
検索結果テキストから規制情報を抽出するパターンマッチングエンジン。

ネットワークや外部状態に依存しない純粋関数のみで構成される。
各項目は (pattern, group, validator, normalizer) の順序付きリストで定義し、
マッチかつ検証を通過した最初のルールの値を採用する (先勝ち)。
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass

from core.definitions import GUIDANCE_DEFINITIONS
from core.schemas import RegulationInfo, StructuredRegulations, SunlightRegulation

logger = logging.getLogger(__name__)


# --- Validators / Normalizers ---


def _always_valid(_value: str) -> bool:
    return True


def _rejects(*artifacts: str) -> Callable[[str], bool]:
    """誤マッチの痕跡となる語を含むキャプチャを弾く検証関数を作る"""

    def validator(value: str) -> bool:
        return bool(value) and not any(artifact in value for artifact in artifacts)

    return validator


def _strip(value: str) -> str:
    return value.strip()


def _as_percent(value: str) -> str:
    """数値のみのキャプチャに%を付与する (全角％は半角にそろえる)"""
    value = value.strip().replace("％", "%")
    return value if value.endswith("%") else f"{value}%"


@dataclass(frozen=True)
class ExtractionRule:
    pattern: re.Pattern[str]
    group: int = 1  # 0ならマッチ全体を値とする
    validator: Callable[[str], bool] = _always_valid
    normalizer: Callable[[str], str] = _strip


def _rule(pattern: str, group: int = 1, validator=_always_valid, normalizer=_strip) -> ExtractionRule:
    return ExtractionRule(re.compile(pattern), group, validator, normalizer)


# --- Rule Tables ---

_KANJI_NUM = "一二三四五六七八九十"
_DISTRICT_ARTIFACTS = _rejects("や", "建ぺい率")
_HEIGHT_ARTIFACTS = _rejects("建ぺい率", "容積率", "用途地域")

USE_DISTRICT_RULES = [
    _rule(rf"用途地域[はがの]?[：:\s]*(第?[{_KANJI_NUM}]+種[^。，、\n\r]*?地域)", validator=_DISTRICT_ARTIFACTS),
    _rule(r"用途地域[はがの]?[：:\s]*([^。，、\n\r]*?地域)", validator=_DISTRICT_ARTIFACTS),
    _rule(rf"第[{_KANJI_NUM}]+種(?:低層|中高層)住居専用地域", group=0, validator=_DISTRICT_ARTIFACTS),
    _rule(rf"第[{_KANJI_NUM}]+種住居地域", group=0, validator=_DISTRICT_ARTIFACTS),
    _rule(
        r"田園住居地域|準住居地域|近隣商業地域|商業地域|準工業地域|工業専用地域|工業地域|住居専用地域",
        group=0,
        validator=_DISTRICT_ARTIFACTS,
    ),
]

BUILDING_COVERAGE_RULES = [
    _rule(r"建ぺい率[：:\s]*(\d+)\s*[%％]", normalizer=_as_percent),
    _rule(r"建蔽率[：:\s]*(\d+)\s*[%％]", normalizer=_as_percent),
    _rule(r"建[ぺ蔽]い?率.*?(\d+)\s*[%％]", normalizer=_as_percent),
    _rule(r"(\d+)\s*[%％].*?建[ぺ蔽]い?率", normalizer=_as_percent),
]

FLOOR_AREA_RULES = [
    _rule(r"容積率[：:\s]*(\d+(?:[～〜~]\d+)?)\s*[%％]", normalizer=_as_percent),
    _rule(r"容積率.*?(\d+)\s*[%％]", normalizer=_as_percent),
    _rule(r"(\d+)\s*[%％].*?容積率", normalizer=_as_percent),
]

HEIGHT_RESTRICTION_RULES = [
    _rule(r"高さ制限[：:\s]*([^\n\r。，、]+)", validator=_HEIGHT_ARTIFACTS),
    _rule(r"絶対高さ[：:\s]*(\d+(?:\.\d+)?\s*(?:m|ｍ|メートル))", validator=_HEIGHT_ARTIFACTS),
    _rule(r"(?<![\d.])\d+(?:m|ｍ|メートル)(?:以下|制限)", group=0),
]

HEIGHT_DISTRICT_RULES = [
    _rule(rf"第[{_KANJI_NUM}1-9１-９]+種高度地区", group=0),
    _rule(r"高度地区[：:\s]+([^\n\r。，、]+)", validator=_HEIGHT_ARTIFACTS),
]

MEASUREMENT_HEIGHT_RULES = [
    _rule(r"測定(?:面の)?高さは[^。]*?(\d+(?:\.\d+)?(?:メートル|m))"),
    _rule(r"測定面[：:\s]*(\d+(?:\.\d+)?(?:メートル|m))"),
    _rule(r"低層住宅地では(\d+(?:\.\d+)?メートル)"),
    _rule(r"中高層住宅地では(\d+(?:\.\d+)?メートル)"),
]

TIME_RANGE_RULES = [
    _rule(r"冬至日[^。]*?(午前\d+時[^。]*?午後\d+時)"),
    _rule(r"測定時間[：:\s]*([^\n\r。]+)"),
    _rule(r"(午前\d+時[〜～~から]+午後\d+時)"),
]

TARGET_BUILDINGS_RULES = [
    _rule(r"対象となる建築物[はがの：:\s]*([^。\n\r]+)"),
    _rule(r"規制対象[^。\n\r]*?建築物[はがの：:\s]*([^。\n\r]+)"),
    _rule(r"軒(?:の)?高さ?(\d+(?:m|メートル)を?超[^。\n\r]*)"),
    _rule(r"高さ(\d+(?:m|メートル)を?超[^。\n\r]*)"),
]

SHADOW_TIME_LIMIT_RULES = [
    _rule(r"許容される日影(?:時間)?[はが：:\s]*([^\n\r。]+)"),
    _rule(r"日影時間[：:\s]*([^\n\r。]+)"),
    _rule(r"(\d+(?:\.\d+)?時間以内)"),
]

TARGET_AREA_RULES = [
    _rule(r"(第[一二三]種[^。]*?住居[^。]*?地域)"),
    _rule(r"規制対象地域[：:\s]*([^\n\r。]+)"),
]

URL_PATTERN = re.compile(r"https?://[^\s)]+")

# 都市計画情報がまったく抽出できなかったときの推定値 (推定であることを値に明記する)
LOCALITY_ESTIMATES = {
    "世田谷区": {
        "use_district": "第一種低層住居専用地域（推定）",
        "building_coverage_ratio": "40-60%（地域により異なる）",
        "floor_area_ratio": "80-150%（地域により異なる）",
        "height_restriction": "10m制限（推定）",
    },
}


# --- Extraction Functions ---


def apply_rules(text: str, rules: list[ExtractionRule]) -> str | None:
    """ルールを順に評価し、検証を通過した最初の値を返す"""
    for rule in rules:
        match = rule.pattern.search(text)
        if not match:
            continue
        value = match.group(rule.group)
        if value is None:
            continue
        value = rule.normalizer(value)
        if rule.validator(value):
            return value
    return None


def extract_urban_planning_info(text: str) -> RegulationInfo:
    """検索結果から都市計画情報 (用途地域・建ぺい率・容積率・高さ制限・高度地区) を抽出する"""
    info = RegulationInfo(
        use_district=apply_rules(text, USE_DISTRICT_RULES),
        building_coverage_ratio=apply_rules(text, BUILDING_COVERAGE_RULES),
        floor_area_ratio=apply_rules(text, FLOOR_AREA_RULES),
        height_restriction=apply_rules(text, HEIGHT_RESTRICTION_RULES),
        height_district=apply_rules(text, HEIGHT_DISTRICT_RULES),
    )
    logger.debug("Extracted urban planning info: %s", info.to_wire())
    return info


def extract_sunlight_regulation(text: str) -> RegulationInfo:
    """検索結果から日影規制情報を抽出する。1項目も取れなければ空のRegulationInfoを返す"""
    sunlight = SunlightRegulation(
        measurement_height=apply_rules(text, MEASUREMENT_HEIGHT_RULES),
        time_range=apply_rules(text, TIME_RANGE_RULES),
        shadow_time_limit=apply_rules(text, SHADOW_TIME_LIMIT_RULES),
        target_buildings=apply_rules(text, TARGET_BUILDINGS_RULES),
        target_area=apply_rules(text, TARGET_AREA_RULES),
    )
    if not sunlight.model_dump(exclude_none=True):
        return RegulationInfo()
    return RegulationInfo(sunlight_regulation=sunlight)


def extract_administrative_guidance(text: str) -> list[str]:
    """キーワードの有無だけで該当する行政指導・要綱のラベルを列挙する"""
    return [category.value for category, meta in GUIDANCE_DEFINITIONS.items() if meta["keyword"] in text]


def extract_sources(text: str) -> list[str]:
    """本文中のURLを出現順に重複なく取り出す"""
    return list(dict.fromkeys(URL_PATTERN.findall(text)))


def estimate_urban_planning(text: str) -> RegulationInfo | None:
    """既知の自治体名と「住居」を含む場合に限り、推定値を返す"""
    if "住居" not in text:
        return None
    for locality, estimate in LOCALITY_ESTIMATES.items():
        if locality in text:
            return RegulationInfo(**estimate)
    return None


def extract_structured(text: str) -> StructuredRegulations:
    """AI構造化が使えないときのフォールバック。AI構造化と同じ形で返す"""
    structured = StructuredRegulations()

    urban_planning = extract_urban_planning_info(text)
    if not urban_planning.is_empty():
        structured.urban_planning = urban_planning
    else:
        structured.urban_planning = estimate_urban_planning(text)

    sunlight = extract_sunlight_regulation(text)
    if sunlight.sunlight_regulation is not None:
        structured.sunlight_regulation = sunlight

    guidance = extract_administrative_guidance(text)
    if guidance:
        structured.administrative_guidance = guidance

    return structured


class ExtractionEngine:
    """抽出関数をまとめたファサード。状態は持たない"""

    extract_urban_planning_info = staticmethod(extract_urban_planning_info)
    extract_sunlight_regulation = staticmethod(extract_sunlight_regulation)
    extract_administrative_guidance = staticmethod(extract_administrative_guidance)
    extract_sources = staticmethod(extract_sources)
    extract_structured = staticmethod(extract_structured)
