import re
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from core.definitions import GUIDANCE_DEFINITIONS

# --- 共通設定 ---
# 外部(HTTP層・フロントエンド)へはcamelCaseで渡す
_WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True)


def _blank_to_none(value):
    """LLMが空文字で返した項目は「不明」として扱う"""
    if isinstance(value, str) and not value.strip():
        return None
    return value


# --- 入力 ---


class LocalityContext(BaseModel):
    model_config = _WIRE_CONFIG

    address: str = Field(..., description="所在地 (例: 世田谷区太子堂1-1-1)")
    prefecture: str = Field(..., description="都道府県名 (例: 東京都)")
    city: str = Field(..., description="市区町村名 (例: 世田谷区)")


# --- 検索結果 ---


class WebSearchResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    query: str = Field(..., description="検索エージェントへ送ったクエリ")
    results: str = Field(..., description="エージェント応答の本文 (生テキスト)")
    sources: list[str] = Field(default_factory=list, description="本文中のURL (重複なし)")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# --- 規制情報 ---


class SunlightRegulation(BaseModel):
    model_config = _WIRE_CONFIG

    measurement_height: str | None = Field(None, description="測定面の高さ (例: 4m)")
    time_range: str | None = Field(None, description="測定時間帯 (例: 冬至日 午前8時〜午後4時)")
    shadow_time_limit: str | None = Field(None, description="日影時間の制限 (例: 3時間以内)")
    target_buildings: str | None = Field(None, description="規制対象建築物 (例: 軒高7m超)")
    target_area: str | None = Field(None, description="規制対象地域")

    @field_validator("*", mode="before")
    @classmethod
    def normalize_blank(cls, value):
        return _blank_to_none(value)


class RegulationInfo(BaseModel):
    """項目が存在しない (None) ことは「不明」を意味し、「該当なし」ではない"""

    model_config = _WIRE_CONFIG

    use_district: str | None = Field(None, description="用途地域")
    building_coverage_ratio: str | None = Field(None, description="建ぺい率 (例: 60%)")
    floor_area_ratio: str | None = Field(None, description="容積率 (例: 200%)")
    height_restriction: str | None = Field(None, description="高さ制限")
    height_district: str | None = Field(None, description="高度地区")
    sunlight_regulation: SunlightRegulation | None = Field(None, description="日影規制")
    administrative_guidance: list[str] | None = Field(None, description="行政指導・要綱")

    @field_validator("*", mode="before")
    @classmethod
    def normalize_blank(cls, value):
        return _blank_to_none(value)

    @model_validator(mode="after")
    def drop_empty_parts(self):
        # 値を1つも持たない日影規制・空の指導リストは「不明」と同じ扱いにする
        if self.sunlight_regulation is not None and not self.sunlight_regulation.model_dump(exclude_none=True):
            self.sunlight_regulation = None
        if not self.administrative_guidance:
            self.administrative_guidance = None
        return self

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


_SUNLIGHT_KEYS = {name for field_name in SunlightRegulation.model_fields for name in (field_name, to_camel(field_name))}
_NESTED_SUNLIGHT_KEYS = {"sunlight_regulation", "sunlightRegulation"}
_GUIDANCE_SEPARATOR = re.compile(r"[:：]")


def canonical_guidance(entry: str) -> str | None:
    """
    「項目名: 具体的な内容」形式の指導項目を正規ラベルにそろえる。

    項目名が正規ラベルそのもの、または検出キーワードを含む場合のみ採用する。
    6カテゴリ以外の条例・要綱はNoneを返す。
    """
    parts = _GUIDANCE_SEPARATOR.split(entry.strip(), maxsplit=1)
    label = parts[0].strip()
    detail = parts[1].strip() if len(parts) > 1 else ""
    for category, meta in GUIDANCE_DEFINITIONS.items():
        if label == category.value or meta["keyword"] in label:
            return f"{category.value}: {detail}" if detail else category.value
    return None


class StructuredRegulations(BaseModel):
    """AI構造化とパターン抽出フォールバックが共通して返す形"""

    model_config = _WIRE_CONFIG

    urban_planning: RegulationInfo | None = None
    sunlight_regulation: RegulationInfo | None = None
    administrative_guidance: list[str] | None = None

    @field_validator("sunlight_regulation", mode="before")
    @classmethod
    def wrap_flat_sunlight(cls, value):
        # LLMは日影規制をフラットなオブジェクトで返すため、フォールバック側と同じ入れ子形にそろえる
        if not isinstance(value, dict) or value.keys() & _NESTED_SUNLIGHT_KEYS:
            return value
        flat = {key: item for key, item in value.items() if key in _SUNLIGHT_KEYS}
        if not flat:
            return value
        rest = {key: item for key, item in value.items() if key not in _SUNLIGHT_KEYS}
        return {**rest, "sunlight_regulation": flat}

    @field_validator("administrative_guidance", mode="before")
    @classmethod
    def keep_canonical_guidance(cls, value):
        if not isinstance(value, list):
            return value
        entries = (canonical_guidance(item) for item in value if isinstance(item, str))
        return [entry for entry in entries if entry]

    @model_validator(mode="after")
    def drop_empty_categories(self):
        # 1項目も取れなかったカテゴリは存在しないものとして扱う (パターン抽出と同じ形)
        if self.urban_planning is not None and self.urban_planning.is_empty():
            self.urban_planning = None
        if self.sunlight_regulation is not None and self.sunlight_regulation.is_empty():
            self.sunlight_regulation = None
        if not self.administrative_guidance:
            self.administrative_guidance = None
        return self

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ComprehensiveRegionInfo(BaseModel):
    model_config = _WIRE_CONFIG

    urban_planning: RegulationInfo = Field(default_factory=RegulationInfo)
    sunlight_regulation: RegulationInfo = Field(default_factory=RegulationInfo)
    administrative_guidance: list[str] = Field(default_factory=list)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class HealthStatus(BaseModel):
    model_config = _WIRE_CONFIG

    status: str = Field(..., description="healthy / fallback")
    service: str = "WebSearch"
    agent_id: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
