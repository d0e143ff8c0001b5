from typing import TypedDict

from core.schemas import RegulationInfo


class RegionSearchState(TypedDict):
    """LangGraphの状態管理用TypedDict"""

    address: str
    prefecture: str
    city: str

    # 各カテゴリの検索結果 (ノードごとに別のキーへ書き込む)
    urban_planning: RegulationInfo | None
    sunlight_regulation: RegulationInfo | None
    administrative_guidance: list[str] | None
