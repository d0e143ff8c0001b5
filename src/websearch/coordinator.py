import logging
from typing import Protocol

from langgraph.graph import END, START, StateGraph

from core.schemas import ComprehensiveRegionInfo, RegulationInfo
from websearch.state import RegionSearchState

logger = logging.getLogger(__name__)


class CategorySearcher(Protocol):
    """カテゴリ別の検索。いずれも例外を送出しない"""

    async def search_urban_planning_info(self, address: str, prefecture: str, city: str) -> RegulationInfo: ...

    async def search_sunlight_regulation(self, address: str, prefecture: str, city: str) -> RegulationInfo: ...

    async def search_administrative_guidance(self, address: str, prefecture: str, city: str) -> list[str]: ...


class ComprehensiveSearchCoordinator:
    """
    都市計画・日影規制・行政指導の3カテゴリを並行に検索し、1つの結果にまとめる。

    3つのノードはSTARTから同じステップで分岐するため、ainvoke時に並行実行される。
    各カテゴリは独立したレート制限枠を消費する前提。
    """

    # --- Constants ---
    # Node Names (状態のキーと重複させない)
    _NODE_URBAN_PLANNING = "search_urban_planning"
    _NODE_SUNLIGHT = "search_sunlight_regulation"
    _NODE_GUIDANCE = "search_administrative_guidance"

    def __init__(self, searcher: CategorySearcher):
        self.searcher = searcher
        self.app = self._build_workflow()

    def _build_workflow(self):
        """内部メソッド: ノードとエッジを定義してコンパイルする"""
        workflow = StateGraph(RegionSearchState)

        # ノード定義
        workflow.add_node(self._NODE_URBAN_PLANNING, self._urban_planning_node)
        workflow.add_node(self._NODE_SUNLIGHT, self._sunlight_node)
        workflow.add_node(self._NODE_GUIDANCE, self._guidance_node)

        # エッジ定義: START -> (3ノード並行) -> END
        for node in (self._NODE_URBAN_PLANNING, self._NODE_SUNLIGHT, self._NODE_GUIDANCE):
            workflow.add_edge(START, node)
            workflow.add_edge(node, END)

        return workflow.compile()

    # --- Node Implementations ---

    async def _urban_planning_node(self, state: RegionSearchState):
        info = await self.searcher.search_urban_planning_info(state["address"], state["prefecture"], state["city"])
        return {"urban_planning": info}

    async def _sunlight_node(self, state: RegionSearchState):
        info = await self.searcher.search_sunlight_regulation(state["address"], state["prefecture"], state["city"])
        return {"sunlight_regulation": info}

    async def _guidance_node(self, state: RegionSearchState):
        guidance = await self.searcher.search_administrative_guidance(
            state["address"], state["prefecture"], state["city"]
        )
        return {"administrative_guidance": guidance}

    async def run(self, address: str, prefecture: str, city: str) -> ComprehensiveRegionInfo:
        """外部から呼び出す実行メソッド。グラフ実行自体の例外はそのまま送出する"""
        logger.info("Comprehensive search for: %s %s %s", prefecture, city, address)
        initial_state = RegionSearchState(
            address=address,
            prefecture=prefecture,
            city=city,
            urban_planning=None,
            sunlight_regulation=None,
            administrative_guidance=None,
        )
        final_state = await self.app.ainvoke(initial_state)
        return ComprehensiveRegionInfo(
            urban_planning=final_state.get("urban_planning") or RegulationInfo(),
            sunlight_regulation=final_state.get("sunlight_regulation") or RegulationInfo(),
            administrative_guidance=final_state.get("administrative_guidance") or [],
        )
