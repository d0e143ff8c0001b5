import asyncio
import logging

from core.config import GUIDANCE_QUERY_INTERVAL_SECONDS, AzureSettings
from core.definitions import GUIDANCE_DEFINITIONS
from core.schemas import ComprehensiveRegionInfo, HealthStatus, RegulationInfo, StructuredRegulations
from websearch.agent_client import SearchAgentClient, SearchOutcome
from websearch.azure_backend import build_agent_backend
from websearch.coordinator import ComprehensiveSearchCoordinator
from websearch.extraction import ExtractionEngine
from websearch.retry import Sleep, delay
from websearch.structuring import AIStructuringAdapter
from websearch.utils import get_llm

logger = logging.getLogger(__name__)

GUIDANCE_RESULT_SEPARATOR = "\n\n---\n\n"


def _log_unavailable(outcome: SearchOutcome) -> None:
    """失敗した検索は抽出に回さず、代替の案内文だけをログに残す"""
    logger.info("Search unavailable (%s): %s", outcome.error, outcome.as_result().results)


class RegulationSearchService:
    """
    地域の規制情報検索の公開窓口。

    すべてのメソッドは例外を送出せず、取得できなかった項目は空 (不明) として返す。
    例外が外へ出るのは、包括検索でグラフ実行そのものが失敗した場合のみ。
    """

    def __init__(
        self,
        client: SearchAgentClient,
        structuring: AIStructuringAdapter,
        engine: ExtractionEngine | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.client = client
        self.structuring = structuring
        self.engine = engine or ExtractionEngine()
        self._sleep = sleep
        self.coordinator = ComprehensiveSearchCoordinator(self)

    @classmethod
    def from_settings(cls, settings: AzureSettings | None = None) -> "RegulationSearchService":
        """環境変数 (または渡された設定) からサービスを組み立てる"""
        settings = settings or AzureSettings.from_env()
        client = SearchAgentClient(
            build_agent_backend(settings),
            settings.bing_search_agent_id,
            run_timeout=settings.run_timeout_seconds,
        )
        return cls(client, AIStructuringAdapter(get_llm(settings)))

    async def search_urban_planning_info(self, address: str, prefecture: str, city: str) -> RegulationInfo:
        """地域の都市計画情報を検索"""
        query = f"{prefecture} {city} 都市計画 用途地域 建ぺい率 容積率 高度地区 {address}"
        outcome = await self.client.run(query)
        if not outcome.ok:
            _log_unavailable(outcome)
            return RegulationInfo()
        return self.engine.extract_urban_planning_info(outcome.value.results)

    async def search_sunlight_regulation(self, address: str, prefecture: str, city: str) -> RegulationInfo:
        """日影規制条例を検索"""
        query = f"{prefecture} {city} 日影規制 条例 建築基準法 高さ制限 {address}"
        outcome = await self.client.run(query)
        if not outcome.ok:
            _log_unavailable(outcome)
            return RegulationInfo()
        return self.engine.extract_sunlight_regulation(outcome.value.results)

    async def search_administrative_guidance(self, address: str, prefecture: str, city: str) -> list[str]:
        """
        行政指導・要綱を検索する。

        6カテゴリのクエリを順番に、各クエリの前に固定間隔を空けて実行する。
        失敗したカテゴリは結果から除外し、残りのカテゴリの検索は継続する。
        """
        if not self.client.available():
            return []

        collected_texts = []
        for meta in GUIDANCE_DEFINITIONS.values():
            query = f"{prefecture} {city} {meta['query']}"
            await delay(GUIDANCE_QUERY_INTERVAL_SECONDS, sleep=self._sleep)
            outcome = await self.client.run(query)
            if outcome.ok:
                collected_texts.append(outcome.value.results)
            else:
                _log_unavailable(outcome)

        if not collected_texts:
            return []

        structured = await self.structuring.structure(GUIDANCE_RESULT_SEPARATOR.join(collected_texts), prefecture, city)
        return structured.administrative_guidance or []

    async def search_municipality_regulations(self, query: str, prefecture: str, city: str) -> StructuredRegulations:
        """自治体の規制・要綱を検索する。queryはそのまま検索エージェントへ渡す"""
        logger.info("Searching municipality regulations: %s", query)
        outcome = await self.client.run(query)
        if not outcome.ok:
            _log_unavailable(outcome)
            return StructuredRegulations()
        return await self.structuring.structure(outcome.value.results, prefecture, city)

    async def search_comprehensive_region_info(
        self, address: str, prefecture: str, city: str
    ) -> ComprehensiveRegionInfo:
        """包括的な地域情報検索 (3カテゴリを並行に取得)"""
        return await self.coordinator.run(address, prefecture, city)

    def health(self) -> HealthStatus:
        return HealthStatus(
            status="healthy" if self.client.configured else "fallback",
            agent_id=self.client.agent_id or None,
        )

    async def close(self) -> None:
        close = getattr(self.client.backend, "close", None)
        if close is not None:
            await close()
