import logging

from conftest import FakeAgentBackend

from core.schemas import RegulationInfo
from websearch.service import RegulationSearchService
from websearch.structuring import AIStructuringAdapter

ADDRESS, PREFECTURE, CITY = "太子堂1-1-1", "東京都", "世田谷区"

ALL_GUIDANCE = ["開発行為規制", "みどりの条例", "景観計画", "福祉環境整備要綱", "中高層建築物条例", "盛土規制法"]


def make_service(client, sleep):
    return RegulationSearchService(client, AIStructuringAdapter(None), sleep=sleep)


class TestCategorySearches:
    async def test_urban_planning(self, make_client, sleep):
        backend = FakeAgentBackend(respond=lambda q: "用途地域：第一種住居地域、建ぺい率60%、容積率300%")
        service = make_service(make_client(backend), sleep)

        info = await service.search_urban_planning_info(ADDRESS, PREFECTURE, CITY)

        assert info.to_wire() == {
            "useDistrict": "第一種住居地域",
            "buildingCoverageRatio": "60%",
            "floorAreaRatio": "300%",
        }
        assert backend.queries == ["東京都 世田谷区 都市計画 用途地域 建ぺい率 容積率 高度地区 太子堂1-1-1"]

    async def test_sunlight(self, make_client, sleep):
        backend = FakeAgentBackend(respond=lambda q: "日影時間：4時間以内")
        service = make_service(make_client(backend), sleep)

        info = await service.search_sunlight_regulation(ADDRESS, PREFECTURE, CITY)

        assert info.sunlight_regulation.shadow_time_limit == "4時間以内"
        assert backend.queries == ["東京都 世田谷区 日影規制 条例 建築基準法 高さ制限 太子堂1-1-1"]

    async def test_failed_search_is_not_extracted(self, make_client, sleep):
        def respond(query):
            raise Exception("用途地域：商業地域 という文字列を含むエラー")

        service = make_service(make_client(FakeAgentBackend(respond=respond)), sleep)

        assert await service.search_urban_planning_info(ADDRESS, PREFECTURE, CITY) == RegulationInfo()


class TestAdministrativeGuidance:
    async def test_six_queries_spaced_in_order(self, make_client, sleep):
        backend = FakeAgentBackend(respond=lambda q: f"{q}に関する情報")
        service = make_service(make_client(backend), sleep)

        guidance = await service.search_administrative_guidance(ADDRESS, PREFECTURE, CITY)

        assert guidance == ALL_GUIDANCE
        assert backend.queries == [
            "東京都 世田谷区 開発行為 行政指導",
            "東京都 世田谷区 みどりの条例",
            "東京都 世田谷区 景観計画",
            "東京都 世田谷区 福祉環境整備要綱",
            "東京都 世田谷区 中高層条例",
            "東京都 世田谷区 盛土規制法",
        ]
        assert sleep.calls == [2.0] * 6

    async def test_failed_category_is_omitted(self, make_client, sleep):
        def respond(query):
            if "景観" in query:
                raise Exception("connection reset")
            return f"{query}に関する情報"

        backend = FakeAgentBackend(respond=respond)
        service = make_service(make_client(backend), sleep)

        guidance = await service.search_administrative_guidance(ADDRESS, PREFECTURE, CITY)

        assert "景観計画" not in guidance
        assert len(guidance) == 5
        assert len(backend.queries) == 6

    async def test_unconfigured_short_circuits(self, unconfigured_client, sleep):
        service = make_service(unconfigured_client, sleep)

        assert await service.search_administrative_guidance(ADDRESS, PREFECTURE, CITY) == []
        assert sleep.calls == []


class TestComprehensive:
    async def test_one_failing_branch(self, make_client, sleep):
        def respond(query):
            if "日影" in query:
                raise Exception("connection reset")
            if "都市計画" in query:
                return "用途地域：第一種住居地域、建ぺい率60%、容積率300%"
            return f"{query}に関する情報"

        service = make_service(make_client(FakeAgentBackend(respond=respond)), sleep)

        info = await service.search_comprehensive_region_info(ADDRESS, PREFECTURE, CITY)

        assert info.urban_planning.use_district == "第一種住居地域"
        assert info.sunlight_regulation == RegulationInfo()
        assert info.administrative_guidance == ALL_GUIDANCE

    async def test_unconfigured_returns_empty_and_notifies_once(self, unconfigured_client, sleep, caplog):
        service = make_service(unconfigured_client, sleep)

        with caplog.at_level(logging.WARNING, logger="websearch.agent_client"):
            info = await service.search_comprehensive_region_info(ADDRESS, PREFECTURE, CITY)

        assert info.to_wire() == {"urbanPlanning": {}, "sunlightRegulation": {}, "administrativeGuidance": []}
        notices = [r for r in caplog.records if "fallback mode" in r.getMessage()]
        assert len(notices) == 1


class TestMunicipalityRegulations:
    async def test_query_is_sent_verbatim(self, make_client, sleep):
        backend = FakeAgentBackend(respond=lambda q: "福祉環境整備要綱により、スロープの設置が必要です。")
        service = make_service(make_client(backend), sleep)

        structured = await service.search_municipality_regulations("世田谷区 福祉環境整備要綱", PREFECTURE, CITY)

        assert backend.queries == ["世田谷区 福祉環境整備要綱"]
        assert structured.administrative_guidance == ["福祉環境整備要綱"]

    async def test_unconfigured(self, unconfigured_client, sleep):
        structured = await make_service(unconfigured_client, sleep).search_municipality_regulations(
            "q", PREFECTURE, CITY
        )

        assert structured.to_wire() == {}


class TestHealth:
    def test_fallback_when_unconfigured(self, unconfigured_client, sleep):
        health = make_service(unconfigured_client, sleep).health()

        assert health.status == "fallback"
        assert health.service == "WebSearch"

    def test_healthy(self, make_client, sleep):
        health = make_service(make_client(FakeAgentBackend()), sleep).health()

        assert health.status == "healthy"
        assert health.agent_id == "asst_test"


async def test_close_releases_backend(make_client, sleep):
    backend = FakeAgentBackend()

    await make_service(make_client(backend), sleep).close()

    assert backend.closed


class TestUnavailableAdvisory:
    async def test_authentication_advisory_is_logged(self, make_client, sleep, caplog):
        def respond(query):
            raise Exception("AADSTS700016: Application not found in the directory")

        service = make_service(make_client(FakeAgentBackend(respond=respond)), sleep)

        with caplog.at_level(logging.INFO, logger="websearch.service"):
            info = await service.search_urban_planning_info(ADDRESS, PREFECTURE, CITY)

        assert info == RegulationInfo()
        advisories = [r.getMessage() for r in caplog.records if r.name == "websearch.service"]
        assert any("To fix this issue:" in message for message in advisories)

    async def test_transient_advisory_names_the_query(self, make_client, sleep, caplog):
        def respond(query):
            raise Exception("connection reset")

        service = make_service(make_client(FakeAgentBackend(respond=respond)), sleep)

        with caplog.at_level(logging.INFO, logger="websearch.service"):
            await service.search_municipality_regulations("港区 景観計画", PREFECTURE, CITY)

        assert "Search error occurred for query: 港区 景観計画. Error: connection reset" in caplog.text
