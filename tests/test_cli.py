import json

from conftest import FakeAgentBackend

from cli import LOCALITY_REQUIRED_MESSAGE, QUERY_REQUIRED_MESSAGE, build_parser, execute
from runner import RegulationRunner
from websearch.service import RegulationSearchService
from websearch.structuring import AIStructuringAdapter

LOCALITY = {"address": "太子堂1-1-1", "prefecture": "東京都", "city": "世田谷区"}


def make_service(client, sleep):
    return RegulationSearchService(client, AIStructuringAdapter(None), sleep=sleep)


class TestExecute:
    async def test_missing_locality(self, unconfigured_client, sleep):
        envelope = await execute("urban-planning", {**LOCALITY, "city": ""}, make_service(unconfigured_client, sleep))

        assert envelope == {"success": False, "error": LOCALITY_REQUIRED_MESSAGE}

    async def test_missing_query(self, unconfigured_client, sleep):
        service = make_service(unconfigured_client, sleep)

        envelope = await execute("regulations", {"prefecture": "東京都", "city": "世田谷区"}, service)

        assert envelope == {"success": False, "error": QUERY_REQUIRED_MESSAGE}

    async def test_urban_planning_envelope(self, make_client, sleep):
        backend = FakeAgentBackend(respond=lambda q: "用途地域：第一種住居地域、建ぺい率60%、容積率300%")

        envelope = await execute("urban-planning", LOCALITY, make_service(make_client(backend), sleep))

        assert envelope["success"] is True
        data = envelope["data"]
        assert data["address"] == "太子堂1-1-1"
        assert data["urbanPlanning"]["floorAreaRatio"] == "300%"
        assert data["searchedAt"].endswith("Z")

    async def test_comprehensive_envelope_flattens_categories(self, unconfigured_client, sleep):
        envelope = await execute("comprehensive", LOCALITY, make_service(unconfigured_client, sleep))

        assert envelope["success"] is True
        assert envelope["data"]["urbanPlanning"] == {}
        assert envelope["data"]["administrativeGuidance"] == []

    async def test_comprehensive_failure_envelope(self, unconfigured_client, sleep):
        service = make_service(unconfigured_client, sleep)

        async def broken(*args):
            raise RuntimeError("graph failed")

        service.search_comprehensive_region_info = broken

        envelope = await execute("comprehensive", LOCALITY, service)

        assert envelope["success"] is False
        assert envelope["data"]["error"] == "地域情報を取得できませんでした"
        assert envelope["data"]["urbanPlanning"] is None

    async def test_health_is_serializable(self, unconfigured_client, sleep):
        envelope = await execute("health", {}, make_service(unconfigured_client, sleep))

        assert envelope["data"]["status"] == "fallback"
        assert json.loads(json.dumps(envelope))["data"]["service"] == "WebSearch"


def test_parser_subcommands():
    args = build_parser().parse_args(["guidance", "--prefecture", "東京都", "--city", "港区", "--address", "六本木"])

    assert args.command == "guidance"
    assert args.city == "港区"


class TestRegulationRunner:
    async def test_writes_result_file(self, tmp_path, unconfigured_client, sleep):
        runner = RegulationRunner(service=make_service(unconfigured_client, sleep), output_dir=str(tmp_path))

        path = await runner.run_single("13112")

        assert path == str(tmp_path / "13112_世田谷区.json")
        with open(path, encoding="utf-8") as f:
            result = json.load(f)
        assert result["cityId"] == "13112"
        assert result["prefecture"] == "東京都"
        assert result["administrativeGuidance"] == []

    async def test_skips_existing_file(self, tmp_path, unconfigured_client, sleep):
        existing = tmp_path / "13112_世田谷区.json"
        existing.write_text("{}", encoding="utf-8")
        runner = RegulationRunner(service=make_service(unconfigured_client, sleep), output_dir=str(tmp_path))

        assert await runner.run_single("13112") == str(existing)
        assert existing.read_text(encoding="utf-8") == "{}"

    async def test_unknown_city(self, tmp_path, unconfigured_client, sleep):
        runner = RegulationRunner(service=make_service(unconfigured_client, sleep), output_dir=str(tmp_path))

        assert await runner.run_single("99999") is None

    async def test_searches_representative_address(self, tmp_path, make_client, sleep):
        backend = FakeAgentBackend()
        runner = RegulationRunner(service=make_service(make_client(backend), sleep), output_dir=str(tmp_path))

        path = await runner.run_single("13112")

        with open(path, encoding="utf-8") as f:
            result = json.load(f)
        assert result["address"] == "世田谷4-21-27"
        assert any(q.endswith("世田谷4-21-27") for q in backend.queries)
        assert not any(q.endswith(" 世田谷区") for q in backend.queries if "都市計画" in q)

    async def test_explicit_address(self, tmp_path, make_client, sleep):
        backend = FakeAgentBackend()
        runner = RegulationRunner(service=make_service(make_client(backend), sleep), output_dir=str(tmp_path))

        path = await runner.run_single("13112", address="太子堂1-1-1")

        with open(path, encoding="utf-8") as f:
            assert json.load(f)["address"] == "太子堂1-1-1"
        assert "東京都 世田谷区 都市計画 用途地域 建ぺい率 容積率 高度地区 太子堂1-1-1" in backend.queries


class TestBatchParser:
    def test_address_option(self):
        args = build_parser().parse_args(["batch", "13112", "--address", "太子堂1-1-1"])

        assert args.city_id == "13112"
        assert args.address == "太子堂1-1-1"

    def test_address_defaults_to_none(self):
        assert build_parser().parse_args(["batch", "--all-city"]).address is None
