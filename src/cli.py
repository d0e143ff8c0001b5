import argparse
import asyncio
import json
import logging
import os
import traceback
from datetime import datetime, timezone

from core.schemas import LocalityContext
from runner import RegulationRunner
from websearch.service import RegulationSearchService

LOCALITY_REQUIRED_MESSAGE = "address, prefecture, and city are required"
QUERY_REQUIRED_MESSAGE = "query, prefecture, and city are required"

# コマンド -> (結果を格納するキー, 失敗時のメッセージ)
LOCALITY_COMMANDS = {
    "urban-planning": ("urbanPlanning", "都市計画情報を取得できませんでした"),
    "sunlight": ("sunlightRegulation", "日影規制情報を取得できませんでした"),
    "guidance": ("administrativeGuidance", "行政指導情報を取得できませんでした"),
    "comprehensive": (None, "地域情報を取得できませんでした"),
}


def searched_at() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


async def _search_locality(command: str, service: RegulationSearchService, address: str, prefecture: str, city: str):
    if command == "urban-planning":
        return (await service.search_urban_planning_info(address, prefecture, city)).to_wire()
    if command == "sunlight":
        return (await service.search_sunlight_regulation(address, prefecture, city)).to_wire()
    if command == "guidance":
        return await service.search_administrative_guidance(address, prefecture, city)
    return (await service.search_comprehensive_region_info(address, prefecture, city)).to_wire()


async def execute(command: str, params: dict, service: RegulationSearchService) -> dict:
    """
    コマンドを実行して、レスポンスの封筒 ({"success": ..., "data": {...}}) を返す。

    入力が不足している場合は {"success": False, "error": ...} を返し、検索は行わない。
    """
    if command == "health":
        return {"success": True, "data": service.health().model_dump(mode="json", by_alias=True)}

    if command == "regulations":
        query, prefecture, city = params.get("query"), params.get("prefecture"), params.get("city")
        if not query or not prefecture or not city:
            return {"success": False, "error": QUERY_REQUIRED_MESSAGE}
        try:
            structured = await service.search_municipality_regulations(query, prefecture, city)
        except Exception as e:
            return {"success": False, "error": "自治体規制情報を取得できませんでした", "details": str(e)}
        data = {"query": query, "prefecture": prefecture, "city": city, **structured.to_wire()}
        return {"success": True, "data": {**data, "searchedAt": searched_at()}}

    address, prefecture, city = params.get("address"), params.get("prefecture"), params.get("city")
    if not address or not prefecture or not city:
        return {"success": False, "error": LOCALITY_REQUIRED_MESSAGE}

    key, failure_message = LOCALITY_COMMANDS[command]
    locality = LocalityContext(address=address, prefecture=prefecture, city=city).model_dump(by_alias=True)
    try:
        result = await _search_locality(command, service, address, prefecture, city)
    except Exception as e:
        logging.getLogger(__name__).error("%s search error: %s", command, e)
        data = {**locality, "searchedAt": searched_at(), "error": failure_message}
        if key is None:
            data.update(urbanPlanning=None, sunlightRegulation=None, administrativeGuidance=None)
        else:
            data[key] = None
        return {"success": False, "data": data}

    payload = result if key is None else {key: result}
    return {"success": True, "data": {**locality, **payload, "searchedAt": searched_at()}}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Regional Building Regulation Search CLI")
    subparsers = parser.add_subparsers(dest="command")

    for command, help_text in [
        ("urban-planning", "Search urban planning info (use district, coverage ratio, floor area ratio)"),
        ("sunlight", "Search sunlight (shadow) regulation"),
        ("guidance", "Search administrative guidance across the six categories"),
        ("comprehensive", "Search all categories concurrently"),
    ]:
        sub = subparsers.add_parser(command, help=help_text)
        sub.add_argument("--address", default="", help="Address (e.g., 世田谷区太子堂1-1-1)")
        sub.add_argument("--prefecture", default="", help="Prefecture (e.g., 東京都)")
        sub.add_argument("--city", default="", help="City (e.g., 世田谷区)")

    regulations = subparsers.add_parser("regulations", help="Search municipality regulations with a free-form query")
    regulations.add_argument("--query", default="", help="Free-form query sent to the search agent")
    regulations.add_argument("--prefecture", default="", help="Prefecture (e.g., 東京都)")
    regulations.add_argument("--city", default="", help="City (e.g., 世田谷区)")

    subparsers.add_parser("health", help="Show search agent configuration status")

    batch = subparsers.add_parser("batch", help="Run comprehensive search for configured target cities")
    batch.add_argument(
        "city_id",
        nargs="?",
        default=None,
        help="Target Municipality ID (e.g., 13112). Required if --all-city is not specified.",
    )
    batch.add_argument("--address", default=None, help="Address to search (defaults to the city's representative address)")
    batch.add_argument("--output-dir", default="output/regulations", help="Directory to save results")
    batch.add_argument("--all-city", action="store_true", help="Run search for all target cities.")
    return parser


async def run_batch(args: argparse.Namespace, service: RegulationSearchService) -> int:
    runner = RegulationRunner(service=service, output_dir=args.output_dir)

    if args.all_city:
        print("Running regulation search for all target cities...")
        results = await runner.run_for_all_targets()

        failed_cities = [city_id for city_id, result_path in results.items() if result_path is None]

        print("-" * 50)
        if failed_cities:
            print(f"Search completed with failures for the following cities: {', '.join(failed_cities)}")
            return 1
        print("All searches completed successfully.")
        return 0

    try:
        return 0 if await runner.run_single(args.city_id, args.address) else 1
    except Exception:
        print(f"An error occurred during search for city {args.city_id}:")
        traceback.print_exc()
        return 1


async def _run(args: argparse.Namespace) -> int:
    service = RegulationSearchService.from_settings()
    try:
        if args.command == "batch":
            return await run_batch(args, service)
        envelope = await execute(args.command, vars(args), service)
        print(json.dumps(envelope, indent=2, ensure_ascii=False))
        return 0 if envelope["success"] else 1
    finally:
        await service.close()


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None or (args.command == "batch" and not args.all_city and not args.city_id):
        parser.print_help()
        return 2

    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
