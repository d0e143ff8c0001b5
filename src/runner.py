import json
from datetime import datetime, timezone
from pathlib import Path

from core.config import TARGET_CITIES
from websearch.service import RegulationSearchService


class RegulationRunner:
    """
    対象自治体ごとに包括的な規制情報検索を実行し、結果を管理するクラス。
    """

    def __init__(self, service: RegulationSearchService | None = None, output_dir: str = "output/regulations"):
        """
        RegulationRunnerを初期化します。

        Args:
            service (RegulationSearchService | None): 検索サービス。省略時は環境変数から組み立てる。
            output_dir (str): 結果を保存するディレクトリ。
        """
        self.service = service or RegulationSearchService.from_settings()
        self.output_dir = Path(output_dir)

        # 出力ディレクトリの作成
        self.output_dir.mkdir(parents=True, exist_ok=True)

    async def run_single(self, city_id: str, address: str | None = None) -> str | None:
        """
        指定された単一の自治体IDで検索を実行し、結果をJSONファイルとして保存する。

        Args:
            city_id (str): 検索対象の自治体ID。
            address (str | None): 検索する地点の住所。省略時は設定の代表地点を使う。

        Returns:
            Optional[str]: 保存されたファイルパス。失敗した場合はNone。
        """
        city_info = next((c for c in TARGET_CITIES if c["id"] == city_id), None)
        if not city_info:
            print(f"Warning: City ID {city_id} not found in configuration. Skipping.")
            return None

        city_name = city_info["name"]
        prefecture = city_info["prefecture"]
        address = address or city_info["address"]
        print(f"Starting regulation search for {prefecture} {city_name} {address} ({city_id})...")

        # ファイルパスの生成
        file_path = self.output_dir / f"{city_id}_{city_name}.json"

        # ファイルの存在チェック
        if file_path.exists():
            print(f"File {file_path} already exists. Skipping.")
            return str(file_path)

        try:
            info = await self.service.search_comprehensive_region_info(address, prefecture, city_name)
        except Exception as e:
            print(f"An error occurred during execution for {city_name}: {e}")
            raise e

        result = {
            "cityId": city_id,
            "address": address,
            "prefecture": prefecture,
            "city": city_name,
            **info.to_wire(),
            "searchedAt": datetime.now(timezone.utc).isoformat(),
        }
        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(result, f, indent=2, ensure_ascii=False)

        print(f"Regulation search completed. Saved to {file_path}")
        return str(file_path)

    async def run_for_all_targets(self) -> dict[str, str | None]:
        """設定されているすべての対象自治体に対して検索を実行する。"""
        results = {}
        for city in TARGET_CITIES:
            city_id = city["id"]
            try:
                results[city_id] = await self.run_single(city_id)
            except Exception as e:
                print(f"An error occurred during search for city {city_id}: {e}")
                results[city_id] = None
            print("-" * 50)
        return results
