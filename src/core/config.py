import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# .envファイルを読み込む
# .envファイルはプロジェクトのルートディレクトリに配置する
load_dotenv()

# LLM (Azure OpenAI)
DEFAULT_OPENAI_DEPLOYMENT = "gpt-4o"
DEFAULT_OPENAI_API_VERSION = "2024-12-01-preview"
STRUCTURING_TEMPERATURE = 0.1
STRUCTURING_MAX_TOKENS = 1500

# Search Agent
RUN_POLL_INTERVAL_SECONDS = 1.0

# Control Flow Limits
MAX_RETRY_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 5
MAX_BACKOFF_SECONDS = 60
GUIDANCE_QUERY_INTERVAL_SECONDS = 2.0

# 対象自治体。addressは一括検索で使う代表地点 (庁舎所在地)
TARGET_CITIES = [
    {"id": "01100", "name": "札幌市", "prefecture": "北海道", "address": "中央区北1条西2丁目"},
    {"id": "04100", "name": "仙台市", "prefecture": "宮城県", "address": "青葉区国分町3-7-1"},
    {"id": "13105", "name": "文京区", "prefecture": "東京都", "address": "春日1-16-21"},
    {"id": "13112", "name": "世田谷区", "prefecture": "東京都", "address": "世田谷4-21-27"},
    {"id": "13103", "name": "港区", "prefecture": "東京都", "address": "芝公園1-5-25"},
    {"id": "13113", "name": "渋谷区", "prefecture": "東京都", "address": "宇田川町1-1"},
    {"id": "13121", "name": "足立区", "prefecture": "東京都", "address": "中央本町1-17-1"},
    {"id": "23100", "name": "名古屋市", "prefecture": "愛知県", "address": "中区三の丸3-1-1"},
    {"id": "27100", "name": "大阪市", "prefecture": "大阪府", "address": "北区中之島1-3-20"},
    {"id": "34100", "name": "広島市", "prefecture": "広島県", "address": "中区国泰寺町1-6-34"},
    {"id": "40130", "name": "福岡市", "prefecture": "福岡県", "address": "中央区天神1-8-1"},
]


def _optional_float(name: str) -> float | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if value > 0 else None


class AzureSettings(BaseModel):
    # 検索エージェント (Azure AI Foundry)
    ai_foundry_endpoint: str = ""
    bing_search_agent_id: str = ""
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = Field("", repr=False)

    # 構造化 (Azure OpenAI)
    openai_endpoint: str = ""
    openai_api_key: str = Field("", repr=False)
    openai_deployment_name: str = DEFAULT_OPENAI_DEPLOYMENT
    openai_api_version: str = DEFAULT_OPENAI_API_VERSION

    # Noneの場合はRunの完了を無期限に待つ
    run_timeout_seconds: float | None = None

    @classmethod
    def from_env(cls) -> "AzureSettings":
        """環境変数から設定を組み立てる"""
        return cls(
            ai_foundry_endpoint=os.getenv("AZURE_AI_FOUNDRY_ENDPOINT", ""),
            bing_search_agent_id=os.getenv("AZURE_BING_SEARCH_AGENT_ID", ""),
            tenant_id=os.getenv("AZURE_TENANT_ID", ""),
            client_id=os.getenv("AZURE_CLIENT_ID", ""),
            client_secret=os.getenv("AZURE_CLIENT_SECRET", ""),
            openai_endpoint=os.getenv("AZURE_OPENAI_ENDPOINT", ""),
            openai_api_key=os.getenv("AZURE_OPENAI_API_KEY", ""),
            openai_deployment_name=os.getenv("AZURE_OPENAI_DEPLOYMENT_NAME") or DEFAULT_OPENAI_DEPLOYMENT,
            openai_api_version=os.getenv("AZURE_OPENAI_API_VERSION") or DEFAULT_OPENAI_API_VERSION,
            run_timeout_seconds=_optional_float("AGENT_RUN_TIMEOUT_SECONDS"),
        )


class ConfigurationStatus(BaseModel):
    search_ready: bool = Field(..., description="検索エージェントを呼び出せるか")
    structuring_ready: bool = Field(..., description="Azure OpenAIで構造化できるか")
    missing: list[str] = Field(default_factory=list, description="不足・不正な設定項目")

    @property
    def fallback_mode(self) -> bool:
        return not self.search_ready


def validate_configuration(settings: AzureSettings) -> ConfigurationStatus:
    """
    設定値を検査して状態を返す。ログ出力などの副作用は持たない。

    検索エージェントはエンドポイント(http始まり)・エージェントID・テナントID・
    クライアントID・クライアントシークレットがすべてそろって初めて利用可能とする。
    """
    missing = []
    if not settings.ai_foundry_endpoint or not settings.ai_foundry_endpoint.startswith("http"):
        missing.append("AZURE_AI_FOUNDRY_ENDPOINT")
    if not settings.bing_search_agent_id:
        missing.append("AZURE_BING_SEARCH_AGENT_ID")
    if not settings.tenant_id:
        missing.append("AZURE_TENANT_ID")
    if not settings.client_id:
        missing.append("AZURE_CLIENT_ID")
    if not settings.client_secret:
        missing.append("AZURE_CLIENT_SECRET")
    search_ready = not missing

    structuring_missing = []
    if not settings.openai_endpoint or not settings.openai_endpoint.startswith("http"):
        structuring_missing.append("AZURE_OPENAI_ENDPOINT")
    if not settings.openai_api_key:
        structuring_missing.append("AZURE_OPENAI_API_KEY")

    return ConfigurationStatus(
        search_ready=search_ready,
        structuring_ready=not structuring_missing,
        missing=missing + structuring_missing,
    )
