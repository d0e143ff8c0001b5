from enum import StrEnum


class ErrorKind(StrEnum):
    Configuration = "configuration"
    Rate_Limit = "rate_limit"
    Max_Retries = "max_retries"
    Authentication = "authentication"
    Transient = "transient"


class RunStatus(StrEnum):
    Queued = "queued"
    In_Progress = "in_progress"
    Requires_Action = "requires_action"
    Cancelling = "cancelling"
    Cancelled = "cancelled"
    Failed = "failed"
    Completed = "completed"
    Expired = "expired"


# ポーリングを継続する状態。それ以外はすべて終端として扱う
# (検索エージェントはツール出力を受け取らないため requires_action から先へ進まない)
PENDING_RUN_STATUSES = frozenset(status.value for status in (RunStatus.Queued, RunStatus.In_Progress))


class GuidanceCategory(StrEnum):
    # 行政指導・要綱の正規ラベル
    Development_Permit = "開発行為規制"
    Green_Ordinance = "みどりの条例"
    Landscape_Plan = "景観計画"
    Welfare_Environment = "福祉環境整備要綱"
    Mid_High_Rise = "中高層建築物条例"
    Embankment = "盛土規制法"


# --- 検索クエリ語と検出キーワード ---
# Enumをキーにして記述します
# query: 検索エージェントへ投げるクエリ語
# keyword: 検索結果テキスト中の存在判定に使う語

GUIDANCE_DEFINITIONS = {
    GuidanceCategory.Development_Permit: {
        "query": "開発行為 行政指導",
        "keyword": "開発行為",
        "description": "一定規模以上の開発行為に対する許可基準・行政指導",
    },
    GuidanceCategory.Green_Ordinance: {
        "query": "みどりの条例",
        "keyword": "みどりの条例",
        "description": "敷地内緑化率などを定める緑化条例",
    },
    GuidanceCategory.Landscape_Plan: {
        "query": "景観計画",
        "keyword": "景観",
        "description": "色彩・形態意匠などの景観誘導基準",
    },
    GuidanceCategory.Welfare_Environment: {
        "query": "福祉環境整備要綱",
        "keyword": "福祉環境",
        "description": "バリアフリー等の福祉的環境整備に関する要綱",
    },
    GuidanceCategory.Mid_High_Rise: {
        "query": "中高層条例",
        "keyword": "中高層",
        "description": "中高層建築物の建築に係る紛争予防条例",
    },
    GuidanceCategory.Embankment: {
        "query": "盛土規制法",
        "keyword": "盛土規制",
        "description": "宅地造成及び特定盛土等規制法に基づく規制",
    },
}
