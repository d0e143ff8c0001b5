class RegulationSearchError(Exception):
    """検索パイプライン内部で発生する例外の基底クラス"""


class ConfigurationError(RegulationSearchError):
    """認証情報・エンドポイントが未設定または不正"""


class RateLimitError(RegulationSearchError):
    """外部サービスのレート制限 (429) に到達した"""


class MaxRetriesExceeded(RegulationSearchError):
    """レート制限によるリトライが上限回数に達した"""

    def __init__(self, max_attempts: int, last_error: BaseException | None = None):
        super().__init__(f"Max retries ({max_attempts}) exceeded")
        self.max_attempts = max_attempts
        self.last_error = last_error


class AuthenticationError(RegulationSearchError):
    """テナント不一致・クライアント未登録などの認証エラー"""

    def __init__(self, message: str, hints: list[str] | None = None):
        super().__init__(message)
        self.hints = hints or []


class TransientNetworkError(RegulationSearchError):
    """通信障害・Run失敗・応答なしなど、分類できない一時的な失敗"""


class StructuringParseError(RegulationSearchError):
    """LLMの応答から規定形状のJSONを取り出せなかった"""
