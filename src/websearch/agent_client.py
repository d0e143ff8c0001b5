import asyncio
import logging
from typing import Protocol

from pydantic import BaseModel, Field

from core.config import MAX_RETRY_ATTEMPTS, RUN_POLL_INTERVAL_SECONDS
from core.definitions import PENDING_RUN_STATUSES, ErrorKind, RunStatus
from core.errors import (
    AuthenticationError,
    ConfigurationError,
    MaxRetriesExceeded,
    RateLimitError,
    RegulationSearchError,
    TransientNetworkError,
)
from core.schemas import WebSearchResult
from websearch.extraction import extract_sources
from websearch.retry import Sleep, is_rate_limit_error, with_retry

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "Web検索サービスが現在利用できません"

AAD_APP_NOT_FOUND_HINTS = [
    "Verify the AZURE_CLIENT_ID in your .env file",
    "Ensure the app registration exists in the correct Azure AD tenant",
    "Check that the app has the required permissions for Azure AI services",
]
UNAUTHORIZED_CLIENT_HINTS = [
    "Verify that AZURE_TENANT_ID matches the tenant of the app registration",
    "Check that the client secret has not expired",
]

# プロセス全体で一度だけフォールバックモードを通知する
_fallback_notice_logged = False


def _log_fallback_notice_once() -> None:
    global _fallback_notice_logged
    if _fallback_notice_logged:
        return
    _fallback_notice_logged = True
    logger.warning(
        "Missing or invalid Azure credentials. WebSearch is operating in fallback mode; no search requests will be sent."
    )


# --- 検索エージェントとのやり取りで使う型 ---


class RunState(BaseModel):
    status: str
    error_code: str | None = None
    error_message: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status in PENDING_RUN_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not self.is_pending

    @property
    def is_rate_limited(self) -> bool:
        if self.error_code == "rate_limit_exceeded":
            return True
        message = self.error_message or ""
        return "429" in message or "rate limit" in message.lower()


class AgentMessage(BaseModel):
    role: str
    text_blocks: list[str] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(self.text_blocks)


class AgentBackend(Protocol):
    """会話型検索エージェントの操作。list_messagesは新しい順に返す"""

    async def create_conversation(self) -> str: ...

    async def post_message(self, thread_id: str, content: str) -> None: ...

    async def start_run(self, thread_id: str, agent_id: str) -> str: ...

    async def poll_run_status(self, thread_id: str, run_id: str) -> RunState: ...

    async def list_messages(self, thread_id: str) -> list[AgentMessage]: ...


class SearchOutcome(BaseModel):
    """検索1回分の結果。成功時はvalue、失敗時はerrorとmessageを持つ"""

    query: str
    value: WebSearchResult | None = None
    error: ErrorKind | None = None
    message: str | None = None
    hints: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.value is not None

    @classmethod
    def failure(cls, query: str, error: ErrorKind, message: str, hints: list[str] | None = None) -> "SearchOutcome":
        return cls(query=query, error=error, message=message, hints=hints or [])

    def as_result(self) -> WebSearchResult:
        """失敗時は原因を本文に埋め込んだ代替の検索結果を返す"""
        if self.value is not None:
            return self.value
        if self.error == ErrorKind.Configuration:
            text = f"{UNAVAILABLE_MESSAGE}。Query: {self.query}"
        elif self.error == ErrorKind.Authentication:
            text = f"Search temporarily unavailable due to authentication configuration. Query: {self.query}"
            if self.hints:
                text += "\nTo fix this issue:\n" + "\n".join(f"{i}. {hint}" for i, hint in enumerate(self.hints, 1))
        else:
            text = f"Search error occurred for query: {self.query}. Error: {self.message}"
        return WebSearchResult(query=self.query, results=text, sources=[])


def classify_exception(exception: Exception) -> RegulationSearchError:
    """バックエンドの例外を検索パイプラインの例外体系に分類する"""
    if isinstance(exception, RegulationSearchError):
        return exception
    message = str(exception)
    if is_rate_limit_error(exception) or "Too Many Requests" in message:
        return RateLimitError("Rate limit is exceeded. Try again later.")
    if "AADSTS700016" in message:
        return AuthenticationError("Azure AD application not found in tenant", hints=AAD_APP_NOT_FOUND_HINTS)
    if "unauthorized_client" in message:
        return AuthenticationError("Client authorization error", hints=UNAUTHORIZED_CLIENT_HINTS)
    return TransientNetworkError(message or type(exception).__name__)


class SearchAgentClient:
    """
    クエリごとに新しい会話を作り、検索エージェントの応答をWebSearchResultに変換するクラス。

    backendがNone、またはagent_idが空の場合は未設定 (フォールバックモード) として扱い、
    ネットワーク呼び出しを一切行わない。この判定は生成時に一度だけ行う。
    """

    def __init__(
        self,
        backend: AgentBackend | None,
        agent_id: str,
        poll_interval: float = RUN_POLL_INTERVAL_SECONDS,
        run_timeout: float | None = None,
        max_attempts: int = MAX_RETRY_ATTEMPTS,
        sleep: Sleep = asyncio.sleep,
    ):
        self.backend = backend
        self.agent_id = agent_id
        self.poll_interval = poll_interval
        self.run_timeout = run_timeout
        self.max_attempts = max_attempts
        self._sleep = sleep
        self.configured = backend is not None and bool(agent_id)

    async def search(self, query: str) -> WebSearchResult:
        """
        検索を1回実行する。

        Raises:
            ConfigurationError: 未設定の場合。
            RateLimitError: レート制限に到達した場合。
            AuthenticationError: 認証設定に問題がある場合。
            TransientNetworkError: Runの失敗・応答なし・通信エラーの場合。
        """
        if not self.configured:
            raise ConfigurationError(UNAVAILABLE_MESSAGE)

        logger.info("Searching with agent %s: %s", self.agent_id, query)
        try:
            return await self._search(query)
        except RegulationSearchError:
            raise
        except Exception as e:
            raise classify_exception(e) from e

    async def search_with_retry(self, query: str) -> WebSearchResult:
        return await with_retry(lambda: self.search(query), max_attempts=self.max_attempts, sleep=self._sleep)

    def available(self) -> bool:
        """未設定ならフォールバックモードを通知 (プロセスで一度だけ) してFalseを返す"""
        if not self.configured:
            _log_fallback_notice_once()
        return self.configured

    async def run(self, query: str) -> SearchOutcome:
        """例外を送出せず、成功・失敗をSearchOutcomeとして返す"""
        if not self.available():
            return SearchOutcome.failure(query, ErrorKind.Configuration, UNAVAILABLE_MESSAGE)

        try:
            result = await self.search_with_retry(query)
        except MaxRetriesExceeded as e:
            logger.error("Rate limit retries exhausted for query '%s': %s", query, e)
            return SearchOutcome.failure(query, ErrorKind.Max_Retries, str(e))
        except AuthenticationError as e:
            logger.error("Azure AD authentication error: %s", e)
            for i, hint in enumerate(e.hints, 1):
                logger.error("%d. %s", i, hint)
            return SearchOutcome.failure(query, ErrorKind.Authentication, str(e), hints=e.hints)
        except Exception as e:
            logger.warning("Returning fallback response due to search error: %s", e)
            return SearchOutcome.failure(query, ErrorKind.Transient, str(e))

        return SearchOutcome(query=query, value=result)

    # --- Helper Methods ---

    async def _search(self, query: str) -> WebSearchResult:
        thread_id = await self.backend.create_conversation()
        await self.backend.post_message(thread_id, query)
        run_id = await self.backend.start_run(thread_id, self.agent_id)
        logger.debug("Run created: %s (thread %s)", run_id, thread_id)

        run = await self._wait_for_run(thread_id, run_id)
        if run.status != RunStatus.Completed:
            raise self._run_failure(run)

        messages = await self.backend.list_messages(thread_id)
        latest = next((m for m in messages if m.role == "assistant"), None)
        if latest is None or not latest.text_blocks:
            raise TransientNetworkError("No response from search agent")

        content = latest.text
        logger.debug("Agent response: %d chars", len(content))
        return WebSearchResult(query=query, results=content, sources=extract_sources(content))

    async def _wait_for_run(self, thread_id: str, run_id: str) -> RunState:
        """Runが終端状態になるまでpoll_interval間隔で確認する"""
        run = await self.backend.poll_run_status(thread_id, run_id)
        waited = 0.0
        while not run.is_terminal:
            if self.run_timeout is not None and waited >= self.run_timeout:
                raise TransientNetworkError(
                    f"Search run did not finish within {self.run_timeout}s (last status: {run.status})"
                )
            await self._sleep(self.poll_interval)
            waited += self.poll_interval
            run = await self.backend.poll_run_status(thread_id, run_id)
            logger.debug("Run status: %s", run.status)
        return run

    def _run_failure(self, run: RunState) -> RegulationSearchError:
        logger.error(
            "Search run failed. Status: %s, error: %s %s", run.status, run.error_code or "", run.error_message or ""
        )
        if run.is_rate_limited:
            return RateLimitError("Rate limit is exceeded. Try again later.")
        return TransientNetworkError(f"Search run failed: {run.error_message or run.status}")
