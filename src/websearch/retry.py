import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import AsyncRetrying, RetryCallState, RetryError, before_sleep_log, retry_if_exception, stop_after_attempt

from core.config import BACKOFF_BASE_SECONDS, MAX_BACKOFF_SECONDS, MAX_RETRY_ATTEMPTS
from core.errors import MaxRetriesExceeded, RateLimitError

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

Sleep = Callable[[float], Awaitable[None]]

RATE_LIMIT_SIGNATURES = ("rate limit is exceeded", "rate limit")


def is_rate_limit_error(exception: BaseException) -> bool:
    """レート制限由来の例外かどうかを判定する"""
    if isinstance(exception, RateLimitError):
        return True
    if isinstance(exception, MaxRetriesExceeded):
        return False
    message = str(exception).lower()
    return any(signature in message for signature in RATE_LIMIT_SIGNATURES)


def rate_limit_backoff(retry_state: RetryCallState) -> float:
    """指数バックオフ: 失敗回数nに対して min(60, 5 * 2^n) 秒"""
    return min(MAX_BACKOFF_SECONDS, BACKOFF_BASE_SECONDS * 2**retry_state.attempt_number)


async def with_retry(
    operation: Callable[[], Awaitable[_T]],
    max_attempts: int = MAX_RETRY_ATTEMPTS,
    sleep: Sleep = asyncio.sleep,
) -> _T:
    """
    operationを実行し、レート制限エラーの場合のみ待機して再実行する。

    Args:
        operation: 引数なしで呼び出すコルーチン関数。
        max_attempts: 最大試行回数。
        sleep: 待機に使うコルーチン関数 (テストで差し替える)。

    Raises:
        MaxRetriesExceeded: レート制限でmax_attempts回失敗した場合。
        その他の例外はリトライせずにそのまま送出する。
    """
    retrying = AsyncRetrying(
        retry=retry_if_exception(is_rate_limit_error),
        stop=stop_after_attempt(max_attempts),
        wait=rate_limit_backoff,
        sleep=sleep,
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )

    # コルーチン関数として渡さないとtenacityは戻り値のコルーチンをawaitしない
    async def _attempt() -> _T:
        return await operation()

    try:
        return await retrying(_attempt)
    except RetryError as e:
        raise MaxRetriesExceeded(max_attempts, e.last_attempt.exception()) from e


async def delay(seconds: float, sleep: Sleep = asyncio.sleep) -> None:
    """リクエスト間隔を空けるための固定待機"""
    await sleep(seconds)
