import logging
from collections.abc import Awaitable
from typing import TypeVar

from azure.ai.agents.models import ListSortOrder
from azure.ai.projects.aio import AIProjectClient
from azure.core.exceptions import ClientAuthenticationError, HttpResponseError
from azure.identity.aio import ClientSecretCredential

from core.config import AzureSettings, validate_configuration
from core.errors import AuthenticationError, RateLimitError
from websearch.agent_client import AgentMessage, RunState, classify_exception

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


def _read(obj, name: str):
    """SDKのモデルは属性アクセスと辞書アクセスの両方があるため、両方を試す"""
    if obj is None:
        return None
    value = getattr(obj, name, None)
    if value is None and isinstance(obj, dict):
        value = obj.get(name)
    return value


def _enum_value(value) -> str:
    return str(getattr(value, "value", value))


class AzureAgentBackend:
    """Azure AI Foundry のエージェント (threads / messages / runs) を使うAgentBackend実装"""

    def __init__(self, client: AIProjectClient, credential: ClientSecretCredential | None = None):
        self.client = client
        self.credential = credential

    @classmethod
    def from_settings(cls, settings: AzureSettings) -> "AzureAgentBackend":
        credential = ClientSecretCredential(settings.tenant_id, settings.client_id, settings.client_secret)
        client = AIProjectClient(endpoint=settings.ai_foundry_endpoint, credential=credential)
        return cls(client, credential)

    async def create_conversation(self) -> str:
        thread = await self._call(self.client.agents.threads.create())
        return thread.id

    async def post_message(self, thread_id: str, content: str) -> None:
        await self._call(self.client.agents.messages.create(thread_id=thread_id, role="user", content=content))

    async def start_run(self, thread_id: str, agent_id: str) -> str:
        run = await self._call(self.client.agents.runs.create(thread_id=thread_id, agent_id=agent_id))
        return run.id

    async def poll_run_status(self, thread_id: str, run_id: str) -> RunState:
        run = await self._call(self.client.agents.runs.get(thread_id=thread_id, run_id=run_id))
        last_error = _read(run, "last_error")
        return RunState(
            status=_enum_value(run.status),
            error_code=_read(last_error, "code"),
            error_message=_read(last_error, "message"),
        )

    async def list_messages(self, thread_id: str) -> list[AgentMessage]:
        messages = []
        try:
            async for message in self.client.agents.messages.list(thread_id=thread_id, order=ListSortOrder.DESCENDING):
                text_blocks = [
                    block.text.value for block in message.content or [] if _enum_value(_read(block, "type")) == "text"
                ]
                messages.append(AgentMessage(role=_enum_value(message.role), text_blocks=text_blocks))
        except HttpResponseError as e:
            translated = self._translate(e)
            if translated is e:
                raise
            raise translated from e
        return messages

    async def close(self) -> None:
        await self.client.close()
        if self.credential is not None:
            await self.credential.close()

    # --- Helper Methods ---

    async def _call(self, awaitable: Awaitable[_T]) -> _T:
        try:
            return await awaitable
        except HttpResponseError as e:
            translated = self._translate(e)
            if translated is e:
                raise
            raise translated from e

    def _translate(self, error: HttpResponseError) -> Exception:
        if isinstance(error, ClientAuthenticationError):
            classified = classify_exception(error)
            if isinstance(classified, AuthenticationError):
                return classified
            return AuthenticationError(str(error))
        if error.status_code == 429:
            return RateLimitError("Rate limit is exceeded. Try again later.")
        if error.status_code == 401:
            return AuthenticationError(str(error))
        return error


def build_agent_backend(settings: AzureSettings) -> AzureAgentBackend | None:
    """設定が不足していればNone (フォールバックモード) を返す"""
    if not validate_configuration(settings).search_ready:
        return None
    try:
        return AzureAgentBackend.from_settings(settings)
    except (ValueError, TypeError) as e:
        logger.error("Failed to initialize AI Project Client: %s", e)
        return None
