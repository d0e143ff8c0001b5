"""
テスト共通のフィクスチャ。

検索エージェントはFakeAgentBackendで置き換え、待機は記録するだけで実際には眠らない。
外部サービス・APIキーなしですべてのテストが実行できる。
"""

import pytest

import websearch.agent_client as agent_client
from core.definitions import RunStatus
from websearch.agent_client import AgentMessage, RunState, SearchAgentClient


class RecordingSleep:
    """待機秒数を記録するだけのsleep"""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(float(seconds))


class FakeAgentBackend:
    """
    AgentBackendのテスト用実装。

    respond(query) の戻り値がアシスタントの応答になる。Noneならアシスタントの応答なし、
    例外を送出すればメッセージ取得時の失敗として扱われる。
    run_statuses は poll_run_status が順に返す状態で、尽きたら completed を返す。
    """

    def __init__(self, respond=None, run_statuses=None):
        self.respond = respond or (lambda query: f"{query} の検索結果")
        self.run_statuses = list(run_statuses or [])
        self.queries = []
        self.poll_count = 0
        self.closed = False
        self._threads = {}

    async def create_conversation(self) -> str:
        thread_id = f"thread_{len(self._threads) + 1}"
        self._threads[thread_id] = None
        return thread_id

    async def post_message(self, thread_id: str, content: str) -> None:
        self._threads[thread_id] = content
        self.queries.append(content)

    async def start_run(self, thread_id: str, agent_id: str) -> str:
        return f"run_{thread_id}"

    async def poll_run_status(self, thread_id: str, run_id: str) -> RunState:
        self.poll_count += 1
        if self.run_statuses:
            return self.run_statuses.pop(0)
        return RunState(status=RunStatus.Completed.value)

    async def list_messages(self, thread_id: str) -> list[AgentMessage]:
        query = self._threads[thread_id]
        reply = self.respond(query)
        messages = [AgentMessage(role="user", text_blocks=[query])]
        if reply is not None:
            messages.insert(0, AgentMessage(role="assistant", text_blocks=[reply]))
        return messages

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def reset_fallback_notice(monkeypatch):
    """フォールバック通知はプロセスで一度きりのため、テストごとに戻す"""
    monkeypatch.setattr(agent_client, "_fallback_notice_logged", False)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def backend():
    return FakeAgentBackend()


@pytest.fixture
def make_client(sleep):
    def _make(backend, agent_id="asst_test", **kwargs):
        return SearchAgentClient(backend, agent_id, sleep=sleep, **kwargs)

    return _make


@pytest.fixture
def unconfigured_client(sleep):
    return SearchAgentClient(None, "", sleep=sleep)
