"""Shared fixtures: temporary workspace, database, session store and a scripted completion client."""

from __future__ import annotations

import inspect
from pathlib import Path
from typing import Any, Callable

import pytest
import pytest_asyncio

from codeloop.ai.agent import AgentEngine
from codeloop.ai.client import AIClient, Completion
from codeloop.ai.tools.base import ToolContext, ToolDefinition
from codeloop.ai.tools.registry import ToolRegistry
from codeloop.config import AgentConfig
from codeloop.core.approval import ApprovalManager
from codeloop.core.session import SessionStore
from codeloop.core.types import ApprovalPolicy, SandboxPolicy
from codeloop.storage.database import Database
from codeloop.storage.models import Message, ToolCall
from codeloop.storage.session_repo import SessionRepository

pytest_plugins = ("pytest_asyncio",)


class FakeAIClient(AIClient):
    """Replays a script of completions.

    A step is a ``Completion``, an exception to raise, or a callable taking the
    message log and returning either (sync or async). An exhausted script answers
    with a plain "Done." so runs always terminate.
    """

    def __init__(self, script: list[Any] | None = None):
        self._script = list(script or [])
        self.requests: list[tuple[list[Message], list[ToolDefinition]]] = []

    @property
    def model_name(self) -> str:
        return "fake-model"

    async def complete(self, messages: list[Message], tools: list[ToolDefinition]) -> Completion:
        self.requests.append((list(messages), list(tools)))
        if not self._script:
            return Completion(text="Done.")

        step = self._script.pop(0)
        if callable(step) and not isinstance(step, Completion):
            step = step(messages)
            if inspect.isawaitable(step):
                step = await step
        if isinstance(step, BaseException):
            raise step
        return step


def tool_call(name: str, arguments: str = "{}", call_id: str | None = None) -> ToolCall:
    return ToolCall(id=call_id or f"call_{name}", name=name, arguments=arguments)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def tool_context(workspace: Path) -> ToolContext:
    return ToolContext(
        working_directory=str(workspace),
        session_id="thread_test",
        user_id="user-1",
        sandbox_policy=SandboxPolicy.WORKSPACE_WRITE,
    )


@pytest_asyncio.fixture
async def db(tmp_path: Path):
    database = Database(str(tmp_path / "data" / "test.db"))
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def repo(db: Database) -> SessionRepository:
    return SessionRepository(db)


@pytest.fixture
def store(repo: SessionRepository, workspace: Path) -> SessionStore:
    return SessionStore(repo, default_workspace=str(workspace), max_history_messages=50)


@pytest.fixture
def approvals() -> ApprovalManager:
    return ApprovalManager(ApprovalPolicy.NEVER)


@pytest.fixture
def registry() -> ToolRegistry:
    reg = ToolRegistry()
    reg.discover_and_register()
    return reg


@pytest.fixture
def agent_config(workspace: Path) -> AgentConfig:
    return AgentConfig(
        workspace=str(workspace),
        sandbox_policy=SandboxPolicy.WORKSPACE_WRITE,
        approval_policy=ApprovalPolicy.NEVER,
        max_iterations=10,
        max_consecutive_errors=3,
    )


@pytest.fixture
def fake_client() -> Callable[..., FakeAIClient]:
    return FakeAIClient


@pytest.fixture
def make_engine(store, registry, approvals, agent_config):
    """Build an engine around a scripted client; returns ``(engine, client)``."""

    def _make(
        script: list[Any] | None = None,
        *,
        config: AgentConfig | None = None,
        tool_registry: ToolRegistry | None = None,
        approval_manager: ApprovalManager | None = None,
    ) -> tuple[AgentEngine, FakeAIClient]:
        client = FakeAIClient(script)
        engine = AgentEngine(
            client=client,
            registry=tool_registry or registry,
            sessions=store,
            approvals=approval_manager or approvals,
            config=config or agent_config,
        )
        return engine, client

    return _make


@pytest.fixture
def call() -> Callable[..., ToolCall]:
    return tool_call
