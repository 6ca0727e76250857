"""Tests for configuration loading and application wiring."""

import pytest
from pydantic import ValidationError

from codeloop.ai.client import Completion
from codeloop.app import CodeloopApp
from codeloop.config import AgentConfig, AppConfig, BotConfig, LLMConfig, StorageConfig, load_config
from codeloop.core.types import ApprovalPolicy, RunStatus, SandboxPolicy, SessionStatus

CONFIG_YAML = """\
log_level: DEBUG
data_dir: ./state
llm:
  api_key: ${TEST_ANTHROPIC_KEY}
  model: claude-test
agent:
  workspace: ./ws
  sandbox_policy: read-only
  approval_policy: always
  approval_timeout: 300
  http_allowlist: "api.github.com, example.com"
  tools:
    deny: [exec_command]
storage:
  db_path: ${data_dir}/codeloop.db
"""


class TestLoadConfig:
    def test_interpolation_and_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_ANTHROPIC_KEY", "sk-test")
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML)

        config = load_config(path, tmp_path / "missing.env")

        assert config.llm.api_key == "sk-test"
        assert config.llm.max_tokens == 8192
        assert config.storage.db_path == "./state/codeloop.db"
        assert config.agent.sandbox_policy == SandboxPolicy.READ_ONLY
        assert config.agent.approval_policy == ApprovalPolicy.ALWAYS
        assert config.agent.approval_timeout == 60
        assert config.agent.http_allowlist == ["api.github.com", "example.com"]
        assert config.agent.tools.deny == ["exec_command"]
        assert config.agent.max_iterations == 15

    def test_env_file_is_loaded(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_ANTHROPIC_KEY", "placeholder")
        monkeypatch.delenv("TEST_ANTHROPIC_KEY")
        (tmp_path / ".env").write_text("TEST_ANTHROPIC_KEY=from-dotenv\n")
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML)

        config = load_config(path, tmp_path / ".env")

        assert config.llm.api_key == "from-dotenv"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml", tmp_path / ".env")

    def test_invalid_policy(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("llm:\n  api_key: x\nagent:\n  sandbox_policy: yolo\n")

        with pytest.raises(ValidationError):
            load_config(path, tmp_path / ".env")


def _app_config(tmp_path, bots=()) -> AppConfig:
    return AppConfig(
        llm=LLMConfig(api_key="test"),
        agent=AgentConfig(workspace=str(tmp_path / "ws"), approval_policy=ApprovalPolicy.NEVER),
        storage=StorageConfig(db_path=str(tmp_path / "data" / "app.db")),
        bots=list(bots),
    )


@pytest.mark.asyncio
class TestCodeloopApp:
    async def test_initialize_and_run(self, tmp_path, fake_client):
        app = CodeloopApp(_app_config(tmp_path), ai_client=fake_client([Completion(text="ready")]))
        await app.initialize()
        try:
            result = await app.engine.run("ping", "chat-1")
        finally:
            await app.stop()

        assert (tmp_path / "ws").is_dir()
        assert len(app.tool_registry.tool_names()) == 9
        assert result.status == RunStatus.COMPLETED
        assert result.output == "ready"

    async def test_tool_policy_from_config(self, tmp_path, fake_client):
        config = _app_config(tmp_path)
        config.agent.tools.deny = ["exec_command", "git"]
        app = CodeloopApp(config, ai_client=fake_client())
        await app.initialize()
        try:
            names = {d.name for d in app.tool_registry.enabled_definitions()}
        finally:
            await app.stop()

        assert "exec_command" not in names
        assert "read_file" in names

    async def test_read_only_sandbox_hides_write_tools(self, tmp_path, fake_client):
        config = _app_config(tmp_path)
        config.agent.sandbox_policy = SandboxPolicy.READ_ONLY
        config.agent.tools.deny = ["http_request"]
        app = CodeloopApp(config, ai_client=fake_client())
        await app.initialize()
        try:
            names = {d.name for d in app.tool_registry.tools_for_provider()}
        finally:
            await app.stop()

        assert names.isdisjoint({"write_file", "edit_file", "exec_command", "http_request"})
        assert {"read_file", "git", "grep_search"} <= names

    async def test_startup_recovers_interrupted_sessions(self, tmp_path, fake_client):
        config = _app_config(tmp_path)
        first = CodeloopApp(config, ai_client=fake_client())
        await first.initialize()
        session = await first.sessions.get_or_create("chat-1")
        await first.sessions.set_status(session.id, SessionStatus.RUNNING)
        await first.stop()

        second = CodeloopApp(config, ai_client=fake_client())
        await second.initialize()
        try:
            reloaded = await second.sessions.get(session.id)
        finally:
            await second.stop()

        assert reloaded.status == SessionStatus.IDLE

    async def test_unknown_platform_does_not_stop_startup(self, tmp_path, fake_client):
        config = _app_config(tmp_path, bots=[BotConfig(id="x", platform="carrier-pigeon", token="t")])
        app = CodeloopApp(config, ai_client=fake_client())

        await app.start()
        await app.stop()

        assert app.adapters == {}
