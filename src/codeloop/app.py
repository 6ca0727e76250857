"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from pathlib import Path

from codeloop.ai.agent import AgentEngine
from codeloop.ai.client import AIClient, AnthropicClient
from codeloop.ai.handler import MessageHandler
from codeloop.ai.tools.policy import ToolPolicy, merge_policies, sandbox_tool_policy
from codeloop.ai.tools.registry import ToolRegistry
from codeloop.config import AppConfig, BotConfig
from codeloop.core.approval import ApprovalManager
from codeloop.core.session import SessionStore
from codeloop.log import get_logger
from codeloop.messenger.base import MessengerAdapter
from codeloop.storage.database import Database
from codeloop.storage.session_repo import SessionRepository

logger = get_logger(__name__)


class CodeloopApp:
    """Composition root: every component is built once here and passed down."""

    def __init__(self, config: AppConfig, ai_client: AIClient | None = None):
        self.config = config
        agent_cfg = config.agent

        self.db = Database(config.storage.db_path)
        self.session_repo = SessionRepository(self.db)
        self.sessions = SessionStore(
            self.session_repo,
            default_workspace=agent_cfg.workspace,
            max_history_messages=agent_cfg.max_history_messages,
        )
        self.approvals = ApprovalManager(agent_cfg.approval_policy, agent_cfg.approval_timeout)
        self.tool_registry = ToolRegistry(
            merge_policies(
                ToolPolicy.from_lists(agent_cfg.tools.allow, agent_cfg.tools.deny),
                sandbox_tool_policy(agent_cfg.sandbox_policy),
            )
        )
        self.ai_client = ai_client or AnthropicClient(config.llm)
        self.engine = AgentEngine(
            client=self.ai_client,
            registry=self.tool_registry,
            sessions=self.sessions,
            approvals=self.approvals,
            config=agent_cfg,
        )
        self.adapters: dict[str, MessengerAdapter] = {}

    async def initialize(self) -> None:
        """Prepare storage, workspace and tools. Enough for a one-shot local run."""
        Path(self.config.agent.workspace).mkdir(parents=True, exist_ok=True)
        await self.db.initialize()
        await self.sessions.recover_interrupted()
        self.tool_registry.discover_and_register()
        logger.info(
            "engine_ready",
            tools=[d.name for d in self.tool_registry.enabled_definitions()],
            sandbox_policy=self.config.agent.sandbox_policy.value,
            approval_policy=self.config.agent.approval_policy.value,
        )

    async def start(self) -> None:
        """Initialize and start all components."""
        await self.initialize()

        for bot_cfg in self.config.bots:
            try:
                adapter = self._create_adapter(bot_cfg)
                handler = MessageHandler(adapter=adapter, engine=self.engine, bot_config=bot_cfg)
                adapter.on_message(handler.handle)
                await adapter.start()
                self.adapters[bot_cfg.id] = adapter
                logger.info("bot_started", bot_id=bot_cfg.id, platform=bot_cfg.platform)
            except Exception as e:
                logger.error("bot_start_failed", bot_id=bot_cfg.id, error=str(e))

        logger.info("codeloop_started", bot_count=len(self.adapters))

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        for adapter in self.adapters.values():
            try:
                await adapter.stop()
            except Exception as e:
                logger.error("bot_stop_error", bot_id=adapter.bot_id, error=str(e))

        await self.db.close()
        logger.info("codeloop_stopped")

    def _create_adapter(self, cfg: BotConfig) -> MessengerAdapter:
        match cfg.platform:
            case "telegram":
                from codeloop.messenger.telegram import TelegramAdapter

                return TelegramAdapter(cfg.id, cfg.model_dump())
            case _:
                raise ValueError(f"Unknown platform: {cfg.platform}")
