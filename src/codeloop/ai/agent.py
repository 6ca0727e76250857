"""Agent engine: the reason/act loop over a durable session."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from codeloop.ai.client import AIClient
from codeloop.ai.context import ContextManager
from codeloop.ai.events import AgentEvent, EventHandler, EventType
from codeloop.ai.prompts import CONTINUATION_MESSAGE, INCOMPLETE_MESSAGE, build_system_prompt, tool_error_prompt
from codeloop.ai.tools.base import ToolContext, ToolErrorKind, ToolResult
from codeloop.ai.tools.params import ToolArgumentError
from codeloop.ai.tools.registry import ToolRegistry, parse_arguments
from codeloop.config import AgentConfig
from codeloop.core.approval import ApprovalManager
from codeloop.core.safety import assess_risk
from codeloop.core.session import SessionStore
from codeloop.core.types import Role, RunStatus, SessionStatus
from codeloop.log import bind_session, get_logger, unbind_session
from codeloop.storage.models import Message, Session, ToolCall

logger = get_logger(__name__)

# Arguments copied into an approval request so a human can judge it.
APPROVAL_DETAIL_KEYS = ("command", "path", "url", "method", "subcommand", "args")


class EmptyTaskError(ValueError):
    """Raised when a run is requested with a blank task."""


@dataclass
class RunResult:
    status: RunStatus
    output: str
    session_id: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    modified_files: list[str] = field(default_factory=list)
    iterations: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def tokens_used(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class _RunState:
    """Accumulators for one pass through the loop."""

    tool_calls: list[ToolCall] = field(default_factory=list)
    modified_files: list[str] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    last_output: str = ""
    iterations: int = 0

    def result(self, status: RunStatus, output: str, session_id: str, error: str | None = None) -> RunResult:
        return RunResult(
            status=status,
            output=output,
            session_id=session_id,
            tool_calls=list(self.tool_calls),
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            modified_files=list(dict.fromkeys(self.modified_files)),
            iterations=self.iterations,
            error=error,
        )


class AgentEngine:
    """Drives the completion service and tools until a task is answered.

    One loop runs per session at a time; separate sessions run concurrently and
    share only the registry, which is read-only after startup. A run never raises
    past its own boundary: callers always get a ``RunResult``.
    """

    def __init__(
        self,
        client: AIClient,
        registry: ToolRegistry,
        sessions: SessionStore,
        approvals: ApprovalManager,
        config: AgentConfig,
        context: ContextManager | None = None,
    ):
        self._client = client
        self._registry = registry
        self._sessions = sessions
        self._approvals = approvals
        self._config = config
        self._context = context or ContextManager()
        self._handlers: list[EventHandler] = []
        self._locks: dict[str, asyncio.Lock] = {}
        self._awaiting: dict[str, int] = {}

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    @property
    def approvals(self) -> ApprovalManager:
        return self._approvals

    @property
    def context(self) -> ContextManager:
        return self._context

    def on_event(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    async def run(
        self,
        task: str,
        chat_id: str,
        user_id: str = "",
        on_event: EventHandler | None = None,
    ) -> RunResult:
        """Run ``task`` in the session bound to ``chat_id``."""
        task = task.strip()
        if not task:
            raise EmptyTaskError("Task must not be empty")

        session = await self._sessions.get_or_create(chat_id, user_id)
        async with self._lock(session.id):
            # A stale cancel request from an idle period must not abort this run.
            await self._sessions.clear_cancel(session.id)
            return await self._execute(session, task, on_event)

    async def continue_session(
        self, session_id: str, message: str, on_event: EventHandler | None = None
    ) -> RunResult:
        """Append a user message to an existing session and re-enter the loop."""
        message = message.strip()
        if not message:
            raise EmptyTaskError("Message must not be empty")

        session = await self._sessions.get(session_id)
        async with self._lock(session.id):
            await self._sessions.clear_cancel(session.id)
            return await self._execute(session, message, on_event)

    async def resume(self, session_id: str, on_event: EventHandler | None = None) -> RunResult:
        """Re-enter the loop of a cancelled or interrupted session."""
        return await self.continue_session(session_id, CONTINUATION_MESSAGE, on_event)

    async def cancel(self, session_id: str) -> bool:
        """Ask a running loop to stop at its next iteration boundary."""
        session = await self._sessions.get(session_id)
        if session.status == SessionStatus.IDLE:
            return False
        await self._sessions.request_cancel(session_id)
        return True

    async def reset(self, chat_id: str) -> bool:
        session = await self._sessions.find_by_chat(chat_id)
        if session is None:
            return False
        async with self._lock(session.id):
            await self._sessions.reset(session.id)
        self._context.clear(session.id)
        return True

    def _lock(self, session_id: str) -> asyncio.Lock:
        return self._locks.setdefault(session_id, asyncio.Lock())

    async def _emit(self, event: AgentEvent, listener: EventHandler | None) -> None:
        handlers = [*self._handlers, listener] if listener else self._handlers
        for handler in handlers:
            try:
                await handler(event)
            except Exception as e:
                logger.warning("event_handler_error", event_type=event.type.value, error=str(e))

    async def _execute(self, session: Session, task: str, listener: EventHandler | None) -> RunResult:
        bind_session(session.id, session.chat_id)
        state = _RunState()
        logger.info("agent_run_started", task=task[:200])
        try:
            await self._sessions.set_status(session.id, SessionStatus.RUNNING, current_task=task)
            await self._emit(AgentEvent(EventType.TURN_STARTED, session.id, data={"task": task}), listener)

            if not session.has_system_message():
                prompt = await self._system_prompt(session)
                await self._sessions.append_message(session.id, Message(role=Role.SYSTEM, content=prompt))
            await self._sessions.append_message(session.id, Message(role=Role.USER, content=task))

            result = await self._loop(session.id, state, listener)
        except Exception as e:
            logger.exception("agent_run_failed", error=str(e))
            await self._emit(AgentEvent(EventType.ERROR, session.id, error=str(e)), listener)
            result = state.result(RunStatus.FAILED, f"Error: {e}", session.id, error=str(e))

        try:
            await self._sessions.set_status(session.id, SessionStatus.IDLE)
        except Exception as e:
            logger.error("session_status_reset_failed", error=str(e))

        await self._emit(
            AgentEvent(
                EventType.TURN_COMPLETED,
                session.id,
                success=result.success,
                data={"status": result.status.value, "iterations": result.iterations},
            ),
            listener,
        )
        logger.info(
            "agent_run_finished",
            status=result.status.value,
            iterations=result.iterations,
            tool_calls=len(result.tool_calls),
            tokens=result.tokens_used,
        )
        unbind_session()
        return result

    async def _loop(self, session_id: str, state: _RunState, listener: EventHandler | None) -> RunResult:
        max_iterations = self._config.max_iterations
        max_errors = self._config.max_consecutive_errors
        consecutive_errors = 0
        tools = self._registry.tools_for_provider()

        while state.iterations < max_iterations:
            session = await self._sessions.get(session_id)
            if session.cancel_requested:
                await self._sessions.clear_cancel(session_id)
                logger.info("agent_run_cancelled", iteration=state.iterations)
                return state.result(RunStatus.CANCELLED, "Task cancelled.", session_id)

            state.iterations += 1
            logger.debug("agent_iteration", iteration=state.iterations, max_iterations=max_iterations)

            try:
                completion = await self._client.complete(session.messages, tools)
            except Exception as e:
                logger.error("completion_failed", error=str(e), iteration=state.iterations)
                await self._emit(AgentEvent(EventType.ERROR, session_id, error=str(e)), listener)
                return state.result(RunStatus.FAILED, f"Error: {e}", session_id, error=str(e))

            state.input_tokens += completion.input_tokens
            state.output_tokens += completion.output_tokens
            await self._sessions.add_token_usage(session_id, completion.input_tokens, completion.output_tokens)
            if completion.text:
                state.last_output = completion.text

            if not completion.tool_calls:
                await self._sessions.append_message(
                    session_id, Message(role=Role.ASSISTANT, content=completion.text)
                )
                return state.result(RunStatus.COMPLETED, completion.text, session_id)

            await self._sessions.append_message(
                session_id,
                Message(role=Role.ASSISTANT, content=completion.text, tool_calls=list(completion.tool_calls)),
            )

            context = self._tool_context(session)
            results = await self._dispatch(completion.tool_calls, context, listener)

            hints: list[str] = []
            for call, result in zip(completion.tool_calls, results):
                state.tool_calls.append(call)
                if result.success:
                    state.modified_files.extend(result.modified_files)
                    self._track_files(session_id, call, result)
                await self._sessions.append_message(
                    session_id,
                    Message(role=Role.TOOL, content=result.as_message_content(), tool_call_id=call.id),
                )
                if result.success:
                    consecutive_errors = 0
                else:
                    consecutive_errors += 1
                    hints.append(tool_error_prompt(result.error or "Unknown error"))

            # Hints follow the whole batch so tool results stay contiguous.
            for hint in hints:
                await self._sessions.append_message(session_id, Message(role=Role.SYSTEM, content=hint))

            if consecutive_errors >= max_errors:
                logger.warning("agent_error_ceiling", consecutive_errors=consecutive_errors)
                return state.result(
                    RunStatus.INCOMPLETE,
                    self._incomplete_output(f"stopped after {consecutive_errors} consecutive tool errors", state),
                    session_id,
                )

        logger.warning("agent_iteration_ceiling", iterations=state.iterations)
        return state.result(
            RunStatus.INCOMPLETE,
            self._incomplete_output(f"reached the iteration limit ({max_iterations})", state),
            session_id,
        )

    async def _dispatch(
        self, calls: list[ToolCall], context: ToolContext, listener: EventHandler | None
    ) -> list[ToolResult]:
        """Execute one batch; results come back in request order either way."""
        if len(calls) > 1 and self._registry.can_execute_in_parallel(calls):
            logger.debug("tool_batch_parallel", count=len(calls))
            return list(await asyncio.gather(*(self._run_tool(c, context, listener) for c in calls)))

        results = []
        for call in calls:
            results.append(await self._run_tool(call, context, listener))
        return results

    async def _run_tool(self, call: ToolCall, context: ToolContext, listener: EventHandler | None) -> ToolResult:
        session_id = context.session_id
        await self._emit(
            AgentEvent(EventType.ITEM_STARTED, session_id, tool_name=call.name, tool_call_id=call.id),
            listener,
        )

        rejection = await self._check_approval(call, session_id)
        result = rejection or await self._registry.execute(call, context)

        await self._emit(
            AgentEvent(
                EventType.ITEM_COMPLETED,
                session_id,
                tool_name=call.name,
                tool_call_id=call.id,
                success=result.success,
                error=result.error,
            ),
            listener,
        )
        return result

    async def _check_approval(self, call: ToolCall, session_id: str) -> ToolResult | None:
        """Gate a risky call on the approval manager; returns a failure if rejected."""
        if not self._registry.is_enabled(call.name):
            return None
        try:
            args = parse_arguments(call.arguments)
        except ToolArgumentError:
            return None

        risk = assess_risk(call.name, args)
        if not self._approvals.needs_approval(risk):
            return None

        details = {"tool": call.name, "session_id": session_id}
        details.update({k: v for k, v in args.items() if k in APPROVAL_DETAIL_KEYS})
        request = self._approvals.create_request(call.name, details, risk=risk)

        # Parallel calls can wait together; the session runs again once the last one is decided.
        self._awaiting[session_id] = self._awaiting.get(session_id, 0) + 1
        await self._sessions.set_status(session_id, SessionStatus.WAITING_APPROVAL)
        try:
            decision = await self._approvals.request_approval(request, timeout=self._config.approval_timeout)
        finally:
            self._awaiting[session_id] -= 1
            if not self._awaiting[session_id]:
                del self._awaiting[session_id]
                await self._sessions.set_status(session_id, SessionStatus.RUNNING)

        if decision.approved:
            return None

        result = ToolResult.fail(
            f"Action was not approved ({decision.reason or 'rejected'})", ToolErrorKind.APPROVAL_REJECTED
        )
        result.tool_call_id = call.id
        return result

    def _tool_context(self, session: Session) -> ToolContext:
        return ToolContext(
            working_directory=session.working_directory,
            session_id=session.id,
            user_id=session.user_id,
            sandbox_policy=self._config.sandbox_policy,
            max_file_size_kb=self._config.max_file_size_kb,
            http_allowlist=tuple(self._config.http_allowlist),
        )

    def _track_files(self, session_id: str, call: ToolCall, result: ToolResult) -> None:
        """Record what a successful call read or changed."""
        for path in result.modified_files:
            self._context.track_file_modified(session_id, path)
        if call.name not in ("read_file", "git"):
            return
        try:
            args = parse_arguments(call.arguments)
        except ToolArgumentError:
            return
        if call.name == "read_file" and isinstance(args.get("path"), str):
            self._context.track_file_access(session_id, args["path"])
        elif call.name == "git" and args.get("subcommand") == "commit":
            self._context.clear_modified_files(session_id)

    async def _system_prompt(self, session: Session) -> str:
        context = await self._context.build(session.id, session.working_directory)
        return build_system_prompt(
            self._registry.tools_for_provider(),
            session.working_directory,
            self._config.sandbox_policy,
            self._approvals.policy,
            model=self._client.model_name,
            context=context.format(),
        )

    @staticmethod
    def _incomplete_output(reason: str, state: _RunState) -> str:
        header = f"Task incomplete: {reason}."
        return f"{header}\n\n{state.last_output or INCOMPLETE_MESSAGE}"
