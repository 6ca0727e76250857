"""CLI entry point for codeloop."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from codeloop.ai.handler import ProgressReporter, format_result
from codeloop.app import CodeloopApp
from codeloop.config import AppConfig, load_config
from codeloop.core.approval import ApprovalManager, ApprovalRequest
from codeloop.log import setup_logging
from codeloop.messenger.console import ConsoleAdapter


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="codeloop",
        description="Autonomous coding agent driven from chat or the terminal",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    start_parser = subparsers.add_parser("start", help="Start the chat bots")
    _add_config_args(start_parser)

    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)

    run_parser = subparsers.add_parser("run", help="Run a single task in the terminal")
    _add_config_args(run_parser)
    run_parser.add_argument("task", help="Task description")
    run_parser.add_argument("--chat", default="cli", help="Session key; reuse it to continue a session")
    run_parser.add_argument(
        "-y", "--yes", action="store_true", help="Approve every risky action without asking"
    )

    args = parser.parse_args()

    if args.command is None:
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "run":
        config = _load_or_exit(args.config, args.env)
        setup_logging(config.log_level)
        exit_code = asyncio.run(_run_task(config, args.task, args.chat, args.yes))
        sys.exit(exit_code)
    elif args.command == "start":
        _serve(args.config, args.env)


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml and edit it", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    agent = config.agent
    print(f"Configuration valid: {config_path}")
    print(f"  Model: {config.llm.model} (max_tokens={config.llm.max_tokens})")
    print(f"  Workspace: {agent.workspace}")
    print(f"  Sandbox policy: {agent.sandbox_policy.value}")
    print(f"  Approval policy: {agent.approval_policy.value} (timeout {agent.approval_timeout}s)")
    print(f"  Limits: {agent.max_iterations} iterations, {agent.max_consecutive_errors} consecutive errors")
    if agent.tools.allow or agent.tools.deny:
        print(f"  Tool allow: {', '.join(agent.tools.allow) or '(all)'}")
        print(f"  Tool deny: {', '.join(agent.tools.deny) or '(none)'}")
    print(f"  HTTP allowlist: {', '.join(agent.http_allowlist) or '(disabled)'}")
    print(f"  Bots configured: {len(config.bots)}")
    for bot in config.bots:
        print(f"    - {bot.id} ({bot.platform})")
    print(f"  Storage: {config.storage.db_path}")


def _stdin_approver(approvals: ApprovalManager, auto_yes: bool):
    async def _ask(request: ApprovalRequest) -> None:
        if auto_yes:
            approvals.approve(request.id)
            return
        print(ApprovalManager.format_request(request).rsplit("\n\n", 1)[0], file=sys.stderr)
        answer = await asyncio.to_thread(input, "Approve? [y/N] ")
        if answer.strip().lower() in ("y", "yes"):
            approvals.approve(request.id)
        else:
            approvals.reject(request.id, "Rejected at the terminal")

    return _ask


async def _run_task(config: AppConfig, task: str, chat_id: str, auto_yes: bool) -> int:
    app = CodeloopApp(config)
    await app.initialize()
    app.approvals.on_request(_stdin_approver(app.approvals, auto_yes))

    adapter = ConsoleAdapter(stream=sys.stderr)
    progress = ProgressReporter(adapter, chat_id, interval=0)
    try:
        result = await app.engine.run(task, chat_id, user_id="cli", on_event=progress.handle)
    finally:
        await app.stop()

    print(format_result(result))
    return 0 if result.success else 1


def _serve(config_path: str, env_path: str) -> None:
    """Load config and start the application."""
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level)

    async def _async_main() -> None:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def _signal_handler() -> None:
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: _signal_handler())

        app = CodeloopApp(config)
        await app.start()
        try:
            await stop_event.wait()
        finally:
            await app.stop()

    asyncio.run(_async_main())


if __name__ == "__main__":
    main()
