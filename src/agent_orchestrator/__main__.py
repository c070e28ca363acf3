"""CLI entry point for agent-orchestrator."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from agent_orchestrator.app import OrchestratorApp
from agent_orchestrator.config import AppConfig, load_config
from agent_orchestrator.core.errors import ConfigError, OrchestratorError
from agent_orchestrator.core.types import SessionType
from agent_orchestrator.log import setup_logging

CHAT_HELP = "Commands: /takeover, /history, /end, /quit"


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="agent-orchestrator",
        description="Agent session orchestration with LLM tool use and human handoff",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    _add_config_args(subparsers.add_parser("start", help="Run background services"))
    _add_config_args(subparsers.add_parser("config-check", help="Validate configuration"))

    agents_parser = subparsers.add_parser("agents", help="List agents and whether they are enabled")
    _add_config_args(agents_parser)
    agents_parser.add_argument("--org", default=None, help="Evaluate flags for this org")

    chat_parser = subparsers.add_parser("chat", help="Interactive session in the terminal")
    _add_config_args(chat_parser)
    chat_parser.add_argument("-a", "--agent", default=None, help="Agent id to bind, e.g. DISPATCH_CONCIERGE")
    chat_parser.add_argument("-u", "--user", default=None, help="User id (omit for anonymous)")
    chat_parser.add_argument(
        "-t",
        "--type",
        default=SessionType.SUPPORT.value,
        choices=[t.value for t in SessionType],
        help="Session type",
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    if args.command == "config-check":
        _check_config(args.config, args.env)
        return

    config = _load(args.config, args.env)
    setup_logging(config.log_level, json=config.log_json)

    match args.command:
        case "agents":
            asyncio.run(_list_agents(config, args.org))
        case "chat":
            asyncio.run(_chat(config, args.agent, args.user, args.type))
        case "start":
            asyncio.run(_serve(config))


def _load(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load(config_path, env_path)
    llm = config.llm
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Storage: {config.storage.db_path}")
    print(f"  Primary: anthropic/{llm.anthropic.model} (key {'set' if llm.anthropic.api_key else 'missing'})")
    if llm.fallback_enabled:
        print(f"  Fallback: openai/{llm.openai.model} (key {'set' if llm.openai.api_key else 'missing'})")
    print(f"  Memory: {config.memory.max_turns} turns / {config.memory.max_context_tokens} tokens")
    print(f"  Tool rounds: {config.orchestrator.max_tool_rounds}")
    enabled = sorted(f for f, on in config.flags.defaults.items() if on)
    print(f"  Flags on: {', '.join(enabled) or '(none)'}")
    if config.expiry.enabled:
        print(f"  Expiry: idle {config.expiry.idle_seconds}s, every {config.expiry.interval_seconds}s")


async def _list_agents(config: AppConfig, org_id: str | None) -> None:
    app = OrchestratorApp(config)
    print(f"{'AGENT':<26} {'CATEGORY':<18} {'ENABLED':<8} NAME")
    for definition in app.catalog.get_all():
        enabled = await app.catalog.is_enabled(definition.id, org_id)
        print(f"{definition.id:<26} {definition.category:<18} {'yes' if enabled else 'no':<8} {definition.name}")


async def _chat(config: AppConfig, agent_id: str | None, user_id: str | None, session_type: str) -> None:
    config.expiry.enabled = False
    app = OrchestratorApp(config)
    await app.start()
    try:
        context = {"agentId": agent_id} if agent_id else {}
        session = await app.orchestrator.start_session(user_id, session_type, context)
        mode = "model" if app.orchestrator.is_model_available() and session.agent_id else "stub"
        print(f"Session {session.id} ({session.agent_id or 'no agent'}, {mode}).")
        print(CHAT_HELP)

        while True:
            try:
                text = (await asyncio.to_thread(input, "you> ")).strip()
            except EOFError:
                break
            if not text:
                continue

            match text:
                case "/quit":
                    # leave the session active; idle expiry closes it later
                    print(f"Left session {session.id} open.")
                    return
                case "/end":
                    await app.orchestrator.end_session(session.id)
                    print("Session ended.")
                    break
                case "/takeover":
                    result = await app.orchestrator.request_human_takeover(
                        session.id, reason="Requested from CLI"
                    )
                    print(f"agent> {result.message}")
                    break
                case "/history":
                    page = await app.orchestrator.get_history(session.id, include_tool_calls=True)
                    for message in page.messages:
                        print(f"  [{message.role}] {message.content}")
                        for call in message.tool_calls or []:
                            print(f"      tool {call.tool_name}: {call.status}")
                    continue
                case _ if text.startswith("/"):
                    print(CHAT_HELP)
                    continue

            try:
                result = await app.orchestrator.process_message(session.id, text)
            except OrchestratorError as e:
                print(f"error> [{e.error_code}] {e}", file=sys.stderr)
                break

            print(f"agent> {result.response.content}")
            for call in result.tool_calls:
                print(f"  tool {call.tool_name}: {call.status}")
            if result.suggested_actions:
                print(f"  suggestions: {' | '.join(result.suggested_actions)}")
            if not result.session_active:
                print("Session handed to a human agent.")
                break

        current = await app.orchestrator.get_session(session.id)
        if current is not None and current.is_active:
            await app.orchestrator.end_session(session.id)
    finally:
        await app.stop()


async def _serve(config: AppConfig) -> None:
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda s, f: stop_event.set())

    app = OrchestratorApp(config)
    await app.start()
    try:
        await stop_event.wait()
    finally:
        await app.stop()


if __name__ == "__main__":
    main()
