from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

from threadline.config import ChatConfig, EnvCredentialResolver, TenantTokenResolver
from threadline.errors import ChatError, ConfigError
from threadline.orchestrator import ConversationOrchestrator
from threadline.runtime.repl import ChatREPL, ConsoleRenderer

logger = logging.getLogger(__name__)


def main() -> int:
    load_dotenv()
    return _main(sys.argv[1:])


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="threadline", description="Chat with a remote assistant")
    parser.add_argument("--token", default=None, help="Tenant token selecting per-tenant credentials")
    parser.add_argument("--backend", default=None, choices=["sessions", "assistants"])
    parser.add_argument("--no-stream", action="store_true", help="Always poll for replies")
    parser.add_argument("--poll-interval", type=float, default=None, help="Seconds between status checks")
    parser.add_argument("--timeout", type=float, default=None, help="Give up on a reply after N seconds")
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=False)

    chat = subparsers.add_parser("chat", help="Start an interactive conversation")
    chat.add_argument("--session", default=None, help="Open an existing session id")
    chat.add_argument("--message", "-m", help="Single prompt (non-interactive)")

    sessions = subparsers.add_parser("sessions", help="Manage conversations")
    sessions_sub = sessions.add_subparsers(dest="sessions_cmd", required=False)
    sessions_sub.add_parser("list", help="List sessions")
    sessions_sub.add_parser("create", help="Create a session")
    sessions_delete = sessions_sub.add_parser("delete", help="Delete a session")
    sessions_delete.add_argument("session_id")
    sessions_show = sessions_sub.add_parser("show", help="Print a session's messages")
    sessions_show.add_argument("session_id")

    subparsers.add_parser("info", help="Show company info for the configured credentials")
    return parser


def _load_config(args) -> ChatConfig:
    resolver = TenantTokenResolver(args.token) if args.token else EnvCredentialResolver()
    config = ChatConfig.from_env(resolver).with_overrides(
        backend=args.backend,
        stream=False if args.no_stream else None,
        poll_interval=args.poll_interval,
        send_timeout=args.timeout,
    )
    config.validate()
    return config


def _main(argv: list[str]) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(bool(args.verbose))

    try:
        config = _load_config(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    cmd = args.command or "chat"
    if cmd == "chat":
        runner = _cmd_chat(config, args)
    elif cmd == "sessions":
        runner = _cmd_sessions(config, args)
    elif cmd == "info":
        runner = _cmd_info(config)
    else:
        parser.print_help(sys.stderr)
        return 2

    try:
        return asyncio.run(runner)
    except KeyboardInterrupt:
        print("\n\n⚠️  Interrupted")
        return 130
    except ChatError as e:
        print(f"Error: {e.user_message()}", file=sys.stderr)
        return 1


async def _cmd_chat(config: ChatConfig, args) -> int:
    renderer = ConsoleRenderer(verbose=bool(args.verbose))
    orchestrator = ConversationOrchestrator.from_config(config, on_event=renderer)
    try:
        display_name = "threadline"
        try:
            info = await orchestrator.company_info()
            display_name = info.display_name or display_name
        except ChatError as e:
            logger.warning(f"Could not load company info: {e}")

        if args.session:
            await orchestrator.list_sessions()
            await orchestrator.open_session(args.session)

        repl = ChatREPL(orchestrator, renderer, display_name=display_name)
        if args.message:
            await repl.send(args.message)
            return 1 if orchestrator.messages and orchestrator.messages[-1].is_error else 0
        await repl.run()
        return 0
    finally:
        await orchestrator.aclose()


async def _cmd_sessions(config: ChatConfig, args) -> int:
    orchestrator = ConversationOrchestrator.from_config(config)
    try:
        sub = args.sessions_cmd or "list"
        if sub == "list":
            sessions = await orchestrator.list_sessions()
            if not sessions:
                print("No sessions found.")
            for session in sessions:
                thread = f"  thread={session.thread_id}" if session.thread_id else ""
                print(f"{session.id}{thread}")
            return 0
        if sub == "create":
            session = await orchestrator.create_session()
            print(session.id)
            return 0
        if sub == "delete":
            await orchestrator.delete_session(args.session_id)
            print(f"Deleted {args.session_id}")
            return 0
        if sub == "show":
            await orchestrator.list_sessions()
            for message in await orchestrator.open_session(args.session_id):
                stamp = message.timestamp.strftime("%Y-%m-%d %H:%M:%S")
                print(f"[{stamp}] {message.role}: {message.text}")
            return 0
        return 2
    finally:
        await orchestrator.aclose()


async def _cmd_info(config: ChatConfig) -> int:
    orchestrator = ConversationOrchestrator.from_config(config)
    try:
        info = await orchestrator.company_info()
        print(f"Company: {info.company_name} ({info.company_uuid})")
        print(f"Display name: {info.display_name}")
        print(f"Active: {'yes' if info.is_active else 'no'}")
        return 0
    finally:
        await orchestrator.aclose()


if __name__ == "__main__":
    raise SystemExit(main())
