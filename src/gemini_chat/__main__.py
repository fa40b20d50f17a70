"""CLI entry point for gemini-chat."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from gemini_chat.ai.client import GeminiClient
from gemini_chat.ai.response import parse_structured_text
from gemini_chat.config import AppConfig, YamlConfigStore, settings_from_reader
from gemini_chat.core.session import ChatSession
from gemini_chat.errors import GeminiChatError, ParseError, TurnCancelled
from gemini_chat.log import setup_logging
from gemini_chat.storage.conversation_store import ConversationStore

DEFAULT_CONFIG = "~/.gemini-chat/config.yaml"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gemini-chat",
        description="Streaming Gemini chat client with a daily conversation log",
    )
    parser.add_argument("-c", "--config", default=DEFAULT_CONFIG, help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ask command
    ask = subparsers.add_parser("ask", help="Send a prompt to Gemini")
    ask.add_argument("prompt", help="Prompt text")
    ask.add_argument("-f", "--file", action="append", default=[], dest="files", help="Attach a file (repeatable)")
    ask.add_argument("-c", "--continue", action="store_true", dest="continue_conversation", help="Include the active conversation")
    ask.add_argument("--schema", help="JSON Schema file for a structured JSON response")
    ask.add_argument("--no-stream", action="store_true", help="Use the non-streaming endpoint")
    ask.add_argument("--load", metavar="DATE", help="Load a dated conversation before asking")
    ask.add_argument("--clear", action="store_true", help="Archive and clear the active conversation first")

    # history commands
    history = subparsers.add_parser("history", help="Manage the conversation log")
    history_sub = history.add_subparsers(dest="history_command", required=True)
    h_list = history_sub.add_parser("list", help="List dated history entries")
    h_list.add_argument("--days", type=int, default=10, help="Maximum entries to show")
    h_list.add_argument("--detailed", action="store_true", help="Show creation times")
    h_show = history_sub.add_parser("show", help="Show the active conversation")
    h_show.add_argument("--format", choices=["pretty", "json", "summary"], default="pretty")
    h_load = history_sub.add_parser("load", help="Make a dated conversation active")
    h_load.add_argument("date", help="YYYY-MM-DD")
    h_clear = history_sub.add_parser("clear", help="Reset the active conversation")
    h_clear.add_argument("--archive", action="store_true", help="Archive before clearing")
    h_cleanup = history_sub.add_parser("cleanup", help="Delete old history entries")
    h_cleanup.add_argument("--days", type=int, default=None, help="Retention in days (default: HISTORY_RETENTION_DAYS)")

    subparsers.add_parser("models", help="List available Gemini models")
    subparsers.add_parser("init", help="Initialize the workspace")

    config = subparsers.add_parser("config", help="Manage configuration")
    config_sub = config.add_subparsers(dest="config_command", required=True)
    config_sub.add_parser("init", help="Write missing default keys to the config file")
    config_sub.add_parser("check", help="Validate configuration")
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        store_config = YamlConfigStore(args.config, args.env)
        if args.command == "config" and args.config_command == "init":
            _config_init(store_config)
            return
        config = settings_from_reader(store_config)
        setup_logging(config.log_level)
        store = ConversationStore(config.workspace_path, config.gemini.conversation_history_max)

        if args.command == "config":
            _config_check(config, store_config)
        elif args.command == "init":
            store.init(config.gemini.model, config.gemini.temperature)
            print(f"Workspace initialized at {store.root}")
        elif args.command == "history":
            _history(args, config, store)
        elif args.command == "models":
            asyncio.run(_models(config))
        elif args.command == "ask":
            asyncio.run(_ask(args, config, store))
    except KeyboardInterrupt:
        print("\nCancelled. Nothing was recorded.", file=sys.stderr)
        sys.exit(130)
    except TurnCancelled as e:
        print(f"\n{e}", file=sys.stderr)
        sys.exit(130)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except GeminiChatError as e:
        print(f"Error ({type(e).__name__}): {e}", file=sys.stderr)
        sys.exit(1)


def _config_init(store_config: YamlConfigStore) -> None:
    added = store_config.populate_defaults()
    store_config.save()
    print(f"Configuration populated at {store_config.path} ({len(added)} keys added)")


def _config_check(config: AppConfig, store_config: YamlConfigStore) -> None:
    g = config.gemini
    print(f"Configuration valid: {store_config.path}")
    print(f"  Workspace : {config.workspace_path}")
    print(f"  Model     : {g.model}")
    print(f"  Tokens    : {g.max_tokens}")
    print(f"  Sampling  : temperature={g.temperature} top_p={g.top_p} top_k={g.top_k}")
    print(f"  History   : max {g.conversation_history_max} messages, keep {g.history_retention_days} days")
    g.require_api_key()
    print("  API key   : set")


def _history(args: argparse.Namespace, config: AppConfig, store: ConversationStore) -> None:
    cmd = args.history_command
    if cmd == "list":
        entries = list(store.list(max_days=args.days, detailed=args.detailed))
        if not entries:
            print("No conversation history found.")
        for entry in entries:
            line = f"{entry.date}  {entry.message_count:>4} messages"
            if entry.created_at:
                line += f"  (created {entry.created_at})"
            print(line)
    elif cmd == "show":
        _show(store, args.format)
    elif cmd == "load":
        loaded = store.load(args.date)
        print(f"Loaded conversation from {args.date} ({len(loaded.contents)} messages)")
    elif cmd == "clear":
        archived = store.clear(archive_first=args.archive)
        print("Conversation archived and cleared." if archived else "Conversation cleared.")
    elif cmd == "cleanup":
        days = args.days if args.days is not None else config.gemini.history_retention_days
        removed = store.cleanup(days)
        print(f"Removed {removed} history entries older than {days} days.")


def _show(store: ConversationStore, fmt: str) -> None:
    if fmt == "json":
        print(json.dumps(store.active().to_dict(), ensure_ascii=False, indent=2))
        return
    if fmt == "summary":
        summary = store.summary()
        print("Conversation Summary")
        print("=" * 20)
        print(f"Date           : {summary.date}")
        if summary.loaded_from:
            print(f"Loaded from    : {summary.loaded_from}")
        print(f"Total messages : {summary.total}")
        for role, count in summary.by_role.items():
            print(f"  {role:<7}: {count}")
        return
    conversation = store.active()
    if not conversation.contents:
        print("No messages in the active conversation.")
    for message in conversation.contents:
        print(f"[{message.timestamp}] {message.role.value.title()}:")
        print(message.content)
        print()


async def _models(config: AppConfig) -> None:
    async with GeminiClient(config.gemini) as client:
        models = await client.list_models()
    print("Available Gemini Models:")
    for model in models:
        print(f"  {model.name} - {model.display_name}")


async def _ask(args: argparse.Namespace, config: AppConfig, store: ConversationStore) -> None:
    stream = not args.no_stream

    def _print_fragment(fragment: str) -> None:
        sys.stdout.write(fragment)
        sys.stdout.flush()

    async with GeminiClient(config.gemini) as client:
        session = ChatSession(config.gemini, store, client)
        text = await session.run(
            args.prompt,
            attachments=args.files,
            continue_conversation=args.continue_conversation,
            stream=stream,
            schema_path=args.schema,
            on_fragment=None if args.schema else _print_fragment,
            load_date=args.load,
            clear=args.clear,
        )

    if args.schema:
        try:
            print(json.dumps(parse_structured_text(text), ensure_ascii=False, indent=2))
        except ParseError:
            print(text)
            raise
    elif not text.endswith("\n"):
        print()


if __name__ == "__main__":
    main()
