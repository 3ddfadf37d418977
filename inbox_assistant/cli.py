import argparse
import json
import logging
import sys
from typing import Any, Dict

from rich.console import Console
from rich.table import Table

from .assistant_client import AssistantClient
from .assistants import setup_assistants
from .config import load_config
from .dispatcher import ToolDispatcher
from .gmail_client import GmailClient, authorize_interactively
from .jobs import daily_report, handle_inbox, handle_slack_event
from .logging_config import setup_logging
from .models import ResultEnvelope
from .storage import PromptStore, build_thread_store
from .tools import ToolContext


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _print_envelope(envelope: ResultEnvelope) -> None:
    console = Console()
    style = "green" if envelope.is_success else "red"
    console.print(f"[{style}]status {envelope.status_code}[/{style}]")
    console.print_json(json.dumps(envelope.body, default=str))


def _render_labels_table(labels) -> None:
    console = Console()
    table = Table(title="Gmail Labels")

    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Type")

    for label in sorted(labels, key=lambda l: (l.get("type") != "user", l.get("name", "").lower())):
        table.add_row(label.get("id", ""), label.get("name", ""), label.get("type", ""))

    console.print(table)


def _render_threads_table(store) -> None:
    console = Console()
    table = Table(title="Assistant Threads")

    table.add_column("Key")
    table.add_column("Thread ID")
    table.add_column("Created")
    table.add_column("Last Updated")

    for key in store.list("thread-"):
        record: Dict[str, Any] = store.get(key) or {}
        table.add_row(
            key[len("thread-"):],
            record.get("threadId", ""),
            record.get("createdAt", ""),
            record.get("lastUpdated", ""),
        )

    console.print(table)


# ---------------------------------------------------------------------------
# Commands: jobs
# ---------------------------------------------------------------------------


def cmd_handle_inbox(args: argparse.Namespace) -> int:
    config = load_config()
    setup_logging(args.log_level, config.log_file)

    if args.limit is not None:
        config.limit_email_handling = args.limit

    envelope = handle_inbox(config)
    _print_envelope(envelope)
    return 0 if envelope.is_success else 1


def cmd_daily_report(args: argparse.Namespace) -> int:
    config = load_config()
    setup_logging(args.log_level, config.log_file)

    envelope = daily_report(config)
    _print_envelope(envelope)
    return 0 if envelope.is_success else 1


def cmd_slack_event(args: argparse.Namespace) -> int:
    config = load_config()
    setup_logging(args.log_level, config.log_file)

    with open(args.file, encoding="utf-8") as f:
        payload = json.load(f)
    # Accept either the bare event or the worker body {"slackEvent": {...}}.
    event = payload.get("slackEvent", payload)

    result = handle_slack_event(config, event)
    if result is None:
        print("Event ignored or failed; see log.")
        return 0
    Console().print_json(json.dumps(result.to_dict()))
    return 0 if result.status == "completed" else 1


# ---------------------------------------------------------------------------
# Commands: tools and setup
# ---------------------------------------------------------------------------


def cmd_call_tool(args: argparse.Namespace) -> int:
    config = load_config()
    setup_logging(args.log_level, config.log_file)

    dispatcher = ToolDispatcher(ToolContext(config))
    envelope = dispatcher.dispatch(args.name, args.args)
    _print_envelope(envelope)
    return 0 if envelope.is_success else 1


def cmd_setup_assistants(args: argparse.Namespace) -> int:
    config = load_config()
    setup_logging(args.log_level, config.log_file)

    with AssistantClient(config) as client:
        results = setup_assistants(
            config,
            client,
            ToolDispatcher(ToolContext(config)),
            PromptStore(config.prompts_dir),
        )

    console = Console()
    table = Table(title="Assistants")
    table.add_column("Name")
    table.add_column("ID")
    table.add_column("Action")
    table.add_column("Env var")
    for r in results:
        table.add_row(r["name"], r["id"] or "", r["action"], r["env_var"])
    console.print(table)
    return 0


def cmd_list_labels(args: argparse.Namespace) -> int:
    config = load_config()
    setup_logging(args.log_level, config.log_file)

    gmail = GmailClient.from_config(config)
    _render_labels_table(gmail.list_labels())
    return 0


def cmd_list_threads(args: argparse.Namespace) -> int:
    config = load_config()
    setup_logging(args.log_level, config.log_file)

    _render_threads_table(build_thread_store(config))
    return 0


def cmd_authorize(args: argparse.Namespace) -> int:
    config = load_config()
    setup_logging(args.log_level, config.log_file)

    creds = authorize_interactively(config)
    print("")
    print("Authorization complete. Put this in GMAIL_REFRESH_TOKEN:")
    print(creds.refresh_token)
    return 0


# ---------------------------------------------------------------------------
# Main CLI entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="inbox-assistant",
        description="Assistant-driven inbox handling, daily reports and Slack chat.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # handle-inbox
    p_inbox = subparsers.add_parser("handle-inbox", help="Run the Handle-Inbox job once.")
    p_inbox.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Process at most this many emails (overrides LIMIT_EMAIL_HANDLING).",
    )

    # daily-report
    subparsers.add_parser("daily-report", help="Run the Daily-Report job once.")

    # slack-event
    p_slack = subparsers.add_parser("slack-event", help="Run the chat worker for a Slack event JSON file.")
    p_slack.add_argument("file", type=str, help="Path to the Slack event JSON.")

    # call-tool
    p_tool = subparsers.add_parser("call-tool", help="Call one tool directly and print its result.")
    p_tool.add_argument("name", type=str, help="Tool (function) name.")
    p_tool.add_argument(
        "--args",
        type=str,
        default="{}",
        help="Tool arguments as a JSON object. Default: {}.",
    )

    # setup-assistants
    subparsers.add_parser(
        "setup-assistants",
        help="Create or update the assistants with their prompts and tool schemas.",
    )

    # list-labels
    subparsers.add_parser("list-labels", help="List Gmail labels and their ids.")

    # list-threads
    subparsers.add_parser("list-threads", help="List persisted assistant thread mappings.")

    # authorize
    subparsers.add_parser("authorize", help="Run the Gmail OAuth flow and print a refresh token.")

    args = parser.parse_args()

    args.log_level = logging.DEBUG if args.verbose else logging.INFO

    commands = {
        "handle-inbox": cmd_handle_inbox,
        "daily-report": cmd_daily_report,
        "slack-event": cmd_slack_event,
        "call-tool": cmd_call_tool,
        "setup-assistants": cmd_setup_assistants,
        "list-labels": cmd_list_labels,
        "list-threads": cmd_list_threads,
        "authorize": cmd_authorize,
    }
    command = commands.get(args.command)
    if command is None:
        parser.error(f"Unknown command: {args.command!r}")
    sys.exit(command(args))


if __name__ == "__main__":
    main()
