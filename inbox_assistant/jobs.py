"""
Job entry points.

Scheduled jobs (Handle-Inbox, Daily-Report) and the Slack chat worker all
reduce to run_instruction(): bind a thread, add the instruction, run the
assistant with tools, return the RunResult.
"""

import logging
from typing import Any, Dict, List, Optional

from .assistant_client import AssistantClient
from .config import Config, require
from .dispatcher import ToolDispatcher
from .models import ResponseFormat, ResultEnvelope, RunResult, RunStatus
from .orchestrator import RunOrchestrator
from .prompts import (
    CHAT_FAILURE_MESSAGE,
    THINKING_MESSAGE,
    build_chat_failure_text,
    build_daily_report_instruction,
    build_handle_inbox_instruction,
)
from .providers import ProviderError, is_stale_slack_request
from .storage import build_thread_store
from .threads import ThreadManager
from .tools import ToolContext

logger = logging.getLogger(__name__)


def run_instruction(
    config: Config,
    assistant_id: str,
    thread_key: Optional[str],
    instruction: str,
    tool_context: ToolContext,
    response_format: ResponseFormat = ResponseFormat.TEXT,
    history: Optional[List[Dict[str, str]]] = None,
    client=None,
    store=None,
    sleep=None,
) -> RunResult:
    """
    Run one instruction against an assistant and return the outcome.

    thread_key selects a persisted conversation; None starts a fresh,
    unpersisted thread. history (role/content dicts) is appended before the
    instruction. client, store and sleep are injectable for tests.
    """
    owns_client = client is None
    if client is None:
        client = AssistantClient(config)
    if store is None:
        store = build_thread_store(config)

    try:
        threads = ThreadManager(client, store, response_format=response_format)
        threads.initialize(thread_key)

        # A resumed thread already holds the earlier conversation.
        if threads.created:
            for entry in history or []:
                if not entry.get("content"):
                    continue
                threads.add_message(entry["content"], role=entry["role"])
        threads.add_message(instruction)

        kwargs: Dict[str, Any] = {}
        if sleep is not None:
            kwargs["sleep"] = sleep
        orchestrator = RunOrchestrator(
            client,
            threads,
            ToolDispatcher(tool_context),
            assistant_id,
            max_tool_call_attempts=config.max_tool_call_attempts,
            poll_interval=config.run_poll_interval_seconds,
            **kwargs,
        )
        return orchestrator.run()
    finally:
        if owns_client:
            client.close()


# ---------------------------------------------------------------------------
# Scheduled jobs
# ---------------------------------------------------------------------------


def handle_inbox(config: Config, tool_context: Optional[ToolContext] = None, **kwargs) -> ResultEnvelope:
    """Handle-Inbox job: process unprocessed inbox mail on a fresh thread."""
    logger.info("Starting Handle-Inbox job")
    try:
        assistant_id = require(config.hi_assistant_id, "HI_OPENAI_ASSISTANT_ID")
        result = run_instruction(
            config,
            assistant_id,
            None,
            build_handle_inbox_instruction(config.limit_email_handling),
            tool_context or ToolContext(config),
            response_format=ResponseFormat.JSON,
            **kwargs,
        )
    except Exception as e:
        logger.exception("Error in Handle-Inbox job")
        return ResultEnvelope.server_error(str(e))

    logger.info("Handle-Inbox job finished with status %s", result.status)
    return ResultEnvelope.ok(
        {
            "message": "Handle-Inbox job completed successfully",
            "threadId": result.thread_id,
            "result": result.to_dict(),
        }
    )


def daily_report(config: Config, tool_context: Optional[ToolContext] = None, **kwargs) -> ResultEnvelope:
    """Daily-Report job: summarize to-summarize mail and post it to Slack."""
    logger.info("Starting Daily-Report job")
    try:
        assistant_id = require(config.dare_assistant_id, "DARE_OPENAI_ASSISTANT_ID")
        channel = require(config.slack_report_channel_id, "SLACK_REPORT_CHANNEL_ID")
        result = run_instruction(
            config,
            assistant_id,
            None,
            build_daily_report_instruction(channel),
            tool_context or ToolContext(config),
            response_format=ResponseFormat.JSON,
            **kwargs,
        )
    except Exception as e:
        logger.exception("Error in Daily-Report job")
        return ResultEnvelope.server_error(str(e))

    logger.info("Daily-Report job finished with status %s", result.status)
    return ResultEnvelope.ok(
        {
            "message": "Daily-Report job completed successfully",
            "threadId": result.thread_id,
            "result": result.to_dict(),
        }
    )


# ---------------------------------------------------------------------------
# Slack
# ---------------------------------------------------------------------------


def receive_slack_request(body: Dict[str, Any], timestamp: Optional[str], now: Optional[float] = None) -> ResultEnvelope:
    """
    First-line handling of a Slack Events API request.

    Stale requests are rejected, URL verification is answered, and event
    callbacks are acknowledged with the event to hand to the chat worker.
    """
    if is_stale_slack_request(timestamp, now=now):
        return ResultEnvelope.client_error("Ignore this request (too old)")

    if body.get("type") == "url_verification":
        return ResultEnvelope.ok({"challenge": body.get("challenge")})

    if body.get("type") == "event_callback":
        logger.info("New event from Slack: %s", (body.get("event") or {}).get("type"))
        return ResultEnvelope.ok({"slackEvent": body.get("event") or {}})

    return ResultEnvelope.ok({"message": "OK"})


def _post_quietly(tool_context: ToolContext, channel: str, text: str, thread_ts: str) -> None:
    try:
        tool_context.slack.post_message(channel, text, thread_ts)
    except ProviderError as e:
        logger.error("Error sending message to Slack: %s", e)


def handle_slack_event(
    config: Config,
    event: Dict[str, Any],
    tool_context: Optional[ToolContext] = None,
    **kwargs,
) -> Optional[RunResult]:
    """
    Chat worker: answer a Slack message or mention with the Chat assistant.

    The assistant thread is keyed by Slack channel and thread timestamp so a
    Slack conversation keeps talking to the same assistant thread.
    """
    assistant_id = require(config.chat_assistant_id, "CHAT_OPENAI_ASSISTANT_ID")
    require(config.slack_bot_token, "SLACK_BOT_TOKEN")
    tool_context = tool_context or ToolContext(config)

    if event.get("bot_id"):
        logger.info("Ignoring bot message to prevent loops")
        return None

    if event.get("type") not in ("message", "app_mention"):
        logger.info("Ignoring Slack event of type %s", event.get("type"))
        return None

    text = event.get("text") or ""
    channel = event["channel"]
    thread_ts = event.get("thread_ts") or event["ts"]
    logger.info("Received message from user %s in channel %s, thread %s", event.get("user"), channel, thread_ts)

    _post_quietly(tool_context, channel, THINKING_MESSAGE, thread_ts)

    try:
        history: List[Dict[str, str]] = []
        if event.get("thread_ts"):
            # Everything before the current message in the Slack thread.
            history = tool_context.slack.get_thread_messages(channel, thread_ts)[:-1]
            if history:
                logger.info("Adding %d previous messages for context", len(history))

        result = run_instruction(
            config,
            assistant_id,
            f"slack-{channel}-{thread_ts}",
            text,
            tool_context,
            response_format=ResponseFormat.TEXT,
            history=history,
            **kwargs,
        )
    except Exception:
        logger.exception("Error processing Slack message")
        _post_quietly(tool_context, channel, CHAT_FAILURE_MESSAGE, thread_ts)
        return None

    if result.status == RunStatus.COMPLETED.value:
        _post_quietly(tool_context, channel, result.content or "", thread_ts)
        logger.info("Assistant response sent to Slack")
    else:
        logger.error("Assistant run ended with status %s: %s", result.status, result.error)
        _post_quietly(tool_context, channel, build_chat_failure_text(result.error or result.message), thread_ts)

    return result
