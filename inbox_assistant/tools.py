"""
Tool implementations the assistants can call.

Every tool takes the shared ToolContext plus its validated argument model and
returns a ResultEnvelope. Provider failures are turned into a 500 envelope by
the tool_result decorator so a single failing call never escapes as an
exception.
"""

import functools
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Type

import httpx
from googleapiclient.errors import HttpError

from .config import Config, require
from .gmail_client import GmailClient
from .models import (
    ArchiveOldEmailsArgs,
    AttachmentArgs,
    CreateDraftArgs,
    InboxRetrievalArgs,
    LabelEmailArgs,
    MessageArgs,
    ResultEnvelope,
    SlackSendMessageArgs,
    SlackThreadHistoryArgs,
    ToolArgs,
    TrelloCreateCardArgs,
    UpdateSystemPromptArgs,
)
from .prompts import apply_prompt_update, build_bookkeeping_body
from .providers import PostmarkMailer, ProviderError, SlackClient, TrelloClient
from .storage import PromptStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class ToolContext:
    """
    Provider clients shared by the tools of one invocation.

    Clients are created from config on first use, so a run that never touches
    Gmail never performs the OAuth refresh.
    """

    def __init__(
        self,
        config: Config,
        gmail: Optional[GmailClient] = None,
        slack: Optional[SlackClient] = None,
        trello: Optional[TrelloClient] = None,
        mailer: Optional[PostmarkMailer] = None,
        prompts: Optional[PromptStore] = None,
    ):
        self.config = config
        self._gmail = gmail
        self._slack = slack
        self._trello = trello
        self._mailer = mailer
        self._prompts = prompts
        self._lock = threading.Lock()

    @property
    def gmail(self) -> GmailClient:
        with self._lock:
            if self._gmail is None:
                self._gmail = GmailClient.from_config(self.config)
            return self._gmail

    @property
    def slack(self) -> SlackClient:
        with self._lock:
            if self._slack is None:
                self._slack = SlackClient.from_config(self.config)
            return self._slack

    @property
    def trello(self) -> TrelloClient:
        with self._lock:
            if self._trello is None:
                self._trello = TrelloClient.from_config(self.config)
            return self._trello

    @property
    def mailer(self) -> PostmarkMailer:
        with self._lock:
            if self._mailer is None:
                self._mailer = PostmarkMailer.from_config(self.config)
            return self._mailer

    @property
    def prompts(self) -> PromptStore:
        with self._lock:
            if self._prompts is None:
                self._prompts = PromptStore(self.config.prompts_dir)
            return self._prompts


# ---------------------------------------------------------------------------
# Registry entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    args_model: Type[ToolArgs]
    handler: Callable[[ToolContext, ToolArgs], ResultEnvelope]

    def definition(self) -> dict:
        """Function-tool definition in the assistant service's format."""
        schema = self.args_model.model_json_schema(by_alias=True)
        schema.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": schema,
            },
        }


PROVIDER_ERRORS = (HttpError, httpx.HTTPError, ProviderError, ValueError, OSError)


def tool_result(func: Callable[[ToolContext, ToolArgs], dict]) -> Callable[[ToolContext, ToolArgs], ResultEnvelope]:
    """Wrap a tool body returning a payload into one returning a ResultEnvelope."""

    @functools.wraps(func)
    def wrapper(ctx: ToolContext, args: ToolArgs) -> ResultEnvelope:
        try:
            return ResultEnvelope.ok(func(ctx, args))
        except PROVIDER_ERRORS as e:
            logger.error("Error in tool %s: %s", func.__name__, e)
            return ResultEnvelope.server_error(str(e))

    return wrapper


# ---------------------------------------------------------------------------
# Gmail tools
# ---------------------------------------------------------------------------


@tool_result
def gmail_inbox_retrieval(ctx: ToolContext, args: InboxRetrievalArgs) -> dict:
    return ctx.gmail.list_messages(
        label_filter=args.label_filter,
        max_results=args.max_results,
        include_content=args.include_content,
    )


@tool_result
def gmail_get_message(ctx: ToolContext, args: MessageArgs) -> dict:
    return ctx.gmail.get_message(args.message_id)


@tool_result
def gmail_label_email(ctx: ToolContext, args: LabelEmailArgs) -> dict:
    return ctx.gmail.modify_labels(
        args.message_id,
        add_label_ids=args.add_label_ids,
        remove_label_ids=args.remove_label_ids,
    )


@tool_result
def gmail_archive_email(ctx: ToolContext, args: MessageArgs) -> dict:
    return ctx.gmail.archive(args.message_id)


@tool_result
def gmail_create_draft(ctx: ToolContext, args: CreateDraftArgs) -> dict:
    return ctx.gmail.create_reply_draft(args.message_id, args.content)


@tool_result
def gmail_get_attachment(ctx: ToolContext, args: AttachmentArgs) -> dict:
    return ctx.gmail.get_attachment(args.message_id, args.attachment_id)


@tool_result
def gmail_search_unsubscribe_link(ctx: ToolContext, args: MessageArgs) -> dict:
    return ctx.gmail.find_unsubscribe_link(args.message_id)


@tool_result
def gmail_send_to_bookkeeper(ctx: ToolContext, args: MessageArgs) -> dict:
    """Send an email and its attachments to the bookkeeper, then label it as sent."""
    to = require(ctx.config.bookkeeping_email, "BOOKKEEPING_EMAIL")
    gmail = ctx.gmail

    message = gmail.get_message(args.message_id)
    attachments = gmail.download_attachments(message)
    subject = (message.get("headers") or {}).get("subject") or "(no subject)"

    sent = ctx.mailer.send(
        to=to,
        subject=f"Fwd: {subject}",
        text_body=build_bookkeeping_body(message),
        attachments=attachments,
    )
    gmail.modify_labels(args.message_id, add_label_ids=["sent-to-bookkeeping"])

    return {
        "success": True,
        "message": f"Email sent to bookkeeping ({to})",
        "attachmentCount": len(attachments),
        "providerMessageId": sent.get("messageId"),
    }


@tool_result
def archive_old_emails(ctx: ToolContext, args: ArchiveOldEmailsArgs) -> dict:
    return ctx.gmail.archive_old_emails(args.days)


# ---------------------------------------------------------------------------
# Slack tools
# ---------------------------------------------------------------------------


@tool_result
def slack_send_message(ctx: ToolContext, args: SlackSendMessageArgs) -> dict:
    # The configured report channel wins over whatever channel the model picked.
    channel = ctx.config.slack_report_channel_id or args.channel
    return ctx.slack.post_message(channel, args.text, args.thread_ts)


@tool_result
def slack_get_thread_history(ctx: ToolContext, args: SlackThreadHistoryArgs) -> dict:
    messages = ctx.slack.get_thread_messages(args.channel, args.thread_ts)
    return {"messages": messages, "count": len(messages)}


# ---------------------------------------------------------------------------
# Trello tools
# ---------------------------------------------------------------------------


@tool_result
def trello_create_card(ctx: ToolContext, args: TrelloCreateCardArgs) -> dict:
    return ctx.trello.create_card(args.name, args.description, args.list_id)


# ---------------------------------------------------------------------------
# System prompt tools
# ---------------------------------------------------------------------------


@tool_result
def update_system_prompt(ctx: ToolContext, args: UpdateSystemPromptArgs) -> dict:
    store = ctx.prompts
    current = store.load(args.assistant)
    store.save(args.assistant, apply_prompt_update(current, args.prompt_update))
    return {
        "success": True,
        "assistant": args.assistant,
        "message": "System prompt updated successfully",
    }


TOOL_SPECS: List[ToolSpec] = [
    ToolSpec(
        "gmail_inbox_retrieval",
        "Retrieves emails from Gmail inbox with specified filters",
        InboxRetrievalArgs,
        gmail_inbox_retrieval,
    ),
    ToolSpec(
        "gmail_label_email",
        "Adds or removes labels from a Gmail message",
        LabelEmailArgs,
        gmail_label_email,
    ),
    ToolSpec(
        "gmail_archive_email",
        "Archives an email by removing it from the inbox",
        MessageArgs,
        gmail_archive_email,
    ),
    ToolSpec(
        "gmail_send_to_bookkeeper",
        "Sends an email with its attachments to the bookkeeping email address "
        "and labels it as sent to bookkeeping.",
        MessageArgs,
        gmail_send_to_bookkeeper,
    ),
    ToolSpec(
        "gmail_create_draft",
        "Creates a draft reply to an email",
        CreateDraftArgs,
        gmail_create_draft,
    ),
    ToolSpec(
        "gmail_get_message",
        "Gets the full content and metadata of an email",
        MessageArgs,
        gmail_get_message,
    ),
    ToolSpec(
        "gmail_get_attachment",
        "Gets an attachment from an email",
        AttachmentArgs,
        gmail_get_attachment,
    ),
    ToolSpec(
        "gmail_search_unsubscribe_link",
        "Searches an email for an unsubscribe link",
        MessageArgs,
        gmail_search_unsubscribe_link,
    ),
    ToolSpec(
        "archive_old_emails",
        "Archives emails labeled with archive-in-x-days that are older than x days",
        ArchiveOldEmailsArgs,
        archive_old_emails,
    ),
    ToolSpec(
        "slack_send_message",
        "Sends a message to a Slack channel or thread",
        SlackSendMessageArgs,
        slack_send_message,
    ),
    ToolSpec(
        "slack_get_thread_history",
        "Retrieves message history from a Slack thread",
        SlackThreadHistoryArgs,
        slack_get_thread_history,
    ),
    ToolSpec(
        "trello_create_card",
        "Creates a card in the Trello Getting Things Done board",
        TrelloCreateCardArgs,
        trello_create_card,
    ),
    ToolSpec(
        "update_system_prompt",
        "Updates the system prompt for one of the assistants",
        UpdateSystemPromptArgs,
        update_system_prompt,
    ),
]
