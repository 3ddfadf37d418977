"""
Instruction texts sent to the assistants, and system prompt updates.
"""

from typing import Optional

from .models import PromptUpdate, PromptUpdateMode


PROCESSED_LABEL = "processed-by-hi"
SUMMARIZE_LABEL = "to-summarize"

LOOP_DETECTED_MESSAGE = (
    "I've detected a loop in my processing. Some operations are being attempted "
    "repeatedly without success. I'll stop trying these operations to prevent an "
    "infinite loop. Please check if the required Gmail labels exist or if there "
    "are issues with the Slack channel configuration."
)

LOOP_CANCELLED_MESSAGE = "Run was cancelled due to repetitive failed operations"

THINKING_MESSAGE = "Thinking..."

CHAT_FAILURE_MESSAGE = "Sorry, I encountered an error while processing your message."


# ---------------------------------------------------------------------------
# Job instructions
# ---------------------------------------------------------------------------


def build_handle_inbox_instruction(limit: Optional[int] = None) -> str:
    """Instruction for the Handle-Inbox assistant, optionally capped at `limit` emails."""
    if limit is None or limit < 1:
        return (
            "Please process my inbox according to your instructions. "
            f'Filter for emails without the "{PROCESSED_LABEL}" label.'
        )

    emails = "email" if limit == 1 else "emails"
    return (
        f"Please process only {limit} {emails} from my inbox according to your "
        f'instructions. Filter for emails without the "{PROCESSED_LABEL}" label '
        f"and limit to {limit} {emails} for this run."
    )


def build_daily_report_instruction(slack_channel: str) -> str:
    return (
        f'Please create a daily summary report for emails labeled "{SUMMARIZE_LABEL}" '
        f"from the last 24 hours. Post the summary to the Slack channel {slack_channel}."
    )


def build_chat_failure_text(error: Optional[str]) -> str:
    return f"I encountered a problem while processing your request: {error or 'Unknown error'}"


def build_bookkeeping_body(message: dict) -> str:
    """Plain-text body for forwarding an email to the bookkeeper."""
    headers = message.get("headers") or {}
    return (
        "---------- Forwarded message ---------\n"
        f"From: {headers.get('from', '')}\n"
        f"Date: {headers.get('date', '')}\n"
        f"Subject: {headers.get('subject', '')}\n\n"
        f"{message.get('body', '')}"
    )


# ---------------------------------------------------------------------------
# System prompt updates
# ---------------------------------------------------------------------------


class PromptUpdateError(ValueError):
    """Raised when a prompt update cannot be applied."""


def apply_prompt_update(current: str, update: PromptUpdate) -> str:
    """
    Apply an update to a system prompt.

    - append:  add the content after the current prompt
    - replace: replace the first occurrence of `search` with the content
    - full:    replace the whole prompt
    """
    if update.mode == PromptUpdateMode.APPEND:
        return f"{current}\n\n{update.content}"

    if update.mode == PromptUpdateMode.REPLACE:
        if not update.search or update.search not in current:
            raise PromptUpdateError(f"Search text not found in prompt: {update.search!r}")
        return current.replace(update.search, update.content, 1)

    return update.content
