"""
Pydantic models for assistant threads, runs, tool calls, result envelopes,
and the argument objects the assistant passes to each tool.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RunStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    REQUIRES_ACTION = "requires_action"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    INCOMPLETE = "incomplete"


# Statuses during which the run is still being worked on by the service.
ACTIVE_STATUSES = frozenset(
    {RunStatus.QUEUED, RunStatus.IN_PROGRESS, RunStatus.CANCELLING}
)

TERMINAL_STATUSES = frozenset(
    {
        RunStatus.COMPLETED,
        RunStatus.FAILED,
        RunStatus.EXPIRED,
        RunStatus.CANCELLED,
        RunStatus.INCOMPLETE,
    }
)


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ResponseFormat(str, Enum):
    TEXT = "text"
    JSON = "json"


class PromptUpdateMode(str, Enum):
    APPEND = "append"
    REPLACE = "replace"
    FULL = "full"


# ---------------------------------------------------------------------------
# Assistant service wire types
# ---------------------------------------------------------------------------


class AssistantThread(BaseModel):
    id: str
    created_at: Optional[int] = None

    model_config = ConfigDict(extra="ignore")


class TextValue(BaseModel):
    value: str = ""

    model_config = ConfigDict(extra="ignore")


class MessageContent(BaseModel):
    """One content fragment of a thread message; only 'text' fragments carry text."""

    type: str
    text: Optional[TextValue] = None

    model_config = ConfigDict(extra="ignore")


class ThreadMessage(BaseModel):
    id: str
    role: MessageRole
    content: List[MessageContent] = Field(default_factory=list)
    created_at: Optional[int] = None
    thread_id: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    def text(self) -> str:
        """Concatenate every text fragment of the message."""
        return "".join(
            part.text.value
            for part in self.content
            if part.type == "text" and part.text is not None
        )


class FunctionCall(BaseModel):
    name: str
    arguments: str = ""

    model_config = ConfigDict(extra="ignore")


class ToolCall(BaseModel):
    id: str
    type: str = "function"
    function: Optional[FunctionCall] = None

    model_config = ConfigDict(extra="ignore")


class SubmitToolOutputs(BaseModel):
    tool_calls: List[ToolCall] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class RequiredAction(BaseModel):
    type: str = "submit_tool_outputs"
    submit_tool_outputs: Optional[SubmitToolOutputs] = None

    model_config = ConfigDict(extra="ignore")


class RunError(BaseModel):
    code: Optional[str] = None
    message: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class Run(BaseModel):
    id: str
    thread_id: str
    assistant_id: Optional[str] = None
    status: RunStatus
    required_action: Optional[RequiredAction] = None
    last_error: Optional[RunError] = None

    model_config = ConfigDict(extra="ignore")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def pending_tool_calls(self) -> List[ToolCall]:
        """Tool calls waiting for output, or an empty list."""
        if self.status != RunStatus.REQUIRES_ACTION or self.required_action is None:
            return []
        submit = self.required_action.submit_tool_outputs
        if submit is None:
            return []
        return list(submit.tool_calls)


class ToolOutput(BaseModel):
    tool_call_id: str
    output: str


# ---------------------------------------------------------------------------
# Thread persistence
# ---------------------------------------------------------------------------


class ThreadRecord(BaseModel):
    """
    Persisted mapping from a thread key to an assistant thread.
    """

    thread_id: str = Field(alias="threadId")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="createdAt",
    )
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="lastUpdated",
    )

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=False,
    )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class ResultEnvelope(BaseModel):
    """
    Uniform wrapper returned by every tool and by the dispatcher.

    body is either the success payload or {"error": message}.
    """

    status_code: int
    body: Any = None

    @classmethod
    def ok(cls, body: Any) -> "ResultEnvelope":
        return cls(status_code=200, body=body)

    @classmethod
    def client_error(cls, message: str) -> "ResultEnvelope":
        return cls(status_code=400, body={"error": message})

    @classmethod
    def server_error(cls, message: str) -> "ResultEnvelope":
        return cls(status_code=500, body={"error": message})

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def error(self) -> Optional[str]:
        if isinstance(self.body, dict):
            return self.body.get("error")
        return None

    def to_output(self) -> str:
        """Serialize the body as the string submitted back to the assistant."""
        return json.dumps(self.body, default=str)


class LatestMessage(BaseModel):
    id: str
    created_at: Optional[int] = None
    content: str = ""
    json_content: Optional[Any] = None
    parse_error: Optional[str] = None


class RunResult(BaseModel):
    """
    Caller-facing outcome of running an instruction against an assistant.
    """

    status: str
    thread_id: Optional[str] = None
    content: Optional[str] = None
    json_content: Optional[Any] = None
    parse_error: Optional[str] = None
    message_id: Optional[str] = None
    created_at: Optional[int] = None
    message: Optional[str] = None
    error: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def merge_message(self, latest: Optional[LatestMessage]) -> "RunResult":
        if latest is None:
            return self
        return self.model_copy(
            update={
                "content": latest.content,
                "json_content": latest.json_content,
                "parse_error": latest.parse_error,
                "message_id": latest.id,
                "created_at": latest.created_at,
            }
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Tool arguments
# ---------------------------------------------------------------------------

# Gmail system labels the assistant must never add.
SYSTEM_LABELS = frozenset(
    {
        "INBOX",
        "UNREAD",
        "STARRED",
        "IMPORTANT",
        "SPAM",
        "TRASH",
        "SENT",
        "DRAFT",
        "CHAT",
    }
)


class ToolArgs(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
    )


class InboxRetrievalArgs(ToolArgs):
    label_filter: List[str] = Field(
        default_factory=list,
        alias="labelFilter",
        description=(
            "Array of labels to filter by. Prefix with '!' to exclude labels. "
            "Example: ['INBOX', '!processed-by-hi']."
        ),
    )
    max_results: int = Field(
        default=10,
        ge=1,
        le=100,
        alias="maxResults",
        description="Maximum number of emails to retrieve (1-100).",
    )
    include_content: bool = Field(
        default=False,
        alias="includeContent",
        description="Whether to include full message content or just metadata.",
    )


class MessageArgs(ToolArgs):
    message_id: str = Field(alias="messageId", description="The ID of the email.")


class LabelEmailArgs(MessageArgs):
    add_label_ids: List[str] = Field(
        default_factory=list,
        alias="addLabelIds",
        description=(
            "Labels to add to the email. Only use our custom labels: "
            "'processed-by-hi', 'to-summarize', 'archive-in-3-days'. "
            "Do NOT use Gmail system labels like 'INBOX', 'UNREAD', etc."
        ),
    )
    remove_label_ids: List[str] = Field(
        default_factory=list,
        alias="removeLabelIds",
        description="Labels to remove from the email. Only use 'INBOX' to archive emails.",
    )

    @field_validator("add_label_ids")
    @classmethod
    def reject_system_labels(cls, v: List[str]) -> List[str]:
        blocked = [label for label in v if label.upper() in SYSTEM_LABELS]
        if blocked:
            raise ValueError(
                f"system labels cannot be added: {', '.join(blocked)}"
            )
        return v

    @field_validator("remove_label_ids")
    @classmethod
    def only_inbox_removable(cls, v: List[str]) -> List[str]:
        blocked = [label for label in v if label.upper() != "INBOX"]
        if blocked:
            raise ValueError(
                f"only INBOX may be removed, got: {', '.join(blocked)}"
            )
        return v


class CreateDraftArgs(MessageArgs):
    content: str = Field(description="The content of the draft reply.")


class AttachmentArgs(MessageArgs):
    attachment_id: str = Field(
        alias="attachmentId",
        description="The ID of the attachment to retrieve.",
    )


class ArchiveOldEmailsArgs(ToolArgs):
    days: int = Field(
        default=3,
        ge=1,
        description=(
            "Number of days. Will archive emails labeled 'archive-in-X-days' "
            "that are older than X days."
        ),
    )


class SlackSendMessageArgs(ToolArgs):
    channel: str = Field(description="The channel ID to send the message to.")
    text: str = Field(description="The text content of the message to send.")
    thread_ts: Optional[str] = Field(
        default=None,
        alias="threadTs",
        description="Optional thread timestamp to reply in a thread.",
    )


class SlackThreadHistoryArgs(ToolArgs):
    channel: str = Field(description="The channel ID containing the thread.")
    thread_ts: str = Field(
        alias="threadTs",
        description="The timestamp of the thread to get history from.",
    )


class TrelloCreateCardArgs(ToolArgs):
    name: str = Field(description="The title of the card.")
    description: str = Field(
        description="The description of the card. Can include action items or notes."
    )
    list_id: Optional[str] = Field(
        default=None,
        alias="listId",
        description="Optional list ID. If not provided, the inbox list is used.",
    )


class PromptUpdate(BaseModel):
    mode: PromptUpdateMode = Field(
        description=(
            "How to apply the update: 'append' (add to end), 'replace' (replace "
            "specific section), or 'full' (replace entire prompt)."
        )
    )
    search: Optional[str] = Field(
        default=None,
        description="The text to search for and replace. Required when mode is 'replace'.",
    )
    content: str = Field(description="The new content to add or replace with.")

    @model_validator(mode="after")
    def check_search(self) -> "PromptUpdate":
        if self.mode == PromptUpdateMode.REPLACE and not self.search:
            raise ValueError("'replace' mode requires 'search'")
        return self


class UpdateSystemPromptArgs(ToolArgs):
    assistant: Literal["hi", "handle-inbox", "dare", "daily-report", "chat"] = Field(
        description="The assistant to update."
    )
    prompt_update: PromptUpdate = Field(
        alias="promptUpdate",
        description="The update details.",
    )


__all__ = [
    "RunStatus",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "MessageRole",
    "ResponseFormat",
    "PromptUpdateMode",
    "AssistantThread",
    "ThreadMessage",
    "MessageContent",
    "ToolCall",
    "FunctionCall",
    "Run",
    "RunError",
    "ToolOutput",
    "ThreadRecord",
    "ResultEnvelope",
    "LatestMessage",
    "RunResult",
    "SYSTEM_LABELS",
    "ToolArgs",
    "InboxRetrievalArgs",
    "MessageArgs",
    "LabelEmailArgs",
    "CreateDraftArgs",
    "AttachmentArgs",
    "ArchiveOldEmailsArgs",
    "SlackSendMessageArgs",
    "SlackThreadHistoryArgs",
    "TrelloCreateCardArgs",
    "PromptUpdate",
    "UpdateSystemPromptArgs",
]
