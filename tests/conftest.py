import threading
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from inbox_assistant.config import Config
from inbox_assistant.models import (
    AssistantThread,
    Run,
    ThreadMessage,
    ToolOutput,
)
from inbox_assistant.storage import MemoryStore, PromptStore
from inbox_assistant.tools import ToolContext


# ---------------- Run script helpers ---------------- #
def step(status: str, calls: Optional[List[tuple]] = None, error: Optional[str] = None) -> Dict[str, Any]:
    """One scripted run state. calls are (tool_call_id, function name, raw arguments)."""
    data: Dict[str, Any] = {"status": status}
    if calls:
        data["required_action"] = {
            "type": "submit_tool_outputs",
            "submit_tool_outputs": {
                "tool_calls": [
                    {"id": cid, "type": "function", "function": {"name": name, "arguments": args}}
                    for cid, name, args in calls
                ]
            },
        }
    if error:
        data["last_error"] = {"code": "server_error", "message": error}
    return data


def text_message(message_id: str, role: str, text: str, created_at: int = 0) -> ThreadMessage:
    return ThreadMessage.model_validate(
        {
            "id": message_id,
            "role": role,
            "created_at": created_at,
            "content": [{"type": "text", "text": {"value": text}}],
        }
    )


# ---------------- Assistant service fake ---------------- #
class FakeAssistantClient:
    """
    In-memory assistant service.

    create_run, retrieve_run and submit_tool_outputs each consume the next
    scripted run state; `reply` is added as the assistant message once the
    script reaches 'completed'.
    """

    def __init__(self, script: Optional[List[Dict[str, Any]]] = None, reply: Optional[str] = None):
        self.script = list(script or [])
        self.reply = reply
        self.threads: List[str] = []
        self.messages: Dict[str, List[ThreadMessage]] = {}
        self.submitted: List[List[ToolOutput]] = []
        self.cancelled: List[str] = []
        self.retrieved = 0
        self.runs_created: List[tuple] = []
        self.closed = False

    def _next(self, thread_id: str) -> Run:
        data = dict(self.script.pop(0))
        data.setdefault("id", "run_1")
        data["thread_id"] = thread_id
        run = Run.model_validate(data)
        if run.status.value == "completed" and self.reply is not None:
            self._append(thread_id, "assistant", self.reply)
        return run

    def _append(self, thread_id: str, role: str, content: str) -> ThreadMessage:
        messages = self.messages.setdefault(thread_id, [])
        message = text_message(f"msg_{len(messages) + 1}", role, content, created_at=len(messages))
        messages.append(message)
        return message

    def create_thread(self) -> AssistantThread:
        thread_id = f"thread_{len(self.threads) + 1}"
        self.threads.append(thread_id)
        return AssistantThread(id=thread_id)

    def create_message(self, thread_id: str, content: str, role: str = "user") -> ThreadMessage:
        return self._append(thread_id, role, content)

    def list_messages(self, thread_id: str, limit: int = 20) -> List[ThreadMessage]:
        return list(reversed(self.messages.get(thread_id, [])))[:limit]

    def create_run(self, thread_id: str, assistant_id: str) -> Run:
        self.runs_created.append((thread_id, assistant_id))
        return self._next(thread_id)

    def retrieve_run(self, thread_id: str, run_id: str) -> Run:
        self.retrieved += 1
        return self._next(thread_id)

    def submit_tool_outputs(self, thread_id: str, run_id: str, tool_outputs: List[ToolOutput]) -> Run:
        self.submitted.append(list(tool_outputs))
        return self._next(thread_id)

    def cancel_run(self, thread_id: str, run_id: str) -> Run:
        self.cancelled.append(run_id)
        return Run(id=run_id, thread_id=thread_id, status="cancelling")

    def close(self) -> None:
        self.closed = True


# ---------------- Provider fakes ---------------- #
class FakeSlack:
    def __init__(self, history: Optional[List[Dict[str, str]]] = None):
        self.history = list(history or [])
        self.posted: List[tuple] = []
        self._lock = threading.Lock()

    def post_message(self, channel: str, text: str, thread_ts: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            self.posted.append((channel, text, thread_ts))
        return {"success": True, "ts": "1700000000.000100", "channel": channel}

    def get_thread_messages(self, channel: str, thread_ts: str) -> List[Dict[str, str]]:
        return list(self.history)


# ---------------- Fixtures ---------------- #
@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        _env_file=None,
        openai_api_key="sk-test",
        hi_assistant_id="asst_hi",
        dare_assistant_id="asst_dare",
        chat_assistant_id="asst_chat",
        slack_bot_token="xoxb-test",
        slack_report_channel_id="C_REPORT",
        bookkeeping_email="books@example.com",
        bookkeeping_from_email="assistant@example.com",
        thread_store_path=tmp_path / "threads.json",
        prompts_dir=tmp_path / "prompts",
        run_poll_interval_seconds=0,
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def gmail() -> MagicMock:
    return MagicMock(name="gmail")


@pytest.fixture
def slack() -> FakeSlack:
    return FakeSlack()


@pytest.fixture
def tool_context(config, gmail, slack) -> ToolContext:
    return ToolContext(
        config,
        gmail=gmail,
        slack=slack,
        trello=MagicMock(name="trello"),
        mailer=MagicMock(name="mailer"),
        prompts=PromptStore(config.prompts_dir),
    )
