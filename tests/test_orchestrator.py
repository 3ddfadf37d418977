import json
import threading

import pytest

from conftest import FakeAssistantClient, step
from inbox_assistant.assistant_client import AssistantAPIError
from inbox_assistant.models import ResultEnvelope, Run
from inbox_assistant.orchestrator import RunOrchestrator, ToolCallHistory
from inbox_assistant.prompts import LOOP_CANCELLED_MESSAGE, LOOP_DETECTED_MESSAGE
from inbox_assistant.storage import MemoryStore
from inbox_assistant.threads import ThreadManager


class RecordingDispatcher:
    def __init__(self, results=None):
        self.results = results or {}
        self.calls = []
        self._lock = threading.Lock()

    def dispatch(self, name, arguments=None):
        with self._lock:
            self.calls.append((name, arguments))
        result = self.results.get(name)
        if callable(result):
            return result(arguments)
        return result or ResultEnvelope.ok({"tool": name})


def make_orchestrator(client, dispatcher=None, **kwargs):
    threads = ThreadManager(client, MemoryStore())
    sleeps = []
    orchestrator = RunOrchestrator(
        client,
        threads,
        dispatcher or RecordingDispatcher(),
        "asst_test",
        sleep=sleeps.append,
        **kwargs,
    )
    return orchestrator, sleeps


def test_polls_until_completed_and_returns_latest_message():
    client = FakeAssistantClient([step("queued"), step("in_progress"), step("completed")], reply="All done")
    orchestrator, sleeps = make_orchestrator(client, poll_interval=0.5)

    result = orchestrator.run()

    assert result.status == "completed"
    assert result.content == "All done"
    assert result.thread_id == "thread_1"
    assert client.retrieved == 2
    assert sleeps == [0.5, 0.5]
    assert client.runs_created == [("thread_1", "asst_test")]


def test_tool_outputs_submitted_in_call_order():
    client = FakeAssistantClient(
        [
            step(
                "requires_action",
                calls=[
                    ("call_a", "gmail_get_message", '{"messageId": "m1"}'),
                    ("call_b", "slack_send_message", '{"channel": "C1", "text": "hi"}'),
                ],
            ),
            step("completed"),
        ],
        reply="ok",
    )
    dispatcher = RecordingDispatcher()
    orchestrator, _ = make_orchestrator(client, dispatcher)

    result = orchestrator.run()

    assert result.status == "completed"
    assert len(client.submitted) == 1
    outputs = client.submitted[0]
    assert [o.tool_call_id for o in outputs] == ["call_a", "call_b"]
    assert json.loads(outputs[0].output) == {"tool": "gmail_get_message"}
    assert json.loads(outputs[1].output) == {"tool": "slack_send_message"}
    assert sorted(name for name, _ in dispatcher.calls) == ["gmail_get_message", "slack_send_message"]


def test_error_envelope_is_submitted_as_output():
    client = FakeAssistantClient(
        [step("requires_action", calls=[("call_1", "gmail_label_email", "{}")]), step("completed")],
        reply="could not label",
    )
    dispatcher = RecordingDispatcher({"gmail_label_email": ResultEnvelope.server_error("label missing")})
    orchestrator, _ = make_orchestrator(client, dispatcher)

    result = orchestrator.run()

    assert result.status == "completed"
    assert json.loads(client.submitted[0][0].output) == {"error": "label missing"}


def test_fourth_identical_call_cancels_run():
    call = ("gmail_label_email", '{"messageId": "m1", "addLabelIds": ["missing"]}')
    script = [step("requires_action", calls=[(f"call_{i}",) + call]) for i in range(1, 5)]
    client = FakeAssistantClient(script)
    dispatcher = RecordingDispatcher({"gmail_label_email": ResultEnvelope.server_error("no such label")})
    orchestrator, _ = make_orchestrator(client, dispatcher)

    result = orchestrator.run()

    assert len(dispatcher.calls) == 3
    assert len(client.submitted) == 3
    assert client.cancelled == ["run_1"]
    assert orchestrator.loop_detected is True
    assert result.status == "cancelled"
    assert result.message == LOOP_CANCELLED_MESSAGE
    assert result.content == LOOP_DETECTED_MESSAGE


def test_varying_arguments_are_not_a_loop():
    script = [
        step("requires_action", calls=[(f"call_{i}", "gmail_get_message", json.dumps({"messageId": f"m{i}"}))])
        for i in range(5)
    ]
    script.append(step("completed"))
    client = FakeAssistantClient(script, reply="done")
    dispatcher = RecordingDispatcher()
    orchestrator, _ = make_orchestrator(client, dispatcher)

    result = orchestrator.run()

    assert result.status == "completed"
    assert len(dispatcher.calls) == 5
    assert client.cancelled == []


def test_loop_limit_follows_configured_attempts():
    script = [step("requires_action", calls=[(f"call_{i}", "archive_old_emails", "{}")]) for i in range(3)]
    client = FakeAssistantClient(script)
    dispatcher = RecordingDispatcher()
    orchestrator, _ = make_orchestrator(client, dispatcher, max_tool_call_attempts=2)

    result = orchestrator.run()

    assert result.status == "cancelled"
    assert len(dispatcher.calls) == 2


def test_cancel_failure_still_reports_cancelled():
    class FailingCancelClient(FakeAssistantClient):
        def cancel_run(self, thread_id, run_id):
            raise AssistantAPIError("cannot cancel", status_code=400)

    script = [step("requires_action", calls=[(f"call_{i}", "archive_old_emails", "{}")]) for i in range(4)]
    client = FailingCancelClient(script)
    orchestrator, _ = make_orchestrator(client)

    result = orchestrator.run()

    assert result.status == "cancelled"
    assert result.message == LOOP_CANCELLED_MESSAGE


def test_failed_run_reports_last_error():
    client = FakeAssistantClient([step("in_progress"), step("failed", error="Rate limit exceeded")])
    orchestrator, _ = make_orchestrator(client)

    result = orchestrator.run()

    assert result.status == "failed"
    assert result.error == "Rate limit exceeded"
    assert result.content is None


@pytest.mark.parametrize("status", ["expired", "incomplete"])
def test_other_terminal_statuses_without_error(status):
    client = FakeAssistantClient([step(status)])
    orchestrator, _ = make_orchestrator(client)

    result = orchestrator.run()

    assert result.status == status
    assert result.error == "Unknown error"


def test_batch_calls_run_concurrently():
    barrier = threading.Barrier(2, timeout=5)

    def wait_for_peer(arguments):
        barrier.wait()
        return ResultEnvelope.ok({"arguments": arguments})

    client = FakeAssistantClient(
        [
            step(
                "requires_action",
                calls=[
                    ("call_1", "gmail_get_message", '{"messageId": "m1"}'),
                    ("call_2", "gmail_get_message", '{"messageId": "m2"}'),
                ],
            ),
            step("completed"),
        ],
        reply="ok",
    )
    dispatcher = RecordingDispatcher({"gmail_get_message": wait_for_peer})
    orchestrator, _ = make_orchestrator(client, dispatcher)

    orchestrator.run()

    outputs = client.submitted[0]
    assert [o.tool_call_id for o in outputs] == ["call_1", "call_2"]
    assert json.loads(outputs[0].output) == {"arguments": '{"messageId": "m1"}'}
    assert json.loads(outputs[1].output) == {"arguments": '{"messageId": "m2"}'}


def test_dispatcher_exception_becomes_error_output():
    def explode(arguments):
        raise RuntimeError("boom")

    client = FakeAssistantClient(
        [step("requires_action", calls=[("call_1", "trello_create_card", "{}")]), step("completed")],
        reply="ok",
    )
    orchestrator, _ = make_orchestrator(client, RecordingDispatcher({"trello_create_card": explode}))

    result = orchestrator.run()

    assert result.status == "completed"
    assert json.loads(client.submitted[0][0].output) == {"error": "boom"}


def test_advance_leaves_settled_run_unchanged():
    client = FakeAssistantClient()
    orchestrator, sleeps = make_orchestrator(client)
    run = Run(id="run_1", thread_id="thread_1", status="completed")

    assert orchestrator.is_settled(run)
    assert orchestrator.advance(run) is run
    assert sleeps == []


def test_requires_action_without_function_calls_is_settled():
    client = FakeAssistantClient()
    orchestrator, _ = make_orchestrator(client)
    run = Run.model_validate(
        {
            "id": "run_1",
            "thread_id": "thread_1",
            "status": "requires_action",
            "required_action": {"type": "submit_tool_outputs", "submit_tool_outputs": {"tool_calls": []}},
        }
    )

    assert orchestrator.is_settled(run)


def test_missing_assistant_id_rejected():
    with pytest.raises(ValueError):
        RunOrchestrator(FakeAssistantClient(), None, RecordingDispatcher(), "")


def test_tool_call_history_counts_by_name_and_arguments():
    history = ToolCallHistory()

    assert history.record("a", "{}") == 1
    assert history.record("a", "{}") == 2
    assert history.record("a", '{"x": 1}') == 1
    assert history.record("b", "{}") == 1
    assert history.count("a", "{}") == 2
    assert len(history) == 3


def test_unhandled_required_action_is_cancelled_and_failed():
    client = FakeAssistantClient(
        [
            {
                "status": "requires_action",
                "required_action": {
                    "type": "submit_tool_outputs",
                    "submit_tool_outputs": {"tool_calls": [{"id": "call_1", "type": "code_interpreter"}]},
                },
            }
        ]
    )
    dispatcher = RecordingDispatcher()
    orchestrator, _ = make_orchestrator(client, dispatcher)

    result = orchestrator.run()

    assert result.status == "failed"
    assert "code_interpreter" in result.error
    assert client.cancelled == ["run_1"]
    assert dispatcher.calls == []
    assert client.submitted == []
