from conftest import FakeAssistantClient, step
from inbox_assistant.assistant_client import AssistantAPIError
from inbox_assistant.jobs import daily_report, handle_inbox, handle_slack_event, receive_slack_request
from inbox_assistant.prompts import CHAT_FAILURE_MESSAGE, THINKING_MESSAGE
from inbox_assistant.threads import store_key


def no_sleep(seconds):
    return None


def texts(client, thread_id="thread_1"):
    return [(m.role.value, m.text()) for m in client.messages[thread_id]]


# ---------------- Slack request intake ---------------- #
def test_receive_rejects_stale_request():
    result = receive_slack_request({"type": "event_callback"}, "100", now=10_000)

    assert result.status_code == 400


def test_receive_answers_url_verification():
    result = receive_slack_request({"type": "url_verification", "challenge": "abc"}, "10000", now=10_000)

    assert result.status_code == 200
    assert result.body == {"challenge": "abc"}


def test_receive_hands_event_to_worker():
    event = {"type": "message", "channel": "C1", "ts": "1.0", "text": "hi"}

    result = receive_slack_request({"type": "event_callback", "event": event}, "10000", now=10_000)

    assert result.body == {"slackEvent": event}


# ---------------- Chat worker ---------------- #
def test_new_slack_message_creates_thread_and_replies(config, tool_context, slack, store):
    client = FakeAssistantClient([step("queued"), step("completed")], reply="You have three new emails.")
    event = {"type": "app_mention", "channel": "C1", "ts": "100.1", "user": "U1", "text": "Any mail?"}

    result = handle_slack_event(config, event, tool_context=tool_context, client=client, store=store, sleep=no_sleep)

    assert result.status == "completed"
    assert slack.posted == [
        ("C1", THINKING_MESSAGE, "100.1"),
        ("C1", "You have three new emails.", "100.1"),
    ]
    assert store.get(store_key("slack-C1-100.1"))["threadId"] == "thread_1"
    assert client.runs_created == [("thread_1", "asst_chat")]
    assert texts(client) == [("user", "Any mail?"), ("assistant", "You have three new emails.")]
    assert client.closed is False


def test_thread_reply_backfills_history_for_new_thread(config, tool_context, slack, store):
    slack.history = [
        {"role": "user", "content": "Summarize today"},
        {"role": "assistant", "content": ""},
        {"role": "assistant", "content": "Here is the summary."},
        {"role": "user", "content": "And yesterday?"},
    ]
    client = FakeAssistantClient([step("completed")], reply="Yesterday was quiet.")
    event = {"type": "message", "channel": "C1", "ts": "100.9", "thread_ts": "100.1", "text": "And yesterday?"}

    handle_slack_event(config, event, tool_context=tool_context, client=client, store=store, sleep=no_sleep)

    assert texts(client) == [
        ("user", "Summarize today"),
        ("assistant", "Here is the summary."),
        ("user", "And yesterday?"),
        ("assistant", "Yesterday was quiet."),
    ]
    assert store.get(store_key("slack-C1-100.1")) is not None


def test_thread_reply_resumes_stored_thread_without_backfill(config, tool_context, slack, store):
    store.set(store_key("slack-C1-100.1"), {"threadId": "thread_old"})
    slack.history = [{"role": "user", "content": "earlier"}, {"role": "user", "content": "now"}]
    client = FakeAssistantClient([step("completed")], reply="ok")
    event = {"type": "message", "channel": "C1", "ts": "100.9", "thread_ts": "100.1", "text": "now"}

    result = handle_slack_event(config, event, tool_context=tool_context, client=client, store=store, sleep=no_sleep)

    assert result.thread_id == "thread_old"
    assert client.threads == []
    assert texts(client, "thread_old") == [("user", "now"), ("assistant", "ok")]


def test_bot_messages_are_ignored(config, tool_context, slack, store):
    client = FakeAssistantClient()
    event = {"type": "message", "channel": "C1", "ts": "1.0", "bot_id": "B1", "text": "Thinking..."}

    assert handle_slack_event(config, event, tool_context=tool_context, client=client, store=store) is None
    assert slack.posted == []
    assert client.threads == []


def test_other_event_types_are_ignored(config, tool_context, slack, store):
    event = {"type": "reaction_added", "channel": "C1", "ts": "1.0"}

    assert handle_slack_event(config, event, tool_context=tool_context, store=store) is None
    assert slack.posted == []


def test_failed_run_posts_problem_text(config, tool_context, slack, store):
    client = FakeAssistantClient([step("failed", error="Rate limit exceeded")])
    event = {"type": "message", "channel": "C1", "ts": "1.0", "text": "hi"}

    result = handle_slack_event(config, event, tool_context=tool_context, client=client, store=store, sleep=no_sleep)

    assert result.status == "failed"
    assert slack.posted[-1] == (
        "C1",
        "I encountered a problem while processing your request: Rate limit exceeded",
        "1.0",
    )


def test_service_error_posts_apology(config, tool_context, slack, store):
    class FailingClient(FakeAssistantClient):
        def create_run(self, thread_id, assistant_id):
            raise AssistantAPIError("service unavailable", status_code=503)

    event = {"type": "message", "channel": "C1", "ts": "1.0", "text": "hi"}

    result = handle_slack_event(
        config, event, tool_context=tool_context, client=FailingClient(), store=store, sleep=no_sleep
    )

    assert result is None
    assert slack.posted[-1] == ("C1", CHAT_FAILURE_MESSAGE, "1.0")


# ---------------- Scheduled jobs ---------------- #
def test_handle_inbox_returns_parsed_json(config, tool_context, store):
    config.limit_email_handling = 2
    client = FakeAssistantClient([step("in_progress"), step("completed")], reply='{"processed": 2}')

    envelope = handle_inbox(config, tool_context=tool_context, client=client, store=store, sleep=no_sleep)

    assert envelope.status_code == 200
    assert envelope.body["threadId"] == "thread_1"
    assert envelope.body["result"]["jsonContent"] == {"processed": 2}
    assert envelope.body["result"]["threadId"] == "thread_1"
    assert "json_content" not in envelope.body["result"]
    assert client.runs_created == [("thread_1", "asst_hi")]
    instruction = texts(client)[0][1]
    assert "only 2 emails" in instruction
    assert store.list() == []


def test_handle_inbox_missing_assistant_is_server_error(config, tool_context, store):
    config.hi_assistant_id = ""

    envelope = handle_inbox(config, tool_context=tool_context, client=FakeAssistantClient(), store=store)

    assert envelope.status_code == 500
    assert envelope.error == "Missing required environment variable: HI_OPENAI_ASSISTANT_ID"


def test_daily_report_targets_report_channel(config, tool_context, store):
    client = FakeAssistantClient([step("completed")], reply="not json")

    envelope = daily_report(config, tool_context=tool_context, client=client, store=store, sleep=no_sleep)

    assert envelope.status_code == 200
    assert envelope.body["result"]["parseError"]
    assert client.runs_created == [("thread_1", "asst_dare")]
    assert "C_REPORT" in texts(client)[0][1]


def test_daily_report_requires_channel(config, tool_context, store):
    config.slack_report_channel_id = ""

    envelope = daily_report(config, tool_context=tool_context, client=FakeAssistantClient(), store=store)

    assert envelope.status_code == 500
    assert "SLACK_REPORT_CHANNEL_ID" in envelope.error
