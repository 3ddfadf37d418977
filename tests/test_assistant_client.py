import json

import httpx
import pytest

from inbox_assistant.assistant_client import AssistantAPIError, AssistantClient
from inbox_assistant.models import RunStatus, ToolOutput


def make_client(config, handler):
    http = httpx.Client(base_url=config.openai_base_url, transport=httpx.MockTransport(handler))
    return AssistantClient(config, http_client=http)


def test_requires_api_key(config):
    config.openai_api_key = ""

    with pytest.raises(AssistantAPIError):
        AssistantClient(config)


def test_sends_beta_header_and_parses_thread(config):
    seen = {}

    def handler(request):
        seen["beta"] = request.headers["OpenAI-Beta"]
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"id": "thread_abc", "object": "thread", "created_at": 1})

    with make_client(config, handler) as client:
        thread = client.create_thread()

    assert thread.id == "thread_abc"
    assert seen == {"beta": "assistants=v2", "auth": "Bearer sk-test"}


def test_list_messages_newest_first_query(config):
    def handler(request):
        assert request.url.path.endswith("/threads/thread_1/messages")
        assert request.url.params["order"] == "desc"
        return httpx.Response(
            200,
            json={
                "data": [
                    {
                        "id": "msg_2",
                        "role": "assistant",
                        "content": [
                            {"type": "text", "text": {"value": "Part one. ", "annotations": []}},
                            {"type": "image_file", "image_file": {"file_id": "f"}},
                            {"type": "text", "text": {"value": "Part two.", "annotations": []}},
                        ],
                    }
                ]
            },
        )

    with make_client(config, handler) as client:
        messages = client.list_messages("thread_1")

    assert messages[0].text() == "Part one. Part two."


def test_submit_tool_outputs_payload(config):
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "run_1", "thread_id": "thread_1", "status": "queued"})

    with make_client(config, handler) as client:
        run = client.submit_tool_outputs("thread_1", "run_1", [ToolOutput(tool_call_id="call_1", output="{}")])

    assert run.status == RunStatus.QUEUED
    assert seen["path"].endswith("/threads/thread_1/runs/run_1/submit_tool_outputs")
    assert seen["body"] == {"tool_outputs": [{"tool_call_id": "call_1", "output": "{}"}]}


def test_error_response_raises_with_service_message(config):
    def handler(request):
        return httpx.Response(404, json={"error": {"message": "No thread found with id 'thread_x'."}})

    with make_client(config, handler) as client:
        with pytest.raises(AssistantAPIError) as excinfo:
            client.retrieve_run("thread_x", "run_1")

    assert excinfo.value.status_code == 404
    assert "No thread found" in str(excinfo.value)
