"""
Assistant service client.

A thin wrapper around the OpenAI Assistants (v2 beta) REST API using httpx.
The orchestration core only needs threads, messages and runs; assistant
create/update is used by the setup command.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import Config
from .models import AssistantThread, Run, ThreadMessage, ToolOutput

logger = logging.getLogger(__name__)


class AssistantAPIError(Exception):
    """Raised when the assistant service returns an error or an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AssistantClient:
    def __init__(self, config: Config, http_client: Optional[httpx.Client] = None):
        if not config.openai_api_key:
            raise AssistantAPIError("OPENAI_API_KEY (or equivalent) is not set in config.")

        headers = {
            "Authorization": f"Bearer {config.openai_api_key}",
            "Content-Type": "application/json",
            "OpenAI-Beta": "assistants=v2",
        }
        if http_client is None:
            http_client = httpx.Client(
                base_url=config.openai_base_url,
                timeout=config.http_timeout_seconds,
            )
        http_client.headers.update(headers)
        self._http = http_client

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "AssistantClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        try:
            resp = self._http.request(method, path, json=payload, params=params)
        except httpx.HTTPError as e:
            logger.error("HTTP error calling assistant API %s %s: %s", method, path, e)
            raise AssistantAPIError(f"HTTP error from assistant API: {e}") from e

        if resp.status_code >= 400:
            raise AssistantAPIError(
                f"{method} {path} failed: {resp.status_code} - {_error_message(resp)}",
                status_code=resp.status_code,
            )

        try:
            return resp.json()
        except json.JSONDecodeError as e:
            raise AssistantAPIError(f"Invalid JSON from assistant API for {path}.") from e

    # ------------------------------------------------------------------
    # Threads and messages
    # ------------------------------------------------------------------

    def create_thread(self) -> AssistantThread:
        return AssistantThread.model_validate(self._request("POST", "/threads", {}))

    def create_message(self, thread_id: str, content: str, role: str = "user") -> ThreadMessage:
        data = self._request(
            "POST",
            f"/threads/{thread_id}/messages",
            {"role": role, "content": content},
        )
        return ThreadMessage.model_validate(data)

    def list_messages(self, thread_id: str, limit: int = 20) -> List[ThreadMessage]:
        """Return thread messages, newest first."""
        data = self._request(
            "GET",
            f"/threads/{thread_id}/messages",
            params={"order": "desc", "limit": limit},
        )
        return [ThreadMessage.model_validate(m) for m in data.get("data") or []]

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def create_run(self, thread_id: str, assistant_id: str) -> Run:
        data = self._request(
            "POST",
            f"/threads/{thread_id}/runs",
            {"assistant_id": assistant_id},
        )
        return Run.model_validate(data)

    def retrieve_run(self, thread_id: str, run_id: str) -> Run:
        return Run.model_validate(self._request("GET", f"/threads/{thread_id}/runs/{run_id}"))

    def submit_tool_outputs(
        self, thread_id: str, run_id: str, tool_outputs: List[ToolOutput]
    ) -> Run:
        data = self._request(
            "POST",
            f"/threads/{thread_id}/runs/{run_id}/submit_tool_outputs",
            {"tool_outputs": [o.model_dump() for o in tool_outputs]},
        )
        return Run.model_validate(data)

    def cancel_run(self, thread_id: str, run_id: str) -> Run:
        return Run.model_validate(
            self._request("POST", f"/threads/{thread_id}/runs/{run_id}/cancel", {})
        )

    # ------------------------------------------------------------------
    # Assistants
    # ------------------------------------------------------------------

    def create_assistant(self, definition: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/assistants", definition)

    def update_assistant(self, assistant_id: str, definition: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"/assistants/{assistant_id}", definition)


def _error_message(resp: httpx.Response) -> str:
    """Pull the service's error message out of a failed response, if present."""
    try:
        data = resp.json()
    except json.JSONDecodeError:
        return resp.text
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        return data["error"].get("message") or resp.text
    return resp.text
