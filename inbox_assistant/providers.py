"""
HTTP wrappers for the chat, board and transactional email providers.

Each client is a thin layer over the provider's REST API using httpx. Non-2xx
responses (and Slack's ok=false replies) raise ProviderError.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from .config import Config

logger = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api"
TRELLO_API_URL = "https://api.trello.com/1"
POSTMARK_API_URL = "https://api.postmarkapp.com"

# Slack signs requests with a timestamp; anything older is treated as a replay.
SLACK_MAX_REQUEST_AGE_SECONDS = 60 * 5


class ProviderError(Exception):
    """Raised when a downstream provider API call fails."""


def _raise_for_status(resp: httpx.Response, action: str) -> None:
    if resp.status_code >= 400:
        raise ProviderError(f"Failed to {action}: {resp.status_code} - {resp.text}")


# ---------------------------------------------------------------------------
# Slack
# ---------------------------------------------------------------------------


class SlackClient:
    def __init__(
        self,
        bot_token: str,
        bot_user_id: str = "",
        http_client: Optional[httpx.Client] = None,
    ):
        self.bot_token = bot_token
        self.bot_user_id = bot_user_id
        self._http = http_client or httpx.Client(base_url=SLACK_API_URL, timeout=30.0)

    @classmethod
    def from_config(cls, config: Config) -> "SlackClient":
        return cls(config.slack_bot_token, config.slack_bot_user_id)

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.bot_token}"}

    def post_message(self, channel: str, text: str, thread_ts: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"channel": channel, "text": text}
        if thread_ts:
            payload["thread_ts"] = thread_ts

        resp = self._http.post("/chat.postMessage", headers=self._headers(), json=payload)
        _raise_for_status(resp, "send Slack message")
        data = resp.json()
        if not data.get("ok"):
            raise ProviderError(f"Slack API error: {data.get('error')}")

        logger.info("Posted Slack message to %s (thread %s)", channel, thread_ts)
        return {"success": True, "ts": data.get("ts"), "channel": data.get("channel")}

    def get_thread_messages(self, channel: str, thread_ts: str) -> List[Dict[str, str]]:
        """
        Return the replies of a Slack thread as role-tagged messages.

        Messages from a bot (or from our own bot user) become 'assistant',
        everything else 'user'.
        """
        resp = self._http.get(
            "/conversations.replies",
            headers=self._headers(),
            params={"channel": channel, "ts": thread_ts},
        )
        _raise_for_status(resp, "fetch Slack thread")
        data = resp.json()
        if not data.get("ok"):
            raise ProviderError(f"Slack API error: {data.get('error')}")

        messages = data.get("messages") or []
        logger.info("Found %d messages in Slack thread %s", len(messages), thread_ts)

        result = []
        for msg in messages:
            is_bot = bool(msg.get("bot_id")) or (
                bool(self.bot_user_id) and msg.get("user") == self.bot_user_id
            )
            result.append(
                {
                    "role": "assistant" if is_bot else "user",
                    "content": msg.get("text") or "",
                }
            )
        return result


def is_stale_slack_request(timestamp: Optional[str], now: Optional[float] = None) -> bool:
    """True when the X-Slack-Request-Timestamp header is missing, invalid or too old."""
    if not timestamp:
        return True
    try:
        ts = int(timestamp)
    except ValueError:
        return True
    now = time.time() if now is None else now
    return ts < int(now) - SLACK_MAX_REQUEST_AGE_SECONDS


# ---------------------------------------------------------------------------
# Trello
# ---------------------------------------------------------------------------


class TrelloClient:
    def __init__(
        self,
        api_key: str,
        api_token: str,
        inbox_list_id: str = "",
        http_client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.api_token = api_token
        self.inbox_list_id = inbox_list_id
        self._http = http_client or httpx.Client(base_url=TRELLO_API_URL, timeout=30.0)

    @classmethod
    def from_config(cls, config: Config) -> "TrelloClient":
        return cls(config.trello_api_key, config.trello_api_token, config.trello_inbox_list_id)

    def create_card(self, name: str, description: str, list_id: Optional[str] = None) -> Dict[str, Any]:
        target_list = list_id or self.inbox_list_id
        if not target_list:
            raise ProviderError("No Trello list id given and TRELLO_INBOX_LIST_ID is not set")

        resp = self._http.post(
            "/cards",
            headers={"Accept": "application/json"},
            params={
                "idList": target_list,
                "name": name,
                "desc": description,
                "key": self.api_key,
                "token": self.api_token,
            },
        )
        _raise_for_status(resp, "create Trello card")
        data = resp.json()
        logger.info("Created Trello card %s in list %s", data.get("id"), target_list)
        return {"success": True, "id": data.get("id"), "url": data.get("url"), "name": data.get("name")}


# ---------------------------------------------------------------------------
# Postmark
# ---------------------------------------------------------------------------


class PostmarkMailer:
    """Outbound transactional email with attachments."""

    def __init__(
        self,
        server_token: str,
        from_email: str,
        http_client: Optional[httpx.Client] = None,
    ):
        self.server_token = server_token
        self.from_email = from_email
        self._http = http_client or httpx.Client(base_url=POSTMARK_API_URL, timeout=60.0)

    @classmethod
    def from_config(cls, config: Config) -> "PostmarkMailer":
        return cls(config.postmark_server_token, config.bookkeeping_from_email)

    def send(
        self,
        to: str,
        subject: str,
        text_body: str,
        attachments: Optional[List[Dict[str, str]]] = None,
    ) -> Dict[str, Any]:
        """
        Send an email. Attachments are dicts with filename, mimeType and
        standard base64 content.
        """
        payload = {
            "From": self.from_email,
            "To": to,
            "Subject": subject,
            "TextBody": text_body,
            "MessageStream": "outbound",
            "Attachments": [
                {
                    "Name": a["filename"],
                    "Content": a["content"],
                    "ContentType": a["mimeType"],
                }
                for a in attachments or []
            ],
        }
        resp = self._http.post(
            "/email",
            headers={
                "Accept": "application/json",
                "X-Postmark-Server-Token": self.server_token,
            },
            json=payload,
        )
        _raise_for_status(resp, "send email")
        data = resp.json()
        logger.info("Sent email to %s with %d attachment(s)", to, len(payload["Attachments"]))
        return {"success": True, "messageId": data.get("MessageID"), "to": to}
