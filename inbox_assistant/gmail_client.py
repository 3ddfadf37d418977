"""
Gmail client integration.

Provides:
- build_gmail_service: refresh-token credentials + service construction
- authorize_interactively: local OAuth consent flow to obtain a refresh token
- GmailClient: the mailbox operations the assistant's tools are built on
"""

import base64
import logging
import re
import threading
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from typing import Any, Dict, Iterable, List, Optional, Tuple

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .config import Config, require
from .models import SYSTEM_LABELS

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/gmail.modify"]
TOKEN_URI = "https://oauth2.googleapis.com/token"


# ---------------------------------------------------------------------------
# OAuth + service
# ---------------------------------------------------------------------------


def build_gmail_service(config: Config):
    """
    Build and return an authorized Gmail API service from a stored refresh token.

    Uses GMAIL_CLIENT_ID, GMAIL_CLIENT_SECRET and GMAIL_REFRESH_TOKEN. The
    access token is obtained (and later refreshed) by google-auth.
    """
    creds = Credentials(
        token=None,
        refresh_token=require(config.gmail_refresh_token, "GMAIL_REFRESH_TOKEN"),
        client_id=require(config.gmail_client_id, "GMAIL_CLIENT_ID"),
        client_secret=require(config.gmail_client_secret, "GMAIL_CLIENT_SECRET"),
        token_uri=TOKEN_URI,
        scopes=SCOPES,
    )
    logger.info("Refreshing Gmail access token.")
    creds.refresh(Request())
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


def authorize_interactively(config: Config) -> Credentials:
    """
    Run the OAuth consent flow in a local browser window.

    The returned credentials carry the refresh token to put in GMAIL_REFRESH_TOKEN.
    """
    logger.info("Running new Gmail OAuth flow using %s", config.gmail_credentials_path)
    flow = InstalledAppFlow.from_client_secrets_file(str(config.gmail_credentials_path), SCOPES)
    return flow.run_local_server(port=0, access_type="offline", prompt="consent")


# ---------------------------------------------------------------------------
# Helpers for parsing Gmail message payloads
# ---------------------------------------------------------------------------


def _parse_header(headers: List[dict], name: str) -> Optional[str]:
    """Extract a header value (case-insensitive) from Gmail message headers."""
    for h in headers:
        if h.get("name", "").lower() == name.lower():
            return h.get("value")
    return None


def _decode_data(data: Optional[str]) -> str:
    if not data:
        return ""
    try:
        return base64.urlsafe_b64decode(data.encode("utf-8")).decode("utf-8", errors="replace")
    except (ValueError, UnicodeEncodeError):
        logger.exception("Error decoding message body.")
        return ""


def _strip_html(html: str) -> str:
    text = re.sub(r"<[^>]*>", " ", html)
    return re.sub(r"\s+", " ", text).strip()


def extract_message_content(payload: dict) -> Tuple[str, List[Dict[str, Any]]]:
    """
    Extract a readable body and attachment metadata from a Gmail payload.

    Plain-text parts at the top level or one level down make up the body; an
    HTML part is used, tags stripped, only when no plain text was found.
    """
    body = ""
    attachments: List[Dict[str, Any]] = []

    def walk(part: dict, depth: int) -> None:
        nonlocal body
        mime_type = part.get("mimeType", "")
        part_body = part.get("body", {}) or {}

        if mime_type == "text/plain" and part_body.get("data"):
            if depth <= 1:
                body += _decode_data(part_body["data"])
        elif mime_type == "text/html" and part_body.get("data") and body == "":
            body = _strip_html(_decode_data(part_body["data"]))
        elif part.get("filename") and part_body.get("attachmentId"):
            attachments.append(
                {
                    "id": part_body["attachmentId"],
                    "filename": part["filename"],
                    "mimeType": mime_type,
                    "size": part_body.get("size"),
                }
            )

        for sub_part in part.get("parts", []) or []:
            walk(sub_part, depth + 1)

    walk(payload, 0)
    return body, attachments


def _find_html(payload: dict) -> str:
    if payload.get("mimeType") == "text/html" and (payload.get("body") or {}).get("data"):
        return _decode_data(payload["body"]["data"])
    for part in payload.get("parts", []) or []:
        html = _find_html(part)
        if html:
            return html
    return ""


_UNSUBSCRIBE_PATTERNS = [
    re.compile(r"""href=["'](https?://[^"']*unsubscribe[^"']*)["']""", re.IGNORECASE),
    re.compile(r"""href=["'](https?://[^"']*opt[_-]out[^"']*)["']""", re.IGNORECASE),
    re.compile(r"""href=["'](https?://[^"']*optout[^"']*)["']""", re.IGNORECASE),
    re.compile(r"""href=["'](https?://[^"']*remove[^"']*)["']""", re.IGNORECASE),
]


def build_label_query(label_filter: Iterable[str]) -> str:
    """
    Turn a label filter list into a Gmail search query.

    Labels prefixed with '!' are excluded (-label:x); the rest are required.
    """
    labels = list(label_filter or [])
    excluded = [f"-label:{label[1:]}" for label in labels if label.startswith("!")]
    included = [f"label:{label}" for label in labels if not label.startswith("!")]
    return " ".join(excluded + included)


def _to_standard_b64(data: str) -> str:
    """Gmail returns base64url without padding; most other APIs want standard base64."""
    padded = data + "=" * (-len(data) % 4)
    return base64.b64encode(base64.urlsafe_b64decode(padded)).decode("ascii")


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GmailClient:
    """
    Mailbox operations over a Gmail API service object.

    Errors from the API (googleapiclient HttpError) are not caught here; the
    tool layer turns them into error results.
    """

    def __init__(self, service, label_aliases: Optional[Dict[str, str]] = None):
        self.service = service
        self.label_aliases = {k.lower(): v for k, v in (label_aliases or {}).items()}
        self._labels_by_name: Optional[Dict[str, str]] = None
        # httplib2 connections are not thread-safe; tool calls may run concurrently.
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Config) -> "GmailClient":
        return cls(build_gmail_service(config), label_aliases=config.gmail_label_aliases())

    def _messages(self):
        return self.service.users().messages()

    def _execute(self, request) -> Dict[str, Any]:
        with self._lock:
            return request.execute()

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    def list_labels(self) -> List[Dict[str, Any]]:
        response = self._execute(self.service.users().labels().list(userId="me"))
        return response.get("labels", []) or []

    def resolve_label_ids(self, names: Iterable[str]) -> List[str]:
        """
        Map label names to Gmail label ids.

        System labels pass through, configured workflow aliases map to their
        ids, other names are looked up in the account's labels once per
        client. Anything unresolved is assumed to already be an id.
        """
        resolved = []
        for name in names:
            if name.upper() in SYSTEM_LABELS:
                resolved.append(name.upper())
                continue
            alias = self.label_aliases.get(name.lower())
            if alias:
                resolved.append(alias)
                continue
            if self._labels_by_name is None:
                self._labels_by_name = {
                    label["name"].lower(): label["id"]
                    for label in self.list_labels()
                    if label.get("name") and label.get("id")
                }
            resolved.append(self._labels_by_name.get(name.lower(), name))
        return resolved

    def modify_labels(
        self,
        message_id: str,
        add_label_ids: Optional[List[str]] = None,
        remove_label_ids: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        body = {
            "addLabelIds": self.resolve_label_ids(add_label_ids or []),
            "removeLabelIds": self.resolve_label_ids(remove_label_ids or []),
        }
        logger.info("Modifying labels on %s: %s", message_id, body)
        data = self._execute(self._messages().modify(userId="me", id=message_id, body=body))
        return {
            "id": data.get("id"),
            "threadId": data.get("threadId"),
            "labelIds": data.get("labelIds"),
        }

    def archive(self, message_id: str) -> Dict[str, Any]:
        return self.modify_labels(message_id, remove_label_ids=["INBOX"])

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def list_messages(
        self,
        label_filter: Optional[List[str]] = None,
        max_results: int = 10,
        include_content: bool = False,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"userId": "me", "maxResults": max_results}
        query = build_label_query(label_filter or [])
        if query:
            params["q"] = query

        logger.info("Listing messages with query=%r max_results=%d", query, max_results)
        response = self._execute(self._messages().list(**params))
        refs = response.get("messages", []) or []

        if include_content:
            messages = [self.get_message(ref["id"]) for ref in refs]
        else:
            messages = [{"id": ref.get("id"), "threadId": ref.get("threadId")} for ref in refs]

        return {
            "messages": messages,
            "resultSizeEstimate": response.get("resultSizeEstimate"),
        }

    def get_raw_message(self, message_id: str, format: str = "full") -> Dict[str, Any]:
        return self._execute(self._messages().get(userId="me", id=message_id, format=format))

    def get_message(self, message_id: str) -> Dict[str, Any]:
        data = self.get_raw_message(message_id)
        payload = data.get("payload", {}) or {}
        headers = {
            h.get("name", "").lower(): h.get("value")
            for h in payload.get("headers", []) or []
        }
        body, attachments = extract_message_content(payload)

        subject = headers.get("subject")
        if subject:
            logger.info("Processing email with subject: %r", subject)

        return {
            "id": data.get("id"),
            "threadId": data.get("threadId"),
            "labelIds": data.get("labelIds"),
            "snippet": data.get("snippet"),
            "internalDate": data.get("internalDate"),
            "headers": headers,
            "body": body,
            "attachments": attachments,
        }

    def get_attachment(self, message_id: str, attachment_id: str) -> Dict[str, Any]:
        data = self._execute(
            self._messages()
            .attachments()
            .get(userId="me", messageId=message_id, id=attachment_id)
        )
        return {"attachmentId": attachment_id, "size": data.get("size"), "data": data.get("data")}

    def download_attachments(self, message: Dict[str, Any]) -> List[Dict[str, str]]:
        """Fetch every attachment of a parsed message as standard base64 content."""
        files = []
        for meta in message.get("attachments", []):
            data = self.get_attachment(message["id"], meta["id"]).get("data") or ""
            files.append(
                {
                    "filename": meta["filename"],
                    "mimeType": meta.get("mimeType") or "application/octet-stream",
                    "content": _to_standard_b64(data),
                }
            )
        return files

    def create_reply_draft(self, message_id: str, content: str) -> Dict[str, Any]:
        original = self.get_raw_message(message_id, format="metadata")
        headers = (original.get("payload", {}) or {}).get("headers", []) or []
        subject = _parse_header(headers, "Subject") or ""
        from_value = _parse_header(headers, "From") or ""
        reference = _parse_header(headers, "Message-ID") or message_id

        match = re.search(r"<([^>]+)>|([^\s<]+@[^\s>]+)", from_value)
        to_email = (match.group(1) or match.group(2)) if match else ""
        if not to_email:
            raise ValueError("Could not extract email address from the From header")

        reply = EmailMessage()
        reply["To"] = to_email
        reply["Subject"] = subject if subject.lower().startswith("re:") else f"Re: {subject}"
        reply["In-Reply-To"] = reference
        reply["References"] = reference
        reply.set_content(content)

        raw = base64.urlsafe_b64encode(reply.as_bytes()).decode("ascii").rstrip("=")
        draft = self._execute(
            self.service.users()
            .drafts()
            .create(
                userId="me",
                body={"message": {"threadId": original.get("threadId"), "raw": raw}},
            )
        )
        return {"success": True, "draftId": draft.get("id"), "message": "Draft created successfully"}

    def find_unsubscribe_link(self, message_id: str) -> Dict[str, Any]:
        data = self.get_raw_message(message_id)
        payload = data.get("payload", {}) or {}

        url = None
        list_unsubscribe = _parse_header(payload.get("headers", []) or [], "List-Unsubscribe")
        if list_unsubscribe:
            match = re.search(r"<(https?://[^>]+)>", list_unsubscribe)
            if match:
                url = match.group(1)

        if not url:
            html = _find_html(payload)
            for pattern in _UNSUBSCRIBE_PATTERNS:
                match = pattern.search(html)
                if match:
                    url = match.group(1)
                    break

        return {"messageId": message_id, "unsubscribeUrl": url, "found": bool(url)}

    def archive_old_emails(self, days: int = 3, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Archive messages labelled archive-in-<days>-days that are older than <days>."""
        now = now or datetime.now(timezone.utc)
        cutoff = int((now - timedelta(days=days)).timestamp())
        query = f"label:archive-in-{days}-days before:{cutoff}"

        response = self._execute(self._messages().list(userId="me", q=query))
        refs = response.get("messages", []) or []

        results = []
        for ref in refs:
            try:
                self.archive(ref["id"])
                results.append({"messageId": ref["id"], "success": True})
            except HttpError as e:
                logger.error("Error archiving message %s: %s", ref["id"], e)
                results.append({"messageId": ref["id"], "success": False})

        return {
            "archivedCount": sum(1 for r in results if r["success"]),
            "totalFound": len(refs),
            "results": results,
        }
