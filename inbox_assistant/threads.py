"""
Conversation thread management.

A ThreadManager binds to one assistant thread, either created fresh or
resumed from the thread store by key, and reads back the latest
assistant-authored message in text or JSON form.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from .models import LatestMessage, MessageRole, ResponseFormat, ThreadMessage, ThreadRecord

logger = logging.getLogger(__name__)


def store_key(key: str) -> str:
    return f"thread-{key}"


class ThreadManager:
    def __init__(
        self,
        client,
        store,
        response_format: ResponseFormat = ResponseFormat.TEXT,
        thread_id: Optional[str] = None,
    ):
        self.client = client
        self.store = store
        self.response_format = ResponseFormat(response_format)
        self.thread_id = thread_id
        self.created = False

    def _load_record(self, key: str) -> Optional[ThreadRecord]:
        try:
            raw = self.store.get(store_key(key))
            if raw is None:
                return None
            if isinstance(raw, (str, bytes)):
                raw = json.loads(raw)
            return ThreadRecord.model_validate(raw)
        except (OSError, ValueError) as e:
            # Covers JSONDecodeError and pydantic ValidationError.
            logger.warning("Could not load thread for key %s, creating a new one: %s", key, e)
            return None

    def initialize(self, key: Optional[str] = None) -> str:
        """
        Return the bound thread id, resuming or creating a thread as needed.

        Without a key a fresh thread is created and never persisted.
        """
        if self.thread_id:
            return self.thread_id

        if key:
            record = self._load_record(key)
            if record is not None:
                self.thread_id = record.thread_id
                logger.info("Loaded existing thread %s for key %s", self.thread_id, key)
                return self.thread_id
            logger.info("No existing thread found for key %s", key)

        thread = self.client.create_thread()
        self.thread_id = thread.id
        self.created = True
        logger.info("Created new thread %s", self.thread_id)

        if key:
            now = datetime.now(timezone.utc)
            record = ThreadRecord(thread_id=self.thread_id, created_at=now, last_updated=now)
            try:
                self.store.set(store_key(key), record.model_dump(mode="json", by_alias=True))
                logger.info("Stored thread mapping for key %s", key)
            except (OSError, ValueError) as e:
                # The thread stays bound for this invocation; the next one starts afresh.
                logger.error("Could not store thread mapping for key %s: %s", key, e)

        return self.thread_id

    def add_message(self, content: str, role: str = "user") -> ThreadMessage:
        if not self.thread_id:
            self.initialize()

        message = self.client.create_message(self.thread_id, content, role=role)
        logger.info("Added %s message to thread %s", role, self.thread_id)
        return message

    def get_latest_message(self) -> Optional[LatestMessage]:
        """
        Return the most recent assistant message, or None if there is none.

        In JSON mode a body that does not parse is returned as raw text with
        parse_error set; it never raises for bad JSON.
        """
        if not self.thread_id:
            return None

        messages = self.client.list_messages(self.thread_id)
        assistant_messages = [m for m in messages if m.role == MessageRole.ASSISTANT]
        if not assistant_messages:
            return None

        # Service returns newest first.
        message = assistant_messages[0]
        latest = LatestMessage(
            id=message.id,
            created_at=message.created_at,
            content=message.text(),
        )

        if self.response_format == ResponseFormat.JSON:
            try:
                latest.json_content = json.loads(latest.content)
            except json.JSONDecodeError as e:
                logger.warning("Failed to parse response as JSON: %s", e)
                latest.parse_error = str(e)

        return latest
