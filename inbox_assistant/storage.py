"""
Storage helpers: the key/value store used to persist assistant threads, and
the prompt-text file store for assistant system prompts.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import Config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Key/value stores
# ---------------------------------------------------------------------------


class MemoryStore:
    """Key -> JSON value store kept in process memory."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def list(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class JsonFileStore:
    """
    Key -> JSON value store backed by a single JSON object on disk.

    A missing file or key is a normal "not found" and yields None.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not contain a JSON object")
        return data

    def _write_all(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
        tmp_path.replace(self.path)

    def _read_for_update(self) -> Dict[str, Any]:
        try:
            return self._read_all()
        except ValueError as e:
            # The corrupt file is replaced by the next write.
            logger.warning("Discarding unreadable store file %s: %s", self.path, e)
            return {}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._read_all().get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read_for_update()
            data[key] = value
            self._write_all(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read_for_update()
            if key in data:
                del data[key]
                self._write_all(data)

    def list(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(k for k in self._read_all() if k.startswith(prefix))


def build_thread_store(config: Config) -> JsonFileStore:
    return JsonFileStore(config.thread_store_path)


# ---------------------------------------------------------------------------
# System prompts
# ---------------------------------------------------------------------------

PROMPT_FILES = {
    "hi": "hi.md",
    "handle-inbox": "hi.md",
    "dare": "dare.md",
    "daily-report": "dare.md",
    "chat": "chat.md",
}


class PromptStore:
    """System prompt files addressable by assistant name."""

    def __init__(self, prompts_dir: Path):
        self.prompts_dir = Path(prompts_dir)

    def path_for(self, assistant: str) -> Path:
        filename = PROMPT_FILES.get(assistant.lower())
        if filename is None:
            raise ValueError(f"Unknown assistant: {assistant}")
        return self.prompts_dir / filename

    def load(self, assistant: str) -> str:
        path = self.path_for(assistant)
        if not path.exists():
            return ""
        return path.read_text(encoding="utf-8")

    def save(self, assistant: str, text: str) -> Path:
        path = self.path_for(assistant)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        logger.info("Wrote system prompt for %s to %s", assistant, path)
        return path
