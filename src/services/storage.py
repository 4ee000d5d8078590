"""
Defines the local fallback storage: a JSON file holding the ordered
message list, plus a directory of photo files.
Used by the fallback endpoint when no hosted backend is configured.
"""

import json
import logging
import os
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from src.core.errors import MessageNotFound, UploadError
from src.core.message import Message, MessageId
from src.services.backend import MessageBackend

logger = logging.getLogger(__name__)


class LocalMessageStore(MessageBackend):
    """Handles file-based persistence when the hosted backend is unavailable."""

    def __init__(self, data_file: str, photos_dir: str):
        self.data_file = Path(data_file)
        self.photos_dir = Path(photos_dir)

    def _read(self) -> List[Dict[str, Any]]:
        try:
            raw = self.data_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []

        try:
            rows = json.loads(raw or "[]")
        except json.JSONDecodeError:
            logger.error("Local message file %s is corrupt, treating it as empty", self.data_file)
            return []
        return rows if isinstance(rows, list) else []

    def _write(self, rows: List[Dict[str, Any]]) -> None:
        """Atomic replace: readers never see a half-written file."""
        self.data_file.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.data_file.parent, prefix=".messages-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                json.dump(rows, tmp, indent=2)
            os.replace(tmp_path, self.data_file)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    @staticmethod
    def _next_id(rows: List[Dict[str, Any]]) -> int:
        """Epoch milliseconds, bumped past the last id so ids strictly increase."""
        now_ms = int(time.time() * 1000)
        ids = [row["id"] for row in rows if isinstance(row.get("id"), int)]
        return max(now_ms, max(ids, default=0) + 1)

    async def list_messages(self) -> List[Message]:
        """Messages in reverse insertion order."""
        return [Message(**row) for row in reversed(self._read())]

    async def insert_message(self, name: str, message: str, photo: Optional[str]) -> Message:
        rows = self._read()
        row: Dict[str, Any] = {
            "id": self._next_id(rows),
            "name": name,
            "message": message,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        if photo:
            row["photo"] = photo

        rows.append(row)
        self._write(rows)
        logger.info("Stored message %s locally", row["id"])
        return Message(**row)

    async def update_photo(self, message_id: MessageId, photo: str) -> Message:
        rows = self._read()
        for row in rows:
            if str(row.get("id")) == str(message_id):
                row["photo"] = photo
                self._write(rows)
                return Message(**row)
        raise MessageNotFound(f"No message with id {message_id}")

    def photo_path(self, key: str) -> Path:
        """
        Maps a photo key to its file.
        Raises ValueError for keys escaping the photos directory.
        """
        root = self.photos_dir.resolve()
        path = (root / key).resolve()
        if root not in path.parents:
            raise ValueError(f"Invalid photo key: {key}")
        return path

    async def store_photo(self, key: str, data: bytes, content_type: str) -> str:
        try:
            path = self.photo_path(key)
        except ValueError as e:
            raise UploadError(str(e)) from e

        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            # "xb" refuses to clobber an existing key.
            with open(path, "xb") as f:
                f.write(data)
        except FileExistsError as e:
            raise UploadError(f"Photo key already exists: {key}") from e
        except OSError as e:
            raise UploadError(f"Could not write photo {key}: {e}") from e

        logger.debug("Stored %s photo %s locally", content_type, key)
        return key
