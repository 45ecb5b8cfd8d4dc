import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterable
from pathlib import Path

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import PersistenceError
from .models import ChatSession, Message

logger = logging.getLogger(__name__)

DEFAULT_FILE_MODE = 0o644

_messages_adapter = TypeAdapter(list[Message])


class JsonMessageStore:
  """Message store mirrored in memory and persisted to a single JSON file.

  The file holds ``{"messages": [...], "lastId": n}``. It is loaded lazily on
  first use, and every mutation rewrites the whole file before returning. A
  re-entrant lock guards each load-modify-write sequence, so concurrent saves
  can never hand out the same id. ``lastId`` is the high-water mark for ids:
  deleting messages never lets an id be handed out twice.
  """

  def __init__(self, path: Path | str) -> None:
    self.path = Path(path)
    self._lock = threading.RLock()
    self._messages: list[Message] | None = None
    self._last_id = 0

  def _ensure_loaded(self) -> list[Message]:
    with self._lock:
      if self._messages is None:
        self._messages, self._last_id = self._read()
        logger.info('Loaded %d messages from %s', len(self._messages), self.path)
      return self._messages

  def _read(self) -> tuple[list[Message], int]:
    if not self.path.exists():
      return [], 0
    try:
      raw = json.loads(self.path.read_text(encoding='utf-8') or '{}')
      messages = _messages_adapter.validate_python(raw.get('messages', []))
    except (OSError, ValueError, AttributeError, PydanticValidationError) as exc:
      logger.exception('Failed to read chat history from %s', self.path)
      msg = 'Unable to read chat history storage'
      raise PersistenceError(msg) from exc
    highest = max((m.id or 0 for m in messages), default=0)
    last_id = raw.get('lastId')
    return messages, max(highest, last_id if isinstance(last_id, int) else 0)

  def _commit(self, messages: list[Message], last_id: int) -> None:
    """Write the file atomically, then swap the in-memory state."""
    payload = {
      'messages': [m.model_dump(mode='json', by_alias=True) for m in messages],
      'lastId': last_id,
    }
    tmp_path: str | None = None
    try:
      self.path.parent.mkdir(parents=True, exist_ok=True)
      fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f'.{self.path.name}.', suffix='.tmp')
      with os.fdopen(fd, 'w', encoding='utf-8') as fh:
        json.dump(payload, fh, ensure_ascii=False, indent=2)
      # mkstemp creates 0600; keep the data file's existing mode instead.
      os.chmod(tmp_path, self._file_mode())
      os.replace(tmp_path, self.path)
    except OSError as exc:
      logger.exception('Failed to write chat history to %s', self.path)
      if tmp_path and os.path.exists(tmp_path):
        os.unlink(tmp_path)
      msg = 'Failed to save chat history'
      raise PersistenceError(msg) from exc
    self._messages = messages
    self._last_id = last_id

  def _file_mode(self) -> int:
    try:
      return self.path.stat().st_mode & 0o777
    except FileNotFoundError:
      return DEFAULT_FILE_MODE

  def save_message(self, message: Message) -> int:
    with self._lock:
      messages = self._ensure_loaded()
      new_id = self._last_id + 1
      stored = message.model_copy(update={'id': new_id})
      self._commit([*messages, stored], new_id)
      return new_id

  def get_history(self, session_id: str) -> list[Message]:
    with self._lock:
      messages = self._ensure_loaded()
      matching = [m for m in messages if m.session_id == session_id]
    return sorted(matching, key=lambda m: m.timestamp)

  def get_all_sessions(self) -> list[ChatSession]:
    with self._lock:
      messages = list(self._ensure_loaded())

    grouped: dict[str, list[Message]] = {}
    for message in messages:
      grouped.setdefault(message.session_id, []).append(message)

    sessions = [
      ChatSession.from_messages(session_id, sorted(items, key=lambda m: m.timestamp))
      for session_id, items in grouped.items()
    ]
    return sorted(sessions, key=lambda s: s.updated_at, reverse=True)

  def delete_session(self, session_id: str) -> bool:
    with self._lock:
      messages = self._ensure_loaded()
      remaining = [m for m in messages if m.session_id != session_id]
      if len(remaining) == len(messages):
        return False
      self._commit(remaining, self._last_id)
      logger.info('Deleted %d messages of session %s', len(messages) - len(remaining), session_id)
      return True

  def clear_all_history(self) -> None:
    with self._lock:
      self._ensure_loaded()
      self._commit([], self._last_id)
      logger.info('Cleared all chat history')

  def export_history(self, session_id: str | None = None) -> list[ChatSession]:
    if not session_id:
      return self.get_all_sessions()
    messages = self.get_history(session_id)
    if not messages:
      return []
    return [ChatSession.from_messages(session_id, messages)]

  def import_history(self, sessions: Iterable[ChatSession]) -> bool:
    """Replay every message through ``save_message`` with fresh ids.

    Not transactional: messages saved before a failure stay persisted.
    """
    imported = 0
    try:
      for session in sessions:
        for message in session.messages:
          self.save_message(
            Message(
              session_id=session.session_id,
              role=message.role,
              content=message.content,
              timestamp=message.timestamp,
            )
          )
          imported += 1
    except PersistenceError:
      logger.exception('Import failed after %d messages', imported)
      return False
    logger.info('Imported %d messages', imported)
    return True
