import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import uuid4

from .errors import EmptyReplyError, PersistenceError, ValidationError
from .models import Message, utcnow
from .storage import JsonMessageStore

logger = logging.getLogger(__name__)


class Provider(Protocol):
  def chat(self, message: str, history: list[Message]) -> str: ...


@dataclass
class ChatReply:
  reply: str
  session_id: str
  timestamp: datetime


class ChatService:
  """Run one chat turn: validate, load history, record both turns around the provider call."""

  def __init__(self, store: JsonMessageStore, provider: Provider, max_message_length: int = 10_000) -> None:
    self.store = store
    self.provider = provider
    self.max_message_length = max_message_length

  def validate(self, message: str | None) -> str:
    if not message or not message.strip():
      msg = 'Message must not be empty'
      raise ValidationError(msg)
    if len(message) > self.max_message_length:
      msg = f'Message is too long (maximum {self.max_message_length} characters)'
      raise ValidationError(msg)
    return message

  def send(self, message: str | None, session_id: str | None = None) -> ChatReply:
    message = self.validate(message)
    session_id = session_id or str(uuid4())

    history = self.store.get_history(session_id)

    # A turn that cannot be recorded never reaches the provider.
    self.store.save_message(Message(session_id=session_id, role='user', content=message, timestamp=utcnow()))

    reply = self.provider.chat(message, history)
    if not reply or not reply.strip():
      raise EmptyReplyError

    assistant_timestamp = utcnow()
    try:
      self.store.save_message(
        Message(session_id=session_id, role='assistant', content=reply, timestamp=assistant_timestamp)
      )
    except PersistenceError:
      logger.exception('Failed to save assistant reply for session %s; returning it anyway', session_id)

    return ChatReply(reply=reply, session_id=session_id, timestamp=assistant_timestamp)
