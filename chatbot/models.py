from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

Role = Literal['user', 'assistant']


def utcnow() -> datetime:
  # Millisecond precision, matching what gets written to disk.
  now = datetime.now(UTC)
  return now.replace(microsecond=now.microsecond // 1000 * 1000)


def isoformat(value: datetime) -> str:
  return value.astimezone(UTC).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


class Message(BaseModel):
  """A single turn. `id` stays unset until the store assigns it.

  `content` is not length-checked here so older files holding empty replies
  still load; the chat and import paths reject empty content themselves.
  """

  model_config = ConfigDict(populate_by_name=True)

  id: int | None = None
  session_id: str = Field(default='', alias='sessionId')
  role: Role
  content: str
  timestamp: datetime = Field(default_factory=utcnow)

  @field_validator('timestamp')
  @classmethod
  def _assume_utc(cls, value: datetime) -> datetime:
    if value.tzinfo is None:
      return value.replace(tzinfo=UTC)
    return value

  @field_serializer('timestamp')
  def _serialize_timestamp(self, value: datetime) -> str:
    return isoformat(value)


class ChatSession(BaseModel):
  """A view over every message sharing one session id."""

  model_config = ConfigDict(populate_by_name=True)

  session_id: str = Field(alias='sessionId', min_length=1)
  messages: list[Message]
  created_at: datetime | None = Field(default=None, alias='createdAt')
  updated_at: datetime | None = Field(default=None, alias='updatedAt')

  @field_validator('created_at', 'updated_at')
  @classmethod
  def _assume_utc(cls, value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
      return value.replace(tzinfo=UTC)
    return value

  @classmethod
  def from_messages(cls, session_id: str, messages: list[Message]) -> 'ChatSession':
    return cls(
      session_id=session_id,
      messages=messages,
      created_at=messages[0].timestamp,
      updated_at=messages[-1].timestamp,
    )

  @field_serializer('created_at', 'updated_at')
  def _serialize_bounds(self, value: datetime | None) -> str | None:
    return isoformat(value) if value is not None else None
