from collections.abc import Iterator, Sequence

import pytest
from fastapi.testclient import TestClient

from chatbot.deps import get_api_limiter, get_chat_limiter, get_provider, get_store
from chatbot.main import app
from chatbot.models import Message
from chatbot.ratelimit import FixedWindowRateLimiter
from chatbot.storage import JsonMessageStore


class FakeProvider:
  """Stands in for ChatProvider; records each call and replays canned replies."""

  def __init__(self, replies: Sequence[str] = (), error: Exception | None = None) -> None:
    self.replies = list(replies)
    self.error = error
    self.calls: list[tuple[str, list[tuple[str, str]]]] = []

  def chat(self, message: str, history: Sequence[Message] = ()) -> str:
    self.calls.append((message, [(m.role, m.content) for m in history]))
    if self.error is not None:
      raise self.error
    if self.replies:
      return self.replies.pop(0)
    return f'echo: {message}'


@pytest.fixture
def data_file(tmp_path):
  return tmp_path / 'chatbot.json'


@pytest.fixture
def store(data_file) -> JsonMessageStore:
  return JsonMessageStore(data_file)


@pytest.fixture
def provider() -> FakeProvider:
  return FakeProvider()


@pytest.fixture
def client(store, provider) -> Iterator[TestClient]:
  app.dependency_overrides[get_store] = lambda: store
  app.dependency_overrides[get_provider] = lambda: provider
  app.dependency_overrides[get_api_limiter] = lambda: FixedWindowRateLimiter(10_000, 60)
  app.dependency_overrides[get_chat_limiter] = lambda: FixedWindowRateLimiter(10_000, 60)
  try:
    yield TestClient(app)
  finally:
    app.dependency_overrides.clear()
