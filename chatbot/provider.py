import logging
from collections.abc import Mapping, Sequence
from typing import Any

import httpx
import openai
from openai import OpenAI

from .config import PLACEHOLDER_API_KEYS, Settings, get_settings
from .errors import AuthError, ContentBlockedError, ProviderError, RateLimitError, UnavailableError
from .models import Message

logger = logging.getLogger(__name__)

HistoryItem = Message | Mapping[str, Any]


def build_history(history: Sequence[HistoryItem]) -> list[dict[str, str]]:
  """Map stored turns onto the provider's user/assistant message list."""
  turns: list[dict[str, str]] = []
  for item in history:
    if isinstance(item, Message):
      role, content = item.role, item.content
    else:
      role, content = item.get('role', 'user'), item.get('content', '')
    turns.append({'role': 'assistant' if role == 'assistant' else 'user', 'content': str(content)})
  return turns


def _is_content_filter(exc: openai.APIStatusError) -> bool:
  code = getattr(exc, 'code', None) or ''
  body = exc.body if isinstance(exc.body, dict) else {}
  error = body.get('error', body)
  if isinstance(error, dict):
    code = code or error.get('code') or error.get('type') or ''
  return 'content_filter' in str(code) or 'safety' in str(code)


class ChatProvider:
  """Single blocking chat completion against an OpenAI-compatible endpoint."""

  def __init__(
    self,
    api_key: str,
    settings: Settings | None = None,
    http_client: httpx.Client | None = None,
  ) -> None:
    if not api_key or not api_key.strip() or api_key.strip() in PLACEHOLDER_API_KEYS:
      raise AuthError('API key is missing or invalid. Please set GROQ_API_KEY in .env')

    settings = settings or get_settings()
    self.model = settings.llm_model
    self.temperature = settings.llm_temperature
    self.max_tokens = settings.llm_max_tokens
    self._client = OpenAI(
      base_url=settings.llm_base_url,
      api_key=api_key,
      timeout=settings.llm_timeout_seconds,
      max_retries=0,
      http_client=http_client,
    )
    logger.info('Using chat model %s at %s', self.model, settings.llm_base_url)

  def chat(self, message: str, history: Sequence[HistoryItem] = ()) -> str:
    messages = [*build_history(history), {'role': 'user', 'content': message}]
    try:
      response = self._client.chat.completions.create(
        model=self.model,
        messages=messages,  # type: ignore[arg-type]
        temperature=self.temperature,
        max_tokens=self.max_tokens,
        top_p=1,
        stream=False,
      )
    except openai.APIError as exc:
      raise self._translate(exc) from exc

    if not response.choices:
      return ''
    choice = response.choices[0]
    if choice.finish_reason == 'content_filter':
      raise ContentBlockedError
    return choice.message.content or ''

  def _translate(self, exc: openai.APIError) -> ProviderError:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
      error: ProviderError = AuthError()
    elif isinstance(exc, openai.RateLimitError):
      error = RateLimitError()
    elif isinstance(exc, (openai.APIConnectionError, openai.InternalServerError)):
      error = UnavailableError()
    elif isinstance(exc, openai.BadRequestError) and _is_content_filter(exc):
      error = ContentBlockedError()
    elif isinstance(exc, openai.NotFoundError):
      error = ProviderError('Model not available. Please check the model configuration.')
    else:
      error = ProviderError()
    logger.error('Provider call failed (%s): %s', type(error).__name__, exc)
    return error
