from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request

from .chat import ChatService
from .config import get_settings
from .provider import ChatProvider
from .ratelimit import FixedWindowRateLimiter
from .storage import JsonMessageStore


@lru_cache(maxsize=1)
def get_store() -> JsonMessageStore:
  return JsonMessageStore(get_settings().data_file)


@lru_cache(maxsize=1)
def get_provider() -> ChatProvider:
  settings = get_settings()
  return ChatProvider(settings.llm_api_key, settings=settings)


def get_chat_service(
  store: Annotated[JsonMessageStore, Depends(get_store)],
  provider: Annotated[ChatProvider, Depends(get_provider)],
) -> ChatService:
  return ChatService(store, provider, max_message_length=get_settings().max_message_length)


@lru_cache(maxsize=1)
def get_api_limiter() -> FixedWindowRateLimiter:
  settings = get_settings()
  return FixedWindowRateLimiter(
    settings.rate_limit_requests,
    settings.rate_limit_window_seconds,
    message='Too many requests, please try again later.',
  )


@lru_cache(maxsize=1)
def get_chat_limiter() -> FixedWindowRateLimiter:
  settings = get_settings()
  return FixedWindowRateLimiter(
    settings.chat_rate_limit_requests,
    settings.chat_rate_limit_window_seconds,
    message='Too many chat messages, please wait a moment.',
  )


def _client_key(request: Request) -> str:
  return request.client.host if request.client else 'anonymous'


def limit_api(request: Request, limiter: Annotated[FixedWindowRateLimiter, Depends(get_api_limiter)]) -> None:
  limiter.hit(_client_key(request))


def limit_chat(request: Request, limiter: Annotated[FixedWindowRateLimiter, Depends(get_chat_limiter)]) -> None:
  limiter.hit(_client_key(request))
