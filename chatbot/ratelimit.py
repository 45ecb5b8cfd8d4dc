import logging
import threading
import time
from collections.abc import Callable

from .errors import TooManyRequestsError

logger = logging.getLogger(__name__)


class FixedWindowRateLimiter:
  """Count requests per client key in fixed windows of ``window_seconds``."""

  def __init__(
    self,
    limit: int,
    window_seconds: float,
    message: str = 'Too many requests, please try again later.',
    clock: Callable[[], float] = time.monotonic,
  ) -> None:
    self.limit = limit
    self.window_seconds = window_seconds
    self.message = message
    self._clock = clock
    self._lock = threading.Lock()
    self._windows: dict[str, tuple[float, int]] = {}

  def hit(self, key: str) -> None:
    now = self._clock()
    with self._lock:
      started, count = self._windows.get(key, (now, 0))
      if now - started >= self.window_seconds:
        started, count = now, 0
      count += 1
      self._windows[key] = (started, count)
      self._evict(now)
    if count > self.limit:
      logger.warning('Rate limit exceeded for %s (%d/%d)', key, count, self.limit)
      raise TooManyRequestsError(self.message)

  def _evict(self, now: float) -> None:
    expired = [key for key, (started, _) in self._windows.items() if now - started >= self.window_seconds]
    for key in expired:
      del self._windows[key]

  def reset(self) -> None:
    with self._lock:
      self._windows.clear()
