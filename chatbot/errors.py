class ChatbotError(Exception):
  """Base class for errors that map onto an HTTP status and a user-facing message."""

  status_code = 500
  default_message = 'An error occurred while processing the request'

  def __init__(self, message: str | None = None) -> None:
    self.message = message or self.default_message
    super().__init__(self.message)


class ValidationError(ChatbotError):
  status_code = 400
  default_message = 'Invalid request'


class NotFoundError(ChatbotError):
  status_code = 404
  default_message = 'Not found'


class PersistenceError(ChatbotError):
  """Raised when the backing file cannot be read or written."""

  default_message = 'Failed to access chat history storage'


class TooManyRequestsError(ChatbotError):
  """Raised by the local rate limiter, not by the provider."""

  status_code = 429
  default_message = 'Too many requests, please try again later'


class ProviderError(ChatbotError):
  default_message = 'Failed to get a response from the AI provider. Please try again.'


class AuthError(ProviderError):
  default_message = 'Invalid API key. Please check the provider API key in .env'


class RateLimitError(ProviderError):
  status_code = 429
  default_message = 'Rate limit exceeded. Please try again in a few seconds.'


class UnavailableError(ProviderError):
  status_code = 503
  default_message = 'The AI provider is currently unavailable. Please try again later.'


class ContentBlockedError(ProviderError):
  default_message = 'The content was blocked by the safety filter.'


class EmptyReplyError(ProviderError):
  default_message = 'The AI provider returned an empty reply.'
