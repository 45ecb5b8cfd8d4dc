from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PLACEHOLDER_API_KEYS = frozenset({'your-groq-api-key-here', 'your-gemini-api-key-here', 'your-api-key-here'})


class Settings(BaseSettings):
  """Centralized application settings loaded from environment variables."""

  app_env: str = Field(default='production', validation_alias=AliasChoices('NODE_ENV', 'APP_ENV'))
  server_host: str = Field(default='0.0.0.0', alias='HOST')
  server_port: int = Field(default=3001, alias='PORT')

  llm_api_key: str = Field(default='', alias='GROQ_API_KEY')
  llm_base_url: str = Field(default='https://api.groq.com/openai/v1', alias='LLM_BASE_URL')
  llm_model: str = Field(default='llama-3.3-70b-versatile', alias='LLM_MODEL')
  llm_temperature: float = Field(default=0.7, alias='LLM_TEMPERATURE')
  llm_max_tokens: int = Field(default=1000, alias='LLM_MAX_TOKENS')
  llm_timeout_seconds: float = Field(default=60.0, alias='LLM_TIMEOUT_SECONDS')

  data_file: Path = Field(default=Path('data/chatbot.json'), alias='DATA_FILE')
  max_message_length: int = Field(default=10_000, alias='MAX_MESSAGE_LENGTH')

  cors_origins: list[str] = Field(
    default=['http://localhost:5173', 'http://localhost:3000'],
    alias='CORS_ORIGINS',
  )

  rate_limit_requests: int = Field(default=100, alias='RATE_LIMIT_REQUESTS')
  rate_limit_window_seconds: int = Field(default=15 * 60, alias='RATE_LIMIT_WINDOW_SECONDS')
  chat_rate_limit_requests: int = Field(default=10, alias='CHAT_RATE_LIMIT_REQUESTS')
  chat_rate_limit_window_seconds: int = Field(default=60, alias='CHAT_RATE_LIMIT_WINDOW_SECONDS')

  model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore', populate_by_name=True)

  @property
  def is_development(self) -> bool:
    return self.app_env.lower() in {'dev', 'development', 'local'}

  @property
  def has_api_key(self) -> bool:
    key = self.llm_api_key.strip()
    return bool(key) and key not in PLACEHOLDER_API_KEYS


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  settings = Settings()
  settings.data_file.parent.mkdir(parents=True, exist_ok=True)
  return settings
