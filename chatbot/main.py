import logging
from typing import Annotated

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

from .chat import ChatService
from .config import get_settings
from .deps import get_chat_service, get_provider, get_store, limit_api, limit_chat
from .errors import ChatbotError, NotFoundError, PersistenceError
from .models import ChatSession, Message, isoformat, utcnow
from .storage import JsonMessageStore

SERVICE_NAME = 'Chatbot API'

settings = get_settings()
app = FastAPI(title=SERVICE_NAME)
logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format='[%(asctime)s] %(levelname)s %(message)s')

app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origins,
  allow_credentials=True,
  allow_methods=['*'],
  allow_headers=['*'],
)


@app.on_event('startup')
def on_startup() -> None:
  logger.info('Environment: %s', settings.app_env)
  logger.info('API key configured: %s', 'yes' if settings.has_api_key else 'no')
  get_store()
  # Misconfiguration should stop the process here, not on the first chat request.
  get_provider()


def _error_response(status_code: int, message: str, exc: Exception | None = None) -> JSONResponse:
  body: dict[str, str] = {'error': message}
  if exc is not None and get_settings().is_development:
    body['detail'] = str(exc.__cause__ or exc)
  return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(ChatbotError)
async def chatbot_error_handler(request: Request, exc: ChatbotError) -> JSONResponse:
  if exc.status_code >= 500:
    logger.error('%s %s failed: %s', request.method, request.url.path, exc.message)
  return _error_response(exc.status_code, exc.message, exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  return _error_response(400, 'Invalid request data', exc)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
  message = 'Endpoint not found' if exc.status_code == 404 else str(exc.detail)
  return _error_response(exc.status_code, message)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
  logger.exception('Unhandled error on %s %s', request.method, request.url.path)
  return _error_response(500, 'Internal server error', exc)


class ApiModel(BaseModel):
  model_config = ConfigDict(populate_by_name=True)


class ChatRequest(ApiModel):
  message: str | None = None
  session_id: str | None = Field(default=None, alias='sessionId')


class ChatResponse(ApiModel):
  reply: str
  session_id: str = Field(alias='sessionId')
  timestamp: str


class HistoryResponse(ApiModel):
  session_id: str = Field(alias='sessionId')
  messages: list[Message]


class SessionsResponse(ApiModel):
  sessions: list[ChatSession]


class ExportRequest(ApiModel):
  session_id: str | None = Field(default=None, alias='sessionId')


class ExportResponse(ApiModel):
  data: list[ChatSession]
  exported_at: str = Field(alias='exportedAt')


class ImportRequest(ApiModel):
  data: list[ChatSession]

  @field_validator('data')
  @classmethod
  def _require_content(cls, sessions: list[ChatSession]) -> list[ChatSession]:
    for session in sessions:
      if any(not message.content for message in session.messages):
        msg = f'Session {session.session_id} contains a message with empty content'
        raise ValueError(msg)
    return sessions


class StatusMessage(ApiModel):
  message: str


router = APIRouter(prefix='/api', dependencies=[Depends(limit_api)])


@router.post('/chat', dependencies=[Depends(limit_chat)])
def chat(payload: ChatRequest, service: Annotated[ChatService, Depends(get_chat_service)]) -> ChatResponse:
  result = service.send(payload.message, payload.session_id)
  return ChatResponse(reply=result.reply, session_id=result.session_id, timestamp=isoformat(result.timestamp))


@router.get('/history/{session_id}')
def get_history(session_id: str, store: Annotated[JsonMessageStore, Depends(get_store)]) -> HistoryResponse:
  try:
    messages = store.get_history(session_id)
  except PersistenceError as exc:
    raise PersistenceError('Failed to fetch chat history') from exc
  return HistoryResponse(session_id=session_id, messages=messages)


@router.get('/sessions')
def list_sessions(store: Annotated[JsonMessageStore, Depends(get_store)]) -> SessionsResponse:
  try:
    sessions = store.get_all_sessions()
  except PersistenceError as exc:
    raise PersistenceError('Failed to fetch sessions') from exc
  return SessionsResponse(sessions=sessions)


@router.delete('/history/{session_id}')
def delete_history(session_id: str, store: Annotated[JsonMessageStore, Depends(get_store)]) -> StatusMessage:
  try:
    deleted = store.delete_session(session_id)
  except PersistenceError as exc:
    raise PersistenceError('Failed to delete session') from exc
  if not deleted:
    raise NotFoundError('Session not found')
  return StatusMessage(message='Session deleted')


@router.post('/export')
def export_history(
  store: Annotated[JsonMessageStore, Depends(get_store)],
  payload: ExportRequest | None = None,
) -> ExportResponse:
  session_id = payload.session_id if payload else None
  try:
    data = store.export_history(session_id)
  except PersistenceError as exc:
    raise PersistenceError('Failed to export history') from exc
  return ExportResponse(data=data, exported_at=isoformat(utcnow()))


@router.post('/import')
def import_history(payload: ImportRequest, store: Annotated[JsonMessageStore, Depends(get_store)]) -> StatusMessage:
  if not store.import_history(payload.data):
    raise PersistenceError('Failed to import history')
  return StatusMessage(message='History imported')


@router.delete('/clear')
def clear_history(store: Annotated[JsonMessageStore, Depends(get_store)]) -> StatusMessage:
  try:
    store.clear_all_history()
  except PersistenceError as exc:
    raise PersistenceError('Failed to clear history') from exc
  return StatusMessage(message='All history cleared')


app.include_router(router)


@app.get('/health')
async def health() -> dict[str, str]:
  return {'status': 'ok', 'timestamp': isoformat(utcnow()), 'service': SERVICE_NAME}


def run() -> None:
  import uvicorn

  uvicorn.run('chatbot.main:app', host=settings.server_host, port=settings.server_port)
