from __future__ import annotations

import sys
from pathlib import Path

from environs import Env

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

from chatbot.chat import ChatService
from chatbot.config import get_settings
from chatbot.errors import ChatbotError
from chatbot.provider import ChatProvider
from chatbot.storage import JsonMessageStore

env = Env()
env.read_env(ROOT / '.env')


def print_history(store: JsonMessageStore, session_id: str) -> None:
  messages = store.get_history(session_id)
  if not messages:
    print('(no messages yet)')
    return
  for message in messages:
    print(f'[{message.timestamp:%H:%M:%S}] {message.role}: {message.content}')


def main() -> None:
  settings = get_settings()
  store = JsonMessageStore(settings.data_file)
  provider = ChatProvider(settings.llm_api_key, settings=settings)
  service = ChatService(store, provider, max_message_length=settings.max_message_length)

  session_id = env.str('CHAT_SESSION_ID', None)
  print('CLI chat. /new starts a new session, /history shows this one. Press Ctrl+C to exit.')
  while True:
    try:
      text = input('\nYou: ').strip()
    except (KeyboardInterrupt, EOFError):
      print('\nBye')
      break
    if not text:
      continue
    if text == '/new':
      session_id = None
      print('Started a new session')
      continue
    if text == '/history':
      if session_id:
        print_history(store, session_id)
      else:
        print('(no session yet)')
      continue
    try:
      result = service.send(text, session_id)
    except ChatbotError as exc:
      print(f'Error: {exc.message}')
      continue
    session_id = result.session_id
    print(f'Assistant: {result.reply}')


if __name__ == '__main__':
  main()
