import json
import threading
from datetime import UTC, datetime, timedelta

import pytest

from chatbot import storage
from chatbot.errors import PersistenceError
from chatbot.models import ChatSession, Message
from chatbot.storage import JsonMessageStore

BASE = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def make_message(session_id: str, role: str, content: str, minutes: int = 0) -> Message:
  return Message(session_id=session_id, role=role, content=content, timestamp=BASE + timedelta(minutes=minutes))


def test_save_message_assigns_increasing_ids(store) -> None:
  assert store.save_message(make_message('a', 'user', 'one')) == 1
  assert store.save_message(make_message('a', 'assistant', 'two')) == 2
  assert store.save_message(make_message('b', 'user', 'three')) == 3


def test_saved_messages_are_written_to_disk(store, data_file) -> None:
  store.save_message(make_message('a', 'user', 'hello'))

  raw = json.loads(data_file.read_text(encoding='utf-8'))
  assert raw['lastId'] == 1
  assert raw['messages'] == [
    {'id': 1, 'sessionId': 'a', 'role': 'user', 'content': 'hello', 'timestamp': '2024-05-01T12:00:00.000Z'}
  ]


def test_store_reloads_existing_file(store, data_file) -> None:
  store.save_message(make_message('a', 'user', 'hello'))
  store.save_message(make_message('a', 'assistant', 'hi there', minutes=1))

  reloaded = JsonMessageStore(data_file)
  history = reloaded.get_history('a')
  assert [(m.id, m.role, m.content) for m in history] == [(1, 'user', 'hello'), (2, 'assistant', 'hi there')]


def test_ids_are_not_reused_after_deleting_newest_session(store, data_file) -> None:
  store.save_message(make_message('a', 'user', 'one'))
  store.save_message(make_message('b', 'user', 'two'))
  store.delete_session('b')

  assert store.save_message(make_message('a', 'user', 'three')) == 3
  store.clear_all_history()
  assert JsonMessageStore(data_file).save_message(make_message('c', 'user', 'four')) == 4


def test_file_without_last_id_falls_back_to_highest_id(data_file) -> None:
  data_file.write_text(
    json.dumps({
      'messages': [
        {'id': 7, 'sessionId': 'a', 'role': 'user', 'content': 'old', 'timestamp': '2024-01-01T00:00:00.000Z'}
      ]
    }),
    encoding='utf-8',
  )
  assert JsonMessageStore(data_file).save_message(make_message('a', 'assistant', 'new')) == 8


def test_get_history_unknown_session_is_empty(store) -> None:
  assert store.get_history('missing') == []


def test_get_history_sorts_by_timestamp(store) -> None:
  store.save_message(make_message('a', 'assistant', 'second', minutes=5))
  store.save_message(make_message('a', 'user', 'first', minutes=1))
  store.save_message(make_message('b', 'user', 'other', minutes=3))

  assert [m.content for m in store.get_history('a')] == ['first', 'second']


def test_get_all_sessions_orders_by_most_recent_activity(store) -> None:
  store.save_message(make_message('old', 'user', 'a', minutes=0))
  store.save_message(make_message('new', 'user', 'b', minutes=1))
  store.save_message(make_message('old', 'assistant', 'c', minutes=2))
  store.save_message(make_message('newest', 'user', 'd', minutes=10))

  sessions = store.get_all_sessions()
  assert [s.session_id for s in sessions] == ['newest', 'old', 'new']
  old = sessions[1]
  assert old.created_at == BASE
  assert old.updated_at == BASE + timedelta(minutes=2)
  assert [m.content for m in old.messages] == ['a', 'c']


def test_delete_session_reports_whether_anything_was_removed(store) -> None:
  store.save_message(make_message('a', 'user', 'one'))
  store.save_message(make_message('b', 'user', 'two'))

  assert store.delete_session('a') is True
  assert store.delete_session('a') is False
  assert store.get_history('a') == []
  assert [s.session_id for s in store.get_all_sessions()] == ['b']


def test_clear_all_history_empties_the_store(store, data_file) -> None:
  store.save_message(make_message('a', 'user', 'one'))
  store.clear_all_history()

  assert store.get_all_sessions() == []
  assert json.loads(data_file.read_text(encoding='utf-8'))['messages'] == []


def test_export_single_session(store) -> None:
  store.save_message(make_message('a', 'user', 'one'))
  store.save_message(make_message('a', 'assistant', 'two', minutes=1))
  store.save_message(make_message('b', 'user', 'other'))

  exported = store.export_history('a')
  assert len(exported) == 1
  assert exported[0].session_id == 'a'
  assert exported[0].created_at == BASE
  assert exported[0].updated_at == BASE + timedelta(minutes=1)
  assert store.export_history('missing') == []
  assert {s.session_id for s in store.export_history()} == {'a', 'b'}


def test_import_history_remints_ids_and_keeps_order(store) -> None:
  store.save_message(make_message('existing', 'user', 'keep me'))
  sessions = [
    ChatSession(
      session_id='imported',
      messages=[
        Message(id=40, session_id='imported', role='user', content='hi', timestamp=BASE),
        Message(id=41, session_id='imported', role='assistant', content='hello', timestamp=BASE + timedelta(seconds=1)),
      ],
    )
  ]

  assert store.import_history(sessions) is True
  history = store.get_history('imported')
  assert [(m.id, m.role, m.content) for m in history] == [(2, 'user', 'hi'), (3, 'assistant', 'hello')]
  assert history[1].timestamp == BASE + timedelta(seconds=1)


def test_import_uses_session_id_of_enclosing_session(store) -> None:
  sessions = [ChatSession(session_id='target', messages=[Message(role='user', content='x', timestamp=BASE)])]
  store.import_history(sessions)
  assert [m.content for m in store.get_history('target')] == ['x']


def test_failed_write_leaves_memory_untouched(store, data_file, monkeypatch) -> None:
  def fail_replace(src, dst):
    raise OSError('disk full')

  monkeypatch.setattr(storage.os, 'replace', fail_replace)
  with pytest.raises(PersistenceError):
    store.save_message(make_message('a', 'user', 'lost'))

  assert store.get_history('a') == []
  assert not data_file.exists()
  assert list(data_file.parent.iterdir()) == []


def test_import_partial_failure_keeps_earlier_messages(store, monkeypatch) -> None:
  real_replace = storage.os.replace
  calls = {'n': 0}

  def flaky_replace(src, dst):
    calls['n'] += 1
    if calls['n'] > 1:
      raise OSError('disk full')
    real_replace(src, dst)

  monkeypatch.setattr(storage.os, 'replace', flaky_replace)
  sessions = [
    ChatSession(
      session_id='s',
      messages=[
        Message(role='user', content='first', timestamp=BASE),
        Message(role='assistant', content='second', timestamp=BASE + timedelta(seconds=1)),
      ],
    )
  ]

  assert store.import_history(sessions) is False
  assert [m.content for m in store.get_history('s')] == ['first']


def test_corrupt_file_raises_persistence_error(data_file) -> None:
  data_file.write_text('{not json', encoding='utf-8')
  with pytest.raises(PersistenceError):
    JsonMessageStore(data_file).get_all_sessions()


def test_concurrent_saves_get_unique_ids(store) -> None:
  ids: list[int] = []
  lock = threading.Lock()

  def worker(n: int) -> None:
    for i in range(5):
      new_id = store.save_message(make_message(f's{n}', 'user', f'm{i}'))
      with lock:
        ids.append(new_id)

  threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
  for t in threads:
    t.start()
  for t in threads:
    t.join()

  assert sorted(ids) == list(range(1, 41))
  assert sum(len(s.messages) for s in store.get_all_sessions()) == 40


def test_stored_empty_reply_does_not_break_loading(data_file) -> None:
  data_file.write_text(
    json.dumps({
      'messages': [
        {'id': 1, 'sessionId': 'a', 'role': 'user', 'content': 'hi', 'timestamp': '2024-01-01T00:00:00.000Z'},
        {'id': 2, 'sessionId': 'a', 'role': 'assistant', 'content': '', 'timestamp': '2024-01-01T00:00:01.000Z'},
      ]
    }),
    encoding='utf-8',
  )
  store = JsonMessageStore(data_file)

  assert [(m.role, m.content) for m in store.get_history('a')] == [('user', 'hi'), ('assistant', '')]
  assert store.save_message(make_message('b', 'user', 'unrelated')) == 3


def test_new_data_file_is_not_private_to_owner(store, data_file) -> None:
  store.save_message(make_message('a', 'user', 'one'))
  assert data_file.stat().st_mode & 0o777 == storage.DEFAULT_FILE_MODE


def test_rewrites_keep_existing_file_mode(store, data_file) -> None:
  store.save_message(make_message('a', 'user', 'one'))
  data_file.chmod(0o640)
  store.save_message(make_message('a', 'user', 'two'))
  store.delete_session('a')
  assert data_file.stat().st_mode & 0o777 == 0o640
