'''
Includes the state store: subscribed chats, their notification progress, the last
fetched launch batch and bot statistics, all kept in a single sqlite database.

Classes:
	EventStateStore

Functions:
	load_progress(value: str) -> dict
	dump_progress(progress: dict) -> str

Misc variables:
	DB_FILE, LAUNCHES_KEY, STATS_FIELDS
'''


import os
import math
import time
import logging
import sqlite3
import contextlib

import redis
import ujson as json

from api import Launch
from errors import StorageError, FormatError
from notifications import NOTIFY_TIMES, due_threshold


DB_FILE = 'rocketlaunch-data.db'

# reserved key in the state table holding the latest launch batch
LAUNCHES_KEY = 'launches'

STATS_FIELDS = ('notifications', 'api_requests', 'db_updates', 'last_api_update')


def load_progress(value: str) -> dict:
	'''
	Parses a stored progress value into a {launch_id: seconds_remaining} dict.
	Returns None if the value is malformed.
	'''
	try:
		stored = json.loads(value)
		return {int(launch_id): int(remaining) for launch_id, remaining in stored.items()}
	except (ValueError, TypeError, AttributeError):
		return None


def dump_progress(progress: dict) -> str:
	return json.dumps({str(launch_id): remaining for launch_id, remaining in progress.items()})


class EventStateStore:
	'''
	Durable, concurrency-safe state for the bot. Every call opens its own connection,
	so the store can be shared between the worker, the command handlers and threads.

	Each chat is one row in the chats table, holding its progress as a json map of
	launch id -> seconds until launch when the chat was last notified. All changes to
	a chat go through _merge, which runs in a BEGIN IMMEDIATE transaction: the write
	lock is held before the row is read, so concurrent merges for the same chat
	can't lose each other's updates.
	'''
	def __init__(self, db_path: str, notify_times: tuple = NOTIFY_TIMES, rd: redis.Redis = None):
		'''
		Opens (and if needed, creates) the database.

		Keyword arguments:
			db_path (str): data directory the database lives in
			notify_times (tuple): notification thresholds in seconds, longest first
			rd (redis.Redis): optional redis client, used to cache statistics

		Raises:
			StorageError: the database couldn't be created or opened
		'''
		self.db_path = db_path
		self.db_file = os.path.join(db_path, DB_FILE)
		self.notify_times = tuple(notify_times)
		self.rd = rd

		try:
			if not os.path.isdir(db_path):
				os.makedirs(db_path)
		except OSError as error:
			raise StorageError(f'unable to create data directory {db_path}: {error}') from error

		with self._transaction() as cursor:
			cursor.execute('CREATE TABLE IF NOT EXISTS chats (chat TEXT, notified TEXT, PRIMARY KEY (chat))')
			cursor.execute('CREATE TABLE IF NOT EXISTS state (key TEXT, value TEXT, PRIMARY KEY (key))')
			cursor.execute('''CREATE TABLE IF NOT EXISTS stats
				(notifications INT, api_requests INT, db_updates INT, last_api_update INT)''')

			# stats has a single row
			cursor.execute('SELECT COUNT(*) FROM stats')
			if cursor.fetchone()[0] == 0:
				cursor.execute('''INSERT INTO stats
					(notifications, api_requests, db_updates, last_api_update) VALUES (0, 0, 0, 0)''')

	def _connect(self) -> sqlite3.Connection:
		try:
			# isolation_level=None: transactions are started explicitly
			return sqlite3.connect(self.db_file, timeout=30, isolation_level=None)
		except sqlite3.Error as error:
			raise StorageError(f'unable to open {self.db_file}: {error}') from error

	@contextlib.contextmanager
	def _transaction(self):
		conn = self._connect()
		try:
			conn.execute('BEGIN IMMEDIATE')
			yield conn.cursor()
			conn.execute('COMMIT')
		except sqlite3.Error as error:
			raise StorageError(f'database error: {error}') from error
		finally:
			if conn.in_transaction:
				conn.rollback()

			conn.close()

	def _query(self, sql: str, params: tuple = ()) -> list:
		conn = self._connect()
		try:
			return conn.execute(sql, params).fetchall()
		except sqlite3.Error as error:
			raise StorageError(f'database error: {error}') from error
		finally:
			conn.close()

	@staticmethod
	def _merge(cursor: sqlite3.Cursor, chat_id: int, progress: dict, create: bool) -> bool:
		'''
		Merges progress into the progress stored for chat_id. Must be called inside
		_transaction. For launch ids present on both sides, the lowest remaining
		time is kept, so progress only ever moves towards launch.

		Keyword arguments:
			cursor (sqlite3.Cursor): cursor of the open transaction
			chat_id (int): chat to merge into
			progress (dict): launch_id -> seconds remaining
			create (bool): create the chat if it doesn't exist

		Returns:
			merged (bool): False if the chat didn't exist and create wasn't set
		'''
		cursor.execute('SELECT notified FROM chats WHERE chat = ?', (str(chat_id),))
		row = cursor.fetchone()
		if row is None and not create:
			return False

		merged = {}
		if row is not None:
			merged = load_progress(row[0])
			if merged is None:
				logging.warning(f'⚠️ Bad progress stored for chat={chat_id}: overwriting ({row[0]!r})')
				merged = {}

		for launch_id, remaining in progress.items():
			merged[launch_id] = min(merged.get(launch_id, remaining), remaining)

		cursor.execute(
			'INSERT OR REPLACE INTO chats (chat, notified) VALUES (?, ?)',
			(str(chat_id), dump_progress(merged)))

		return True

	def subscribe(self, chat_id: int):
		'''
		Adds a chat to the subscribers. Subscribing again keeps the existing progress.
		'''
		with self._transaction() as cursor:
			self._merge(cursor, chat_id, {}, create=True)

		logging.info(f'🔔 Subscribed chat={chat_id}')

	def unsubscribe(self, chat_id: int):
		'''
		Removes a chat and all of its progress. Not subscribed is fine.
		'''
		with self._transaction() as cursor:
			cursor.execute('DELETE FROM chats WHERE chat = ?', (str(chat_id),))

		logging.info(f'🔕 Unsubscribed chat={chat_id}')

	def record_notification(self, chat_id: int, launch_id: int, seconds_remaining: int) -> bool:
		'''
		Stores that chat_id was notified of launch_id, seconds_remaining before t0.
		Progress for other launches is kept as-is.

		Returns:
			recorded (bool): False if the chat isn't subscribed (anymore)
		'''
		with self._transaction() as cursor:
			recorded = self._merge(cursor, chat_id, {launch_id: int(seconds_remaining)}, create=False)

		if recorded:
			logging.info(f'🚩 Set notified for chat={chat_id}, launch_id={launch_id} ({seconds_remaining} s)')
		else:
			logging.info(f'⚠️ chat={chat_id} not subscribed: not recording launch_id={launch_id}')

		return recorded

	def migrate_subscriber(self, old_chat_id: int, new_chat_id: int) -> bool:
		'''
		Moves the progress of old_chat_id to new_chat_id, merged with whatever
		new_chat_id already has, and removes old_chat_id.

		Returns:
			migrated (bool): whether old_chat_id existed
		'''
		with self._transaction() as cursor:
			cursor.execute('SELECT notified FROM chats WHERE chat = ?', (str(old_chat_id),))
			row = cursor.fetchone()
			if row is None:
				return False

			progress = load_progress(row[0])
			if progress is None:
				logging.warning(f'⚠️ Bad progress stored for chat={old_chat_id}: migrating without it')
				progress = {}

			cursor.execute('DELETE FROM chats WHERE chat = ?', (str(old_chat_id),))
			self._merge(cursor, new_chat_id, progress, create=True)

		logging.info(f'🔀 Migrated chat={old_chat_id} to chat={new_chat_id}')
		return True

	def enumerate_subscribers(self):
		'''
		Iterates over all subscribers as (chat_id, progress) tuples. Rows that can't be
		parsed are skipped with a warning.
		'''
		for chat, notified in self._query('SELECT chat, notified FROM chats'):
			try:
				chat_id = int(chat)
			except ValueError:
				logging.warning(f'⚠️ Skipping bad chat key in database: {chat!r}')
				continue

			progress = load_progress(notified)
			if progress is None:
				logging.warning(f'⚠️ Skipping bad progress for chat={chat_id}: {notified!r}')
				continue

			yield chat_id, progress

	def due_subscribers(self, launch_id: int, launch_t0: int, now: int = None) -> set:
		'''
		Returns the chats that should be notified of launch_id right now.

		Keyword arguments:
			launch_id (int): launch to check
			launch_t0 (int): launch time, unix seconds
			now (int): current time, unix seconds; defaults to time.time()

		Returns:
			chats (set): chat ids due for a notification
		'''
		if now is None:
			now = int(time.time())

		due_chats = set()
		for chat_id, progress in self.enumerate_subscribers():
			threshold = due_threshold(
				launch_t0, now, progress.get(launch_id, math.inf), self.notify_times)

			if threshold is not None:
				logging.debug(
					f'chat={chat_id} due for launch_id={launch_id}: threshold={threshold}, '
					f'until_launch={launch_t0 - now}, last_notified={progress.get(launch_id)}')
				due_chats.add(chat_id)

		return due_chats

	def subscriber_count(self) -> int:
		return self._query('SELECT COUNT(*) FROM chats')[0][0]

	def set_event_batch(self, launches: list):
		'''
		Replaces the stored launch batch.
		'''
		value = json.dumps([launch.launch_json for launch in launches])
		with self._transaction() as cursor:
			cursor.execute('INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)', (LAUNCHES_KEY, value))

	def get_event_batch(self) -> list:
		'''
		Loads the launch batch stored by the last successful API update. Empty if there
		isn't one, or if it can't be parsed.
		'''
		query_return = self._query('SELECT value FROM state WHERE key = ?', (LAUNCHES_KEY,))
		if len(query_return) == 0:
			return []

		try:
			return [Launch(launch_json) for launch_json in json.loads(query_return[0][0])]
		except (ValueError, TypeError, FormatError) as error:
			logging.warning(f'⚠️ Stored launches are corrupt, ignoring them: {error}')
			return []

	def update_stats(self, stats_update: dict):
		'''
		Updates the stats table with the given stats. last_api_update is set,
		everything else is incremented.

		Keyword arguments:
			stats_update (dict): dictionary of key-values to update
		'''
		for stat in stats_update:
			if stat not in STATS_FIELDS:
				raise ValueError(f'unknown stat: {stat}')

		with self._transaction() as cursor:
			for stat, val in stats_update.items():
				if stat == 'last_api_update':
					cursor.execute(f'UPDATE stats SET {stat} = ?', (int(val),))
				else:
					cursor.execute(f'UPDATE stats SET {stat} = {stat} + ?', (int(val),))

			cursor.execute(f'SELECT {", ".join(STATS_FIELDS)} FROM stats')
			stats = dict(zip(STATS_FIELDS, cursor.fetchone()))

		self._cache_stats(stats)

	def get_stats(self) -> dict:
		'''
		Returns the bot statistics, from redis if they're cached there.
		'''
		if self.rd is not None:
			try:
				cached = self.rd.hgetall('stats')
			except redis.RedisError as error:
				logging.warning(f'⚠️ Unable to load stats from redis: {error}')
				cached = None

			if cached:
				return {stat: int(val) for stat, val in cached.items()}

		query_return = self._query(f'SELECT {", ".join(STATS_FIELDS)} FROM stats')
		stats = dict(zip(STATS_FIELDS, query_return[0]))

		self._cache_stats(stats)
		return stats

	def _cache_stats(self, stats: dict):
		if self.rd is None:
			return

		# sqlite is the source of truth: a failing cache isn't fatal
		try:
			self.rd.hset('stats', mapping=stats)
		except redis.RedisError as error:
			logging.warning(f'⚠️ Unable to cache stats in redis: {error}')
