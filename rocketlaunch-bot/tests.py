import os
import math
import sqlite3
import threading
import asyncio
import datetime
import tempfile
import unittest

from unittest import mock

import pytz
import redis
import telegram

from api import Launch, parse_launches
from db import DB_FILE, EventStateStore
from errors import (
	FormatError, StorageError, TransportError, PermanentDeliveryError,
	ChatMigratedError, TransientDeliveryError)
from notifications import NOTIFY_TIMES, Notifier, create_notification_message, due_threshold, launch_notify
from utils import anonymize_id, time_delta_to_legible_eta, timestamp_to_unix, unix_to_utc_string
from worker import PollWorker, ShutdownSignals, minute_trigger, seconds_until_next_run


T0_STR = '2024-03-18T12:25Z'
T0 = timestamp_to_unix(T0_STR)


def launch_json(launch_id: int = 1, t0: str = T0_STR, **kwargs) -> dict:
	'''
	A minimal launch, as returned by the feed.
	'''
	launch = {
		'id': launch_id,
		'name': f'Starlink {launch_id}',
		'slug': f'starlink-{launch_id}',
		'sort_date': str(T0),
		't0': t0,
		'provider': {'id': 1, 'name': 'SpaceX', 'slug': 'spacex'},
		'vehicle': {'id': 1, 'name': 'Falcon 9', 'company_id': 1, 'slug': 'falcon-9'},
		'pad': {
			'id': 2, 'name': 'SLC-40',
			'location': {
				'id': 3, 'name': 'Cape Canaveral SFS', 'state': 'FL',
				'state_name': 'Florida', 'country': 'United States'}
		},
		'missions': [{'id': 4, 'name': f'Starlink {launch_id}', 'description': None}],
		'mission_description': None,
		'tags': [{'id': 5, 'text': 'Starlink'}],
		'suborbital': False
	}

	launch.update(kwargs)
	return launch


class FakeClock:
	def __init__(self, now: int):
		self.now = now

	def __call__(self) -> int:
		return self.now


class FakeNotifier:
	'''
	Records sent messages. Chats in errors raise the mapped exception instead.
	'''
	def __init__(self, errors: dict = None):
		self.errors = errors if errors is not None else {}
		self.sent = []

	async def send(self, chat_id: int, text: str, reply_to_message_id: int = None):
		if chat_id in self.errors:
			raise self.errors[chat_id]

		self.sent.append((chat_id, text))


class TestUtils(unittest.TestCase):
	def test_time_delta_to_legible_eta(self):
		'''
		Test time_delta_to_legible_eta
		'''
		print('Testing time_delta_to_legible_eta...')

		self.assertEqual(time_delta_to_legible_eta(0, False), 'just now')
		self.assertEqual(time_delta_to_legible_eta(1, False), '1 second')
		self.assertEqual(time_delta_to_legible_eta(61, False), '1 minute, 1 second')
		self.assertEqual(time_delta_to_legible_eta(86340, False), '23 hours, 59 minutes')
		self.assertEqual(time_delta_to_legible_eta(3600 * 5 + 2, True), '5 hours, 0 minutes, 2 seconds')
		self.assertEqual(time_delta_to_legible_eta(86400 * 2, False), '2 days')
		self.assertEqual(time_delta_to_legible_eta(86400 + 3600, False), '1 day, 1 hour')
		self.assertEqual(time_delta_to_legible_eta(86400 + 60, False), '1 day, 1 minute')

	def test_timestamps(self):
		self.assertEqual(timestamp_to_unix('1970-01-01T00:01Z'), 60)
		self.assertEqual(timestamp_to_unix(T0_STR), 1710764700)
		self.assertEqual(unix_to_utc_string(1710764700), '2024-03-18 12:25 UTC')

	def test_anonymize_id(self):
		self.assertEqual(len(anonymize_id(-1001234)), 6)
		self.assertEqual(anonymize_id(123), anonymize_id('123'))


class TestLaunchParsing(unittest.TestCase):
	def test_launch(self):
		'''
		Test Launch with a complete launch
		'''
		launch = Launch(launch_json(7))

		self.assertEqual(launch.id, 7)
		self.assertEqual(launch.t0, T0)
		self.assertEqual(launch.sort_date, T0)
		self.assertEqual(launch.provider_name, 'SpaceX')
		self.assertEqual(launch.tags, ['Starlink'])
		self.assertEqual(launch.pad_str(), 'Cape Canaveral SFS, SLC-40, Florida, United States')
		self.assertFalse(launch.suborbital)

	def test_launch_without_t0(self):
		launch = Launch(launch_json(8, t0=None))
		self.assertIsNone(launch.t0)

	def test_malformed_launch(self):
		broken = launch_json(9)
		del broken['provider']

		with self.assertRaises(FormatError):
			Launch(broken)

		with self.assertRaises(FormatError):
			Launch(launch_json(9, t0='tomorrow'))

		with self.assertRaises(FormatError):
			Launch(['not', 'a', 'launch'])

		# present, but null
		for field in ('slug', 'name'):
			with self.assertRaises(FormatError):
				Launch(launch_json(9, **{field: None}))

		null_provider = launch_json(9)
		null_provider['provider']['name'] = None
		with self.assertRaises(FormatError):
			Launch(null_provider)

	def test_parse_launches(self):
		launches = parse_launches({'valid_auth': False, 'count': 2, 'result': [launch_json(1), launch_json(2)]})
		self.assertEqual([launch.id for launch in launches], [1, 2])

		with self.assertRaises(FormatError):
			parse_launches({'error': 'nope'})

		with self.assertRaises(FormatError):
			parse_launches({'result': 'nope'})


class TestStore(unittest.TestCase):
	'''
	Run tests for the state store.
	'''
	def setUp(self):
		tmp_dir = tempfile.TemporaryDirectory()
		self.addCleanup(tmp_dir.cleanup)

		self.data_dir = os.path.join(tmp_dir.name, 'data')
		self.store = EventStateStore(self.data_dir)

	def progress(self) -> dict:
		return dict(self.store.enumerate_subscribers())

	def test_subscribe(self):
		'''
		Subscribing twice keeps the chat and its progress.
		'''
		print('Testing subscribe...')
		self.store.subscribe(1)
		self.assertTrue(self.store.record_notification(1, 10, 3000))
		self.store.subscribe(1)

		self.assertEqual(self.progress(), {1: {10: 3000}})
		self.assertEqual(self.store.subscriber_count(), 1)

	def test_unsubscribe(self):
		self.store.subscribe(1)
		self.store.subscribe(2)
		self.store.unsubscribe(1)

		# not subscribed is fine
		self.store.unsubscribe(1)
		self.store.unsubscribe(3)

		self.assertEqual(self.progress(), {2: {}})

	def test_record_notification(self):
		'''
		Records for different launches are kept side by side, and recorded progress
		for a launch never moves away from launch.
		'''
		self.store.subscribe(1)
		self.store.record_notification(1, 10, 80000)
		self.store.record_notification(1, 11, 3000)
		self.assertEqual(self.progress(), {1: {10: 80000, 11: 3000}})

		self.store.record_notification(1, 10, 3500)
		self.store.record_notification(1, 11, 80000)
		self.assertEqual(self.progress(), {1: {10: 3500, 11: 3000}})

	def test_record_for_unsubscribed_chat(self):
		self.assertFalse(self.store.record_notification(5, 10, 100))
		self.assertEqual(self.store.subscriber_count(), 0)

	def test_migrate_subscriber(self):
		print('Testing migrate_subscriber...')
		self.store.subscribe(1)
		self.store.record_notification(1, 1, 100)
		self.store.record_notification(1, 2, 50)

		self.store.subscribe(2)
		self.store.record_notification(2, 3, 10)
		self.store.record_notification(2, 2, 80)

		self.assertTrue(self.store.migrate_subscriber(1, 2))
		self.assertEqual(self.progress(), {2: {1: 100, 2: 50, 3: 10}})

		# old chat is gone
		self.assertFalse(self.store.migrate_subscriber(1, 2))
		self.assertEqual(self.progress(), {2: {1: 100, 2: 50, 3: 10}})

	def test_migrate_to_new_chat(self):
		self.store.subscribe(1)
		self.store.record_notification(1, 1, 100)

		self.assertTrue(self.store.migrate_subscriber(1, -1001))
		self.assertEqual(self.progress(), {-1001: {1: 100}})

	def test_corrupt_progress(self):
		'''
		Rows that can't be parsed are skipped, and overwritten on the next write.
		'''
		self.store.subscribe(1)

		conn = sqlite3.connect(os.path.join(self.data_dir, DB_FILE))
		conn.execute('INSERT INTO chats (chat, notified) VALUES (?, ?)', ('2', 'not json'))
		conn.execute('INSERT INTO chats (chat, notified) VALUES (?, ?)', ('three', '{}'))
		conn.commit()
		conn.close()

		self.assertEqual(self.progress(), {1: {}})
		self.assertEqual(self.store.subscriber_count(), 3)

		self.assertTrue(self.store.record_notification(2, 10, 500))
		self.assertEqual(self.progress(), {1: {}, 2: {10: 500}})

	def test_due_subscribers(self):
		'''
		Threshold crossings with NOTIFY_TIMES = 24 h, 1 h and 15 min.
		'''
		self.store.subscribe(1)
		self.store.subscribe(2)
		self.store.subscribe(3)
		self.store.record_notification(2, 1, 86000)
		self.store.record_notification(3, 1, 800)

		now = T0 - 90000
		self.assertEqual(self.store.due_subscribers(1, T0, now), set())

		now = T0 - 86300
		self.assertEqual(self.store.due_subscribers(1, T0, now), {1})

		now = T0 - 3000
		self.assertEqual(self.store.due_subscribers(1, T0, now), {1, 2})

		# other launches have their own progress
		self.assertEqual(self.store.due_subscribers(2, T0, now), {1, 2, 3})

	def test_event_batch(self):
		self.assertEqual(self.store.get_event_batch(), [])

		self.store.set_event_batch([Launch(launch_json(1)), Launch(launch_json(2, t0=None))])
		self.store.set_event_batch([Launch(launch_json(3))])

		launches = self.store.get_event_batch()
		self.assertEqual([launch.id for launch in launches], [3])
		self.assertEqual(launches[0].t0, T0)

	def test_corrupt_event_batch(self):
		conn = sqlite3.connect(os.path.join(self.data_dir, DB_FILE))
		conn.execute('INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)', ('launches', '[{"id": 1}]'))
		conn.commit()
		conn.close()

		self.assertEqual(self.store.get_event_batch(), [])

	def test_store_is_persistent(self):
		self.store.subscribe(1)
		self.store.record_notification(1, 10, 900)

		reopened = EventStateStore(self.data_dir)
		self.assertEqual(dict(reopened.enumerate_subscribers()), {1: {10: 900}})

	def test_concurrent_records(self):
		'''
		Records for different launches on the same chat, written from many threads at
		once, all persist.
		'''
		print('Testing concurrent record_notification...')
		self.store.subscribe(1)

		threads, launches_per_thread = 16, 10
		barrier = threading.Barrier(threads)
		errors = []

		def record(thread_num: int):
			barrier.wait()
			for i in range(launches_per_thread):
				launch_id = thread_num * launches_per_thread + i
				try:
					self.store.record_notification(1, launch_id, 1000 + launch_id)
				except StorageError as error:
					errors.append(error)

		workers = [threading.Thread(target=record, args=(num,)) for num in range(threads)]
		for worker in workers:
			worker.start()

		for worker in workers:
			worker.join(timeout=60)

		self.assertEqual(errors, [])
		self.assertEqual(
			self.progress(),
			{1: {launch_id: 1000 + launch_id for launch_id in range(threads * launches_per_thread)}})

	def test_unusable_data_dir(self):
		blocker = os.path.join(self.data_dir, 'file')
		with open(blocker, 'w') as blocker_file:
			blocker_file.write('')

		with self.assertRaises(StorageError):
			EventStateStore(os.path.join(blocker, 'data'))


class TestStats(unittest.TestCase):
	'''
	Run tests for the statistics, with a mocked redis client.
	'''
	def setUp(self):
		tmp_dir = tempfile.TemporaryDirectory()
		self.addCleanup(tmp_dir.cleanup)

		self.rd = mock.MagicMock()
		self.rd.hgetall.return_value = {}
		self.store = EventStateStore(tmp_dir.name, rd=self.rd)

	def test_update_stats(self):
		print('Testing update_stats...')
		self.store.update_stats({'api_requests': 1, 'db_updates': 1, 'last_api_update': 1234})
		self.store.update_stats({'api_requests': 1, 'notifications': 5, 'last_api_update': 1300})

		expected = {'notifications': 5, 'api_requests': 2, 'db_updates': 1, 'last_api_update': 1300}
		self.rd.hset.assert_called_with('stats', mapping=expected)
		self.assertEqual(self.store.get_stats(), expected)

		with self.assertRaises(ValueError):
			self.store.update_stats({'users': 1})

	def test_cached_stats(self):
		self.rd.hgetall.return_value = {
			'notifications': '3', 'api_requests': '4', 'db_updates': '4', 'last_api_update': '99'}

		self.assertEqual(self.store.get_stats()['api_requests'], 4)

	def test_redis_down(self):
		self.rd.hset.side_effect = redis.exceptions.ConnectionError('down')
		self.rd.hgetall.side_effect = redis.exceptions.ConnectionError('down')

		self.store.update_stats({'notifications': 2})
		self.assertEqual(self.store.get_stats()['notifications'], 2)


class TestNotificationUtils(unittest.TestCase):
	def test_due_threshold(self):
		'''
		Test due_threshold
		'''
		print('Testing due_threshold...')
		self.assertIsNone(due_threshold(T0, T0 - 90000))
		self.assertEqual(due_threshold(T0, T0 - 86300), 86400)
		self.assertIsNone(due_threshold(T0, T0 - 86240, last_notified=86300))
		self.assertEqual(due_threshold(T0, T0 - 3000, last_notified=86300), 3600)
		self.assertEqual(due_threshold(T0, T0 - 600, last_notified=3000), 900)
		self.assertIsNone(due_threshold(T0, T0 - 300, last_notified=600))

		# skipped thresholds: only the longest one is sent
		self.assertEqual(due_threshold(T0, T0 - 600), 86400)

		# launch already happened
		self.assertIsNone(due_threshold(T0, T0 + 60, last_notified=0))

		# custom thresholds
		self.assertEqual(due_threshold(T0, T0 - 100, notify_times=(120,)), 120)

	def test_threshold_monotonicity(self):
		'''
		A chat matches a threshold once: recording the notification moves it past it.
		'''
		last_notified = math.inf
		notified = []
		for until_launch in range(90000, -60, -60):
			threshold = due_threshold(T0, T0 - until_launch, last_notified, NOTIFY_TIMES)
			if threshold is not None:
				notified.append(threshold)
				last_notified = min(last_notified, until_launch)

		self.assertEqual(notified, [86400, 3600, 900])

	def test_notification_message_creation(self):
		'''
		Test create_notification_message
		'''
		launch = Launch(launch_json(1, mission_description='Carries 23 Starlink satellites.'))
		message = create_notification_message(launch, T0 - 86340)

		self.assertIn('[SpaceX \\- Falcon 9](https://rocketlaunch.live/launch/starlink-1)', message)
		self.assertIn('in *23 hours, 59 minutes*', message)
		self.assertIn('2024\\-03\\-18 12:25 UTC', message)
		self.assertIn('Cape Canaveral SFS, SLC\\-40, Florida, United States', message)
		self.assertIn('Carries 23 Starlink satellites\\.', message)
		self.assertNotIn('suborbital', message)

		message = create_notification_message(Launch(launch_json(2, suborbital=True)), T0 + 120)
		self.assertIn('*2 minutes* ago', message)
		self.assertTrue(message.endswith('suborbital'))


class TestNotifier(unittest.IsolatedAsyncioTestCase):
	'''
	Telegram errors are translated into delivery errors.
	'''
	async def assert_send_raises(self, telegram_error: Exception, expected: type):
		bot = mock.MagicMock()
		bot.send_message = mock.AsyncMock(side_effect=telegram_error)

		with self.assertRaises(expected) as context:
			await Notifier(bot).send(1, 'hi')

		self.assertEqual(context.exception.chat_id, 1)
		return context.exception

	async def test_send(self):
		bot = mock.MagicMock()
		bot.send_message = mock.AsyncMock(return_value='message')

		self.assertEqual(await Notifier(bot).send(1, 'hi', reply_to_message_id=5), 'message')
		args, kwargs = bot.send_message.call_args
		self.assertEqual(args, (1, 'hi'))
		self.assertEqual(kwargs['reply_parameters'].message_id, 5)

	async def test_permanent_errors(self):
		await self.assert_send_raises(
			telegram.error.Forbidden('Forbidden: bot was blocked by the user'), PermanentDeliveryError)
		await self.assert_send_raises(
			telegram.error.BadRequest('Chat not found'), PermanentDeliveryError)

	async def test_chat_migrated(self):
		error = await self.assert_send_raises(telegram.error.ChatMigrated(-1001), ChatMigratedError)
		self.assertEqual(error.new_chat_id, -1001)

	async def test_transient_errors(self):
		await self.assert_send_raises(telegram.error.RetryAfter(30), TransientDeliveryError)
		await self.assert_send_raises(telegram.error.TimedOut(), TransientDeliveryError)
		await self.assert_send_raises(telegram.error.NetworkError('connection reset'), TransientDeliveryError)
		await self.assert_send_raises(
			telegram.error.BadRequest("Can't parse entities"), TransientDeliveryError)


class TestLaunchNotify(unittest.IsolatedAsyncioTestCase):
	def setUp(self):
		tmp_dir = tempfile.TemporaryDirectory()
		self.addCleanup(tmp_dir.cleanup)

		self.store = EventStateStore(tmp_dir.name)
		self.launch = Launch(launch_json(1))
		self.clock = FakeClock(T0 - 3000)

	async def test_notify(self):
		self.store.subscribe(1)
		notifier = FakeNotifier()

		self.assertTrue(await launch_notify(self.store, notifier, self.launch, 1, clock=self.clock))
		self.assertEqual(dict(self.store.enumerate_subscribers()), {1: {1: 3000}})
		self.assertEqual(len(notifier.sent), 1)

	async def test_notify_without_recording(self):
		self.store.subscribe(1)

		self.assertTrue(await launch_notify(
			self.store, FakeNotifier(), self.launch, 1, record=False, clock=self.clock))
		self.assertEqual(dict(self.store.enumerate_subscribers()), {1: {}})

	async def test_no_t0(self):
		notifier = FakeNotifier()
		launch = Launch(launch_json(2, t0=None))

		self.assertFalse(await launch_notify(self.store, notifier, launch, 1, clock=self.clock))
		self.assertEqual(notifier.sent, [])


class TestWorker(unittest.IsolatedAsyncioTestCase):
	'''
	Run tests for the API update worker, with a fake feed and notifier.
	'''
	def setUp(self):
		tmp_dir = tempfile.TemporaryDirectory()
		self.addCleanup(tmp_dir.cleanup)

		self.store = EventStateStore(tmp_dir.name)
		self.signals = ShutdownSignals()
		self.clock = FakeClock(T0 - 86340)
		self.launches = [Launch(launch_json(1)), Launch(launch_json(2, t0=None))]

	def worker(self, notifier, fetch=None) -> PollWorker:
		if fetch is None:
			fetch = lambda: self.launches

		return PollWorker(self.store, notifier, self.signals, fetch=fetch, backoff_delay=0.01, clock=self.clock)

	async def test_notification_cycle(self):
		'''
		Subscribe, poll 23 h 59 min before launch: one notification. The next poll
		a minute later sends nothing.
		'''
		print('Testing the notification cycle...')
		self.store.subscribe(42)
		notifier = FakeNotifier()
		worker = self.worker(notifier)

		self.assertEqual(await worker.poll_once(), 1)
		self.assertEqual(len(notifier.sent), 1)
		self.assertEqual(notifier.sent[0][0], 42)
		self.assertIn('in *23 hours, 59 minutes*', notifier.sent[0][1])
		self.assertEqual(dict(self.store.enumerate_subscribers()), {42: {1: 86340}})

		self.clock.now += 60
		self.assertEqual(await worker.poll_once(), 0)
		self.assertEqual(len(notifier.sent), 1)

		# next threshold
		self.clock.now = T0 - 3540
		self.assertEqual(await worker.poll_once(), 1)
		self.assertEqual(dict(self.store.enumerate_subscribers()), {42: {1: 3540}})

		stats = self.store.get_stats()
		self.assertEqual(stats['notifications'], 2)
		self.assertEqual(stats['api_requests'], 3)
		self.assertEqual(stats['last_api_update'], T0 - 3540)
		self.assertEqual([launch.id for launch in self.store.get_event_batch()], [1, 2])

	async def test_permanent_failure_unsubscribes(self):
		self.store.subscribe(1)
		self.store.subscribe(2)
		notifier = FakeNotifier({1: PermanentDeliveryError(1, 'bot was blocked by the user')})

		self.assertEqual(await self.worker(notifier).poll_once(), 1)
		self.assertEqual(dict(self.store.enumerate_subscribers()), {2: {1: 86340}})

	async def test_migrated_chat(self):
		self.store.subscribe(1)
		self.store.record_notification(1, 7, 500)
		notifier = FakeNotifier({1: ChatMigratedError(1, -1001)})

		self.assertEqual(await self.worker(notifier).poll_once(), 0)
		self.assertEqual(dict(self.store.enumerate_subscribers()), {-1001: {7: 500}})

		# the new chat id gets notified on the next poll
		self.assertEqual(await self.worker(notifier).poll_once(), 1)
		self.assertEqual(notifier.sent[0][0], -1001)

	async def test_transient_failure_aborts_cycle(self):
		for chat_id in (1, 2, 3):
			self.store.subscribe(chat_id)

		notifier = FakeNotifier({2: TransientDeliveryError(2, 'rate-limited')})

		with self.assertRaises(TransientDeliveryError):
			await self.worker(notifier).poll_once()

		# chats are walked in order: 1 got notified, 2 failed and 3 was skipped
		self.assertEqual(dict(self.store.enumerate_subscribers()), {1: {1: 86340}, 2: {}, 3: {}})
		self.assertEqual(self.store.get_stats()['notifications'], 1)

		# retried on the next cycle
		notifier.errors = {}
		self.assertEqual(await self.worker(notifier).poll_once(), 2)

	async def test_fetch_failure(self):
		self.store.set_event_batch(self.launches)
		self.store.subscribe(1)

		def failing_fetch():
			raise TransportError('error in API request: timed out')

		with self.assertRaises(TransportError):
			await self.worker(FakeNotifier(), fetch=failing_fetch).poll_once()

		self.assertEqual(len(self.store.get_event_batch()), 2)
		self.assertEqual(dict(self.store.enumerate_subscribers()), {1: {}})
		self.assertEqual(self.store.get_stats()['api_requests'], 0)

	async def test_run_stops(self):
		'''
		run() finishes the running cycle, and returns on a graceful stop.
		'''
		self.store.subscribe(1)
		notifier = FakeNotifier()
		self.signals.interrupt()

		await asyncio.wait_for(self.worker(notifier).run(), timeout=5)
		self.assertEqual(len(notifier.sent), 1)

	async def test_run_backs_off(self):
		calls = []

		def failing_fetch():
			calls.append(1)
			if len(calls) == 3:
				self.signals.stop()

			raise FormatError('error parsing json')

		await asyncio.wait_for(self.worker(FakeNotifier(), fetch=failing_fetch).run(), timeout=5)
		self.assertEqual(len(calls), 3)

	async def test_null_field_backs_off(self):
		'''
		A launch with a null slug is rejected before anything is stored, and the
		worker keeps running.
		'''
		self.store.subscribe(1)
		notifier = FakeNotifier()
		calls = []

		def fetch():
			calls.append(1)
			if len(calls) == 2:
				self.signals.stop()

			return parse_launches({'result': [launch_json(1, slug=None)]})

		await asyncio.wait_for(self.worker(notifier, fetch=fetch).run(), timeout=5)
		self.assertEqual(len(calls), 2)
		self.assertEqual(notifier.sent, [])
		self.assertEqual(self.store.get_event_batch(), [])

	async def test_unexpected_error_backs_off(self):
		self.store.subscribe(1)
		notifier = FakeNotifier({1: RuntimeError('unexpected')})
		calls = []

		def fetch():
			calls.append(1)
			if len(calls) == 2:
				self.signals.stop()

			return self.launches

		await asyncio.wait_for(self.worker(notifier, fetch=fetch).run(), timeout=5)
		self.assertEqual(len(calls), 2)
		self.assertEqual(dict(self.store.enumerate_subscribers()), {1: {}})


class TestShutdownSignals(unittest.IsolatedAsyncioTestCase):
	async def test_interrupts(self):
		signals = ShutdownSignals()

		signals.interrupt()
		self.assertTrue(signals.graceful.is_set())
		self.assertFalse(signals.force.is_set())

		signals.interrupt()
		self.assertFalse(signals.force.is_set())

		signals.interrupt()
		self.assertTrue(signals.force.is_set())

	async def test_stop(self):
		signals = ShutdownSignals()
		signals.stop()

		self.assertTrue(signals.graceful.is_set())
		self.assertFalse(signals.force.is_set())


class TestSchedule(unittest.TestCase):
	def test_seconds_until_next_run(self):
		trigger = minute_trigger()

		now = datetime.datetime(2024, 3, 18, 12, 0, 30, tzinfo=pytz.utc)
		self.assertEqual(seconds_until_next_run(trigger, now), 30.0)

		# on the boundary, wait for the next one
		now = datetime.datetime(2024, 3, 18, 12, 0, 0, tzinfo=pytz.utc)
		self.assertEqual(seconds_until_next_run(trigger, now), 60.0)

		self.assertLessEqual(seconds_until_next_run(trigger), 60.0)


if __name__ == '__main__':
	unittest.main()
