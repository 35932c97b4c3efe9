'''
worker.py runs the API update loop: fetch the launches, store them, and notify
every chat that's due for a notification. Also includes the shutdown signals the
loop (and the rest of the bot) stops on.
'''
import time
import asyncio
import logging
import datetime

import pytz

from apscheduler.triggers.cron import CronTrigger

from api import fetch_launches
from errors import LaunchBotError
from notifications import launch_notify


# seconds to wait after a failed update
BACKOFF_DELAY = 60


def minute_trigger() -> CronTrigger:
	'''
	Fires at the start of every minute, UTC
	'''
	return CronTrigger(second=0, timezone=pytz.utc)


def seconds_until_next_run(trigger: CronTrigger, now: datetime.datetime = None) -> float:
	'''
	Returns the seconds until trigger fires next, strictly after now.

	Keyword arguments:
		trigger (CronTrigger): trigger to check
		now (datetime.datetime): timezone-aware current time; defaults to now

	Returns:
		delay (float): seconds until the next run
	'''
	if now is None:
		now = datetime.datetime.now(pytz.utc)

	# move past now, so running exactly on the boundary doesn't fire again immediately
	next_run = trigger.get_next_fire_time(None, now + datetime.timedelta(microseconds=1))
	return (next_run - now).total_seconds()


class ShutdownSignals:
	'''
	Escalating shutdown on repeated interrupts. The first interrupt sets graceful:
	running work is finished and everything stops cleanly. The second one only
	logs. The third sets force, which the main coroutine races against, so the
	process exits without waiting for anything.
	'''
	def __init__(self):
		self.graceful = asyncio.Event()
		self.force = asyncio.Event()
		self.interrupts = 0

	def interrupt(self):
		self.interrupts += 1
		if self.interrupts == 1:
			logging.info('🛑 Interrupt received: stopping once running tasks are done...')
			self.graceful.set()
		elif self.interrupts == 2:
			logging.warning('⏳ Still stopping: interrupt once more to force stop.')
		else:
			logging.warning('💥 Force stop!')
			self.force.set()

	def stop(self):
		'''
		Requests a graceful stop without counting as an interrupt (SIGTERM etc.)
		'''
		logging.info('🛑 Stop requested: stopping once running tasks are done...')
		self.graceful.set()


class PollWorker:
	'''
	Polls the launch feed at the start of every minute and sends out notifications.

	One cycle: fetch -> store the batch -> for every launch with a t0, notify the
	chats due for a notification. Any failure ends the cycle; the worker then
	waits BACKOFF_DELAY seconds and retries. The graceful shutdown signal is only
	observed while waiting, so a running cycle is always finished.
	'''
	def __init__(
		self, store: 'db.EventStateStore', notifier: 'notifications.Notifier',
		signals: ShutdownSignals, fetch=fetch_launches, backoff_delay: float = BACKOFF_DELAY,
		poll_trigger: CronTrigger = None, clock=time.time):
		'''
		Keyword arguments:
			store (db.EventStateStore): state store
			notifier (notifications.Notifier): notifier to send notifications with
			signals (ShutdownSignals): signals to stop on
			fetch (callable): blocking function returning a list of api.Launch objects
			backoff_delay (float): seconds to wait after a failed cycle
			poll_trigger (CronTrigger): when to poll; defaults to every whole minute
			clock (callable): returns the current unix time
		'''
		self.store = store
		self.notifier = notifier
		self.signals = signals
		self.fetch = fetch
		self.backoff_delay = backoff_delay
		self.poll_trigger = poll_trigger if poll_trigger is not None else minute_trigger()
		self.clock = clock

	async def run(self):
		'''
		Runs cycles until a graceful stop is requested.
		'''
		logging.info('🚀 Worker started')
		while True:
			try:
				await self.poll_once()
			except LaunchBotError as error:
				logging.error(f'🛑 API update failed: {error}')
				logging.warning(f'⚠️ Trying again after {self.backoff_delay} seconds...')
				delay = self.backoff_delay
			except Exception:
				logging.exception('⚠️ Unexpected error in API update')
				logging.warning(f'⚠️ Trying again after {self.backoff_delay} seconds...')
				delay = self.backoff_delay
			else:
				delay = seconds_until_next_run(self.poll_trigger)
				logging.debug(f'🔄 Next API update in {delay:.1f} seconds')

			if await self.wait(delay):
				logging.info('✅ Worker stopped')
				return

	async def wait(self, delay: float) -> bool:
		'''
		Sleeps for delay seconds, or until a graceful stop is requested.

		Returns:
			stopped (bool): True if woken up by the stop signal
		'''
		try:
			await asyncio.wait_for(self.signals.graceful.wait(), timeout=delay)
		except asyncio.TimeoutError:
			return False

		return True

	async def poll_once(self) -> int:
		'''
		Runs one fetch -> update -> notify cycle.

		Returns:
			sent (int): amount of notifications sent

		Raises:
			TransportError, FormatError: the fetch failed; nothing was stored
			StorageError: the state store failed
			TransientDeliveryError: a notification failed to send; the rest were skipped
		'''
		launches = await asyncio.to_thread(self.fetch)
		api_updated = int(self.clock())

		self.store.set_event_batch(launches)
		self.store.update_stats({'api_requests': 1, 'db_updates': 1, 'last_api_update': api_updated})
		logging.debug(f'✅ DB update complete! Stored {len(launches)} launches.')

		return await self.notify_launches(launches)

	async def notify_launches(self, launches: list) -> int:
		'''
		Notifies every due chat of every launch that has a t0.

		Returns:
			sent (int): amount of notifications sent
		'''
		sent = 0
		try:
			for launch in launches:
				if launch.t0 is None:
					continue

				due_chats = self.store.due_subscribers(launch.id, launch.t0, int(self.clock()))
				if len(due_chats) == 0:
					continue

				logging.info(f'📬 {len(due_chats)} chats due for launch_id={launch.id} ({launch.name})')
				for chat_id in sorted(due_chats):
					if await launch_notify(self.store, self.notifier, launch, chat_id, clock=self.clock):
						sent += 1
		finally:
			if sent > 0:
				logging.info(f'📊 Sent {sent} notifications')
				self.store.update_stats({'notifications': sent})

		return sent
