'''
notifications.py handles effectively everything related to deciding when to notify,
generating, and sending notifications.
'''

import math
import time
import logging

import telegram

from telegram import LinkPreviewOptions, ReplyParameters
from telegram.helpers import escape_markdown

from errors import PermanentDeliveryError, ChatMigratedError, TransientDeliveryError
from utils import anonymize_id, time_delta_to_legible_eta, unix_to_utc_string


# notification thresholds in seconds before t0: 24 hours, 1 hour, 15 minutes
NOTIFY_TIMES = (24 * 3600, 3600, 15 * 60)

LAUNCH_URL = 'https://rocketlaunch.live/launch/'

# error messages (lowercased) of BadRequests meaning the chat can't be reached anymore
UNREACHABLE_CHAT_ERRORS = (
	'chat not found', 'user not found', 'chat was deactivated', 'user is deactivated',
	'bot was kicked', 'bot was blocked', 'bot is not a member', 'not enough rights to send',
	'have no rights to send', 'chat_write_forbidden', "can't send messages to bots",
	'peer_id_invalid')


def due_threshold(
	t0: int, now: int, last_notified: float = math.inf, notify_times: tuple = NOTIFY_TIMES) -> int:
	'''
	Decides whether a chat should be notified of a launch now.

	Thresholds are checked from longest to shortest. A threshold is skipped if the
	chat was already notified at or below it; the first remaining threshold the
	launch is within wins. If a poll skipped over several thresholds, only the
	longest one is returned, so a chat gets at most one notification per launch
	per poll.

	Keyword arguments:
		t0 (int): launch time, unix seconds
		now (int): current time, unix seconds
		last_notified (int): seconds until launch at the last notification, inf if never
		notify_times (tuple): thresholds in seconds, longest first

	Returns:
		threshold (int): the threshold the chat is due for, or None
	'''
	until_launch = t0 - now
	for threshold in notify_times:
		if last_notified <= threshold:
			continue

		if until_launch <= threshold:
			return threshold

	return None


def create_notification_message(launch: 'api.Launch', now: int) -> str:
	'''
	Generates the MarkdownV2 notification message body for a launch.

	Keyword arguments:
		launch (api.Launch): launch to notify of; must have a t0
		now (int): current time, unix seconds

	Returns:
		message (str): the notification message
	'''
	def escape(text: str) -> str:
		return escape_markdown(str(text), version=2)

	# round to whole minutes, so the eta doesn't end up as "23 hours, 58 minutes"
	until_launch = 60 * round((launch.t0 - now) / 60)
	eta = escape(time_delta_to_legible_eta(abs(until_launch), full_accuracy=False))
	eta_str = f'in *{eta}*' if until_launch >= 0 else f'*{eta}* ago'

	launch_link = LAUNCH_URL + escape_markdown(launch.slug, version=2, entity_type='text_link')
	message = (
		f'[{escape(launch.provider_name)} \\- {escape(launch.vehicle_name)}]({launch_link})\n'
		f'{escape(unix_to_utc_string(launch.t0))} \\({eta_str}\\)\n'
		f'{escape(launch.pad_str())}')

	if launch.mission_description:
		message += f'\n\n{escape(launch.mission_description)}'

	if launch.suborbital:
		message += '\n\nsuborbital'

	return message


class Notifier:
	'''
	Sends messages through the Telegram bot. Failures are raised as one of
	PermanentDeliveryError, ChatMigratedError or TransientDeliveryError, so no
	telegram.error type makes it past here.
	'''
	def __init__(self, bot: telegram.Bot):
		self.bot = bot

	async def send(self, chat_id: int, text: str, reply_to_message_id: int = None) -> telegram.Message:
		'''
		Sends text to chat_id, optionally as a reply.

		Returns:
			message (telegram.Message): the sent message
		'''
		reply_parameters = None
		if reply_to_message_id is not None:
			reply_parameters = ReplyParameters(message_id=reply_to_message_id)

		logging.debug(f'✉️ Sending to {anonymize_id(chat_id)}...')
		try:
			return await self.bot.send_message(
				chat_id, text, reply_parameters=reply_parameters,
				link_preview_options=LinkPreviewOptions(is_disabled=True))

		except telegram.error.ChatMigrated as error:
			raise ChatMigratedError(chat_id, error.new_chat_id) from error

		except telegram.error.Forbidden as error:
			# blocked, kicked, deactivated, or a bot
			raise PermanentDeliveryError(chat_id, error.message) from error

		except telegram.error.BadRequest as error:
			if any(reason in error.message.lower() for reason in UNREACHABLE_CHAT_ERRORS):
				raise PermanentDeliveryError(chat_id, error.message) from error

			raise TransientDeliveryError(chat_id, f'BadRequest: {error.message}') from error

		except telegram.error.RetryAfter as error:
			''' Rate-limited by Telegram
			https://core.telegram.org/bots/faq#my-bot-is-hitting-limits-how-do-i-avoid-this '''
			raise TransientDeliveryError(chat_id, f'rate-limited, retry after {error.retry_after}') from error

		except telegram.error.TelegramError as error:
			# TimedOut, NetworkError and anything unknown
			raise TransientDeliveryError(chat_id, f'{type(error).__name__}: {error.message}') from error


async def launch_notify(
	store: 'db.EventStateStore', notifier: Notifier, launch: 'api.Launch', chat_id: int,
	reply_to_message_id: int = None, record: bool = True, clock=time.time) -> bool:
	'''
	Sends a launch notification to chat_id and updates the chat's state accordingly:
	on success the notification is recorded, unreachable chats are unsubscribed and
	migrated chats moved to their new id.

	Keyword arguments:
		store (db.EventStateStore): state store
		notifier (Notifier): notifier to send with
		launch (api.Launch): launch to notify of; launches without a t0 are ignored
		chat_id (int): chat to notify
		reply_to_message_id (int): message to reply to, if any
		record (bool): record the notification in the chat's progress
		clock (callable): returns the current unix time

	Returns:
		sent (bool): whether the message was delivered

	Raises:
		TransientDeliveryError: sending failed, but may succeed later
		StorageError: the chat's state couldn't be updated
	'''
	if launch.t0 is None:
		return False

	message = create_notification_message(launch, int(clock()))

	logging.info(f'📨 Notifying {anonymize_id(chat_id)} about launch_id={launch.id}')
	try:
		await notifier.send(chat_id, message, reply_to_message_id)

	except PermanentDeliveryError as error:
		logging.warning(f'⚠️ Unsubscribing {anonymize_id(chat_id)} from updates: {error}')
		store.unsubscribe(chat_id)
		return False

	except ChatMigratedError as error:
		logging.warning(f'⚠️ Chat {chat_id} migrated to new chat_id {error.new_chat_id}')
		store.migrate_subscriber(chat_id, error.new_chat_id)
		return False

	if record:
		store.record_notification(chat_id, launch.id, launch.t0 - int(clock()))

	return True
