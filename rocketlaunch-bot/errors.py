'''
Exceptions raised by the feed client, the state store and the notifier.

The worker only ever sees these: sqlite, requests and telegram exceptions are
translated where they're raised.

Classes:
	LaunchBotError
		TransportError, FormatError, StorageError
		DeliveryError
			PermanentDeliveryError, ChatMigratedError, TransientDeliveryError
'''


class LaunchBotError(Exception):
	'''
	Base class for all errors raised by rocketlaunch-bot
	'''


class TransportError(LaunchBotError):
	'''
	Network or HTTP failure while fetching the launch feed
	'''


class FormatError(LaunchBotError):
	'''
	Malformed or unexpected launch feed payload
	'''


class StorageError(LaunchBotError):
	'''
	State store open, read or write failure
	'''


class DeliveryError(LaunchBotError):
	'''
	Sending a message to a chat failed
	'''
	def __init__(self, chat_id: int, message: str = ''):
		super().__init__(f'{chat_id}: {message}' if message else str(chat_id))
		self.chat_id = chat_id


class PermanentDeliveryError(DeliveryError):
	'''
	Chat can't be reached anymore: bot blocked or kicked, chat deleted, user
	deactivated, or the chat can't receive messages at all.
	'''


class ChatMigratedError(DeliveryError):
	'''
	Chat id changed, e.g. when a group is upgraded to a supergroup
	'''
	def __init__(self, chat_id: int, new_chat_id: int):
		super().__init__(chat_id, f'migrated to {new_chat_id}')
		self.new_chat_id = new_chat_id


class TransientDeliveryError(DeliveryError):
	'''
	Rate limits, timeouts and network trouble: worth retrying later
	'''
