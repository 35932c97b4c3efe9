'''
rocketlaunchbot.py is the main module used by rocketlaunch-bot. The module handles
all command requests, and is responsible for starting the API update worker.
'''
import os
import sys
import time
import signal
import asyncio
import logging
import argparse
import functools

import redis
import telegram
import coloredlogs

from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import AIORateLimiter, Application, CommandHandler, ContextTypes, Defaults, filters
from telegram.helpers import escape_markdown

from api import fetch_launches
from config import load_config, store_config
from db import EventStateStore
from errors import DeliveryError, StorageError
from notifications import Notifier, launch_notify
from utils import anonymize_id, time_delta_to_legible_eta, unix_to_utc_string
from worker import PollWorker, ShutdownSignals


VERSION = '0.3.0'
DATA_DIR = 'launchbot'
STARTUP_TIME = time.time()

# launches this close are sent right away to new subscribers
SUBSCRIBE_NOTIFY_WINDOW = 2 * 24 * 3600

USER_COMMANDS = {
	'id': 'current chat id',
	'start': 'subscribe to launch notifications',
	'stop': 'unsubscribe from launch notifications',
	'launches': 'show launches',
	'next': 'show next launch',
	'help': 'help'
}

ADMIN_COMMANDS = {
	'help': 'help',
	'subscribers_count': 'subscribers count',
	'statistics': 'bot statistics'
}


def command_descriptions(title: str, commands: dict) -> str:
	'''
	Builds a MarkdownV2 command list, ex. for /help.
	'''
	lines = [f'*{escape_markdown(title, version=2)}*']
	for command, description in commands.items():
		lines.append(escape_markdown(f'/{command} - {description}', version=2))

	return '\n'.join(lines)


async def reply_error(update: Update, action: str, error: Exception):
	'''
	Tells the user what went wrong, ex. "Error subscribing:" and the error.
	'''
	await update.effective_message.reply_text(
		f'{escape_markdown(action, version=2)}:\n```\n'
		f'{escape_markdown(str(error), version=2, entity_type="pre")}\n```')


async def chat_id_handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
	'''
	Responds to /id with the current chat id.
	'''
	await update.effective_message.reply_text(f'`{update.effective_chat.id}`')


async def help_handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
	'''
	Responds to /help.
	'''
	await update.effective_message.reply_text(command_descriptions('Commands:', USER_COMMANDS))


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE):
	'''
	Responds to /start: subscribes the chat, and sends notifications for the
	launches coming up in the next two days.
	'''
	store = context.bot_data['store']
	chat_id = update.effective_chat.id
	logging.info(f'⌨️ /start called in {anonymize_id(chat_id)}')

	try:
		store.subscribe(chat_id)
		launches = store.get_event_batch()
	except StorageError as error:
		logging.exception(f'⚠️ Error subscribing {anonymize_id(chat_id)}')
		await reply_error(update, 'Error subscribing', error)
		return

	await update.effective_message.reply_text(
		escape_markdown('Subscribed, standby for notifications!', version=2))

	# only launches still ahead: ones already past t0 get no "starting soon" message
	now = int(time.time())
	for launch in launches:
		if launch.t0 is None or not now <= launch.t0 <= now + SUBSCRIBE_NOTIFY_WINDOW:
			continue

		try:
			await launch_notify(store, context.bot_data['notifier'], launch, chat_id)
		except (DeliveryError, StorageError) as error:
			logging.warning(f'⚠️ Unable to notify new subscriber {anonymize_id(chat_id)}: {error}')
			break


async def stop(update: Update, context: ContextTypes.DEFAULT_TYPE):
	'''
	Responds to /stop by unsubscribing the chat.
	'''
	chat_id = update.effective_chat.id
	logging.info(f'⌨️ /stop called in {anonymize_id(chat_id)}')

	try:
		context.bot_data['store'].unsubscribe(chat_id)
	except StorageError as error:
		logging.exception(f'⚠️ Error unsubscribing {anonymize_id(chat_id)}')
		await reply_error(update, 'Error unsubscribing', error)
		return

	await update.effective_message.reply_text('Unsubscribed')


async def send_launches(update: Update, context: ContextTypes.DEFAULT_TYPE, launches: list):
	'''
	Replies with one message per launch. Not recorded as notifications: recording
	would need the chat to be subscribed, and replying to a command doesn't
	subscribe it.
	'''
	for launch in launches:
		try:
			await launch_notify(
				context.bot_data['store'], context.bot_data['notifier'], launch,
				update.effective_chat.id, reply_to_message_id=update.effective_message.message_id,
				record=False)
		except (DeliveryError, StorageError) as error:
			logging.warning(f'⚠️ Unable to send launch_id={launch.id}: {error}')
			break


async def launches_handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
	'''
	Responds to /launches with every launch that has a t0.
	'''
	try:
		launches = context.bot_data['store'].get_event_batch()
	except StorageError as error:
		await reply_error(update, 'Error loading launches', error)
		return

	await send_launches(update, context, [launch for launch in launches if launch.t0 is not None])


async def next_launch(update: Update, context: ContextTypes.DEFAULT_TYPE):
	'''
	Responds to /next with the next upcoming launch.
	'''
	try:
		launches = context.bot_data['store'].get_event_batch()
	except StorageError as error:
		await reply_error(update, 'Error loading launches', error)
		return

	now = int(time.time())
	upcoming = [launch for launch in launches if launch.t0 is not None and launch.t0 >= now]
	if len(upcoming) == 0:
		await update.effective_message.reply_text('No upcoming launches')
		return

	await send_launches(update, context, [min(upcoming, key=lambda launch: launch.t0)])


async def admin_help(update: Update, context: ContextTypes.DEFAULT_TYPE):
	'''
	Responds to /help in admin chats with both command lists.
	'''
	commands = (
		command_descriptions('Admin commands:', ADMIN_COMMANDS),
		command_descriptions('Commands:', USER_COMMANDS))

	await update.effective_message.reply_text('\n\n'.join(commands))


async def subscribers_count(update: Update, context: ContextTypes.DEFAULT_TYPE):
	try:
		count = context.bot_data['store'].subscriber_count()
	except StorageError as error:
		await reply_error(update, 'Error counting subscribers', error)
		return

	await update.effective_message.reply_text(f'Total subscribers: {count}')


async def statistics(update: Update, context: ContextTypes.DEFAULT_TYPE):
	'''
	Responds to /statistics with the bot statistics.
	'''
	try:
		stats = context.bot_data['store'].get_stats()
	except StorageError as error:
		await reply_error(update, 'Error loading statistics', error)
		return

	if stats['last_api_update'] > 0:
		last_update = time_delta_to_legible_eta(int(time.time()) - stats['last_api_update'], False)
		last_update = f'{last_update} ago ({unix_to_utc_string(stats["last_api_update"])})'
	else:
		last_update = 'never'

	uptime = time_delta_to_legible_eta(int(time.time() - STARTUP_TIME), False)
	stats_str = (
		f'Notifications delivered: {stats["notifications"]}\n'
		f'API requests made: {stats["api_requests"]}\n'
		f'Last API update: {last_update}\n'
		f'Bot uptime: {uptime}\n'
		f'rocketlaunch-bot version {VERSION}')

	await update.effective_message.reply_text(escape_markdown(stats_str, version=2))


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE):
	'''
	Logs exceptions raised by command handlers.
	'''
	logging.error(f'⚠️ Exception while handling an update: {context.error}', exc_info=context.error)


def build_application(config: dict, store: EventStateStore) -> Application:
	'''
	Creates the Telegram application and registers the command handlers. The bot
	sends MarkdownV2 by default and is throttled to stay within Telegram's limits.

	Keyword arguments:
		config (dict): bot configuration
		store (EventStateStore): state store the handlers use

	Returns:
		application (telegram.ext.Application): the application, not yet initialized
	'''
	application = (
		Application.builder()
		.token(config['bot_token'])
		.defaults(Defaults(parse_mode=ParseMode.MARKDOWN_V2))
		.rate_limiter(AIORateLimiter())
		.build())

	application.bot_data['store'] = store
	application.bot_data['notifier'] = Notifier(application.bot)

	# admin versions first, so /help in an admin chat gets the full list
	admin_filter = filters.Chat(chat_id=config['admin_chats'])
	application.add_handler(CommandHandler('help', admin_help, filters=admin_filter))
	application.add_handler(CommandHandler('subscribers_count', subscribers_count, filters=admin_filter))
	application.add_handler(CommandHandler('statistics', statistics, filters=admin_filter))

	application.add_handler(CommandHandler('id', chat_id_handler))
	application.add_handler(CommandHandler('start', start))
	application.add_handler(CommandHandler('stop', stop))
	application.add_handler(CommandHandler('launches', launches_handler))
	application.add_handler(CommandHandler('next', next_launch))
	application.add_handler(CommandHandler('help', help_handler))

	application.add_error_handler(error_handler)

	return application


async def run_bot(config: dict, store: EventStateStore):
	'''
	Runs the bot and the API update worker until stopped. The first ctrl+c stops
	everything gracefully, the third one doesn't wait for the bot anymore. An API
	request running in its thread is still joined by asyncio.run on exit, so a
	forced stop can take up to api.API_TIMEOUT seconds.
	'''
	signals = ShutdownSignals()
	loop = asyncio.get_running_loop()
	loop.add_signal_handler(signal.SIGINT, signals.interrupt)
	loop.add_signal_handler(signal.SIGTERM, signals.stop)

	application = build_application(config, store)
	notifier = application.bot_data['notifier']

	# get the bot: if we get a telegram.error.InvalidToken, the token is incorrect
	try:
		await application.initialize()
	except telegram.error.InvalidToken:
		sys.exit('⚠️ Error: unable to init bot! Double-check your API token in bot-config.json!')

	bot_username = application.bot.username
	logging.info(f'🤖 Connected to Telegram as @{bot_username}')

	await application.start()
	await application.updater.start_polling()

	worker = PollWorker(
		store, notifier, signals,
		fetch=functools.partial(fetch_launches, config['feed_url'], bot_username),
		backoff_delay=config['backoff_delay'])

	def worker_done(task: asyncio.Task):
		if not task.cancelled() and task.exception() is not None:
			logging.critical('Worker crashed: stopping the bot', exc_info=task.exception())
			signals.stop()

	worker_task = asyncio.create_task(worker.run())
	worker_task.add_done_callback(worker_done)

	# send startup message
	for admin_chat in config['admin_chats']:
		try:
			await notifier.send(admin_chat, escape_markdown(f'🤖 Bot started with args: {sys.argv}', version=2))
		except DeliveryError as error:
			logging.warning(f'⚠️ Unable to send startup message to {admin_chat}: {error}')

	async def graceful_stop():
		await signals.graceful.wait()
		await application.updater.stop()
		await asyncio.gather(worker_task, return_exceptions=True)
		await application.stop()
		await application.shutdown()

	stop_task = asyncio.create_task(graceful_stop())
	force_task = asyncio.create_task(signals.force.wait())

	done, _ = await asyncio.wait({stop_task, force_task}, return_when=asyncio.FIRST_COMPLETED)
	if force_task in done:
		logging.warning('💥 Not waiting for running tasks: exiting now.')
	else:
		force_task.cancel()

	run_time = time_delta_to_legible_eta(int(time.time() - STARTUP_TIME), True)
	logging.warning(f'🔶 Program ending... Runtime: {run_time}.')


def update_token(data_dir: str):
	'''
	Used to update the bot token.
	'''
	config_ = load_config(data_dir)

	token_input = str(input('Enter the bot token for rocketlaunch-bot: '))
	while ':' not in token_input:
		print('Please try again – bot-tokens look like "123456789:ABHMeJViB0RHL..."')
		token_input = str(input('Enter the bot token for rocketlaunch-bot: '))

	config_['bot_token'] = token_input
	store_config(config_, data_dir)

	print('Token update successful!\n')


def setup_logging(data_dir: str, debug: bool):
	'''
	Logs to a file in data_dir and, unless debugging, to the console.
	'''
	if not os.path.isdir(data_dir):
		os.makedirs(data_dir)

	# init log (disk)
	logging.basicConfig(
		filename=os.path.join(data_dir, 'log-file.log'), level=logging.DEBUG,
		format='%(asctime)s %(message)s', datefmt='%d/%m/%Y %H:%M:%S')

	# quiet down chatty libraries
	logging.getLogger('httpx').setLevel(logging.WARNING)
	logging.getLogger('httpcore').setLevel(logging.WARNING)
	logging.getLogger('urllib3').setLevel(logging.CRITICAL)
	logging.getLogger('requests').setLevel(logging.CRITICAL)
	logging.getLogger('apscheduler').setLevel(logging.WARNING)
	logging.getLogger('telegram').setLevel(logging.ERROR)
	logging.getLogger('telegram.ext').setLevel(logging.ERROR)

	if not debug:
		# init console log if not in debug mode
		console = logging.StreamHandler()
		console.setLevel(logging.DEBUG)
		logging.getLogger().addHandler(console)

	# add color
	coloredlogs.install(level='DEBUG')


def main():
	global STARTUP_TIME
	STARTUP_TIME = time.time()

	# setup argparse
	parser = argparse.ArgumentParser('rocketlaunchbot.py')
	parser.add_argument(
		'-start', dest='start', help='Starts the bot', action='store_true')
	parser.add_argument(
		'-debug', dest='debug', help='Log to the log file only', action='store_true')
	parser.add_argument(
		'--new-bot-token', dest='update_token', help='Set a new bot token', action='store_true')
	parser.add_argument(
		'--data-dir', dest='data_dir', help='Directory for the config, database and logs',
		default=DATA_DIR)

	args = parser.parse_args()

	if args.update_token:
		update_token(data_dir=args.data_dir)

	if not args.start:
		sys.exit('No start command given, exiting. To start the bot, include -start in options.')

	config = load_config(data_dir=args.data_dir)
	setup_logging(args.data_dir, args.debug)

	# redis caches the statistics
	rd = redis.Redis(
		host=config['redis']['host'], port=config['redis']['port'],
		db=config['redis']['db_num'], decode_responses=True)

	try:
		# verify redis connection so we don't run into issues later on
		rd.ping()
	except redis.exceptions.ConnectionError:
		sys.exit('🛑 Error connecting to redis instance! Verify redis-server configuration.')

	try:
		store = EventStateStore(args.data_dir, notify_times=config['notify_times'], rd=rd)
	except StorageError as error:
		sys.exit(f'🛑 Error opening database: {error}')

	print(f'🚀 rocketlaunch-bot | version {VERSION}')
	print("Don't close this window or set the computer to sleep. Quit: ctrl + c.")

	asyncio.run(run_bot(config, store))


if __name__ == '__main__':
	main()
