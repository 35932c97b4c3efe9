import os
import copy
import time
import logging

import ujson as json

from api import API_URL
from notifications import NOTIFY_TIMES
from worker import BACKOFF_DELAY


CONFIG_FILE = 'bot-config.json'

DEFAULT_CONFIG = {
	'bot_token': None,
	'admin_chats': [],
	'redis': {
		'host': 'localhost',
		'port': 6379,
		'db_num': 0
	},
	'feed_url': API_URL,
	'notify_times': list(NOTIFY_TIMES),
	'backoff_delay': BACKOFF_DELAY
}


def first_run(data_dir: str):
	'''
	Show a quick introduction message during first run.

	Keyword arguments:
		data_dir (str): configuration file folder to create

	Returns:
		None
	'''
	print("Looks like you're running rocketlaunch-bot for the first time!")
	print("Let's start off by creating some folders.")
	time.sleep(2)

	# create directories
	if not os.path.isdir(data_dir):
		os.makedirs(data_dir)
		print("Folders created!\n")

	time.sleep(1)


def store_config(config_json: dict, data_dir: str):
	'''
	Stores the configuration specified in config_json onto disk.

	Keyword arguments:
		config_json (dict): new config dictionary
		data_dir (str): location of config file

	Returns:
		None
	'''
	with open(os.path.join(data_dir, CONFIG_FILE), 'w') as config_file:
		json.dump(config_json, config_file, indent=4)

	logging.debug('Updated config dumped!')


def create_config(data_dir: str):
	'''
	Runs the config file setup if file doesn't exist or is corrupted/missing data.

	Keyword arguments:
		data_dir (str): location where config file is created

	Returns:
		None
	'''
	if not os.path.isdir(data_dir):
		first_run(data_dir)

	print('\nTo function, rocketlaunch-bot needs a bot API key;')
	print('to get one, send a message to @botfather on Telegram.')

	bot_token = input('Enter bot token: ')
	print()

	config = copy.deepcopy(DEFAULT_CONFIG)
	config['bot_token'] = bot_token

	store_config(config, data_dir)


def load_config(data_dir: str) -> dict:
	'''
	Load variables from configuration file. Keys missing from the file are
	filled in with their defaults.

	Keyword arguments:
		data_dir (str): location of config file

	Returns:
		config (dict): configuration in json/dict format
	'''
	# if config file doesn't exist, create it
	if not os.path.isfile(os.path.join(data_dir, CONFIG_FILE)):
		print('Config file not found: performing setup.\n')
		create_config(data_dir)

	with open(os.path.join(data_dir, CONFIG_FILE), 'r') as config_file:
		try:
			config = json.load(config_file)
		except ValueError:
			config = None

	if not isinstance(config, dict):
		print('JSONDecodeError: error loading configuration file. Running config setup...')
		create_config(data_dir)
		return load_config(data_dir)

	return repair_config(config)


def repair_config(config: dict) -> dict:
	'''
	Adds any keys missing from config, using the default values.

	Keyword arguments:
		config (dict): loaded configuration

	Returns:
		config (dict): the repaired configuration
	'''
	# we're just taking the difference of the two key sets here
	set_diff = set(DEFAULT_CONFIG.keys()).difference(set(config.keys()))
	if set_diff == set():
		return config

	logging.info(f'Configuration is missing keys {set_diff}: repairing...')
	for key in set_diff:
		config[key] = copy.deepcopy(DEFAULT_CONFIG[key])
		logging.info(f'\tAdded missing key-val pair: {key}')

	return config
