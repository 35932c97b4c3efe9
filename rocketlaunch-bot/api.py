'''
api.py talks to the rocketlaunch.live launch feed: it fetches the upcoming
launches and parses them into Launch objects.
'''
import logging

import requests
import ujson as json

from errors import TransportError, FormatError
from utils import timestamp_to_unix


API_URL = 'https://fdo.rocketlaunch.live/json/launches/next/5'
API_TIMEOUT = 30


class Launch:
	'''
	A class for simplifying the handling of launch objects. Contains all the properties needed
	by the bot. The raw launch_json is kept around, as that's what's persisted.
	'''
	def __init__(self, launch_json: dict):
		if not isinstance(launch_json, dict):
			raise FormatError(f'launch is not an object: {launch_json!r}')

		self.launch_json = launch_json

		try:
			# launch unique information
			self.id = int(launch_json['id'])
			self.name = launch_json['name']
			self.slug = launch_json['slug']

			# sort_date is a numeric timestamp, but may come in as a string
			self.sort_date = int(launch_json['sort_date'])

			# t0 and launch window: null if the time isn't known yet
			self.t0 = nullable_timestamp_to_unix(launch_json['t0'])
			self.win_open = nullable_timestamp_to_unix(launch_json.get('win_open'))
			self.win_close = nullable_timestamp_to_unix(launch_json.get('win_close'))

			# provider and vehicle info
			self.provider_id = launch_json['provider']['id']
			self.provider_name = launch_json['provider']['name']
			self.provider_slug = launch_json['provider'].get('slug')

			self.vehicle_id = launch_json['vehicle']['id']
			self.vehicle_name = launch_json['vehicle']['name']
			self.vehicle_company_id = launch_json['vehicle'].get('company_id')
			self.vehicle_slug = launch_json['vehicle'].get('slug')

			# launch location information
			pad = launch_json['pad']
			self.pad_id = pad['id']
			self.pad_name = pad['name']
			self.location_id = pad['location'].get('id')
			self.location_name = pad['location']['name']
			self.location_state = pad['location'].get('state')
			self.location_state_name = pad['location'].get('state_name')
			self.location_country = pad['location']['country']
			self.location_slug = pad['location'].get('slug')

			# mission (payload) information
			self.missions = [
				{'id': mission.get('id'), 'name': mission['name'], 'description': mission.get('description')}
				for mission in launch_json.get('missions') or []]
			self.mission_description = launch_json.get('mission_description')
			self.launch_description = launch_json.get('launch_description')

			# estimated date, for launches without an exact t0
			self.est_date = launch_json.get('est_date') or {}
			self.date_str = launch_json.get('date_str')

			# tidbits
			self.tags = [tag['text'] for tag in launch_json.get('tags') or []]
			self.quicktext = launch_json.get('quicktext')
			self.suborbital = bool(launch_json.get('suborbital', False))
			self.modified = launch_json.get('modified')

		except (KeyError, TypeError, ValueError, AttributeError) as error:
			raise FormatError(
				f'unable to parse launch id={launch_json.get("id")}: {error!r}') from error

		# these end up in every message: null is as bad as missing
		required_strings = {
			'name': self.name, 'slug': self.slug, 'provider.name': self.provider_name,
			'vehicle.name': self.vehicle_name, 'pad.name': self.pad_name,
			'pad.location.name': self.location_name, 'pad.location.country': self.location_country}

		for field, value in required_strings.items():
			if not isinstance(value, str):
				raise FormatError(f'unable to parse launch id={self.id}: {field} is {value!r}')

	def pad_str(self) -> str:
		'''
		Location and pad in a single line, ex. "Cape Canaveral SFS, SLC-40, Florida, United States"
		'''
		pad_str = f'{self.location_name}, {self.pad_name}'
		if self.location_state_name:
			pad_str += f', {self.location_state_name}'

		return f'{pad_str}, {self.location_country}'

	def __repr__(self) -> str:
		return f'Launch(id={self.id}, name={self.name!r}, t0={self.t0})'


def nullable_timestamp_to_unix(timestamp):
	'''
	Same as timestamp_to_unix, but None stays None
	'''
	if timestamp is None:
		return None

	return timestamp_to_unix(timestamp)


def parse_launches(api_json: dict) -> list:
	'''
	Parses the result list of an API response into launch objects.

	Keyword arguments:
		api_json (dict): the decoded API response

	Returns:
		launches (list): list of Launch objects, in feed order
	'''
	try:
		results = api_json['result']
	except (KeyError, TypeError) as error:
		raise FormatError(f'no result list in API response: {error!r}') from error

	if not isinstance(results, list):
		raise FormatError(f'result is not a list: {type(results).__name__}')

	return [Launch(launch_json) for launch_json in results]


def fetch_launches(api_url: str = API_URL, bot_username: str = None) -> list:
	'''
	Runs the API call and parses the response. Blocking: the worker runs this
	in a thread.

	Keyword arguments:
		api_url (str): feed url
		bot_username (str): username of the bot, sent in the user-agent

	Returns:
		launches (list): list of Launch objects

	Raises:
		TransportError: request failed or returned a non-2xx status
		FormatError: response couldn't be parsed
	'''
	logging.debug('🔄 Running API call...')

	# set headers
	headers = {'user-agent': f'telegram-{bot_username}' if bot_username else 'rocketlaunch-bot'}

	try:
		api_response = requests.get(api_url, headers=headers, timeout=API_TIMEOUT)
		api_response.raise_for_status()
	except requests.RequestException as error:
		raise TransportError(f'error in API request: {error}') from error

	try:
		api_json = json.loads(api_response.text)
	except ValueError as error:
		raise FormatError(f'error parsing json: {error}') from error

	launches = parse_launches(api_json)
	logging.debug(f'✅ Parsed {len(launches)} launches ({len(api_response.content)} bytes).')

	return launches
