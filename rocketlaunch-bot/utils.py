'''
utils.py includes some common, tiny helper functions used throughout the program.

Classes:
	None

Functions:
	anonymize_id(chat: int) -> str
	timestamp_to_unix(timestamp: str) -> int
	unix_to_utc_string(unix_timestamp: int) -> str
	time_delta_to_legible_eta(time_delta: int, full_accuracy: bool) -> str

Misc variables:
	None
'''


import datetime

from hashlib import sha1

import pytz


def anonymize_id(chat: int) -> str:
	'''
	For pseudo-anonymizing chat IDs, a truncated, unsalted SHA-1 hash
	is returned for use in logging.

	Keyword arguments:
		chat (int): chat ID to anonymize

	Returns:
		chat (str): the anonymized chat ID
	'''
	return sha1(str(chat).encode('utf-8')).hexdigest()[0:6]


def timestamp_to_unix(timestamp: str) -> int:
	'''
	Parses a rocketlaunch.live timestamp into a unix timestamp,
	i.e. seconds since the unix epoch.

	Keyword arguments:
		timestamp (str): timestamp in the feed format, ex. 2024-03-18T12:25Z

	Returns:
		unix_timestamp (int): unix timestamp corresponding to the above timestamp
	'''
	utc_dt = datetime.datetime.strptime(timestamp, '%Y-%m-%dT%H:%MZ')
	return int((utc_dt - datetime.datetime(1970, 1, 1)).total_seconds())


def unix_to_utc_string(unix_timestamp: int) -> str:
	'''
	Converts a unix timestamp to a date-time string in UTC, ex. "2024-03-18 12:25 UTC".
	'''
	utc_dt = datetime.datetime.fromtimestamp(unix_timestamp, tz=pytz.utc)
	return utc_dt.strftime('%Y-%m-%d %H:%M UTC')


def time_delta_to_legible_eta(time_delta: int, full_accuracy: bool) -> str:
	'''
	This is a tiny helper function, used to convert integer time deltas
	(i.e. second deltas) to a legible ETA, where the largest unit of time
	is measured in days.

	Keyword arguments:
		time_delta (int): time delta in seconds to convert
		full_accuracy (bool): whether to use triple precision or not
			(in this context, e.g. dd:mm:ss vs. dd:mm)

	Returns:
		pretty_eta (str): the prettily formatted, readable ETA string
	'''
	def plural(value: int, unit: str) -> str:
		return f'{value} {unit}{"s" if value != 1 else ""}'

	days, remainder = divmod(int(time_delta), 3600 * 24)
	hours, remainder = divmod(remainder, 3600)
	mins, secs = divmod(remainder, 60)

	# more than 24 hours: days are the largest unit, seconds are never shown
	if days > 0:
		pretty_eta = plural(days, 'day')
		if hours > 0 or full_accuracy:
			pretty_eta += f', {plural(hours, "hour")}'

			if full_accuracy:
				pretty_eta += f', {plural(mins, "minute")}'

		elif mins != 0:
			pretty_eta += f', {plural(mins, "minute")}'

		return pretty_eta

	if hours > 0:
		pretty_eta = f'{plural(hours, "hour")}, {plural(mins, "minute")}'
		if full_accuracy:
			pretty_eta += f', {plural(secs, "second")}'

		return pretty_eta

	if mins > 0:
		pretty_eta = plural(mins, 'minute')
		if secs != 0 or full_accuracy:
			pretty_eta += f', {plural(secs, "second")}'

		return pretty_eta

	if secs > 0:
		return plural(secs, 'second')

	return 'just now'
