# Fetches the launch feed and prints the parsed launches. Usage: parse_feed.py [feed_url]
import sys
import time

from api import API_URL, fetch_launches
from utils import time_delta_to_legible_eta, unix_to_utc_string

launches = fetch_launches(sys.argv[1] if len(sys.argv) > 1 else API_URL)

for launch in launches:
	if launch.t0 is None:
		print(f'{launch.id} | {launch.name} | {launch.date_str} (no t0)')
		continue

	eta = time_delta_to_legible_eta(abs(launch.t0 - int(time.time())), False)
	print(f'{launch.id} | {launch.name} | {unix_to_utc_string(launch.t0)} ({eta}) | {launch.pad_str()}')

print(f'Done! Parsed {len(launches)} launches.')
