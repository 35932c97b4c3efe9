# Prints every subscriber and its notification progress. Usage: dump_db.py [data_dir]
import sys

from db import EventStateStore
from utils import time_delta_to_legible_eta

data_dir = sys.argv[1] if len(sys.argv) > 1 else 'launchbot'
store = EventStateStore(data_dir)

subscribers = 0
for chat_id, progress in store.enumerate_subscribers():
	subscribers += 1
	print(f'{chat_id}:')
	for launch_id, remaining in sorted(progress.items()):
		print(f'\tlaunch_id={launch_id}: notified {time_delta_to_legible_eta(remaining, False)} before launch')

print(f'Done! {subscribers} subscribers, {len(store.get_event_batch())} launches stored.')
