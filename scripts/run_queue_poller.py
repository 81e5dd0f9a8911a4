"""Poll the grading queue on an interval without Redis.

Usage:
  python scripts/run_queue_poller.py            # loop every GRADING_POLL_INTERVAL_SEC
  python scripts/run_queue_poller.py --once     # one batch, e.g. from cron

Several pollers can run side by side; items are claimed atomically.
"""

import argparse
import os
import sys
import time

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from callgrade import create_app
from callgrade.services.queue import process_queue_batch


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument('--once', action='store_true', help='process one batch and exit')
    parser.add_argument('--batch-size', type=int, default=None)
    args = parser.parse_args()

    app = create_app()
    interval = float(app.config.get('GRADING_POLL_INTERVAL_SEC', 30))
    with app.app_context():
        while True:
            processed = process_queue_batch(args.batch_size)
            if processed:
                app.logger.info('poller processed %d item(s)', processed)
            if args.once:
                return processed
            time.sleep(interval)


if __name__ == '__main__':
    main()
