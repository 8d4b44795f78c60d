"""
Process entry point for the monitor scheduler.

Only one process should run with MONITOR_SCHEDULER_ENABLED=true; every other
process starts idle.
"""

import argparse
import signal
import threading
from typing import List, Optional

from .services.social_core import SocialCoreService
from .utils.config import config
from .utils.health_check import get_health_status
from .utils.logging_config import get_logger

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Run the socialcore monitor scheduler.')
    parser.add_argument('--once', action='store_true', help='run a single tick and exit')
    parser.add_argument('--migrate', action='store_true', help='run legacy identity migrations before starting')
    parser.add_argument('--health', action='store_true', help='check database, Bedrock and SerpAPI health and exit')
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    service = SocialCoreService(config)

    if args.health:
        status = get_health_status(config, database=service.database, llm=service.llm, search=service.search)
        for component, details in status.items():
            logger.info(f'Health {component}: {details}')
        return 0 if all(details.get('healthy', False) for details in status.values()) else 1

    if args.migrate:
        logger.info(f'Migration results: {service.maintenance.run_all()}')

    scheduler = service.build_scheduler(is_leader=config.scheduler.enabled)

    if args.once:
        outcomes = scheduler.run_tick()
        failed = [o for o in outcomes if o.error]
        logger.info(f'Single tick ran {len(outcomes)} monitor(s), {len(failed)} failed')
        return 0

    if not scheduler.start():
        return 0

    stopped = threading.Event()

    def _shutdown(signum, frame):
        logger.info(f'Received signal {signum}, stopping scheduler')
        stopped.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    stopped.wait()
    scheduler.stop()
    service.database.dispose()
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
