#!/usr/bin/env python3
"""
Taskflow Engine Entry Point

Builds the engine from TASKFLOW_* settings, optionally seeds the default
catalogue and runs the SLA tracker until interrupted.
"""

import argparse
import signal
import sys
import threading

from taskflow.config import get_config
from taskflow.errors import TaskflowError
from taskflow.logging_config import setup_logging
from taskflow.seed import seed_defaults
from taskflow.system import TaskflowSystem


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run the taskflow SLA tracker")
    parser.add_argument("--seed", action="store_true", help="install default templates and workflows")
    parser.add_argument("--once", action="store_true", help="run a single scan cycle and exit")
    args = parser.parse_args(argv)

    config = get_config()
    logger = setup_logging(config.log_level, "taskflow", config.log_format, config.log_file)

    try:
        system = TaskflowSystem(config)
    except TaskflowError as e:
        logger.error("Cannot start taskflow engine: %s", e)
        return 1

    if args.seed:
        seed_defaults(system)

    tracker = system.create_tracker()
    if args.once:
        results = tracker.run_cycle()
        logger.info("Scan finished: %s", results)
        system.close()
        return 0

    stopped = threading.Event()

    def handle_signal(signum, frame):
        stopped.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    logger.info("Starting taskflow engine (storage %s)", config.database_url)
    tracker.start()
    stopped.wait()

    logger.info("Shutting down taskflow engine")
    tracker.stop()
    system.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
