#!/usr/bin/env python3
"""
Command-line interface for running claim cycles against the task store.
"""

import argparse
import logging
import sys
import time
from typing import Any, Dict, List, Optional

from task_lease import Config
from task_lease.errors import ConfigurationError
from task_lease.claim.processors import SimulatedProcessor, load_processor
from task_lease.claim.scheduler import CycleScheduler, Schedule


def build_schedules(config: Config, workers: Optional[int], repeat: Optional[float]) -> List[Schedule]:
    """
    Derive schedules from the scheduler config section and CLI overrides.

    With --workers, schedules start 50ms apart; otherwise the configured
    initial delays are used, one schedule each.
    """
    fixed_delay = repeat if repeat is not None else config.get_fixed_delay()

    if workers:
        delays = [i * 0.05 for i in range(workers)]
    else:
        delays = config.get_initial_delays()

    return [Schedule(initial_delay=delay, fixed_delay=fixed_delay) for delay in delays]


def build_processor(config: Config, reference: Optional[str]):
    reference = reference or config.get_processing_config().get('processor')
    if reference:
        return load_processor(reference)
    min_delay, max_delay = config.get_processing_delays()
    return SimulatedProcessor(
        min_delay=min_delay,
        max_delay=max_delay,
        failure_rate=config.get_failure_rate()
    )


def cli_overrides(args) -> Dict[str, Any]:
    """Claiming settings given on the command line, in config layout."""
    claiming = {}
    if args.mode is not None:
        claiming['mode'] = args.mode
    if args.batch_size is not None:
        claiming['batch_size'] = args.batch_size
    if args.lease_timeout is not None:
        claiming['lease_timeout_seconds'] = args.lease_timeout
    if args.process_timeout is not None:
        claiming['process_timeout_seconds'] = args.process_timeout
    return {'claiming': claiming} if claiming else {}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the claim worker."""
    parser = argparse.ArgumentParser(
        description="task-lease claim worker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the configured schedules once with default config
  task-lease-worker

  # Single-item claiming with a 60 second lease
  task-lease-worker --mode single --lease-timeout 60

  # Four concurrent claimants, firing every 5 seconds until interrupted
  task-lease-worker --workers 4 --repeat 5

  # Use your own processing callback
  task-lease-worker --processor myapp.jobs:handle_task

Environment Variables:
  TASK_LEASE_CONFIG_PATH: Path to configuration file (default: ./config.yaml)
        """
    )

    parser.add_argument("--config", "-c", help="Path to configuration file (overrides TASK_LEASE_CONFIG_PATH)")
    parser.add_argument("--mode", choices=["bulk", "single"], help="Claiming variant (default: from config)")
    parser.add_argument("--batch-size", "-b", type=int, help="Tasks claimed per bulk round")
    parser.add_argument("--lease-timeout", type=float, help="Lease timeout in seconds")
    parser.add_argument("--process-timeout", type=float, help="Deadline per processing call in seconds")
    parser.add_argument("--workers", "-w", type=int, help="Number of concurrent claimants in this process")
    parser.add_argument("--repeat", type=float, help="Fire cycles every N seconds until interrupted")
    parser.add_argument("--max-tasks", "-m", type=int, help="Maximum tasks claimed per cycle")
    parser.add_argument("--processor", help="Processing callback as module:callable")
    parser.add_argument("--log-level", "-l", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging level (default: from config)")
    parser.add_argument("--log-file", help="Log to file instead of stderr")

    args = parser.parse_args(argv)

    try:
        config = Config(args.config, overrides=cli_overrides(args))
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return 1

    config.configure_logging(args.log_level, args.log_file)
    logger = logging.getLogger(__name__)

    store = None
    try:
        mode = config.get_mode()
        batch_size = config.get_batch_size()
        lease_timeout = config.get_lease_timeout().total_seconds()
        process_timeout = config.get_process_timeout()
        if args.max_tasks is not None and args.max_tasks < 1:
            raise ConfigurationError(f"--max-tasks must be at least 1, got {args.max_tasks}")

        logger.info("Starting task-lease worker")
        logger.info(f"Config file: {config.config_path}")
        logger.info(f"Mode: {mode}, batch size: {batch_size}, lease timeout: {lease_timeout}s")

        store = config.get_task_store()
        store.initialize()

        scheduler = CycleScheduler(
            store,
            build_processor(config, args.processor),
            build_schedules(config, args.workers, args.repeat),
            mode=mode,
            batch_size=batch_size,
            lease_timeout=lease_timeout,
            max_tasks=args.max_tasks,
            engine_options={
                'sort_field': config.get_sort_field(),
                'process_timeout': process_timeout,
            }
        )

        if args.repeat is None:
            scheduler.run_once()
        else:
            scheduler.start()
            try:
                while scheduler.is_running():
                    time.sleep(0.5)
            except KeyboardInterrupt:
                logger.info("Worker shutdown requested by user")
            finally:
                scheduler.stop()

        combined = scheduler.combined()
        logger.info(f"Total: {combined.completed}")

        print(f"\n🎉 Claim cycles completed!")
        print(f"👷 Claimants: {len(scheduler.schedules)}")
        print(f"📥 Tasks claimed: {combined.claimed}")
        print(f"✅ Tasks completed: {combined.completed}")
        print(f"❌ Tasks failed: {combined.failed}")

        for index, error in enumerate(scheduler.errors):
            if error is not None:
                logger.error(f"Claimant {index + 1} stopped on error: {error}")
                return 1
        return 0

    except KeyboardInterrupt:
        logger.info("Worker shutdown requested by user")
        return 1

    except Exception as e:
        logger.error(f"Worker failed: {str(e)}")
        logger.debug("Exception details:", exc_info=True)
        return 1

    finally:
        if store is not None:
            store.close()


if __name__ == "__main__":
    sys.exit(main())
