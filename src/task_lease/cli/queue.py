#!/usr/bin/env python
"""
Command-line interface for managing the task collection.
"""

import argparse
import logging
import sys
from typing import List, Optional

from task_lease import Config
from task_lease.claim.lease_policy import LeasePolicy
from task_lease.models import STATUS_FIELD, TaskStatus

logger = logging.getLogger(__name__)


def cmd_seed(args, config: Config, store) -> int:
    """Insert pending tasks."""
    if args.count < 1:
        logger.error("--count must be at least 1")
        return 1

    payloads = [{"name": f"{args.prefix}-{i + 1}"} for i in range(args.count)]
    ids = store.insert_tasks(payloads)
    logger.info(f"Seeded {len(ids)} pending tasks")
    print(f"Seeded {len(ids)} pending tasks")
    return 0


def cmd_status(args, config: Config, store) -> int:
    """Show task counts by status and how many leases have expired."""
    policy = LeasePolicy(config.get_lease_timeout())
    now = policy.now()

    counts = store.count_by_status()
    stale = store.find({"$and": [
        {STATUS_FIELD: TaskStatus.PROCESSING.value},
        policy.eligibility_filter(now)
    ]})

    print(f"\n📊 Task Status")
    print("=" * 50)
    for status in TaskStatus:
        print(f"{status.value:>12}: {counts.get(status.value, 0)}")
    others = {k: v for k, v in counts.items() if k not in {s.value for s in TaskStatus}}
    for status, count in sorted(others.items(), key=lambda item: str(item[0])):
        print(f"{str(status):>12}: {count}")
    print(f"{'total':>12}: {sum(counts.values())}")
    print(f"\nExpired leases (reclaimable): {len(stale)}")

    if args.verbose and stale:
        for task in stale:
            print(f"  {task.id} locked at {task.locked_at} by {task.locked_by}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description="task-lease queue management")
    parser.add_argument("--config", "-c", help="Path to configuration file")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # seed command
    seed_parser = subparsers.add_parser("seed", help="Insert pending tasks")
    seed_parser.add_argument("--count", "-n", type=int, default=25, help="Number of tasks (default: 25)")
    seed_parser.add_argument("--prefix", default="task", help="Name prefix for generated payloads")

    # status command
    status_parser = subparsers.add_parser("status", help="Show task counts")
    status_parser.add_argument("--verbose", "-v", action="store_true", help="List expired leases")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "seed": cmd_seed,
        "status": cmd_status,
    }

    store = None
    try:
        config = Config(args.config)
        config.configure_logging()
        store = config.get_task_store()
        store.initialize()
        return commands[args.command](args, config, store)
    except Exception as e:
        logger.error(f"Command failed: {str(e)}")
        logger.debug("Exception details:", exc_info=True)
        return 1
    finally:
        if store is not None:
            store.close()


if __name__ == "__main__":
    sys.exit(main())
