"""Command line entry point: python -m prnotify <job>"""

import argparse
import asyncio
import json
import sys

from prnotify.core.logging import get_logger, setup_logging
from prnotify.jobs import JOBS

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prnotify", description="Scheduled pull request reminders"
    )
    subparsers = parser.add_subparsers(dest="job", required=True)
    subparsers.add_parser("dispatch", help="Run every due schedule once")
    subparsers.add_parser("refresh-tokens", help="Refresh OAuth tokens that expire soon")
    subparsers.add_parser("migrate", help="Apply pending database migrations")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    try:
        result = asyncio.run(JOBS[args.job]())
    except KeyboardInterrupt:
        logger.warning("Interrupted", job=args.job)
        return 130
    except Exception as e:
        logger.error("Job failed", job=args.job, error=str(e), exc_info=True)
        return 1
    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
