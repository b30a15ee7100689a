"""Process the newest INBOX messages once, without listening for notifications."""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace

from loguru import logger

from inbox_triage.app.run import build_runtime, scan_backlog
from inbox_triage.config.logging_config import configure_logging
from inbox_triage.config.settings import load_settings
from inbox_triage.errors import ConfigError


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--max-results", type=int, default=None, help="Messages to scan (default: INITIAL_EMAILS_TO_FETCH)")
    parser.add_argument("--workers", type=int, default=None, help="Worker threads (default: NUM_WORKERS)")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings()
    except ConfigError as exc:
        print(f"[config] {exc}", file=sys.stderr)
        return 2

    if args.workers:
        settings = replace(settings, num_workers=args.workers)
    configure_logging(settings.log_level)

    runtime = build_runtime(settings)
    runtime.start()
    try:
        submitted = scan_backlog(runtime, args.max_results or settings.initial_emails_to_fetch)
    except KeyboardInterrupt:
        logger.warning("Interrupted, abandoning queued messages")
        runtime.shutdown(drain=False)
        return 130

    runtime.shutdown(drain=True)
    stats = runtime.pool.stats()
    logger.info(f"Run completed: submitted={submitted} {stats}")
    return 0 if stats.get("failed", 0) == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
