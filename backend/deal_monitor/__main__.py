"""Run one batch: pull unprocessed wholesaler emails, extract deals, log them to the sheet.

Settings come from environment variables or a ``.env`` file, see
``deal_monitor.config.AppConfig``. Required:
  EMAIL_USERNAME, EMAIL_PASSWORD (Gmail app password), GEMINI_API_KEY

Exit codes: 0 run finished (individual messages may still have failed),
1 run aborted, 2 configuration error.
"""

from __future__ import annotations

import argparse
import imaplib
import sys
from typing import List, Optional

import structlog

from deal_monitor.config import ConfigurationError, load_config
from deal_monitor.email.client import MailboxError
from deal_monitor.extraction.pipeline import run
from deal_monitor.logging_config import setup_logging

logger = structlog.get_logger(__name__)


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="deal-monitor", description=__doc__.splitlines()[0])
    parser.add_argument("--max-threads", type=int, default=None, help="override MAX_THREADS_PER_RUN for this run")
    parser.add_argument("--log-level", default=None, help="override LOG_LEVEL (DEBUG, INFO, ...)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    try:
        config = load_config()
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    setup_logging(
        level=args.log_level or config.log_level,
        log_file=config.log_file,
        json_console=config.log_json,
    )
    if args.max_threads is not None and args.max_threads < 1:
        print("--max-threads must be at least 1", file=sys.stderr)
        return 2

    try:
        run(config, max_threads=args.max_threads)
    except (MailboxError, imaplib.IMAP4.error, OSError) as exc:
        logger.error("run_aborted", error=str(exc))
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
