"""
Outbox Job Runner

Runs one processor, pruner, dead-letter or health invocation from the
command line, for cron-style schedulers. Prints the result as JSON.

Usage:
    python -m outbox_relay.core.outbox.runner process --org-id <uuid>
    python -m outbox_relay.core.outbox.runner prune --retention-hours 48 --max-batch-size 1000
    python -m outbox_relay.core.outbox.runner dead-letter --max-delivery-attempts 5
    python -m outbox_relay.core.outbox.runner health

Exit codes:
    0  success (including a skipped run)
    1  the job failed
    2  invalid arguments (rejected by the parser) or organization id

Environment Variables:
    DATABASE_BACKEND / DATABASE_URL / SQLITE_PATH: see DatabaseConfig
    OUTBOX_*: see OutboxSettings
    LOG_LEVEL: Logging level (default: INFO)
    LOG_STRUCTURED: JSON log lines (default: true)
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from typing import Any, Dict, List, Optional

from ..config import get_settings
from ..database.adapter import close_database, get_database
from ..observability import configure_logging, init_tracing
from .exceptions import InvalidTenantError
from .factory import create_batch_processor, create_dlq_migrator, create_pruner
from .monitoring import OutboxMonitor
from .scope import TenantLogFilter

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_VALIDATION = 2

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def _bounded_int(minimum: int):
    def parse(value: str) -> int:
        try:
            number = int(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"invalid integer: {value!r}")
        if number < minimum:
            raise argparse.ArgumentTypeError(f"must be at least {minimum}, got {number}")
        return number
    return parse


positive_int = _bounded_int(1)
non_negative_int = _bounded_int(0)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="outbox_relay.core.outbox.runner",
        description="Run one outbox relay job",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    process = sub.add_parser("process", help="Deliver pending events for one organization")
    process.add_argument("--org-id", required=True, help="Organization UUID")

    settings = get_settings()
    prune = sub.add_parser("prune", help="Delete delivered events past retention")
    prune.add_argument("--retention-hours", type=non_negative_int, default=settings.retention_hours)
    prune.add_argument("--max-batch-size", type=positive_int, default=settings.prune_max_batch)

    dead_letter = sub.add_parser("dead-letter", help="Move exhausted events to the dead-letter store")
    dead_letter.add_argument("--max-delivery-attempts", type=positive_int, default=settings.max_attempts)

    sub.add_parser("health", help="Print outbox, cursor and dead-letter health")
    return parser


class OutboxRunner:
    """
    Executes one job with graceful shutdown.

    SIGTERM/SIGINT cancel the running job, so locks held by the processor
    are released on the way out.
    """

    def __init__(self, args: argparse.Namespace):
        self.args = args
        self._task: Optional[asyncio.Task] = None

    def _setup_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(sig, self._handle_shutdown_signal, sig)

    def _remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)

    def _handle_shutdown_signal(self, sig: signal.Signals):
        logger.info(f"Received {sig.name}, cancelling {self.args.command}")
        if self._task and not self._task.done():
            self._task.cancel()

    async def _execute(self) -> Dict[str, Any]:
        db = await get_database()
        settings = get_settings()
        command = self.args.command

        if command == "process":
            processor = create_batch_processor(db, settings)
            try:
                result = await processor.process(self.args.org_id)
            finally:
                await processor.broadcaster.close()
            return result.to_dict()

        if command == "prune":
            result = await create_pruner(db, settings).prune(
                retention_hours=self.args.retention_hours,
                max_batch_size=self.args.max_batch_size,
            )
            return result.to_dict()

        if command == "dead-letter":
            result = await create_dlq_migrator(db, settings).migrate(
                max_delivery_attempts=self.args.max_delivery_attempts,
            )
            return result.to_dict()

        return await OutboxMonitor(db).snapshot()

    async def run(self) -> int:
        self._setup_signal_handlers()
        self._task = asyncio.create_task(self._execute())
        try:
            output = await self._task
        except InvalidTenantError as e:
            logger.error(f"Invalid organization id: {e}")
            print(json.dumps({"success": False, "error": "ValidationError", "message": str(e)}))
            return EXIT_VALIDATION
        except asyncio.CancelledError:
            logger.warning(f"{self.args.command} cancelled")
            return EXIT_FAILURE
        except Exception as e:
            logger.error(f"{self.args.command} failed: {e}", exc_info=True)
            print(json.dumps({"success": False, "error": "Processing failed", "message": str(e)}))
            return EXIT_FAILURE
        finally:
            self._remove_signal_handlers()
            await close_database()

        print(json.dumps({"success": True, **output}, default=str))
        return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    configure_logging(
        level=os.getenv("LOG_LEVEL", "INFO"),
        structured=os.getenv("LOG_STRUCTURED", "true").lower() == "true",
        stream=sys.stderr,
        filters=[TenantLogFilter()],
    )
    init_tracing(otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"))

    args = build_parser().parse_args(argv)
    return asyncio.run(OutboxRunner(args).run())


if __name__ == "__main__":
    sys.exit(main())
