"""
sessync: ship session logs to a remote table exactly once.

Usage:
    python -m sessync [--all-projects | --log-dir DIR] [--dry-run] [--no-dedup]
                      [--batch-size N]

By default the logs of the current project are read from
~/.claude/projects/<cwd with '/' replaced by '-'>/. Records already listed in
the delivery ledger (STATE_PATH) are skipped; re-run at any time to deliver
whatever failed last time.

Exit codes:
    0  everything delivered (or nothing to do)
    1  configuration or input error
    2  some records were rejected; re-run to retry them
    3  records were delivered but the ledger could not be saved
"""

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from sessync.config import Config
from sessync.errors import ConfigError, LedgerSaveError
from sessync.ledger import DeliveryLedger
from sessync.orchestrator import UploadOrchestrator, pending_records
from sessync.parser import all_projects_log_dir, discover_logs, parse_logs, project_log_dir
from sessync.sender import ResilientSender
from sessync.sink import BlobTableSink

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def _build_logger(log_dir: Path) -> logging.Logger:
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "sessync.log"

    logger = logging.getLogger("sessync")
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    logger.addHandler(console)
    logger.addHandler(fh)
    return logger


# ---------------------------------------------------------------------------
# Interrupts
# ---------------------------------------------------------------------------

class AbortFlag:
    """Set by SIGINT/SIGTERM; the sender checks it between attempts."""

    def __init__(self, logger: logging.Logger) -> None:
        self.logger = logger
        self.raised = False

    def install(self) -> None:
        signal.signal(signal.SIGINT, self._handle_interrupt)
        signal.signal(signal.SIGTERM, self._handle_interrupt)

    def _handle_interrupt(self, signum, frame):  # type: ignore[override]
        self.logger.warning(
            "Interrupt received. Finishing the current chunk and saving the ledger..."
        )
        self.raised = True

    def __call__(self) -> bool:
        return self.raised


# ---------------------------------------------------------------------------
# Arguments
# ---------------------------------------------------------------------------

def _parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="sessync",
        description=(
            "Upload session logs to a remote table with de-duplication, "
            "adaptive batch splitting and retries."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  # Upload logs of the current project\n"
            "  python -m sessync\n\n"
            "  # Upload logs of every project, 200 records per request\n"
            "  python -m sessync --all-projects --batch-size 200\n\n"
            "  # Show what would be uploaded\n"
            "  python -m sessync --dry-run\n"
        ),
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--all-projects",
        action="store_true",
        help="Read logs of every project instead of only the current one.",
    )
    source.add_argument(
        "--log-dir",
        metavar="DIR",
        default=None,
        help="Read .jsonl logs from this directory (recursively).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List records that would be uploaded, without uploading.",
    )
    parser.add_argument(
        "--no-dedup",
        action="store_true",
        help="Send every record even if the ledger says it was delivered.",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        metavar="N",
        help="Records per request. Overrides UPLOAD_BATCH_SIZE.",
    )
    args = parser.parse_args(argv)
    if args.batch_size is not None and args.batch_size < 1:
        parser.error("--batch-size must be at least 1")
    return args


def _resolve_log_dir(args: argparse.Namespace) -> Path:
    home = Path.home()
    if args.log_dir:
        return Path(args.log_dir).expanduser().resolve()
    if args.all_projects:
        return all_projects_log_dir(home)
    return project_log_dir(home, Path.cwd())


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list] = None) -> None:
    args = _parse_args(argv)

    # Validate everything, including the connection string, before connecting
    try:
        cfg = Config(require_credentials=not args.dry_run)
    except ConfigError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    logger = _build_logger(cfg.log_path)

    logger.info("=" * 60)
    logger.info("  sessync — session log uploader")
    logger.info("=" * 60)

    log_dir = _resolve_log_dir(args)
    if not log_dir.is_dir():
        logger.warning(f"No logs found: {log_dir} does not exist.")
        if not args.all_projects and not args.log_dir:
            logger.warning("Use --all-projects to upload logs of every project.")
        sys.exit(0)

    files = discover_logs(log_dir)
    deduplicate = cfg.deduplicate and not args.no_dedup
    batch_size = args.batch_size or cfg.batch_size

    logger.info(f"Source      : {log_dir}")
    logger.info(f"Destination : {cfg.destination}")
    logger.info(f"Files       : {len(files):,}")
    logger.info(f"Batch size  : {batch_size}  |  Dedup: {'on' if deduplicate else 'off'}")

    if not files:
        logger.info("No log files to process.")
        sys.exit(0)

    records = parse_logs(files, cfg.metadata(), logger)
    ledger = DeliveryLedger.load(cfg.state_path, logger)

    if args.dry_run:
        pending = pending_records(records, ledger, deduplicate)
        logger.info(f"[DRY RUN] {len(pending):,} of {len(records):,} record(s) would be uploaded:")
        for record in pending:
            logger.info(
                f"  - {record.record_id} | session {record.group_key} | "
                f"type {record.payload.get('type')}"
            )
        logger.info("[DRY RUN] Nothing was uploaded.")
        sys.exit(0)

    abort = AbortFlag(logger)
    sink = BlobTableSink(cfg.conn_str, max_request_bytes=cfg.max_request_bytes, logger=logger)
    sender = ResilientSender(
        sink,
        cfg.destination,
        policy=cfg.retry_policy(),
        should_abort=abort,
        logger=logger,
    )
    orchestrator = UploadOrchestrator(
        sender, cfg.state_path, deduplicate=deduplicate, logger=logger
    )

    abort.install()
    try:
        summary = orchestrator.run(records, ledger, batch_size)
    except LedgerSaveError as exc:
        logger.error(f"Records were delivered but the ledger could not be saved: {exc}")
        logger.warning(
            "The next run will re-send them; the destination's insert ids are the "
            "only protection against duplicates until the ledger is writable again."
        )
        sys.exit(3)

    logger.info("")
    logger.info("=" * 60)
    logger.info(
        f"  Summary: {summary.accepted:,} uploaded, {summary.rejected:,} rejected, "
        f"{summary.skipped:,} already delivered ({summary.considered:,} considered)"
    )
    if summary.rejected:
        logger.warning("  Re-run the same command to retry rejected records.")
    logger.info("=" * 60)

    sys.exit(2 if summary.rejected else 0)


if __name__ == "__main__":
    main()
