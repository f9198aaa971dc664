"""End-to-end upload run: dedup gate, delivery, ledger update."""

import logging
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

from sessync.errors import LedgerSaveError
from sessync.ledger import DeliveryLedger
from sessync.records import Record, Summary
from sessync.sender import ResilientSender


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def pending_records(
    records: Sequence[Record], ledger: DeliveryLedger, deduplicate: bool = True
) -> list:
    """Records a run would hand to the sender.

    A repeated id within one input is always kept once; the ledger is
    consulted only when ``deduplicate`` is on.
    """
    seen: set = set()
    result = []
    for record in records:
        if record.record_id in seen:
            continue
        if deduplicate and ledger.contains(record.record_id):
            continue
        seen.add(record.record_id)
        result.append(record)
    return result


class UploadOrchestrator:
    """Sequences ledger lookups, the sender and the ledger update for one run.

    The orchestrator owns the ledger for the duration of a run. Only ids the
    sender reports as accepted are merged, and the ledger is saved only when
    something was accepted.
    """

    def __init__(
        self,
        sender: ResilientSender,
        state_path: Union[str, Path],
        deduplicate: bool = True,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = _utc_now,
        label_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        save_attempts: int = 3,
        save_retry_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if save_attempts < 1:
            raise ValueError("save_attempts must be at least 1.")
        self.sender = sender
        self.state_path = Path(state_path)
        self.deduplicate = deduplicate
        self.logger = logger or logging.getLogger("sessync.orchestrator")
        self.clock = clock
        self.label_factory = label_factory
        self.save_attempts = save_attempts
        self.save_retry_delay = save_retry_delay
        self.sleep = sleep

    def pending(self, records: Sequence[Record], ledger: DeliveryLedger) -> list:
        return pending_records(records, ledger, self.deduplicate)

    def run(
        self,
        records: Sequence[Record],
        ledger: DeliveryLedger,
        chunk_size: Optional[int] = None,
    ) -> Summary:
        records = list(records)
        if not records:
            return Summary.empty()

        to_send = self.pending(records, ledger)
        skipped = len(records) - len(to_send)
        if skipped:
            self.logger.info(f"Skipping {skipped:,} record(s) already delivered or repeated.")
        if not to_send:
            self.logger.info("No new records to upload.")
            return Summary(considered=len(records), accepted=0, rejected=0, skipped=skipped)

        outcome = self.sender.send(to_send, chunk_size)

        batch_label = None
        if outcome.accepted:
            batch_label = self.label_factory()
            added = ledger.merge(outcome.accepted, batch_label, self.clock().isoformat())
            self.logger.debug(f"Batch {batch_label}: {added:,} new id(s) recorded.")
            self._save(ledger)

        return Summary(
            considered=len(records),
            accepted=len(outcome.accepted),
            rejected=len(outcome.rejected),
            skipped=skipped,
            batch_label=batch_label,
            accepted_ids=tuple(outcome.accepted),
            rejected_ids=tuple(outcome.rejected_ids),
        )

    def run_once(self, records: Sequence[Record], chunk_size: Optional[int] = None) -> Summary:
        """Load the ledger, run, and leave the saved ledger behind."""
        ledger = DeliveryLedger.load(self.state_path, logger=self.logger)
        return self.run(records, ledger, chunk_size)

    def _save(self, ledger: DeliveryLedger) -> None:
        for attempt in range(1, self.save_attempts + 1):
            try:
                ledger.save(self.state_path, logger=self.logger)
                return
            except LedgerSaveError as exc:
                if attempt == self.save_attempts:
                    self.logger.error(
                        f"Ledger save failed after {attempt} attempt(s) — {exc}"
                    )
                    raise
                self.logger.warning(
                    f"Ledger save failed (attempt {attempt}/{self.save_attempts}), "
                    f"retrying in {self.save_retry_delay:g}s — {exc}"
                )
                self.sleep(self.save_retry_delay)
