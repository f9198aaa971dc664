"""
Resilient chunked sender.

Records are partitioned into consecutive chunks and sent one chunk at a time.
Each failed call is classified:

    payload too large   split the chunk in half and send both halves
                        (a single record that is still too large is rejected)
    transient           retry the same chunk with exponential back-off
    connection          recreate the client, then retry on a longer track
    fatal               reject the chunk immediately

A short fixed delay separates sibling chunks so multi-chunk runs do not trip
remote rate limits. The sender never touches the delivery ledger; it only
reports which record ids were accepted or rejected.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from sessync.errors import ErrorKind, classify, describe, is_retryable
from sessync.records import Destination, Outcome, Record, Rejection, Row
from sessync.sink import DeliverySink, InsertResult

ABORTED = "aborted"


@dataclass
class RetryPolicy:
    chunk_size: int = 500

    # Transient track (5xx, throttling)
    max_retries: int = 3
    base_delay: float = 2.0
    max_delay: float = 32.0

    # Connection track (DNS, resets, session timeouts)
    max_connection_retries: int = 5
    connection_base_delay: float = 2.0
    connection_max_delay: float = 60.0

    # Pause between sibling chunks, in seconds
    batch_delay: float = 0.1

    def backoff(self, attempt: int) -> float:
        """Delay before transient retry number ``attempt`` (1-based)."""
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)

    def connection_backoff(self, attempt: int) -> float:
        return min(self.connection_base_delay * 2 ** (attempt - 1), self.connection_max_delay)


class ResilientSender:
    """Delivers records to one destination through a DeliverySink."""

    def __init__(
        self,
        sink: DeliverySink,
        destination: Destination,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        should_abort: Optional[Callable[[], bool]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.sink = sink
        self.destination = destination
        self.policy = policy or RetryPolicy()
        self.sleep = sleep
        self.should_abort = should_abort or (lambda: False)
        self.logger = logger or logging.getLogger("sessync.sender")

    def send(self, records: Sequence[Record], chunk_size: Optional[int] = None) -> Outcome:
        """Send ``records`` in chunks of at most ``chunk_size``; return the Outcome."""
        size = self.policy.chunk_size if chunk_size is None else chunk_size
        if size < 1:
            raise ValueError(f"Chunk size must be at least 1, got {size}.")

        records = list(records)
        if not records:
            return Outcome()

        chunks = [records[i:i + size] for i in range(0, len(records), size)]
        self.logger.info(
            f"Sending {len(records):,} record(s) to {self.destination} in "
            f"{len(chunks)} chunk(s) of up to {size}."
        )
        outcome = self._send_siblings(chunks, parent="")
        self.logger.info(
            f"Delivery finished: {len(outcome.accepted):,} accepted, "
            f"{len(outcome.rejected):,} rejected."
        )
        return outcome

    # ------------------------------------------------------------------
    # Recursion
    # ------------------------------------------------------------------

    def _send_siblings(self, chunks: list, parent: str) -> Outcome:
        outcome = Outcome()
        total = len(chunks)
        for index, chunk in enumerate(chunks):
            if self.should_abort():
                for remaining in chunks[index:]:
                    outcome.reject_all(remaining, ABORTED, ErrorKind.FATAL)
                self.logger.warning(
                    f"Aborted: {sum(len(c) for c in chunks[index:]):,} record(s) left unsent."
                )
                break
            if index:
                self.sleep(self.policy.batch_delay)
            name = f"{parent}.{index + 1}" if parent else f"{index + 1}/{total}"
            outcome.extend(self._send_chunk(chunk, name))
        return outcome

    def _send_chunk(self, chunk: list, name: str) -> Outcome:
        rows = [Row(insert_id=r.record_id, json=r.payload) for r in chunk]
        transient_retries = 0
        connection_retries = 0

        while True:
            if self.should_abort():
                return Outcome().reject_all(chunk, ABORTED, ErrorKind.FATAL)

            try:
                result = self.sink.insert(self.destination, rows)
            except Exception as exc:
                kind = classify(exc)
                reason = describe(exc)
            else:
                return self._fold(chunk, result, name)

            if kind is ErrorKind.PAYLOAD_TOO_LARGE:
                if len(chunk) == 1:
                    self.logger.error(
                        f"Chunk {name}: record {chunk[0].record_id} is too large to send on its own — {reason}"
                    )
                    return Outcome().reject_all(chunk, reason, kind)
                mid = len(chunk) // 2
                self.logger.warning(
                    f"Chunk {name}: too large ({len(chunk)} records), "
                    f"splitting into {mid} and {len(chunk) - mid}."
                )
                return self._send_siblings([chunk[:mid], chunk[mid:]], parent=name)

            if kind is ErrorKind.TRANSIENT and transient_retries < self.policy.max_retries:
                transient_retries += 1
                delay = self.policy.backoff(transient_retries)
                self.logger.warning(
                    f"Chunk {name}: transient error (retry {transient_retries}/"
                    f"{self.policy.max_retries}), retrying in {delay:g}s — {reason}"
                )
                self.sleep(delay)
                continue

            if kind is ErrorKind.CONNECTION and connection_retries < self.policy.max_connection_retries:
                connection_retries += 1
                delay = self.policy.connection_backoff(connection_retries)
                self.logger.warning(
                    f"Chunk {name}: connection error (reset {connection_retries}/"
                    f"{self.policy.max_connection_retries}), reconnecting in {delay:g}s — {reason}"
                )
                try:
                    self.sink.reconnect()
                except Exception as reconnect_exc:
                    reason = f"{reason} | reconnect failed: {describe(reconnect_exc)}"
                    self.logger.error(f"Chunk {name}: {reason}")
                    return Outcome().reject_all(chunk, reason, kind)
                self.sleep(delay)
                continue

            if not is_retryable(kind):
                self.logger.error(f"Chunk {name}: non-retryable error — {reason}")
            else:
                self.logger.error(
                    f"Chunk {name}: failed after {transient_retries + connection_retries} "
                    f"retries — {reason}"
                )
            return Outcome().reject_all(chunk, reason, kind)

    def _fold(self, chunk: list, result: InsertResult, name: str) -> Outcome:
        if result.ok:
            self.logger.debug(f"Chunk {name}: {len(chunk)} record(s) delivered.")
            return Outcome(accepted=[record.record_id for record in chunk])

        failed = {}
        for error in result.errors:
            if 0 <= error.index < len(chunk):
                failed[error.index] = error.reason

        outcome = Outcome()
        for index, record in enumerate(chunk):
            if index in failed:
                outcome.rejected.append(
                    Rejection(record.record_id, failed[index], ErrorKind.FATAL)
                )
            else:
                outcome.accepted.append(record.record_id)

        self.logger.warning(
            f"Chunk {name}: {len(failed)} of {len(chunk)} row(s) rejected by the destination."
        )
        for index, reason in sorted(failed.items()):
            self.logger.debug(f"  row {index} ({chunk[index].record_id}): {reason}")
        return outcome
