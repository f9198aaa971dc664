"""Durable record of which log records have already been delivered."""

import json
import logging
from pathlib import Path
from typing import Iterable, Optional, Union

from sessync.errors import LedgerSaveError

PathLike = Union[str, Path]


class DeliveryLedger:
    """Set of delivered record ids plus summary metadata, persisted as JSON.

    The ledger is loaded at the start of a run and saved once at the end. The
    id set only grows; membership tests are O(1) on average.

    On disk::

        {
          "last_upload_timestamp": "2024-12-25T10:00:00+00:00",
          "uploaded_uuids": ["uuid-1", "uuid-2"],
          "last_upload_batch_id": "3f0c...",
          "total_uploaded": 2
        }
    """

    def __init__(
        self,
        delivered: Optional[Iterable[str]] = None,
        last_batch_label: Optional[str] = None,
        last_delivered_at: Optional[str] = None,
        total_delivered: int = 0,
    ) -> None:
        self.delivered: set = set(delivered or ())
        self.last_batch_label = last_batch_label
        self.last_delivered_at = last_delivered_at
        self.total_delivered = total_delivered

    def __contains__(self, record_id: str) -> bool:
        return record_id in self.delivered

    def __len__(self) -> int:
        return len(self.delivered)

    def contains(self, record_id: str) -> bool:
        return record_id in self.delivered

    def merge(self, ids: Iterable[str], batch_label: str, timestamp: str) -> int:
        """Add delivered ids. Returns how many of them were new."""
        before = len(self.delivered)
        self.delivered.update(ids)
        added = len(self.delivered) - before
        self.last_batch_label = batch_label
        self.last_delivered_at = timestamp
        self.total_delivered += added
        return added

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "last_upload_timestamp": self.last_delivered_at,
            "uploaded_uuids": sorted(self.delivered),
            "last_upload_batch_id": self.last_batch_label,
            "total_uploaded": self.total_delivered,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DeliveryLedger":
        """Build a ledger from its on-disk form. Raises ValueError on bad shape."""
        if not isinstance(data, dict):
            raise ValueError("ledger root must be an object")

        ids = data.get("uploaded_uuids", [])
        if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
            raise ValueError("'uploaded_uuids' must be a list of strings")

        total = data.get("total_uploaded", 0)
        if isinstance(total, bool) or not isinstance(total, int) or total < 0:
            raise ValueError("'total_uploaded' must be a non-negative integer")

        label = data.get("last_upload_batch_id")
        stamp = data.get("last_upload_timestamp")
        for key, value in (("last_upload_batch_id", label), ("last_upload_timestamp", stamp)):
            if value is not None and not isinstance(value, str):
                raise ValueError(f"'{key}' must be a string or null")

        return cls(
            delivered=ids,
            last_batch_label=label,
            last_delivered_at=stamp,
            total_delivered=total,
        )

    @classmethod
    def load(
        cls, path: PathLike, logger: Optional[logging.Logger] = None
    ) -> "DeliveryLedger":
        """Load the ledger at ``path``.

        A missing file yields an empty ledger. A malformed file is discarded
        and an empty ledger returned, so the run can still make progress; the
        loss of state is logged as an error.
        """
        logger = logger or logging.getLogger("sessync.ledger")
        path = Path(path)

        if not path.exists():
            logger.info(f"No delivery ledger at {path}, starting a new one.")
            return cls()

        try:
            with path.open("r", encoding="utf-8") as fh:
                ledger = cls.from_dict(json.load(fh))
        except (ValueError, RecursionError) as exc:
            # JSONDecodeError and UnicodeDecodeError are ValueErrors; deep nesting recurses
            logger.error(
                f"Delivery ledger {path} is corrupt ({exc}); discarding it and "
                "starting fresh. Previously delivered records may be re-sent."
            )
            return cls()

        logger.info(
            f"Loaded delivery ledger: {ledger.total_delivered:,} records previously delivered."
        )
        return ledger

    def save(self, path: PathLike, logger: Optional[logging.Logger] = None) -> None:
        """Write the ledger atomically, creating parent directories."""
        logger = logger or logging.getLogger("sessync.ledger")
        path = Path(path)
        tmp = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as fh:
                json.dump(self.to_dict(), fh, indent=2)
            tmp.replace(path)  # atomic rename
        except OSError as exc:
            raise LedgerSaveError(f"Cannot write delivery ledger {path}: {exc}") from exc

        logger.info(
            f"Saved delivery ledger: {self.total_delivered:,} records delivered in total."
        )
