"""Value types shared by the ledger, the sender and the orchestrator."""

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from sessync.errors import ErrorKind


@dataclass(frozen=True)
class Record:
    """One log entry to deliver.

    ``record_id`` is stable across retries and re-runs and doubles as the
    remote idempotency token. ``group_key`` (the session id) is carried for
    log output only.
    """

    record_id: str
    payload: Mapping[str, Any]
    group_key: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.record_id:
            raise ValueError("Record id cannot be empty.")


@dataclass(frozen=True)
class Rejection:
    record_id: str
    reason: str
    kind: ErrorKind


@dataclass
class Outcome:
    """Accepted and rejected record ids for one send."""

    accepted: list = field(default_factory=list)
    rejected: list = field(default_factory=list)

    def extend(self, other: "Outcome") -> "Outcome":
        self.accepted.extend(other.accepted)
        self.rejected.extend(other.rejected)
        return self

    def reject_all(
        self, records: Iterable[Record], reason: str, kind: ErrorKind
    ) -> "Outcome":
        self.rejected.extend(Rejection(r.record_id, reason, kind) for r in records)
        return self

    @property
    def rejected_ids(self) -> list:
        return [r.record_id for r in self.rejected]


@dataclass(frozen=True)
class Summary:
    considered: int
    accepted: int
    rejected: int
    skipped: int = 0
    batch_label: Optional[str] = None
    accepted_ids: tuple = ()
    rejected_ids: tuple = ()

    @classmethod
    def empty(cls) -> "Summary":
        return cls(considered=0, accepted=0, rejected=0)


@dataclass(frozen=True)
class Row:
    """One row of a remote insert; ``insert_id`` is the idempotency token."""

    insert_id: str
    json: Mapping[str, Any]


@dataclass(frozen=True)
class Destination:
    """Three-part remote namespace: project / dataset / table."""

    project: str
    dataset: str
    table: str

    def __post_init__(self) -> None:
        for name in ("project", "dataset", "table"):
            if not getattr(self, name):
                raise ValueError(f"Destination {name} cannot be empty.")

    @classmethod
    def parse(cls, value: str) -> "Destination":
        """Parse ``project.dataset.table`` (``/`` also accepted as separator)."""
        parts = [p.strip() for p in value.strip().replace("/", ".").split(".")]
        if len(parts) != 3:
            raise ValueError(
                f"Destination must have three parts (project.dataset.table), got '{value}'."
            )
        return cls(*parts)

    def __str__(self) -> str:
        return f"{self.project}.{self.dataset}.{self.table}"
