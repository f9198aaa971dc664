"""
Remote delivery sinks.

A sink performs one remote insert call: it takes a destination and an ordered
list of rows, each carrying its idempotency token, and either returns an
InsertResult (possibly listing per-row errors) or raises a transport error
for the whole call. Payload-too-large is always raised, never reported per row.

BlobTableSink stores tables as NDJSON blobs in Azure Blob Storage:

    container = <project>
    blob      = <dataset>/<table>/<sha256 of the chunk's insert ids>.jsonl

Re-sending an identical chunk maps to the same blob name and is a no-op, and
every line carries an ``insert_id`` column so queries can drop duplicates that
arrive through a different chunk grouping.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional, Protocol, Sequence

from azure.core.exceptions import HttpResponseError, ResourceExistsError
from azure.storage.blob import BlobServiceClient, ContentSettings

from sessync.records import Destination, Row

DEFAULT_MAX_REQUEST_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True)
class RowError:
    index: int
    reason: str


@dataclass
class InsertResult:
    errors: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class DeliverySink(Protocol):
    def insert(self, destination: Destination, rows: Sequence[Row]) -> InsertResult:
        ...

    def reconnect(self) -> None:
        ...


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------

def encode_rows(rows: Sequence[Row]) -> "tuple[list[str], list[RowError]]":
    """Serialize rows to NDJSON lines; unserializable rows become RowErrors."""
    lines: list = []
    errors: list = []
    for index, row in enumerate(rows):
        if not isinstance(row.json, Mapping):
            errors.append(RowError(index, "row payload must be a JSON object"))
            continue
        try:
            lines.append(
                json.dumps({**dict(row.json), "insert_id": row.insert_id}, ensure_ascii=False)
            )
        except (TypeError, ValueError) as exc:
            errors.append(RowError(index, f"row payload is not serializable: {exc}"))
    return lines, errors


def request_too_large(size: int, limit: int) -> HttpResponseError:
    exc = HttpResponseError(
        message=f"413 Request Entity Too Large: request size {size:,} exceeds limit {limit:,}"
    )
    exc.status_code = 413
    return exc


def chunk_token(rows: Sequence[Row]) -> str:
    digest = hashlib.sha256()
    for row in rows:
        digest.update(row.insert_id.encode("utf-8"))
        digest.update(b"\n")
    return digest.hexdigest()


# ---------------------------------------------------------------------------
# Azure Blob Storage
# ---------------------------------------------------------------------------

class BlobTableSink:
    """Writes each insert call as one NDJSON block blob."""

    def __init__(
        self,
        conn_str: str,
        max_request_bytes: int = DEFAULT_MAX_REQUEST_BYTES,
        logger: Optional[logging.Logger] = None,
        connection_timeout: int = 30,
        read_timeout: int = 120,
    ) -> None:
        self.conn_str = conn_str
        self.max_request_bytes = max_request_bytes
        self.logger = logger or logging.getLogger("sessync.sink")
        self.connection_timeout = connection_timeout
        self.read_timeout = read_timeout

        self._service: Optional[BlobServiceClient] = None
        self._ready_containers: set = set()

    def _client(self) -> BlobServiceClient:
        if self._service is None:
            self._service = BlobServiceClient.from_connection_string(
                self.conn_str,
                connection_timeout=self.connection_timeout,
                read_timeout=self.read_timeout,
            )
        return self._service

    def reconnect(self) -> None:
        """Drop the current client so the next call opens a fresh session."""
        if self._service is not None:
            self._service.close()
        self._service = None
        self.logger.debug("Blob service client reset.")

    def _container(self, name: str):
        container_client = self._client().get_container_client(name)
        if name not in self._ready_containers:
            try:
                container_client.create_container()
                self.logger.info(f"Created container '{name}'.")
            except ResourceExistsError:
                self.logger.debug(f"Container '{name}' already exists.")
            self._ready_containers.add(name)
        return container_client

    @staticmethod
    def blob_name(destination: Destination, rows: Sequence[Row]) -> str:
        return f"{destination.dataset}/{destination.table}/{chunk_token(rows)}.jsonl"

    def insert(self, destination: Destination, rows: Sequence[Row]) -> InsertResult:
        lines, errors = encode_rows(rows)
        if not lines:
            return InsertResult(errors)

        body = ("\n".join(lines) + "\n").encode("utf-8")
        if len(body) > self.max_request_bytes:
            raise request_too_large(len(body), self.max_request_bytes)

        blob_name = self.blob_name(destination, rows)
        blob_client = self._container(destination.project).get_blob_client(blob_name)
        try:
            blob_client.upload_blob(
                body,
                overwrite=False,
                content_settings=ContentSettings(content_type="application/x-ndjson"),
                metadata={
                    "uploaded_by": "sessync",
                    "uploaded_at": datetime.now(timezone.utc).isoformat(),
                    "row_count": str(len(lines)),
                },
            )
        except ResourceExistsError:
            self.logger.debug(f"Blob '{blob_name}' already present; chunk was delivered earlier.")
        return InsertResult(errors)


# ---------------------------------------------------------------------------
# In-process sink
# ---------------------------------------------------------------------------

class MemorySink:
    """Keeps rows in memory keyed by insert id.

    ``responder`` is called with the rows before each insert and may raise to
    simulate a remote failure. ``max_rows`` makes larger calls fail as too large.
    """

    def __init__(
        self,
        responder: Optional[Callable[[Sequence[Row]], None]] = None,
        max_rows: Optional[int] = None,
    ) -> None:
        self.responder = responder
        self.max_rows = max_rows
        self.tables: dict = {}
        self.calls: list = []
        self.reconnects = 0

    def reconnect(self) -> None:
        self.reconnects += 1

    def insert(self, destination: Destination, rows: Sequence[Row]) -> InsertResult:
        self.calls.append([row.insert_id for row in rows])
        if self.max_rows is not None and len(rows) > self.max_rows:
            raise request_too_large(len(rows), self.max_rows)
        if self.responder is not None:
            self.responder(rows)

        _, errors = encode_rows(rows)
        failed = {e.index for e in errors}
        table = self.tables.setdefault(str(destination), {})
        for index, row in enumerate(rows):
            if index not in failed:
                table[row.insert_id] = dict(row.json)
        return InsertResult(errors)

    def rows(self, destination: Destination) -> dict:
        return self.tables.get(str(destination), {})
