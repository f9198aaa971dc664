"""Discovery of session log files and JSON-Lines parsing into Records."""

import json
import logging
import socket
from pathlib import Path
from typing import Iterable, Optional

from sessync.records import Record

REQUIRED_FIELDS = ("uuid", "timestamp", "sessionId", "type", "message")

# camelCase input field -> output column
FIELD_MAP = {
    "uuid": "uuid",
    "timestamp": "timestamp",
    "sessionId": "session_id",
    "agentId": "agent_id",
    "isSidechain": "is_sidechain",
    "parentUuid": "parent_uuid",
    "userType": "user_type",
    "type": "type",
    "slug": "slug",
    "requestId": "request_id",
    "cwd": "cwd",
    "gitBranch": "git_branch",
    "version": "version",
    "message": "message",
    "toolUseResult": "tool_use_result",
}


def project_log_dir(home: Path, cwd: Path) -> Path:
    """Log directory of one project: the cwd with '/' replaced by '-'."""
    return Path(home) / ".claude" / "projects" / str(cwd).replace("/", "-")


def all_projects_log_dir(home: Path) -> Path:
    return Path(home) / ".claude" / "projects"


def discover_logs(root: Path) -> list:
    """Return all .jsonl files under root, sorted for deterministic order."""
    root = Path(root)
    if not root.is_dir():
        return []
    return sorted(f for f in root.rglob("*.jsonl") if f.is_file())


def parse_line(
    line: str, source_file: str, metadata: dict, hostname: str
) -> Record:
    """Build a Record from one JSON line. Raises ValueError for invalid lines."""
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError("line is not a JSON object")
    missing = [name for name in REQUIRED_FIELDS if data.get(name) is None]
    if missing:
        raise ValueError(f"missing field(s): {', '.join(missing)}")

    payload = {column: data.get(name) for name, column in FIELD_MAP.items()}
    payload.update(metadata)
    payload["hostname"] = hostname
    payload["source_file"] = source_file
    return Record(
        record_id=str(data["uuid"]),
        payload=payload,
        group_key=str(data["sessionId"]),
    )


def parse_log_file(
    path: Path,
    metadata: Optional[dict] = None,
    logger: Optional[logging.Logger] = None,
) -> list:
    logger = logger or logging.getLogger("sessync.parser")
    metadata = metadata or {}
    hostname = socket.gethostname()
    records = []
    skipped = 0

    with Path(path).open("r", encoding="utf-8") as fh:
        for line_num, line in enumerate(fh, 1):
            if not line.strip():
                continue
            try:
                records.append(parse_line(line, str(path), metadata, hostname))
            except ValueError as exc:
                skipped += 1
                logger.warning(f"Failed to parse line {line_num} in {path}: {exc}")

    logger.debug(f"Parsed {len(records)} record(s) from {path} ({skipped} skipped).")
    return records


def parse_logs(
    paths: Iterable[Path],
    metadata: Optional[dict] = None,
    logger: Optional[logging.Logger] = None,
) -> list:
    records = []
    for path in paths:
        records.extend(parse_log_file(path, metadata, logger))
    return records
