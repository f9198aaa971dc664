"""Settings read from the environment (and a ``.env`` file, if present)."""

import base64
import binascii
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from sessync.errors import ConfigError
from sessync.records import Destination
from sessync.sender import RetryPolicy

_DEFAULTS = {
    "UPLOAD_BATCH_SIZE": 500,
    "MAX_RETRIES": 3,
    "RETRY_BASE_DELAY": 2,
    "RETRY_MAX_DELAY": 32,
    "MAX_CONNECTION_RETRIES": 5,
    "CONNECTION_BASE_DELAY": 2,
    "CONNECTION_MAX_DELAY": 60,
    "BATCH_DELAY_MS": 100,
    "MAX_REQUEST_MB": 10,
    "ENABLE_DEDUPLICATION": "true",
    "STATE_PATH": "./.sessync/upload-state.json",
    "LOG_PATH": "./logs",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _int(name: str, minimum: int = 0) -> int:
    raw = os.getenv(name, str(_DEFAULTS[name]))
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got '{raw}'.")
    if value < minimum:
        raise ConfigError(f"{name} must be at least {minimum}, got {value}.")
    return value


def _float(name: str) -> float:
    raw = os.getenv(name, str(_DEFAULTS[name]))
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got '{raw}'.")
    if value < 0:
        raise ConfigError(f"{name} cannot be negative.")
    return value


def _bool(name: str) -> bool:
    raw = os.getenv(name, str(_DEFAULTS[name])).strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ConfigError(f"{name} must be true or false, got '{raw}'.")


class Config:
    def __init__(self, require_credentials: bool = True, env_file: Optional[str] = None) -> None:
        load_dotenv(env_file)

        self.conn_str: str = os.getenv("AZURE_CONN_STR", "").strip()
        destination = os.getenv("DESTINATION", "").strip()
        if not destination:
            raise ConfigError(
                "DESTINATION is not set. Use the form project.dataset.table."
            )
        try:
            self.destination = Destination.parse(destination)
        except ValueError as exc:
            raise ConfigError(str(exc))

        self.batch_size: int = _int("UPLOAD_BATCH_SIZE", minimum=1)
        self.max_retries: int = _int("MAX_RETRIES")
        self.retry_base_delay: float = _float("RETRY_BASE_DELAY")
        self.retry_max_delay: float = _float("RETRY_MAX_DELAY")
        self.max_connection_retries: int = _int("MAX_CONNECTION_RETRIES")
        self.connection_base_delay: float = _float("CONNECTION_BASE_DELAY")
        self.connection_max_delay: float = _float("CONNECTION_MAX_DELAY")
        self.batch_delay: float = _int("BATCH_DELAY_MS") / 1000
        self.max_request_bytes: int = _int("MAX_REQUEST_MB", minimum=1) * 1024 * 1024
        self.deduplicate: bool = _bool("ENABLE_DEDUPLICATION")
        self.state_path = Path(os.getenv("STATE_PATH", _DEFAULTS["STATE_PATH"]))
        self.log_path = Path(os.getenv("LOG_PATH", _DEFAULTS["LOG_PATH"]))

        # Team metadata stamped on every row
        self.developer_id: str = os.getenv("DEVELOPER_ID", "")
        self.user_email: str = os.getenv("USER_EMAIL", "")
        self.project_name: str = os.getenv("PROJECT_NAME", "")

        if require_credentials:
            if not self.conn_str:
                raise ConfigError(
                    "AZURE_CONN_STR not set. Copy .env.template to .env and fill in your credentials."
                )
            validate_connection_string(self.conn_str)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            chunk_size=self.batch_size,
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            max_connection_retries=self.max_connection_retries,
            connection_base_delay=self.connection_base_delay,
            connection_max_delay=self.connection_max_delay,
            batch_delay=self.batch_delay,
        )

    def metadata(self) -> dict:
        return {
            "developer_id": self.developer_id,
            "user_email": self.user_email,
            "project_name": self.project_name,
        }


def validate_connection_string(conn_str: str) -> None:
    """Check the shape of an Azure Storage connection string before connecting."""
    parts = {}
    for segment in conn_str.strip().split(";"):
        segment = segment.strip()
        if not segment:
            continue
        if "=" not in segment:
            raise ConfigError(
                f"Malformed AZURE_CONN_STR: segment '{segment}' has no '=' separator."
            )
        key, _, value = segment.partition("=")
        parts[key.strip()] = value.strip()

    for required in ("AccountName", "AccountKey", "DefaultEndpointsProtocol"):
        if not parts.get(required):
            raise ConfigError(f"AZURE_CONN_STR is missing the '{required}' field.")

    # partition() keeps the '=' padding of the key, but be lenient if it was lost
    key = parts["AccountKey"]
    padded = key + "=" * (-len(key) % 4)
    try:
        base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError):
        raise ConfigError(
            "AZURE_CONN_STR AccountKey is not valid base64; it is corrupted or truncated."
        )

    if parts["DefaultEndpointsProtocol"].lower() != "https":
        raise ConfigError(
            "AZURE_CONN_STR uses a non-HTTPS protocol. Set DefaultEndpointsProtocol=https."
        )
