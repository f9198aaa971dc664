import base64

from azure.core.exceptions import HttpResponseError

from sessync.records import Destination, Record

DEST = Destination("proj", "logs", "sessions")

VALID_KEY = base64.b64encode(b"k" * 64).decode("ascii")
VALID_CONN = (
    f"DefaultEndpointsProtocol=https;AccountName=acct;AccountKey={VALID_KEY};"
    "EndpointSuffix=core.windows.net"
)


def make_records(count: int, prefix: str = "uuid") -> list:
    return [
        Record(
            record_id=f"{prefix}-{i}",
            payload={"uuid": f"{prefix}-{i}", "message": {"n": i}},
            group_key="session-001",
        )
        for i in range(count)
    ]


def http_error(status: int, message: str = "") -> HttpResponseError:
    exc = HttpResponseError(message=message or f"{status} error")
    exc.status_code = status
    return exc


class Script:
    """Responder that raises the queued errors in order, then succeeds."""

    def __init__(self, *errors):
        self.errors = list(errors)

    def __call__(self, rows):
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error


class Always:
    """Responder that always raises the same error."""

    def __init__(self, error):
        self.error = error

    def __call__(self, rows):
        raise self.error


class RecordingSleep:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)
