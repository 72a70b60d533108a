"""Recording of command runs for replay-based tests.

``rs-api --record FILE ...`` appends one JSON object per line to FILE with the
command line, the last HTTP exchange, the exit code and stdout. The test suite
replays each entry against :func:`replay_transport` and checks that the same
exit code and stdout come out.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import httpx

from .auth import PROXY_SECRET_HEADER, TOKEN_ENDPOINT

logger = logging.getLogger(__name__)

# Credentials, and headers httpx adds on its own
STRIPPED_REQUEST_HEADERS = frozenset(
    h.lower() for h in (
        "Authorization",
        PROXY_SECRET_HEADER,
        "User-Agent",
        "Host",
        "Accept",
        "Accept-Encoding",
        "Connection",
        "Content-Length",
    )
)

# Noise that only bloats recordings
STRIPPED_RESPONSE_HEADERS = frozenset(
    h.lower() for h in (
        "Cache-Control",
        "Connection",
        "Set-Cookie",
        "Strict-Transport-Security",
        "X-Request-Uuid",
        "Content-Length",
        "Content-Encoding",
        "Transfer-Encoding",
    )
)

# Flags whose value must not end up in a recording
_DROPPED_FLAGS = ("--record", "--host")
_MASKED_FLAGS = ("--key",)
FAKE_KEY = "test-key"


def _headers(raw: list[tuple[bytes, bytes]], stripped: frozenset[str]) -> dict[str, list[str]]:
    headers: dict[str, list[str]] = {}
    for name, value in raw:
        name_str = name.decode("latin-1")
        if name_str.lower() in stripped:
            continue
        headers.setdefault(name_str, []).append(value.decode("latin-1"))
    return headers


@dataclass
class RecordedExchange:
    """One HTTP request/response pair."""
    verb: str
    uri: str
    request_headers: dict[str, list[str]] = field(default_factory=dict)
    request_body: str = ""
    status: int = 200
    response_headers: dict[str, list[str]] = field(default_factory=dict)
    response_body: str = ""

    @classmethod
    def capture(cls, request: httpx.Request, response: httpx.Response) -> RecordedExchange:
        return cls(
            verb=request.method,
            uri=str(request.url),
            request_headers=_headers(request.headers.raw, STRIPPED_REQUEST_HEADERS),
            request_body=request.content.decode("utf-8", errors="replace"),
            status=response.status_code,
            response_headers=_headers(response.headers.raw, STRIPPED_RESPONSE_HEADERS),
            response_body=response.content.decode("utf-8", errors="replace"),
        )


@dataclass
class RecordingEntry:
    """One command run: arguments, the HTTP exchange, and what it printed."""
    cmd_args: list[str]
    exit_code: int
    stdout: str
    exchange: RecordedExchange | None = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecordingEntry:
        exchange = data.get("exchange")
        return cls(
            cmd_args=list(data["cmd_args"]),
            exit_code=int(data["exit_code"]),
            stdout=data.get("stdout", ""),
            exchange=RecordedExchange(**exchange) if exchange else None,
        )


class Recorder:
    """
    Recorder sink for :class:`rs_api.client.ApiClient`.

    Keeps the last exchange of the command; the OAuth token exchange is never
    kept since its query string carries the API key.
    """

    def __init__(self) -> None:
        self.last: RecordedExchange | None = None

    def __call__(self, request: httpx.Request, response: httpx.Response) -> None:
        if request.url.path == TOKEN_ENDPOINT:
            return
        self.last = RecordedExchange.capture(request, response)


def capture_cmd_args(argv: list[str]) -> list[str]:
    """Command line arguments safe to record: no host, no record file, a fake key."""
    recorded: list[str] = []
    args = iter(argv)
    for arg in args:
        flag, has_value, _ = arg.partition("=")
        if flag in _DROPPED_FLAGS:
            if not has_value:
                next(args, None)
            continue
        if flag in _MASKED_FLAGS:
            recorded += [flag, FAKE_KEY]
            if not has_value:
                next(args, None)
            continue
        recorded.append(arg)
    return recorded


def append_recording(path: str | Path, entry: RecordingEntry) -> None:
    """Append one entry to a newline-delimited JSON recording file."""
    with open(path, "a", encoding="utf-8") as f:
        f.write(entry.to_json() + "\n")


def load_recordings(path: str | Path) -> Iterator[RecordingEntry]:
    """Iterate over the entries of a recording file, skipping blank lines."""
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, 1):
            if not line.strip():
                continue
            try:
                yield RecordingEntry.from_dict(json.loads(line))
            except (ValueError, KeyError, TypeError) as e:
                raise ValueError(f"{path}:{lineno}: invalid recording entry: {e}") from e


def replay_transport(exchange: RecordedExchange) -> httpx.MockTransport:
    """
    Mock transport answering with a recorded response.

    The incoming request must match the recorded verb, path, query string and
    recorded request headers; a mismatch is answered with 599 and a
    description of the difference so the replayed command fails visibly.
    """
    recorded_url = httpx.URL(exchange.uri)

    def handler(request: httpx.Request) -> httpx.Response:
        problems = []
        if request.method != exchange.verb:
            problems.append(f"verb {request.method} != {exchange.verb}")
        if request.url.path != recorded_url.path:
            problems.append(f"path {request.url.path} != {recorded_url.path}")
        if sorted(request.url.params.multi_items()) != sorted(recorded_url.params.multi_items()):
            problems.append(f"query {request.url.query.decode()!r} != {recorded_url.query.decode()!r}")
        for name, values in exchange.request_headers.items():
            if request.headers.get_list(name) != values:
                problems.append(f"header {name} {request.headers.get_list(name)} != {values}")
        if exchange.request_body and request.content.decode("utf-8") != exchange.request_body:
            problems.append("request body differs")

        if problems:
            logger.error(f"Replay mismatch: {'; '.join(problems)}")
            return httpx.Response(599, text="; ".join(problems))

        headers = [(k, v) for k, values in exchange.response_headers.items() for v in values]
        return httpx.Response(
            exchange.status,
            headers=headers,
            content=exchange.response_body.encode("utf-8"),
        )

    return httpx.MockTransport(handler)
