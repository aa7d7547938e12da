from __future__ import annotations

import json
from typing import Any

import pytest

from ztwipe.errors import SizeQueryError
from ztwipe.runner import CommandResult


class FakeRunner:
    """Scripted external command runner; unscripted commands exit 0

    An outcome of None stands for a binary that could not be started.
    """

    def __init__(self, exit_codes: dict[tuple[str, ...], Any] | None = None,
                 timeout: float | None = 30.0) -> None:
        self.exit_codes = exit_codes or {}
        self.timeout = timeout
        self.calls: list[list[str]] = []

    def run(self, cmd: list[str]) -> CommandResult:
        self.calls.append(list(cmd))
        for prefix, outcome in self.exit_codes.items():
            if tuple(cmd[: len(prefix)]) == prefix:
                if outcome == "timeout":
                    return CommandResult(None, stderr="timed out", timed_out=True)
                if outcome is None:
                    return CommandResult(None, stderr="No such file or directory")
                return CommandResult(outcome, stderr="" if outcome == 0 else "failed")
        return CommandResult(0)


class FakeRawDevice:
    """Simulated N-byte target recording every write and flush"""

    def __init__(self, size: int, max_write: int | None = None,
                 fail_write_on_pass: int | None = None,
                 fail_flush_on_pass: int | None = None,
                 size_error: bool = False) -> None:
        self._size = size
        self.max_write = max_write
        self.fail_write_on_pass = fail_write_on_pass
        self.fail_flush_on_pass = fail_flush_on_pass
        self.size_error = size_error
        self.current_pass = 0
        self.bytes_per_pass: dict[int, int] = {}
        self.write_calls = 0
        self.flushes: list[int] = []
        self.closed = False
        self.opened_path: str | None = None

    def opener(self, path: str) -> "FakeRawDevice":
        self.opened_path = path
        return self

    def __enter__(self) -> "FakeRawDevice":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.closed = True
        return False

    def size(self) -> int:
        if self.size_error:
            raise SizeQueryError("ioctl failed")
        return self._size

    def rewind(self) -> None:
        self.current_pass += 1
        self.bytes_per_pass[self.current_pass] = 0

    def write(self, data) -> int:
        self.write_calls += 1
        if self.fail_write_on_pass == self.current_pass:
            raise OSError(5, "Input/output error")
        n = len(data) if self.max_write is None else min(len(data), self.max_write)
        self.bytes_per_pass[self.current_pass] += n
        return n

    def sync(self) -> None:
        if self.fail_flush_on_pass == self.current_pass:
            raise OSError(5, "Input/output error")
        self.flushes.append(self.current_pass)


class FakeResponse:
    def __init__(self, body: Any, status_code: int = 200) -> None:
        self._body = body
        self.status_code = status_code
        self.text = body if isinstance(body, str) else json.dumps(body)

    def json(self) -> Any:
        if isinstance(self._body, str):
            raise ValueError("not JSON")
        return self._body


class FakeCustodyService:
    """In-memory recording service behind a requests.Session look-alike"""

    def __init__(self) -> None:
        self.headers: dict[str, str] = {}
        self.records: dict[tuple[str, str], tuple[int, int]] = {}
        self.requests: list[tuple[str, dict]] = []
        self.clock = 1_700_000_000
        self.closed = False

    def post(self, url: str, json: dict, timeout: float) -> FakeResponse:
        self.requests.append((url, json))
        if url.endswith("/record-wipe"):
            key = (json["cert_hash"], json["device_hash"])
            if key not in self.records:
                self.clock += 1
                self.records[key] = (self.clock, json["wipe_method"])
            return FakeResponse({"status": "ok"})
        if url.endswith("/verify-wipe"):
            key = (json["cert_hash"], json["device_hash"])
            if key not in self.records:
                return FakeResponse({"status": "ok", "verified": False})
            timestamp, method = self.records[key]
            return FakeResponse({"status": "ok", "verified": True,
                                 "timestamp": timestamp, "wipe_method": method})
        return FakeResponse({"status": "error", "message": "unknown endpoint"}, 404)

    def close(self) -> None:
        self.closed = True

    def posts_to(self, endpoint: str) -> list[dict]:
        return [body for url, body in self.requests if url.endswith(endpoint)]


class TickingClock:
    """Deterministic clock advancing one second per reading"""

    def __init__(self, start: int = 1_000) -> None:
        self.now = start

    def __call__(self) -> float:
        value = self.now
        self.now += 1
        return float(value)


@pytest.fixture
def fake_service() -> FakeCustodyService:
    return FakeCustodyService()


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()
