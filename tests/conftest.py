"""Shared pytest fixtures for all tests."""
import gzip
import os
import threading
import time
from pathlib import Path
from typing import Dict, List

import pytest

from chunkup.errors import SessionError, TransferError
from chunkup.models import TransferSettings


class FakeSession:
    """In-memory stand-in for SftpSession."""

    def __init__(self, factory: "FakeSessionFactory", index: int):
        self._factory = factory
        self._index = index
        self.opened = False
        self.channel_open = False
        self.closed = False

    def open(self) -> None:
        self._factory._enter()
        self.opened = True
        if self._index < self._factory.refuse_auth:
            raise SessionError(f"Authentication failed for session {self._index}")

    def open_channel(self) -> None:
        self.channel_open = True

    def put(self, local_path: Path, remote_path: str) -> int:
        if self._factory.put_delay:
            time.sleep(self._factory.put_delay)
        name = remote_path.rsplit("/", 1)[-1]
        if any(marker in name for marker in self._factory.fail_transfer_for):
            raise TransferError(f"Connection reset while sending {name}")
        data = Path(local_path).read_bytes()
        with self._factory.lock:
            self._factory.remote[remote_path] = data
        return len(data)

    def close(self) -> None:
        self.closed = True
        if self.opened:
            self._factory._exit()


class FakeSessionFactory:
    """
    Session factory writing "uploads" into a dict.

    Args:
        refuse_auth: Number of sessions (in creation order) refusing auth
        fail_transfer_for: Name fragments whose transfer always fails
        put_delay: Seconds each put() blocks, to force overlap
    """

    def __init__(self, refuse_auth: int = 0, fail_transfer_for=(), put_delay: float = 0.0):
        self.refuse_auth = refuse_auth
        self.fail_transfer_for = tuple(fail_transfer_for)
        self.put_delay = put_delay
        self.remote: Dict[str, bytes] = {}
        self.sessions: List[FakeSession] = []
        self.lock = threading.Lock()
        self.active = 0
        self.peak_active = 0

    def new_session(self) -> FakeSession:
        with self.lock:
            session = FakeSession(self, len(self.sessions))
            self.sessions.append(session)
        return session

    def _enter(self) -> None:
        with self.lock:
            self.active += 1
            self.peak_active = max(self.peak_active, self.active)

    def _exit(self) -> None:
        with self.lock:
            self.active -= 1

    def reassemble(self) -> bytes:
        """Decompress remote parts ordered by part number and join them."""
        def part_number(path: str) -> int:
            return int(path.rsplit("_part", 1)[1].split("_", 1)[0])

        return b"".join(gzip.decompress(self.remote[p]) for p in sorted(self.remote, key=part_number))


@pytest.fixture
def make_factory():
    """Build FakeSessionFactory instances."""
    return FakeSessionFactory


@pytest.fixture
def factory():
    return FakeSessionFactory()


@pytest.fixture
def kb_settings(tmp_path):
    """
    Settings where one "MB" is 1 KiB, so size-policy scenarios run on small files.

    Returns:
        TransferSettings with work_dir under tmp_path
    """
    return TransferSettings(size_unit=1024, work_dir=tmp_path / "work", retry_backoff=0.0)


@pytest.fixture
def make_source(tmp_path):
    """Write a file of random bytes and return its path."""
    def _make(size: int, name: str = "data.bin") -> Path:
        path = tmp_path / name
        path.write_bytes(os.urandom(size))
        return path

    return _make
