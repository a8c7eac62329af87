"""
Protocols (Interfaces) for Dependency Inversion.

The engine only talks to the remote endpoint through ISessionFactory and
only reports progress through IProgressSink.
"""
from pathlib import Path
from typing import Protocol, runtime_checkable


@runtime_checkable
class ISessionHandle(Protocol):
    """One authenticated connection, used for a single artifact transfer."""

    def open(self) -> None:
        """Connect and authenticate."""
        ...

    def open_channel(self) -> None:
        """Open the transfer channel on the connected session."""
        ...

    def put(self, local_path: Path, remote_path: str) -> int:
        """Send one local file, return bytes sent."""
        ...

    def close(self) -> None:
        """Close channel then connection. Safe on partially opened handles."""
        ...


@runtime_checkable
class ISessionFactory(Protocol):
    """Opaque factory handed to the session manager."""

    def new_session(self) -> ISessionHandle:
        """Create a fresh, unopened session handle."""
        ...


@runtime_checkable
class IProgressSink(Protocol):
    """Interface for job progress storage."""

    def update(self, job_id: str, percent: float) -> None:
        ...

    def get(self, job_id: str) -> float:
        ...

    def clear(self, job_id: str) -> None:
        ...
