"""
Models for chunkup.

Immutable dataclasses for settings, plans and per-artifact results; the
mutable per-job state lives in orchestrator.models.
"""
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional
import os

from .errors import PolicyError

MB = 1024 * 1024


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise PolicyError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise PolicyError(f"{name} must be a number, got {raw!r}") from exc


class UploadStatus(Enum):
    """Outcome of one artifact transfer."""
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"  # Never attempted, job was cancelled


@dataclass(frozen=True)
class TransferSettings:
    """Immutable tunables for the chunking and threading policy."""
    chunk_mb: int = 10        # Target chunk size
    max_chunk_mb: int = 25    # Cap beyond which chunk growth stops
    max_threads: int = 15     # Max parallel uploads per job
    thread_pool: int = 20     # Max open sessions across all jobs of one engine
    max_file_mb: int = 600
    max_retries: int = 0
    retry_backoff: float = 1.0
    size_unit: int = MB
    work_dir: Optional[Path] = None
    compress_level: int = 6

    def validate(self) -> "TransferSettings":
        """Raise PolicyError on invalid values, return self otherwise."""
        for name in ("chunk_mb", "max_chunk_mb", "max_threads", "thread_pool", "max_file_mb", "size_unit"):
            value = getattr(self, name)
            if value <= 0:
                raise PolicyError(f"{name} must be positive, got {value}")
        if self.max_retries < 0:
            raise PolicyError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.retry_backoff < 0:
            raise PolicyError(f"retry_backoff must be >= 0, got {self.retry_backoff}")
        if not 0 <= self.compress_level <= 9:
            raise PolicyError(f"compress_level must be between 0 and 9, got {self.compress_level}")
        return self

    @property
    def max_file_bytes(self) -> int:
        return self.max_file_mb * self.size_unit

    @classmethod
    def from_env(cls) -> "TransferSettings":
        """Build settings from CHUNKUP_* environment variables."""
        defaults = cls()
        work_dir = os.getenv("CHUNKUP_WORK_DIR")
        return cls(
            chunk_mb=_env_int("CHUNKUP_CHUNK_MB", defaults.chunk_mb),
            max_chunk_mb=_env_int("CHUNKUP_MAX_CHUNK_MB", defaults.max_chunk_mb),
            max_threads=_env_int("CHUNKUP_MAX_THREADS", defaults.max_threads),
            thread_pool=_env_int("CHUNKUP_THREAD_POOL", defaults.thread_pool),
            max_file_mb=_env_int("CHUNKUP_MAX_FILE_MB", defaults.max_file_mb),
            max_retries=_env_int("CHUNKUP_MAX_RETRIES", defaults.max_retries),
            retry_backoff=_env_float("CHUNKUP_RETRY_BACKOFF", defaults.retry_backoff),
            work_dir=Path(work_dir) if work_dir else None,
        )


@dataclass(frozen=True)
class ConnectionParams:
    """SFTP endpoint and credentials."""
    host: str
    username: str
    password: Optional[str] = None
    port: int = 22
    timeout: float = 10.0
    remote_dir: str = "/upload"

    def __repr__(self) -> str:
        masked = "***" if self.password else None
        return (
            f"ConnectionParams(host={self.host!r}, port={self.port}, "
            f"username={self.username!r}, password={masked!r}, remote_dir={self.remote_dir!r})"
        )

    @classmethod
    def from_env(cls) -> "ConnectionParams":
        """Build connection parameters from SFTP_* environment variables."""
        host = os.getenv("SFTP_HOST")
        username = os.getenv("SFTP_USERNAME")
        if not host:
            raise PolicyError("SFTP_HOST environment variable is not set")
        if not username:
            raise PolicyError("SFTP_USERNAME environment variable is not set")
        return cls(
            host=host,
            username=username,
            password=os.getenv("SFTP_PASSWORD"),
            port=_env_int("SFTP_PORT", 22),
            timeout=_env_float("SFTP_TIMEOUT", 10.0),
            remote_dir=os.getenv("SFTP_REMOTE_DIR", "/upload"),
        )


@dataclass(frozen=True)
class TransferPlan:
    """Chunk count, worker count and window size derived for one source."""
    total_bytes: int
    file_size_mb: int
    part_count: int
    parallelism: int
    window_bytes: int


@dataclass
class Artifact:
    """One compressed, independently transferable chunk of a source file."""
    sequence: int
    path: Path
    remote_name: str
    size: int                 # Compressed bytes on disk
    source_offset: int
    source_length: int
    digest: str = ""          # blake3 of the compressed bytes

    def release(self) -> None:
        """Delete the backing temp file. Safe to call more than once."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


@dataclass(frozen=True)
class ArtifactResult:
    """Immutable result of transferring one artifact."""
    sequence: int
    remote_name: str
    status: UploadStatus = UploadStatus.SUCCESS
    size: int = 0             # Compressed bytes of the artifact
    sent: int = 0             # Bytes the remote side acknowledged
    attempts: int = 0
    digest: str = ""
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == UploadStatus.SUCCESS

    @property
    def cancelled(self) -> bool:
        return self.status == UploadStatus.CANCELLED

    @classmethod
    def ok(cls, artifact: Artifact, sent: Optional[int] = None, attempts: int = 1):
        return cls(
            sequence=artifact.sequence,
            remote_name=artifact.remote_name,
            status=UploadStatus.SUCCESS,
            size=artifact.size,
            sent=artifact.size if sent is None else sent,
            attempts=attempts,
            digest=artifact.digest,
        )

    @classmethod
    def fail(cls, artifact: Artifact, error: str, attempts: int = 1):
        return cls(
            sequence=artifact.sequence,
            remote_name=artifact.remote_name,
            status=UploadStatus.FAILED,
            size=artifact.size,
            attempts=attempts,
            digest=artifact.digest,
            error=error,
        )

    @classmethod
    def skipped(cls, artifact: Artifact, attempts: int = 0):
        return cls(
            sequence=artifact.sequence,
            remote_name=artifact.remote_name,
            status=UploadStatus.CANCELLED,
            size=artifact.size,
            attempts=attempts,
            digest=artifact.digest,
            error="Job cancelled",
        )
