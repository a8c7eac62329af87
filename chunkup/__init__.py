"""
chunkup - Chunked, compressed, parallel SFTP uploads.

A source file is split into bounded-size parts, each part is gzip
compressed on its own and uploaded over its own SFTP session, and the
aggregate progress can be polled while the job runs.

Usage:
    from chunkup import ChunkedUploadEngine, ConnectionParams, SftpSessionFactory

    factory = SftpSessionFactory(ConnectionParams.from_env())
    engine = ChunkedUploadEngine(factory)

    result = await engine.upload_path(path, "/upload", job_id="backup-1")

    # Anywhere else, while the job runs
    percent = engine.progress("backup-1")
"""
from .errors import (
    AggregateJobError,
    ChunkingError,
    ChunkupError,
    PolicyError,
    SessionError,
    TransferError,
)
from .models import (
    Artifact,
    ArtifactResult,
    ConnectionParams,
    TransferPlan,
    TransferSettings,
    UploadStatus,
)
from .orchestrator import ChunkedUploadEngine, JobResult
from .services import (
    ChunkerService,
    ProgressTracker,
    SftpSessionFactory,
    TransferSessionManager,
)

__version__ = "0.1.0"
__all__ = [
    # Main
    "ChunkedUploadEngine",
    "JobResult",
    # Models
    "Artifact",
    "ArtifactResult",
    "ConnectionParams",
    "TransferPlan",
    "TransferSettings",
    "UploadStatus",
    # Services
    "ChunkerService",
    "ProgressTracker",
    "SftpSessionFactory",
    "TransferSessionManager",
    # Errors
    "ChunkupError",
    "PolicyError",
    "ChunkingError",
    "SessionError",
    "TransferError",
    "AggregateJobError",
]
