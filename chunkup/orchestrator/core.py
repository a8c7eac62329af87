"""Core engine - plans, chunks and uploads one source per call."""
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Union
import asyncio
import logging
import shutil
import tempfile
import threading
import time
import uuid

from ..errors import AggregateJobError, ChunkingError, PolicyError
from ..models import TransferSettings
from ..protocols import IProgressSink, ISessionFactory
from ..services import size_policy
from ..services.chunker import ChunkerService, job_timestamp
from ..services.progress import ProgressTracker
from ..services.session import TransferSessionManager
from ..utils.events import EventEmitter
from .models import JobResult, TransferJob
from .parallel import ParallelUploadScheduler

logger = logging.getLogger(__name__)


def new_job_id(name: str) -> str:
    """Unique job id derived from the source name."""
    return f"{Path(name).name}-{uuid.uuid4().hex[:8]}"


class ChunkedUploadEngine:
    """
    Splits a source into compressed parts and uploads them in parallel.

    Follows:
    - Dependency Injection (session factory and progress store injected)
    - Single Responsibility (policy, chunking, sessions and scheduling
      live in their own services)

    Usage:
        factory = SftpSessionFactory(ConnectionParams.from_env())
        engine = ChunkedUploadEngine(factory, TransferSettings.from_env())

        result = await engine.upload_path(Path("backup.tar"), "/upload")

        # From another task or thread while the upload runs
        engine.progress(job_id)

    Events (subscribe with engine.on(name, callback)):
        job_start(job), chunking_complete(job),
        artifact_start(job_id, artifact), artifact_complete(job_id, result),
        artifact_fail(job_id, result), progress(job_id, percent),
        job_finish(job_result)
    """

    def __init__(
        self,
        session_factory: ISessionFactory,
        settings: Optional[TransferSettings] = None,
        progress: Optional[IProgressSink] = None,
        events: Optional[EventEmitter] = None,
        chunker: Optional[ChunkerService] = None,
    ):
        self._settings = (settings or TransferSettings()).validate()
        self._progress = progress or ProgressTracker()
        self._events = events or EventEmitter()
        self._chunker = chunker or ChunkerService(compress_level=self._settings.compress_level)
        self._session_manager = TransferSessionManager(
            session_factory, max_sessions=self._settings.thread_pool
        )
        self._scheduler = ParallelUploadScheduler(
            self._session_manager,
            self._progress,
            self._events,
            max_retries=self._settings.max_retries,
            retry_backoff=self._settings.retry_backoff,
        )

    @property
    def settings(self) -> TransferSettings:
        return self._settings

    def on(self, event_name: str, callback: Callable) -> None:
        """Subscribe to an engine event."""
        self._events.on(event_name, callback)

    def progress(self, job_id: str) -> float:
        """Current percent for job_id, 0.0 when unknown or finished."""
        return self._progress.get(job_id)

    async def upload(
        self,
        source: BinaryIO,
        total_bytes: int,
        remote_dir: str,
        *,
        name: str,
        job_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> JobResult:
        """
        Upload one source and wait until every part has finished.

        Args:
            source: Open binary stream of exactly total_bytes
            total_bytes: Source length
            remote_dir: Remote directory receiving the parts
            name: Original file name, used for part names
            job_id: Progress key; generated from name when omitted
            cancel_event: Set to skip parts that have not started yet

        Returns:
            JobResult with one result per part

        Raises:
            PolicyError: Invalid settings or source too large
            ChunkingError: Local split failure, nothing uploaded
            AggregateJobError: One or more parts failed or were cancelled
        """
        if total_bytes < 0:
            raise PolicyError(f"total_bytes must be >= 0, got {total_bytes}")
        if total_bytes > self._settings.max_file_bytes:
            raise PolicyError(
                f"{name} is {total_bytes} bytes, larger than the {self._settings.max_file_mb} MB limit"
            )

        plan = size_policy.plan(total_bytes, self._settings)
        job = TransferJob(
            job_id=job_id or new_job_id(name),
            name=Path(name).name,
            total_bytes=total_bytes,
            plan=plan,
            timestamp=job_timestamp(),
        )
        logger.info(
            f"Job {job.job_id}: {job.name} ({plan.file_size_mb} MB) -> "
            f"{plan.part_count} parts, {plan.parallelism} workers"
        )

        work_dir = self._make_work_dir()
        started = time.monotonic()
        self._events.emit("job_start", job)
        try:
            job.artifacts = await asyncio.to_thread(
                self._chunker.split, source, total_bytes, job.name, plan, job.timestamp, work_dir
            )
            self._events.emit("chunking_complete", job)
            results = await self._scheduler.run(job, remote_dir, cancel_event)
        except AggregateJobError as e:
            self._events.emit("job_finish", self._build_result(job, remote_dir, e.results, started, str(e)))
            raise
        finally:
            self._progress.clear(job.job_id)
            for artifact in job.artifacts:
                artifact.release()
            shutil.rmtree(work_dir, ignore_errors=True)

        result = self._build_result(job, remote_dir, results, started)
        logger.info(f"Job {job.job_id} complete: {len(results)} parts in {result.duration:.2f}s")
        for remote_name, digest in result.manifest:
            logger.debug(f"  {remote_name} blake3={digest}")
        self._events.emit("job_finish", result)
        return result

    async def upload_path(
        self,
        path: Union[str, Path],
        remote_dir: str,
        *,
        job_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> JobResult:
        """Upload a local file. See upload()."""
        file_path = Path(path)
        try:
            total_bytes = file_path.stat().st_size
            source = open(file_path, "rb")
        except OSError as e:
            raise ChunkingError(f"Cannot open {file_path}: {e}") from e

        with source:
            return await self.upload(
                source,
                total_bytes,
                remote_dir,
                name=file_path.name,
                job_id=job_id,
                cancel_event=cancel_event,
            )

    def _make_work_dir(self) -> Path:
        base = self._settings.work_dir
        try:
            if base is not None:
                Path(base).mkdir(parents=True, exist_ok=True)
            return Path(tempfile.mkdtemp(prefix="chunkup_", dir=base))
        except OSError as e:
            raise ChunkingError(f"Cannot create work directory under {base or tempfile.gettempdir()}: {e}") from e

    @staticmethod
    def _build_result(job, remote_dir, results, started, error=None) -> JobResult:
        return JobResult(
            job_id=job.job_id,
            name=job.name,
            remote_dir=remote_dir,
            part_count=job.plan.part_count,
            parallelism=job.plan.parallelism,
            results=list(results),
            duration=time.monotonic() - started,
            error=error,
        )
