"""Parallel upload scheduler - bounded thread pool over a job's artifacts."""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import List, Optional
import asyncio
import logging
import threading
import time

from ..errors import AggregateJobError
from ..models import Artifact, ArtifactResult
from ..protocols import IProgressSink
from ..services.session import TransferSessionManager
from ..utils.events import EventEmitter
from .models import TransferJob

logger = logging.getLogger(__name__)


class ParallelUploadScheduler:
    """
    Uploads every artifact of a job on a pool of job.plan.parallelism threads.

    - Artifacts complete in any order; only the job's byte counter orders
      progress, and it only ever grows.
    - A failed artifact does not cancel its siblings. Every submitted
      artifact runs to completion, so a failed job can leave some parts on
      the remote side; AggregateJobError tells which.
    - Each artifact's temp file is released after its final attempt.
    """

    def __init__(
        self,
        session_manager: TransferSessionManager,
        progress: IProgressSink,
        events: Optional[EventEmitter] = None,
        max_retries: int = 0,
        retry_backoff: float = 1.0,
    ):
        self._session_manager = session_manager
        self._progress = progress
        self._events = events or EventEmitter()
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff

    async def run(
        self,
        job: TransferJob,
        remote_dir: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[ArtifactResult]:
        """
        Upload all artifacts and wait for every one of them.

        Returns:
            Results in sequence order when every artifact succeeded

        Raises:
            AggregateJobError: If at least one artifact failed or was skipped
                because the job was cancelled
        """
        workers = job.plan.parallelism
        logger.info(
            f"Uploading {len(job.artifacts)} artifacts of {job.name} "
            f"({job.artifact_bytes} bytes) with {workers} parallel workers"
        )

        loop = asyncio.get_running_loop()
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="chunkup-upload") as executor:
            futures = [
                loop.run_in_executor(
                    executor, self._upload_artifact, job, artifact, remote_dir, cancel_event
                )
                for artifact in job.artifacts
            ]
            results = await asyncio.gather(*futures)

        results = sorted(results, key=lambda r: r.sequence)
        uploaded = sum(1 for r in results if r.success)
        failed = len(results) - uploaded
        logger.info(f"Artifact uploads complete for {job.job_id}: {uploaded} successful, {failed} failed")

        if failed:
            cancelled = any(r.cancelled for r in results) or (
                cancel_event is not None and cancel_event.is_set()
            )
            raise AggregateJobError(job.job_id, results, cancelled=cancelled)
        return results

    def _upload_artifact(
        self,
        job: TransferJob,
        artifact: Artifact,
        remote_dir: str,
        cancel_event: Optional[threading.Event],
    ) -> ArtifactResult:
        """Worker body. Runs on a pool thread and never raises."""
        total = len(job.artifacts)
        try:
            if cancel_event is not None and cancel_event.is_set():
                result = ArtifactResult.skipped(artifact)
            else:
                self._events.emit("artifact_start", job.job_id, artifact)
                result = self._send_with_retry(artifact, remote_dir, cancel_event)
        finally:
            artifact.release()

        if result.success:
            percent = job.record_uploaded(artifact.size)
            self._progress.update(job.job_id, percent)
            logger.info(f"[{artifact.sequence}/{total}] Uploaded {artifact.remote_name} ({percent:.2f}%)")
            self._events.emit("artifact_complete", job.job_id, result)
            self._events.emit("progress", job.job_id, percent)
        else:
            logger.error(f"[{artifact.sequence}/{total}] Failed {artifact.remote_name}: {result.error}")
            self._events.emit("artifact_fail", job.job_id, result)
        return result

    def _send_with_retry(
        self,
        artifact: Artifact,
        remote_dir: str,
        cancel_event: Optional[threading.Event],
    ) -> ArtifactResult:
        attempts = 0
        while True:
            attempts += 1
            result = self._session_manager.send_artifact(artifact, remote_dir)
            if result.success or attempts > self._max_retries:
                return replace(result, attempts=attempts)

            delay = self._retry_backoff * (2 ** (attempts - 1))
            logger.warning(
                f"[part {artifact.sequence}] Attempt {attempts}/{self._max_retries + 1} failed, "
                f"retrying in {delay:.1f}s: {result.error}"
            )
            if cancel_event is not None:
                if cancel_event.wait(delay):
                    logger.info(f"[part {artifact.sequence}] Cancelled while waiting to retry")
                    return ArtifactResult.skipped(artifact, attempts=attempts)
            elif delay > 0:
                time.sleep(delay)
