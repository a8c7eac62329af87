"""Orchestrator package - coordinates chunked upload jobs."""
from .core import ChunkedUploadEngine, new_job_id
from .models import JobResult, TransferJob
from .parallel import ParallelUploadScheduler

__all__ = ["ChunkedUploadEngine", "new_job_id", "JobResult", "TransferJob", "ParallelUploadScheduler"]
