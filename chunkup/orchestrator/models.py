"""Orchestrator data models."""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
import threading

from ..models import Artifact, ArtifactResult, TransferPlan


@dataclass
class TransferJob:
    """One end-to-end transfer of a single source, owned by one upload call."""
    job_id: str
    name: str
    total_bytes: int
    plan: TransferPlan
    timestamp: str
    artifacts: List[Artifact] = field(default_factory=list)
    uploaded_bytes: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def artifact_bytes(self) -> int:
        """Total compressed bytes across all artifacts."""
        return sum(a.size for a in self.artifacts)

    def record_uploaded(self, size: int) -> float:
        """Add one artifact's bytes to the counter and return the new percent."""
        with self._lock:
            self.uploaded_bytes += size
            uploaded = self.uploaded_bytes
        total = self.artifact_bytes
        if total <= 0:
            return 100.0
        return uploaded / total * 100


@dataclass
class JobResult:
    """Result of a finished job."""
    job_id: str
    name: str
    remote_dir: str
    part_count: int
    parallelism: int
    results: List[ArtifactResult]
    duration: float = 0.0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None and all(r.success for r in self.results)

    @property
    def uploaded_bytes(self) -> int:
        return sum(r.size for r in self.results if r.success)

    @property
    def remote_names(self) -> List[str]:
        return [r.remote_name for r in sorted(self.results, key=lambda r: r.sequence)]

    @property
    def manifest(self) -> List[Tuple[str, str]]:
        """(remote_name, blake3 of the compressed part) in reassembly order."""
        return [(r.remote_name, r.digest) for r in sorted(self.results, key=lambda r: r.sequence)]
