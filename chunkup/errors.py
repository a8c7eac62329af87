"""Error taxonomy for chunked uploads."""
from typing import List, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ArtifactResult


class ChunkupError(Exception):
    """Base class for all engine errors."""


class PolicyError(ChunkupError, ValueError):
    """Invalid tunables or source size. Raised before any I/O."""


class ChunkingError(ChunkupError):
    """Local read/compress/write failure while splitting the source."""


class SessionError(ChunkupError):
    """Connect, authentication or channel-open failure for one artifact."""


class TransferError(ChunkupError):
    """I/O failure while sending one artifact."""


class AggregateJobError(ChunkupError):
    """
    One or more artifacts of a job failed.

    Carries every artifact result so callers can tell a job that left
    nothing on the remote side from one that left some parts behind.
    """

    def __init__(self, job_id: str, results: Sequence["ArtifactResult"], cancelled: bool = False):
        self.job_id = job_id
        self.results: List["ArtifactResult"] = sorted(results, key=lambda r: r.sequence)
        self.cancelled = cancelled
        reason = "cancelled" if cancelled else "failed"
        super().__init__(
            f"Job {job_id} {reason}: {len(self.failed)}/{len(self.results)} artifacts not uploaded "
            f"(parts {', '.join(str(r.sequence) for r in self.failed)})"
        )

    @property
    def failed(self) -> List["ArtifactResult"]:
        return [r for r in self.results if not r.success]

    @property
    def succeeded(self) -> List["ArtifactResult"]:
        return [r for r in self.results if r.success]

    @property
    def nothing_uploaded(self) -> bool:
        return not self.succeeded

    @property
    def partially_uploaded(self) -> bool:
        return bool(self.succeeded) and bool(self.failed)
