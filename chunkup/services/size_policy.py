"""
Size policy - derives part count, parallelism and window size.

All arithmetic is integer floor division on whole size units (MB by
default). Results that would be 0 are clamped to 1 so a tiny or empty
file is still one part handled by one worker.
"""
import logging

from ..errors import PolicyError
from ..models import MB, TransferPlan, TransferSettings

logger = logging.getLogger(__name__)


def file_size_mb(total_bytes: int, size_unit: int = MB) -> int:
    """Whole size units in total_bytes (floored)."""
    if total_bytes < 0:
        raise PolicyError(f"total_bytes must be >= 0, got {total_bytes}")
    if size_unit <= 0:
        raise PolicyError(f"size_unit must be positive, got {size_unit}")
    return total_bytes // size_unit


def part_count(size_mb: int, chunk_mb: int, max_chunk_mb: int) -> int:
    """
    Number of parts for a source of size_mb units.

    Files whose chunk count at chunk_mb would exceed max_chunk_mb are split
    by max_chunk_mb instead, so very large files get bigger parts rather
    than unbounded part counts.
    """
    if size_mb < 0:
        raise PolicyError(f"file size must be >= 0, got {size_mb}")
    if chunk_mb <= 0:
        raise PolicyError(f"chunk_mb must be positive, got {chunk_mb}")
    if max_chunk_mb <= 0:
        raise PolicyError(f"max_chunk_mb must be positive, got {max_chunk_mb}")

    if size_mb // chunk_mb > max_chunk_mb:
        count = size_mb // max_chunk_mb
    else:
        count = size_mb // chunk_mb
    return max(count, 1)


def parallelism(parts: int, max_threads: int) -> int:
    """Worker count for a job: never more than parts or max_threads, never 0."""
    if max_threads <= 0:
        raise PolicyError(f"max_threads must be positive, got {max_threads}")
    return max(min(parts, max_threads), 1)


def plan(total_bytes: int, settings: TransferSettings) -> TransferPlan:
    """Build the full transfer plan for a source of total_bytes."""
    settings.validate()
    size_mb = file_size_mb(total_bytes, settings.size_unit)
    parts = part_count(size_mb, settings.chunk_mb, settings.max_chunk_mb)
    workers = parallelism(parts, settings.max_threads)
    window = total_bytes // parts

    logger.debug(
        "Plan: %d bytes (%d MB) -> %d parts of %d bytes, %d workers",
        total_bytes, size_mb, parts, window, workers,
    )
    return TransferPlan(
        total_bytes=total_bytes,
        file_size_mb=size_mb,
        part_count=parts,
        parallelism=workers,
        window_bytes=window,
    )
