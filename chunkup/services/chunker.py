"""
Chunker Service - Single Responsibility: split a source into gzip artifacts.

Windows are read sequentially and streamed through gzip into disk-backed
temp files, so memory use stays at one read block regardless of chunk size.
"""
import gzip
import logging
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, List, Optional

from blake3 import blake3

from ..errors import ChunkingError
from ..models import Artifact, TransferPlan

logger = logging.getLogger(__name__)

READ_BLOCK_SIZE = 1024 * 1024  # 1MB
ARTIFACT_EXTENSION = "gz"
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


def job_timestamp(now: Optional[datetime] = None) -> str:
    """Timestamp shared by every artifact of one job."""
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def artifact_name(original_name: str, sequence: int, timestamp: str) -> str:
    """Remote object name: <name>_part<N>_<timestamp>.gz"""
    return f"{Path(original_name).name}_part{sequence}_{timestamp}.{ARTIFACT_EXTENSION}"


class _HashingWriter:
    """File wrapper hashing every compressed byte gzip writes through it."""

    def __init__(self, raw: BinaryIO):
        self._raw = raw
        self.hasher = blake3()

    def write(self, data) -> int:
        self.hasher.update(data)
        return self._raw.write(data)

    def flush(self) -> None:
        self._raw.flush()


class ChunkerService:
    """
    Splits a byte source into independently compressed artifacts.

    Parts 1..N-1 each hold exactly plan.window_bytes of source data; part N
    reads until the source is exhausted and so absorbs the remainder of the
    integer division. Decompressing the artifacts and concatenating them in
    sequence order reproduces the source exactly.
    """

    def __init__(self, compress_level: int = 6, block_size: int = READ_BLOCK_SIZE):
        self._compress_level = compress_level
        self._block_size = block_size

    def split(
        self,
        source: BinaryIO,
        total_bytes: int,
        name: str,
        plan: TransferPlan,
        timestamp: str,
        work_dir: Path,
    ) -> List[Artifact]:
        """
        Split source into plan.part_count artifacts under work_dir.

        Args:
            source: Readable binary stream positioned at the start of the data
            total_bytes: Expected length of the stream
            name: Original file name used for artifact naming
            plan: Transfer plan from the size policy
            timestamp: Job timestamp shared by all artifacts
            work_dir: Directory for the temp artifacts

        Returns:
            Artifacts in sequence order

        Raises:
            ChunkingError: On any I/O failure or length mismatch. Artifacts
                written before the failure are deleted.
        """
        artifacts: List[Artifact] = []
        offset = 0

        try:
            work_dir.mkdir(parents=True, exist_ok=True)
            for sequence in range(1, plan.part_count + 1):
                is_last = sequence == plan.part_count
                limit = None if is_last else plan.window_bytes
                artifact = self._write_artifact(
                    source, name, sequence, timestamp, work_dir, offset, limit
                )
                artifacts.append(artifact)
                offset += artifact.source_length
                logger.debug(
                    f"[{sequence}/{plan.part_count}] {artifact.remote_name}: "
                    f"{artifact.source_length} -> {artifact.size} bytes"
                )

            if offset != total_bytes:
                raise ChunkingError(
                    f"Source length mismatch for {name}: expected {total_bytes} bytes, read {offset}"
                )
        except ChunkingError:
            self._discard(artifacts)
            raise
        except (OSError, ValueError, EOFError) as e:
            self._discard(artifacts)
            raise ChunkingError(f"Failed to split {name}: {e}") from e

        logger.info(f"Split {name} into {len(artifacts)} artifacts ({total_bytes} bytes)")
        return artifacts

    def _write_artifact(
        self,
        source: BinaryIO,
        name: str,
        sequence: int,
        timestamp: str,
        work_dir: Path,
        offset: int,
        limit: Optional[int],
    ) -> Artifact:
        """Compress up to limit bytes (or everything left) into one artifact."""
        remote_name = artifact_name(name, sequence, timestamp)
        path = work_dir / remote_name
        artifact = Artifact(
            sequence=sequence,
            path=path,
            remote_name=remote_name,
            size=0,
            source_offset=offset,
            source_length=0,
        )

        consumed = 0
        try:
            with open(path, "wb") as raw:
                writer = _HashingWriter(raw)
                with gzip.GzipFile(
                    filename=str(path), mode="wb", compresslevel=self._compress_level, fileobj=writer
                ) as gz:
                    while limit is None or consumed < limit:
                        want = self._block_size if limit is None else min(self._block_size, limit - consumed)
                        block = source.read(want)
                        if not block:
                            break
                        gz.write(block)
                        consumed += len(block)
        except BaseException:
            artifact.release()
            raise

        artifact.source_length = consumed
        artifact.size = path.stat().st_size
        artifact.digest = writer.hasher.hexdigest()
        return artifact

    @staticmethod
    def _discard(artifacts: List[Artifact]) -> None:
        for artifact in artifacts:
            artifact.release()
        if artifacts:
            logger.warning(f"Discarded {len(artifacts)} partial artifact(s)")
