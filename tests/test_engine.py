"""End-to-end tests for ChunkedUploadEngine with an in-memory SFTP endpoint."""
import asyncio
import io
import threading
import time
from dataclasses import replace

import pytest
from blake3 import blake3

from chunkup import ChunkedUploadEngine
from chunkup.errors import AggregateJobError, ChunkingError, PolicyError
from chunkup.models import UploadStatus
from chunkup.services.progress import ProgressTracker


class RecordingTracker(ProgressTracker):
    """ProgressTracker remembering every value a poller could have seen."""

    def __init__(self):
        super().__init__()
        self.seen = []

    def update(self, job_id, percent):
        super().update(job_id, percent)
        self.seen.append(self.get(job_id))


def _work_dir_empty(settings) -> bool:
    return not settings.work_dir.exists() or list(settings.work_dir.iterdir()) == []


class TestScenarios:
    @pytest.mark.asyncio
    async def test_large_file_uses_25_parts_and_15_workers(self, make_factory, kb_settings, make_source):
        factory = make_factory(put_delay=0.01)
        tracker = RecordingTracker()
        engine = ChunkedUploadEngine(factory, kb_settings, progress=tracker)
        source = make_source(250 * 1024)

        result = await engine.upload_path(source, "/upload", job_id="job-a")

        assert result.success
        assert result.part_count == 25
        assert result.parallelism == 15
        assert len(result.results) == 25
        assert len(factory.remote) == 25
        assert 1 < factory.peak_active <= 15
        assert factory.reassemble() == source.read_bytes()

        assert tracker.seen[-1] == 100.0
        assert tracker.seen == sorted(tracker.seen)
        assert engine.progress("job-a") == 0.0
        assert "job-a" not in tracker

    @pytest.mark.asyncio
    async def test_small_file_is_one_part_one_worker(self, factory, kb_settings, make_source):
        engine = ChunkedUploadEngine(factory, kb_settings)
        source = make_source(5 * 1024)

        result = await engine.upload_path(source, "/upload")

        assert result.success
        assert result.part_count == 1
        assert result.parallelism == 1
        assert list(factory.remote) == [f"/upload/{result.remote_names[0]}"]
        assert factory.reassemble() == source.read_bytes()

    @pytest.mark.asyncio
    async def test_one_refused_session_fails_job_others_succeed(self, make_factory, kb_settings, make_source):
        factory = make_factory(refuse_auth=1)
        engine = ChunkedUploadEngine(factory, kb_settings)

        with pytest.raises(AggregateJobError) as exc_info:
            await engine.upload_path(make_source(250 * 1024), "/upload", job_id="job-c")

        error = exc_info.value
        assert error.job_id == "job-c"
        assert not error.cancelled
        assert len(error.results) == 25
        assert len(error.failed) == 1
        assert "Authentication failed" in error.failed[0].error
        assert len(error.succeeded) == 24
        assert error.partially_uploaded
        assert len(factory.remote) == 24
        assert engine.progress("job-c") == 0.0
        assert all(s.closed for s in factory.sessions)
        assert _work_dir_empty(kb_settings)

    def test_polling_unknown_job_returns_zero(self, factory):
        assert ChunkedUploadEngine(factory).progress("job-x") == 0.0


class TestEdgeCases:
    @pytest.mark.asyncio
    async def test_zero_byte_source(self, factory, kb_settings, make_source):
        engine = ChunkedUploadEngine(factory, kb_settings)

        result = await engine.upload_path(make_source(0, "empty.bin"), "/upload")

        assert result.success
        assert result.part_count == 1
        assert len(factory.remote) == 1
        assert factory.reassemble() == b""

    @pytest.mark.asyncio
    async def test_source_above_limit_is_rejected_before_io(self, factory, kb_settings, make_source):
        engine = ChunkedUploadEngine(factory, kb_settings)

        with pytest.raises(PolicyError, match="limit"):
            await engine.upload_path(make_source(601 * 1024), "/upload")

        assert factory.sessions == []
        assert not kb_settings.work_dir.exists()

    @pytest.mark.asyncio
    async def test_short_stream_raises_chunking_error_without_sessions(self, factory, kb_settings):
        engine = ChunkedUploadEngine(factory, kb_settings)

        with pytest.raises(ChunkingError):
            await engine.upload(io.BytesIO(b"a" * 1000), 30 * 1024, "/upload", name="short.bin")

        assert factory.sessions == []
        assert _work_dir_empty(kb_settings)

    @pytest.mark.asyncio
    async def test_missing_file_raises_chunking_error(self, factory, kb_settings, tmp_path):
        engine = ChunkedUploadEngine(factory, kb_settings)

        with pytest.raises(ChunkingError, match="Cannot open"):
            await engine.upload_path(tmp_path / "nope.bin", "/upload")

    def test_invalid_settings_rejected_at_construction(self, factory, kb_settings):
        with pytest.raises(PolicyError):
            ChunkedUploadEngine(factory, replace(kb_settings, max_threads=0))

    @pytest.mark.asyncio
    async def test_temp_artifacts_removed_after_success(self, factory, kb_settings, make_source):
        engine = ChunkedUploadEngine(factory, kb_settings)
        await engine.upload_path(make_source(40 * 1024), "/upload")
        assert _work_dir_empty(kb_settings)

    @pytest.mark.asyncio
    async def test_manifest_matches_uploaded_parts(self, factory, kb_settings, make_source):
        engine = ChunkedUploadEngine(factory, kb_settings)

        result = await engine.upload_path(make_source(30 * 1024), "/upload")

        assert [name for name, _ in result.manifest] == result.remote_names
        for remote_name, digest in result.manifest:
            assert digest == blake3(factory.remote[f"/upload/{remote_name}"]).hexdigest()
        assert all(r.sent == r.size for r in result.results)

    @pytest.mark.asyncio
    async def test_generated_job_id_uses_file_name(self, factory, kb_settings, make_source):
        engine = ChunkedUploadEngine(factory, kb_settings)
        result = await engine.upload_path(make_source(1024, "report.pdf"), "/upload")
        assert result.job_id.startswith("report.pdf-")


class TestRetries:
    @pytest.mark.asyncio
    async def test_retry_recovers_from_refused_session(self, make_factory, kb_settings, make_source):
        factory = make_factory(refuse_auth=1)
        engine = ChunkedUploadEngine(factory, replace(kb_settings, max_retries=1))

        result = await engine.upload_path(make_source(2 * 1024), "/upload")

        assert result.success
        assert result.results[0].attempts == 2
        assert len(factory.sessions) == 2

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, make_factory, kb_settings, make_source):
        factory = make_factory(fail_transfer_for=["_part1_"])
        engine = ChunkedUploadEngine(factory, replace(kb_settings, max_retries=2))

        with pytest.raises(AggregateJobError) as exc_info:
            await engine.upload_path(make_source(2 * 1024), "/upload")

        failed = exc_info.value.failed[0]
        assert failed.attempts == 3
        assert exc_info.value.nothing_uploaded


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_before_start_uploads_nothing(self, factory, kb_settings, make_source):
        engine = ChunkedUploadEngine(factory, kb_settings)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(AggregateJobError) as exc_info:
            await engine.upload_path(make_source(30 * 1024), "/upload", cancel_event=cancel)

        error = exc_info.value
        assert error.cancelled
        assert error.nothing_uploaded
        assert all(r.status == UploadStatus.CANCELLED for r in error.results)
        assert factory.sessions == []
        assert _work_dir_empty(kb_settings)

    @pytest.mark.asyncio
    async def test_cancel_mid_job_skips_remaining_parts(self, factory, kb_settings, make_source):
        engine = ChunkedUploadEngine(factory, replace(kb_settings, max_threads=1))
        cancel = threading.Event()
        engine.on("artifact_complete", lambda job_id, result: cancel.set())

        with pytest.raises(AggregateJobError) as exc_info:
            await engine.upload_path(make_source(30 * 1024), "/upload", cancel_event=cancel)

        error = exc_info.value
        assert error.cancelled
        assert [r.sequence for r in error.succeeded] == [1]
        assert [r.status for r in error.failed] == [UploadStatus.CANCELLED] * 2
        assert len(factory.remote) == 1


    @pytest.mark.asyncio
    async def test_cancel_during_retry_backoff_reports_cancelled(self, make_factory, kb_settings, make_source):
        factory = make_factory(refuse_auth=100)
        engine = ChunkedUploadEngine(factory, replace(kb_settings, max_retries=3, retry_backoff=5.0))
        cancel = threading.Event()
        timer = threading.Timer(0.3, cancel.set)
        timer.start()
        started = time.monotonic()

        try:
            with pytest.raises(AggregateJobError) as exc_info:
                await engine.upload_path(make_source(2 * 1024), "/upload", cancel_event=cancel)
        finally:
            timer.cancel()

        error = exc_info.value
        assert error.cancelled
        assert "cancelled" in str(error)
        assert error.results[0].status == UploadStatus.CANCELLED
        assert error.results[0].attempts == 1
        assert len(factory.sessions) == 1
        assert time.monotonic() - started < 5.0


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_jobs_share_session_ceiling(self, make_factory, kb_settings, make_source):
        factory = make_factory(put_delay=0.01)
        engine = ChunkedUploadEngine(factory, replace(kb_settings, thread_pool=4))

        first, second = await asyncio.gather(
            engine.upload_path(make_source(100 * 1024, "a.bin"), "/upload", job_id="a"),
            engine.upload_path(make_source(100 * 1024, "b.bin"), "/upload", job_id="b"),
        )

        assert first.success and second.success
        assert len(factory.remote) == first.part_count + second.part_count
        assert factory.peak_active <= 4


class TestEvents:
    @pytest.mark.asyncio
    async def test_lifecycle_events(self, factory, kb_settings, make_source):
        engine = ChunkedUploadEngine(factory, kb_settings)
        seen = []
        lock = threading.Lock()

        def record(name):
            def _listener(*args):
                with lock:
                    seen.append(name)
            return _listener

        for name in ("job_start", "chunking_complete", "artifact_start", "artifact_complete", "progress", "job_finish"):
            engine.on(name, record(name))

        await engine.upload_path(make_source(30 * 1024), "/upload")

        assert seen[0] == "job_start"
        assert seen[1] == "chunking_complete"
        assert seen[-1] == "job_finish"
        assert seen.count("artifact_start") == 3
        assert seen.count("artifact_complete") == 3
        assert seen.count("progress") == 3

    @pytest.mark.asyncio
    async def test_failed_job_still_emits_job_finish(self, make_factory, kb_settings, make_source):
        engine = ChunkedUploadEngine(make_factory(refuse_auth=1), kb_settings)
        finished = []
        engine.on("job_finish", finished.append)

        with pytest.raises(AggregateJobError):
            await engine.upload_path(make_source(2 * 1024), "/upload")

        assert len(finished) == 1
        assert not finished[0].success
        assert finished[0].error
