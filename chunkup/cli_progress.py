"""Console rendering and progress helpers for chunkup CLI."""
from __future__ import annotations

from typing import Any, Dict, Optional
import threading
import time

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table


console = Console()


def _human_size(value: int) -> str:
    size = float(max(value, 0))
    units = ["B", "KB", "MB", "GB", "TB"]
    unit_idx = 0
    while size >= 1024.0 and unit_idx < len(units) - 1:
        size /= 1024.0
        unit_idx += 1
    if unit_idx == 0:
        return f"{int(size)} {units[unit_idx]}"
    return f"{size:.2f} {units[unit_idx]}"


def render_configuration_summary(config: Dict[str, Any]) -> None:
    """Render startup configuration summary."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column(style="white")

    for key, value in config.items():
        rendered = "-" if value is None else str(value)
        table.add_row(key, rendered)

    panel = Panel(
        table,
        title="[bold green]chunkup[/bold green]",
        subtitle="[dim]chunked SFTP upload[/dim]",
        border_style="blue",
    )
    console.print(panel)


class ChunkedUploadProgressDisplay:
    """
    Event-based console display for one chunked upload job.

    Listeners are called from upload worker threads; rich's Progress and
    Console do their own locking, the part counters use _lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._stats: Dict[str, int] = {"parts": 0, "uploaded": 0, "failed": 0}
        self._task_id: Optional[TaskID] = None
        self._live: Optional[Live] = None
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.fields[label]}", justify="left"),
            BarColumn(bar_width=42),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("[dim]{task.fields[detail]}", justify="left"),
            TimeElapsedColumn(),
            expand=False,
            console=console,
        )

    def attach(self, engine) -> None:
        """Subscribe to every event the display renders."""
        engine.on("job_start", self.on_job_start)
        engine.on("chunking_complete", self.on_chunking_complete)
        engine.on("artifact_complete", self.on_artifact_complete)
        engine.on("artifact_fail", self.on_artifact_fail)
        engine.on("progress", self.on_progress)
        engine.on("job_finish", self.on_job_finish)

    def _emit_timeline(
        self,
        status: str,
        kind: str,
        name: str,
        size_bytes: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        stamp = time.strftime("%H:%M:%S")
        size_label = f" {_human_size(size_bytes)}" if size_bytes and size_bytes > 0 else ""
        error_label = f" cause={error}" if error else ""
        palette = {
            "DONE": "green",
            "FAIL": "red",
            "INFO": "blue",
        }
        color = palette.get(status, "white")
        console.print(
            f"[dim]{stamp}[/dim] [{color}]{status:<4}[/{color}] "
            f"{kind}: {name}{size_label}{error_label}"
        )

    def _detail(self) -> str:
        with self._lock:
            stats = dict(self._stats)
        return f"parts={stats['uploaded']}/{stats['parts']} failed={stats['failed']}"

    def _start_live(self, label: str) -> None:
        if self._live is not None:
            return
        self._live = Live(
            self._progress,
            console=console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()
        self._task_id = self._progress.add_task(
            "upload",
            label=label[:60],
            total=100,
            detail="splitting...",
        )

    def _stop_live(self) -> None:
        if self._live is None:
            return
        self._live.stop()
        self._live = None

    def on_job_start(self, job: Any) -> None:
        self._emit_timeline(
            "INFO",
            "job",
            f"{job.job_id} ({job.plan.part_count} parts, {job.plan.parallelism} workers)",
            size_bytes=job.total_bytes,
        )
        self._start_live(job.name)

    def on_chunking_complete(self, job: Any) -> None:
        with self._lock:
            self._stats["parts"] = len(job.artifacts)
        if self._task_id is not None:
            self._progress.update(self._task_id, detail=self._detail())

    def on_progress(self, job_id: str, percent: float) -> None:
        if self._task_id is None:
            return
        # Workers may report out of order, the bar only moves forward
        current = self._progress.tasks[0].completed if self._progress.tasks else 0
        self._progress.update(self._task_id, completed=max(current, percent), detail=self._detail())

    def on_artifact_complete(self, job_id: str, result: Any) -> None:
        with self._lock:
            self._stats["uploaded"] += 1
        label = f"{result.remote_name} blake3={result.digest[:16]}" if result.digest else result.remote_name
        self._emit_timeline("DONE", "part", label, size_bytes=result.size)

    def on_artifact_fail(self, job_id: str, result: Any) -> None:
        with self._lock:
            self._stats["failed"] += 1
        if self._task_id is not None:
            self._progress.update(self._task_id, detail=self._detail())
        self._emit_timeline("FAIL", "part", result.remote_name, error=result.error)

    def on_job_finish(self, job_result: Any) -> None:
        self._stop_live()
        uploaded = sum(1 for r in job_result.results if r.success)
        total = len(job_result.results)
        console.print(
            f"[bold]Finished[/bold] job={job_result.job_id} uploaded={uploaded}/{total} "
            f"bytes={_human_size(job_result.uploaded_bytes)} time={job_result.duration:.2f}s"
        )
        if job_result.success:
            for remote_name, digest in job_result.manifest:
                console.print(f"[dim]  {digest}  {remote_name}[/dim]")

    def on_error(self, error: Exception) -> None:
        self._stop_live()
        self._emit_timeline("FAIL", "job", "upload", error=str(error))
