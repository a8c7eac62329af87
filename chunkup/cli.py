"""Command line interface for chunkup package."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Dict, Optional, Sequence

from rich.logging import RichHandler

from .cli_progress import ChunkedUploadProgressDisplay, render_configuration_summary
from .errors import AggregateJobError, ChunkingError, PolicyError
from .models import ConnectionParams, TransferSettings
from .orchestrator import ChunkedUploadEngine
from .services.session import SftpSessionFactory


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


# CLI flag -> environment variable read by TransferSettings/ConnectionParams
FLAG_ENV_VARS: Dict[str, str] = {
    "host": "SFTP_HOST",
    "port": "SFTP_PORT",
    "user": "SFTP_USERNAME",
    "chunk_mb": "CHUNKUP_CHUNK_MB",
    "max_chunk_mb": "CHUNKUP_MAX_CHUNK_MB",
    "max_threads": "CHUNKUP_MAX_THREADS",
    "retries": "CHUNKUP_MAX_RETRIES",
}


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Configure logging.

    Default behavior is silent unless --debug or --log-level is provided.
    Returns a string describing effective mode.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    logging.disable(logging.NOTSET)

    if silent or (not debug and not log_level and not os.getenv("LOG_LEVEL")):
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    if debug:
        level = logging.DEBUG
    elif log_level:
        level = getattr(logging, log_level.upper(), logging.INFO)
    else:
        level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)

    handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    # paramiko logs every packet negotiation at INFO
    logging.getLogger("paramiko").setLevel(max(level, logging.WARNING))
    return logging.getLevelName(level)


def _normalize_remote_dir(remote_dir: Optional[str]) -> Optional[str]:
    if remote_dir is None:
        return None
    value = remote_dir.strip()
    if not value:
        return None
    if value == "/":
        return value
    return value.rstrip("/")


def _strip_optional_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def _load_env_file(path: Path, override: bool = False) -> None:
    if not path.exists():
        raise CLIError(f"env file not found: {path}")
    if not path.is_file():
        raise CLIError(f"env path is not a file: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"could not read env file {path}: {exc}") from exc

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        value = _strip_optional_quotes(value.strip())
        if override or key not in os.environ:
            os.environ[key] = value


def _resolve_default_env_file() -> Optional[Path]:
    default_env = Path(".env")
    return default_env if default_env.exists() and default_env.is_file() else None


def _apply_flag_overrides(args: argparse.Namespace) -> None:
    """Flags win over environment and .env values."""
    for flag, env_var in FLAG_ENV_VARS.items():
        value = getattr(args, flag, None)
        if value is not None:
            os.environ[env_var] = str(value)


async def _run_upload(
    source: Path,
    remote_dir: str,
    settings: TransferSettings,
    params: ConnectionParams,
    job_id: Optional[str],
) -> int:
    engine = ChunkedUploadEngine(SftpSessionFactory(params), settings)
    display = ChunkedUploadProgressDisplay()
    display.attach(engine)

    try:
        await engine.upload_path(source, remote_dir, job_id=job_id)
    except AggregateJobError as exc:
        state = "nothing uploaded" if exc.nothing_uploaded else "partially uploaded"
        print(f"ERROR: {exc} [{state}]", file=sys.stderr)
        return 1
    except (PolicyError, ChunkingError) as exc:
        display.on_error(exc)
        raise CLIError(str(exc)) from exc
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chunkup",
        description="Split a file into compressed parts and upload them in parallel over SFTP.",
    )
    parser.add_argument("source", nargs="?", type=Path, help="Source file path")
    parser.add_argument(
        "-d",
        "--remote-dir",
        default=None,
        help="Remote directory for the parts (default from SFTP_REMOTE_DIR or /upload)",
    )
    parser.add_argument("--job-id", default=None, help="Progress key for this upload")
    parser.add_argument("--host", default=None, help="SFTP host (default from SFTP_HOST)")
    parser.add_argument("--port", type=int, default=None, help="SFTP port (default from SFTP_PORT or 22)")
    parser.add_argument("-u", "--user", default=None, help="SFTP username (default from SFTP_USERNAME)")
    parser.add_argument("--chunk-mb", type=int, default=None, help="Target chunk size in MB")
    parser.add_argument("--max-chunk-mb", type=int, default=None, help="Chunk count cap in MB")
    parser.add_argument("--max-threads", type=int, default=None, help="Max parallel uploads")
    parser.add_argument("--retries", type=int, default=None, help="Retries per part")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this .env file",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="chunkup 0.1.0",
    )
    return parser


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    used_env_file = args.env_file or _resolve_default_env_file()
    if used_env_file is not None:
        try:
            _load_env_file(Path(used_env_file))
        except CLIError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1

    effective_log_mode = _setup_logging(
        debug=args.debug,
        silent=args.silent,
        log_level=args.log_level,
    )

    if args.source is None:
        parser.print_help()
        return 0

    source = Path(args.source).expanduser()
    if not source.is_file():
        print(f"ERROR: source is not a file: {source}", file=sys.stderr)
        return 1

    _apply_flag_overrides(args)
    try:
        settings = TransferSettings.from_env().validate()
        params = ConnectionParams.from_env()
    except PolicyError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    remote_dir = _normalize_remote_dir(args.remote_dir) or params.remote_dir
    render_configuration_summary(
        {
            "Source": str(source),
            "Size": f"{source.stat().st_size} bytes",
            "Endpoint": f"{params.username}@{params.host}:{params.port}",
            "Remote Dir": remote_dir,
            "Job ID": args.job_id or "(generated)",
            "Chunk MB": f"{settings.chunk_mb} (cap {settings.max_chunk_mb})",
            "Max Threads": settings.max_threads,
            "Retries": settings.max_retries,
            "Env File": str(used_env_file) if used_env_file else "-",
            "Logging": effective_log_mode,
        }
    )

    try:
        return asyncio.run(
            _run_upload(
                source=source,
                remote_dir=remote_dir,
                settings=settings,
                params=params,
                job_id=args.job_id,
            )
        )
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 130


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
