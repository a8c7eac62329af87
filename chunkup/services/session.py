"""
Transfer Session Manager - one fresh SFTP session per artifact.

paramiko SSHClient/SFTPClient objects are never shared between workers:
every send_artifact() call connects, authenticates, opens its own channel,
sends exactly one file and tears everything down again.
"""
import logging
import threading
from pathlib import Path
from typing import Optional

import paramiko

from ..errors import SessionError, TransferError
from ..models import Artifact, ArtifactResult, ConnectionParams
from ..protocols import ISessionFactory, ISessionHandle

logger = logging.getLogger(__name__)


def remote_path_for(remote_dir: str, remote_name: str) -> str:
    """Join a remote directory and object name with a single slash."""
    base = (remote_dir or "").rstrip("/")
    return f"{base}/{remote_name}"


class SftpSession:
    """SSH connection plus SFTP channel used for a single transfer."""

    def __init__(self, params: ConnectionParams):
        self._params = params
        self._client: Optional[paramiko.SSHClient] = None
        self._sftp: Optional[paramiko.SFTPClient] = None

    def open(self) -> None:
        params = self._params
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        self._client = client
        try:
            client.connect(
                params.host,
                port=params.port,
                username=params.username,
                password=params.password,
                timeout=params.timeout,
                allow_agent=False,
                look_for_keys=False,
                banner_timeout=30,
            )
        except paramiko.AuthenticationException as e:
            raise SessionError(f"Authentication failed for {params.username}@{params.host}: {e}") from e
        except (paramiko.SSHException, OSError) as e:
            raise SessionError(f"Cannot connect to {params.host}:{params.port}: {e}") from e

    def open_channel(self) -> None:
        if self._client is None:
            raise SessionError("Session is not open")
        try:
            self._sftp = self._client.open_sftp()
        except (paramiko.SSHException, OSError) as e:
            raise SessionError(f"Cannot open SFTP channel on {self._params.host}: {e}") from e

    def put(self, local_path: Path, remote_path: str) -> int:
        if self._sftp is None:
            raise TransferError("SFTP channel is not open")
        try:
            # confirm=True stats the remote file and fails on size mismatch
            attrs = self._sftp.put(str(local_path), remote_path, confirm=True)
        except (paramiko.SSHException, OSError) as e:
            raise TransferError(f"Transfer of {Path(local_path).name} to {remote_path} failed: {e}") from e
        return attrs.st_size or 0

    def close(self) -> None:
        try:
            if self._sftp is not None:
                self._sftp.close()
        finally:
            self._sftp = None
            if self._client is not None:
                self._client.close()
                self._client = None

    def __enter__(self) -> "SftpSession":
        return self

    def __exit__(self, *args) -> None:
        self.close()


class SftpSessionFactory:
    """Creates unopened SftpSession handles for one endpoint."""

    def __init__(self, params: ConnectionParams):
        self._params = params

    @property
    def params(self) -> ConnectionParams:
        return self._params

    def new_session(self) -> SftpSession:
        return SftpSession(self._params)


class TransferSessionManager:
    """
    Sends one artifact per call over a session it owns exclusively.

    Authentication, channel and mid-transfer failures all come back as a
    failed ArtifactResult; nothing is retried here.

    Args:
        factory: Session factory for the remote endpoint
        max_sessions: Ceiling on sessions open at the same time through
            this manager, across every job using it
    """

    def __init__(self, factory: ISessionFactory, max_sessions: int = 20):
        self._factory = factory
        self._slots = threading.BoundedSemaphore(max(max_sessions, 1))

    def send_artifact(self, artifact: Artifact, remote_dir: str) -> ArtifactResult:
        remote_path = remote_path_for(remote_dir, artifact.remote_name)

        with self._slots:
            session: Optional[ISessionHandle] = None
            try:
                session = self._factory.new_session()
                session.open()
                session.open_channel()
                sent = session.put(artifact.path, remote_path)
            except (SessionError, TransferError) as e:
                logger.error(f"[part {artifact.sequence}] {type(e).__name__}: {e}")
                return ArtifactResult.fail(artifact, str(e))
            except Exception as e:
                error_msg = str(e) or type(e).__name__
                logger.error(f"[part {artifact.sequence}] Unexpected transfer error: {error_msg}", exc_info=True)
                return ArtifactResult.fail(artifact, error_msg)
            finally:
                if session is not None:
                    self._close_safely(session, artifact)

        logger.debug(f"[part {artifact.sequence}] Sent {sent} bytes to {remote_path}")
        return ArtifactResult.ok(artifact, sent=sent)

    @staticmethod
    def _close_safely(session: ISessionHandle, artifact: Artifact) -> None:
        try:
            session.close()
        except Exception as e:
            logger.warning(f"[part {artifact.sequence}] Error closing session: {e}")
