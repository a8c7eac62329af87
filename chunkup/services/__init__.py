"""Services for chunkup."""
from .chunker import ChunkerService
from .progress import ProgressTracker
from .session import SftpSession, SftpSessionFactory, TransferSessionManager
from . import size_policy

__all__ = [
    "ChunkerService",
    "ProgressTracker",
    "SftpSession",
    "SftpSessionFactory",
    "TransferSessionManager",
    "size_policy",
]
