"""
IMAP Mail Reader Package

Marks unseen IMAP messages as read in chunks, using a pool of connections.
"""

__version__ = "1.0.0"

from .callbacks import ProcessingCallback
from .config import ConfigManager, Credentials, InvalidConfiguration
from .email_processor import Chunks, EmailProcessor, chunked, run_reader
from .imap_manager import IMAPConnection, IMAPConnectionPool, IMAPOperationError, Message, PoolError

__all__ = [
    "Chunks",
    "ConfigManager",
    "Credentials",
    "EmailProcessor",
    "IMAPConnection",
    "IMAPConnectionPool",
    "IMAPOperationError",
    "InvalidConfiguration",
    "Message",
    "PoolError",
    "ProcessingCallback",
    "chunked",
    "run_reader",
]
