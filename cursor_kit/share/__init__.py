"""
Share Module - Serving configs to one receiver

One ShareServer per process: a single HTTP listener that streams the
config archive and waits for the receiver's confirmation.
"""

from .session import (
    TransferSession,
    SessionState,
    SessionEvent,
    ConfirmationSource,
    TRANSITIONS,
)
from .app import create_app, ARCHIVE_FILENAME
from .server import ShareServer, bind_available_port, get_local_ip

__all__ = [
    'TransferSession',
    'SessionState',
    'SessionEvent',
    'ConfirmationSource',
    'TRANSITIONS',
    'create_app',
    'ARCHIVE_FILENAME',
    'ShareServer',
    'bind_available_port',
    'get_local_ip',
]
