"""
Receive Module - Fetching a share

Downloads a share archive, inspects its manifest, resolves conflicts
with the local working directory and extracts selectively.
"""

from .download import (
    validate_url,
    download_archive,
    send_confirmation,
    map_network_error,
)
from .extract import ConflictStrategy, ExtractionStats, extract_archive
from .engine import ReceiveEngine, ReceiveOutcome

__all__ = [
    'validate_url',
    'download_archive',
    'send_confirmation',
    'map_network_error',
    'ConflictStrategy',
    'ExtractionStats',
    'extract_archive',
    'ReceiveEngine',
    'ReceiveOutcome',
]
