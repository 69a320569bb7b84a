"""
Archive Module - Transfer Archive Format

Builds and reads the zip archive carried by a share session:
a manifest entry first, then one directory per config kind.
"""

from .manifest import TransferManifest, METADATA_FILENAME, MANIFEST_VERSION
from .builder import ArchiveBuilder, ArchiveSource
from .reader import open_archive, read_manifest, read_manifest_from, entry_top_level

__all__ = [
    'TransferManifest',
    'METADATA_FILENAME',
    'MANIFEST_VERSION',
    'ArchiveBuilder',
    'ArchiveSource',
    'open_archive',
    'read_manifest',
    'read_manifest_from',
    'entry_top_level',
]
