"""
Archive Reader

Read-side helpers for a received share archive: manifest introspection
and classification of entries against the known config directories.
"""

import logging
import zipfile
from pathlib import Path, PurePosixPath
from typing import Optional, Set

from ..errors import InvalidArchiveError
from .manifest import METADATA_FILENAME, TransferManifest

logger = logging.getLogger(__name__)

# Upper bound for the manifest entry; a real one is well under 1KB
MAX_MANIFEST_SIZE = 64 * 1024


def open_archive(path: Path) -> zipfile.ZipFile:
    """Open a downloaded archive, mapping format errors to InvalidArchiveError."""
    try:
        return zipfile.ZipFile(path, 'r')
    except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        raise InvalidArchiveError(f"This doesn't appear to be a valid cursor-kit share: {e}") from None


def read_manifest_from(zf: zipfile.ZipFile) -> TransferManifest:
    """
    Read only the manifest entry of an open archive.

    Raises:
        InvalidArchiveError: if the entry is missing, oversized or invalid
    """
    try:
        info = zf.getinfo(METADATA_FILENAME)
    except KeyError:
        raise InvalidArchiveError(
            "This doesn't appear to be a valid cursor-kit share: missing share metadata"
        ) from None

    if info.file_size > MAX_MANIFEST_SIZE:
        raise InvalidArchiveError("Share metadata is unreasonably large")

    first = zf.infolist()[0]
    if first.filename != METADATA_FILENAME:
        logger.warning("Share metadata is not the first archive entry")

    try:
        text = zf.read(info).decode('utf-8')
    except (UnicodeDecodeError, zipfile.BadZipFile, OSError) as e:
        raise InvalidArchiveError(f"Share metadata could not be read: {e}") from None

    return TransferManifest.from_json(text)


def read_manifest(path: Path) -> TransferManifest:
    """Open an archive file and read its manifest."""
    with open_archive(path) as zf:
        return read_manifest_from(zf)


def entry_top_level(name: str, allowed: Set[str]) -> Optional[str]:
    """
    Classify an archive entry name.

    Returns:
        The top-level directory if the entry belongs to one of `allowed`
        and stays inside it, else None (manifest, unknown or unsafe entries)
    """
    if name == METADATA_FILENAME or not name:
        return None

    if name.startswith('/') or '\\' in name:
        return None

    parts = PurePosixPath(name).parts
    if not parts or '..' in parts:
        return None

    top = parts[0]
    if top not in allowed:
        return None
    return top
