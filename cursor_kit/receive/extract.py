"""
Selective Extraction

Writes the config directories of a received archive into the
destination according to a conflict strategy.

Strategies (chosen once per receive, applied to every conflict):
- overwrite: delete each existing target directory, then extract
- merge: extract only files that do not exist yet; existing files are
  left byte-for-byte untouched, directories are created as needed
- cancel: never reaches this module; nothing is written

Only entries under one of the manifest's directories are written.
Anything else (unknown top-level names, absolute paths, `..`) is skipped.
There is no rollback: a filesystem error aborts the run and leaves
already-written files in place.
"""

import logging
import os
import shutil
import zipfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Sequence, Union

import aiofiles
import aiofiles.os

from ..archive import METADATA_FILENAME, entry_top_level, open_archive
from ..configs import ConfigDescriptor
from ..errors import ConfigurationError, ExtractionError, InvalidArchiveError

logger = logging.getLogger(__name__)

EXTRACT_CHUNK_SIZE = 64 * 1024


class ConflictStrategy(str, Enum):
    OVERWRITE = "overwrite"
    MERGE = "merge"
    CANCEL = "cancel"

    @classmethod
    def parse(cls, value: Union[str, 'ConflictStrategy']) -> 'ConflictStrategy':
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(
                f"Invalid conflict strategy: {value!r} (expected overwrite, merge or cancel)"
            ) from None


@dataclass
class ExtractionStats:
    files_written: int = 0
    files_skipped: int = 0
    directories_created: int = 0
    entries_ignored: int = 0


def _remove_existing(path: Path):
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


async def extract_archive(archive_path: Path, destination: Path,
                          configs: Sequence[ConfigDescriptor],
                          strategy: ConflictStrategy,
                          chunk_size: int = EXTRACT_CHUNK_SIZE) -> ExtractionStats:
    """
    Extract the known config directories of an archive.

    Args:
        archive_path: Downloaded zip
        destination: Working directory receiving the configs
        configs: Descriptors resolved against destination
        strategy: overwrite or merge

    Returns:
        ExtractionStats

    Raises:
        ExtractionError: on filesystem failure (stage and path included)
        InvalidArchiveError: if an entry is corrupt
    """
    if strategy is ConflictStrategy.CANCEL:
        raise ValueError("Nothing to extract for a cancelled receive")

    destination = Path(destination).resolve()
    stats = ExtractionStats()

    if strategy is ConflictStrategy.OVERWRITE:
        for config in configs:
            if config.has_conflict:
                logger.info(f"Removing existing {config.directory}")
                try:
                    _remove_existing(config.path)
                except OSError as e:
                    raise ExtractionError("removing existing config", config.path, e) from e

    allowed = {config.directory for config in configs}

    with open_archive(archive_path) as zf:
        for info in zf.infolist():
            if entry_top_level(info.filename, allowed) is None:
                if info.filename != METADATA_FILENAME:
                    stats.entries_ignored += 1
                    logger.warning(f"Skipping unexpected archive entry: {info.filename}")
                continue

            target = destination.joinpath(*PurePosixPath(info.filename).parts)

            if info.is_dir():
                if not target.is_dir():
                    try:
                        await aiofiles.os.makedirs(target, exist_ok=True)
                    except OSError as e:
                        raise ExtractionError("creating directory", target, e) from e
                    stats.directories_created += 1
                continue

            if strategy is ConflictStrategy.MERGE and target.exists():
                logger.debug(f"Keeping existing {target}")
                stats.files_skipped += 1
                continue

            await _write_entry(zf, info, target, chunk_size)
            stats.files_written += 1

    logger.info(f"Extracted {stats.files_written} files "
                f"({stats.files_skipped} kept, {stats.entries_ignored} ignored)")
    return stats


async def _write_entry(zf: zipfile.ZipFile, info: zipfile.ZipInfo,
                       target: Path, chunk_size: int):
    try:
        await aiofiles.os.makedirs(target.parent, exist_ok=True)
    except OSError as e:
        raise ExtractionError("creating directory", target.parent, e) from e

    try:
        with zf.open(info) as src:
            async with aiofiles.open(target, 'wb') as dst:
                while True:
                    data = src.read(chunk_size)
                    if not data:
                        break
                    await dst.write(data)
    except zipfile.BadZipFile as e:
        raise InvalidArchiveError(f"Corrupt archive entry {info.filename}: {e}") from e
    except OSError as e:
        raise ExtractionError("writing file", target, e) from e

    # Keep executable bits (hook scripts); other modes use the umask
    mode = (info.external_attr >> 16) & 0o777
    if mode & 0o111:
        try:
            os.chmod(target, mode | 0o600)
        except OSError as e:
            logger.debug(f"Could not set mode on {target}: {e}")
