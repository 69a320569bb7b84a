"""
Archive Builder

Design Decision: Streaming Strategy
===================================

Options Considered:
1. Build the zip into a temp file, then serve it
   - Simple, allows Content-Length
   - Doubles disk I/O, delays first byte
2. Build the zip in memory
   - Unbounded memory for large config trees
3. Write the zip into a non-seekable sink and hand out chunks as produced
   - First byte leaves immediately, memory bounded by one read chunk
   - No Content-Length (chunked transfer encoding)

Decision: Non-seekable sink
- zipfile switches to data descriptors when the target cannot seek
- Source files are read chunk by chunk, each compressed chunk is yielded
  as soon as it is produced

Archive Layout:
```
.cursor-kit-share.json      <- manifest, always first
.cursor/
.cursor/rules/
.cursor/rules/general.mdc
.github/
...
```
"""

import logging
import os
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Sequence, BinaryIO

from ..configs import ConfigDescriptor, ConfigKind
from ..errors import ArchiveBuildError
from .manifest import METADATA_FILENAME, TransferManifest

logger = logging.getLogger(__name__)

DEFAULT_COMPRESSION_LEVEL = 6
DEFAULT_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class ArchiveSource:
    """One directory to place in the archive."""
    kind: ConfigKind
    source_dir: Path
    archive_dir: str

    @classmethod
    def from_descriptor(cls, descriptor: ConfigDescriptor) -> 'ArchiveSource':
        return cls(
            kind=descriptor.kind,
            source_dir=descriptor.path,
            archive_dir=descriptor.directory,
        )


class _ChunkSink:
    """Write-only, tell-only file object; zipfile treats it as unseekable."""

    def __init__(self):
        self._buffer = bytearray()
        self._position = 0

    def write(self, data) -> int:
        self._buffer.extend(data)
        self._position += len(data)
        return len(data)

    def tell(self) -> int:
        return self._position

    def flush(self):
        pass

    def take(self) -> bytes:
        """Return and clear everything written since the last take."""
        data = bytes(self._buffer)
        self._buffer.clear()
        return data


def _raise_walk_error(error: OSError):
    raise error


def _set_compress_level(zinfo: zipfile.ZipInfo, level: int):
    # Renamed from the private attribute in Python 3.13
    if hasattr(zinfo, 'compress_level'):
        zinfo.compress_level = level
    else:
        zinfo._compresslevel = level


class ArchiveBuilder:
    """
    Produces a zip archive of config directories as a lazy byte stream.

    The stream is single-pass: iterate it once, forward every chunk,
    and create a new builder for the next transfer.
    """

    def __init__(self, sources: Sequence[ArchiveSource],
                 compression_level: int = DEFAULT_COMPRESSION_LEVEL,
                 chunk_size: int = DEFAULT_CHUNK_SIZE):
        if not sources:
            raise ValueError("At least one source directory is required")

        names = [s.archive_dir for s in sources]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate archive directories: {names}")

        self.sources: List[ArchiveSource] = list(sources)
        self.compression_level = compression_level
        self.chunk_size = chunk_size
        self.manifest = TransferManifest.for_kinds([s.kind for s in self.sources])

        # Statistics
        self.files_added = 0
        self.bytes_read = 0
        self.bytes_produced = 0

        self._consumed = False

    @classmethod
    def from_descriptors(cls, descriptors: Sequence[ConfigDescriptor],
                         **kwargs) -> 'ArchiveBuilder':
        return cls([ArchiveSource.from_descriptor(d) for d in descriptors], **kwargs)

    def __iter__(self) -> Iterator[bytes]:
        return self.iter_chunks()

    def iter_chunks(self) -> Iterator[bytes]:
        """
        Generate the archive.

        Yields:
            Non-empty byte chunks, in order

        Raises:
            ArchiveBuildError: if a source cannot be enumerated or read.
                Chunks already yielded cannot be taken back.
        """
        if self._consumed:
            raise RuntimeError("ArchiveBuilder output can only be consumed once")
        self._consumed = True

        sink = _ChunkSink()
        with zipfile.ZipFile(sink, mode='w', compression=zipfile.ZIP_DEFLATED,
                             compresslevel=self.compression_level) as zf:
            zf.writestr(METADATA_FILENAME, self.manifest.to_json())
            yield from self._drain(sink)

            for source in self.sources:
                logger.debug(f"Adding {source.source_dir} as {source.archive_dir}/")
                for chunk in self._add_directory(zf, sink, source):
                    yield chunk

        # Central directory is written on close
        yield from self._drain(sink)
        logger.debug(f"Archive complete: {self.files_added} files, "
                     f"{self.bytes_read:,} bytes in, {self.bytes_produced:,} bytes out")

    def write_to(self, fileobj: BinaryIO) -> int:
        """Write the whole archive to a file object. Returns bytes written."""
        total = 0
        for chunk in self.iter_chunks():
            fileobj.write(chunk)
            total += len(chunk)
        return total

    def _drain(self, sink: _ChunkSink) -> Iterator[bytes]:
        data = sink.take()
        if data:
            self.bytes_produced += len(data)
            yield data

    def _add_directory(self, zf: zipfile.ZipFile, sink: _ChunkSink,
                       source: ArchiveSource) -> Iterator[bytes]:
        root = Path(source.source_dir)
        if not root.is_dir():
            raise ArchiveBuildError(f"Config directory not found: {root}")

        try:
            for dirpath, dirnames, filenames in os.walk(root, onerror=_raise_walk_error):
                dirnames.sort()
                current = Path(dirpath)
                rel = current.relative_to(root).as_posix()
                arc_dir = source.archive_dir if rel == '.' else f"{source.archive_dir}/{rel}"

                dir_info = zipfile.ZipInfo.from_file(
                    current, arc_dir, strict_timestamps=False
                )
                zf.writestr(dir_info, b'')
                yield from self._drain(sink)

                for filename in sorted(filenames):
                    file_path = current / filename
                    if not file_path.is_file():
                        logger.debug(f"Skipping non-regular file {file_path}")
                        continue
                    yield from self._add_file(zf, sink, file_path, f"{arc_dir}/{filename}")
        except OSError as e:
            raise ArchiveBuildError(
                f"Failed to read {getattr(e, 'filename', None) or root}: {e.strerror or e}"
            ) from e
        except ValueError as e:
            # Metadata zipfile cannot represent
            raise ArchiveBuildError(f"Failed to archive {root}: {e}") from e

    def _add_file(self, zf: zipfile.ZipFile, sink: _ChunkSink,
                  file_path: Path, arcname: str) -> Iterator[bytes]:
        zinfo = zipfile.ZipInfo.from_file(
            file_path, arcname, strict_timestamps=False
        )
        zinfo.compress_type = zipfile.ZIP_DEFLATED
        _set_compress_level(zinfo, self.compression_level)

        with open(file_path, 'rb') as src, zf.open(zinfo, 'w') as dest:
            while True:
                data = src.read(self.chunk_size)
                if not data:
                    break
                dest.write(data)
                self.bytes_read += len(data)
                yield from self._drain(sink)

        self.files_added += 1
        yield from self._drain(sink)
