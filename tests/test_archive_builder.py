"""
Tests for the streaming archive builder.
"""

import io
import os
import sys
import zipfile

import pytest

from cursor_kit.archive import ArchiveBuilder, ArchiveSource, METADATA_FILENAME, read_manifest
from cursor_kit.configs import ConfigKind, detect_available_configs
from cursor_kit.errors import ArchiveBuildError

from conftest import SAMPLE_FILES, write_tree


def open_built(data: bytes) -> zipfile.ZipFile:
    return zipfile.ZipFile(io.BytesIO(data))


class TestArchiveLayout:

    def test_manifest_is_first_entry(self, archive_bytes):
        with open_built(archive_bytes) as zf:
            assert zf.infolist()[0].filename == METADATA_FILENAME

    def test_contains_every_source_file(self, archive_bytes):
        with open_built(archive_bytes) as zf:
            names = set(zf.namelist())
            for rel, content in SAMPLE_FILES.items():
                assert rel in names
                assert zf.read(rel).decode() == content

    def test_contains_directory_entries(self, archive_bytes):
        with open_built(archive_bytes) as zf:
            names = set(zf.namelist())
        assert ".cursor/" in names
        assert ".cursor/rules/" in names
        assert ".agent/workflows/" in names

    def test_entries_are_deflated(self, archive_bytes):
        with open_built(archive_bytes) as zf:
            info = zf.getinfo(".cursor/rules/general.mdc")
            assert info.compress_type == zipfile.ZIP_DEFLATED

    def test_archive_passes_crc_check(self, archive_bytes):
        with open_built(archive_bytes) as zf:
            assert zf.testzip() is None

    def test_manifest_round_trip(self, tmp_path, project_dir):
        configs = detect_available_configs(project_dir)
        builder = ArchiveBuilder.from_descriptors(configs)
        path = tmp_path / "out.zip"
        with open(path, 'wb') as f:
            builder.write_to(f)

        manifest = read_manifest(path)
        assert manifest == builder.manifest
        assert list(manifest.configs) == [c.kind for c in configs]


class TestStreaming:

    def test_produces_multiple_chunks(self, tmp_path):
        """Large files leave the builder in several chunks."""
        root = tmp_path / "big"
        (root / ".cursor").mkdir(parents=True)
        (root / ".cursor" / "blob.bin").write_bytes(os.urandom(300 * 1024))

        builder = ArchiveBuilder(
            [ArchiveSource(ConfigKind.CURSOR, root / ".cursor", ".cursor")],
            chunk_size=16 * 1024,
        )
        chunks = list(builder)

        assert len(chunks) > 2
        assert all(chunks)
        assert builder.files_added == 1
        assert builder.bytes_read == 300 * 1024
        assert builder.bytes_produced == sum(len(c) for c in chunks)

    def test_single_pass(self, project_dir):
        builder = ArchiveBuilder.from_descriptors(detect_available_configs(project_dir))
        list(builder)
        with pytest.raises(RuntimeError):
            list(builder)


class TestBuildErrors:

    def test_missing_source_directory(self, tmp_path):
        builder = ArchiveBuilder(
            [ArchiveSource(ConfigKind.CURSOR, tmp_path / "gone", ".cursor")]
        )
        with pytest.raises(ArchiveBuildError):
            list(builder)

    @pytest.mark.skipif(sys.platform == 'win32' or os.geteuid() == 0,
                        reason="permission bits are not enforced")
    def test_unreadable_subdirectory(self, tmp_path):
        root = tmp_path / "proj"
        write_tree(root, {".cursor/rules/a.mdc": "a"})
        locked = root / ".cursor" / "rules"
        locked.chmod(0)
        try:
            builder = ArchiveBuilder(
                [ArchiveSource(ConfigKind.CURSOR, root / ".cursor", ".cursor")]
            )
            with pytest.raises(ArchiveBuildError):
                list(builder)
        finally:
            locked.chmod(0o755)

    def test_duplicate_directories_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            ArchiveBuilder([
                ArchiveSource(ConfigKind.CURSOR, tmp_path, ".cursor"),
                ArchiveSource(ConfigKind.GOOGLE_ANTIGRAVITY, tmp_path, ".cursor"),
            ])

    def test_no_sources_rejected(self):
        with pytest.raises(ValueError):
            ArchiveBuilder([])
