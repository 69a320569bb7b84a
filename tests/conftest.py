"""
Shared fixtures for cursor-kit tests.
"""

import zipfile
from pathlib import Path
from typing import Dict

import pytest

from cursor_kit.archive import ArchiveBuilder
from cursor_kit.configs import detect_available_configs


def write_tree(root: Path, files: Dict[str, str]):
    """Create files (and parent directories) below root."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


SAMPLE_FILES = {
    ".cursor/rules/general.mdc": "Always write tests.\n",
    ".cursor/mcp.json": '{"servers": {}}\n',
    ".agent/workflows/deploy.md": "# Deploy\n",
    ".github/copilot-instructions.md": "Prefer small functions.\n",
}


@pytest.fixture
def project_dir(tmp_path) -> Path:
    """A working directory with all three config kinds."""
    root = tmp_path / "project"
    root.mkdir()
    write_tree(root, SAMPLE_FILES)
    return root


@pytest.fixture
def dest_dir(tmp_path) -> Path:
    """An empty receive destination."""
    root = tmp_path / "dest"
    root.mkdir()
    return root


@pytest.fixture
def archive_bytes(project_dir) -> bytes:
    """A complete share archive of project_dir."""
    builder = ArchiveBuilder.from_descriptors(detect_available_configs(project_dir))
    return b"".join(builder)


@pytest.fixture
def archive_file(tmp_path, archive_bytes) -> Path:
    path = tmp_path / "share.zip"
    path.write_bytes(archive_bytes)
    return path


def make_zip(path: Path, entries: Dict[str, str]) -> Path:
    """Write a zip with exactly these entries, in this order."""
    with zipfile.ZipFile(path, 'w') as zf:
        for name, content in entries.items():
            zf.writestr(name, content)
    return path
