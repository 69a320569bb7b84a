"""
Config Kinds

The closed set of AI-IDE configuration directories that can be shared.

Each kind maps to a fixed top-level directory name, which is also the
directory name used inside the transfer archive. Descriptors are built
fresh for every share/receive run and never mutated.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Union

from .errors import ConfigurationError


class ConfigKind(str, Enum):
    """Supported configuration kinds (manifest identifiers)."""
    CURSOR = "cursor"
    GOOGLE_ANTIGRAVITY = "google-antigravity"
    GITHUB_COPILOT = "github-copilot"

    @classmethod
    def parse(cls, value: Union[str, 'ConfigKind']) -> 'ConfigKind':
        """Convert a manifest/CLI string into a kind."""
        try:
            return cls(value)
        except ValueError:
            known = ", ".join(k.value for k in cls)
            raise ConfigurationError(
                f"Unknown config kind: {value!r} (expected one of: {known})"
            ) from None


@dataclass(frozen=True)
class KindInfo:
    """Static metadata for a config kind."""
    label: str
    directory: str


KIND_TABLE: Dict[ConfigKind, KindInfo] = {
    ConfigKind.CURSOR: KindInfo(label="Cursor", directory=".cursor"),
    ConfigKind.GOOGLE_ANTIGRAVITY: KindInfo(label="Google AntiGravity", directory=".agent"),
    ConfigKind.GITHUB_COPILOT: KindInfo(label="GitHub Copilot", directory=".github"),
}

COPILOT_INSTRUCTIONS_FILE = "copilot-instructions.md"
COPILOT_INSTRUCTIONS_DIR = "instructions"


@dataclass(frozen=True)
class ConfigDescriptor:
    """A config kind resolved against a working directory."""
    kind: ConfigKind
    label: str
    directory: str
    path: Path
    exists: bool

    @property
    def has_conflict(self) -> bool:
        """On the receive side an existing target is a conflict."""
        return self.exists


def describe_config(kind: Union[str, ConfigKind], cwd: Path) -> ConfigDescriptor:
    """Resolve a kind to its absolute path under cwd."""
    kind = ConfigKind.parse(kind)
    info = KIND_TABLE[kind]
    path = Path(cwd).resolve() / info.directory
    return ConfigDescriptor(
        kind=kind,
        label=info.label,
        directory=info.directory,
        path=path,
        exists=path.exists(),
    )


def _is_shareable(descriptor: ConfigDescriptor) -> bool:
    if descriptor.kind is ConfigKind.GITHUB_COPILOT:
        # .github is common; only count it when Copilot instructions are present
        return (
            (descriptor.path / COPILOT_INSTRUCTIONS_FILE).is_file()
            or (descriptor.path / COPILOT_INSTRUCTIONS_DIR).is_dir()
        )
    return descriptor.path.is_dir()


def detect_available_configs(cwd: Path) -> List[ConfigDescriptor]:
    """
    Find the configs present in cwd that can be shared.

    Returns:
        Descriptors in kind-table order
    """
    found = []
    for kind in KIND_TABLE:
        descriptor = describe_config(kind, cwd)
        if _is_shareable(descriptor):
            found.append(descriptor)
    return found
