"""
Transfer Manifest

Design Decision: Manifest Placement
===================================

The manifest is a small JSON record describing which config kinds an
archive carries. It is always the first entry in the archive so the
receiver can learn what it is about to get before writing anything.

Options Considered:
1. HTTP headers - no extra entry, but lost if the archive is saved
2. Trailing entry - cheapest to write, but must scan the whole archive
3. First entry - readable without touching the rest of the archive

Decision: First entry, fixed name `.cursor-kit-share.json`
- Survives being saved to disk
- Readable without extracting anything else

Format:
```
{
  "version": 1,
  "configs": ["cursor", "github-copilot"]
}
```
"""

import json
from dataclasses import dataclass
from typing import List, Sequence

from ..configs import ConfigKind
from ..errors import ConfigurationError, InvalidArchiveError

METADATA_FILENAME = ".cursor-kit-share.json"
MANIFEST_VERSION = 1


@dataclass(frozen=True)
class TransferManifest:
    """Which config kinds an archive contains."""
    version: int
    configs: tuple

    @classmethod
    def for_kinds(cls, kinds: Sequence[ConfigKind],
                  version: int = MANIFEST_VERSION) -> 'TransferManifest':
        """Build a manifest, dropping duplicate kinds but keeping order."""
        ordered: List[ConfigKind] = []
        for kind in kinds:
            kind = ConfigKind.parse(kind)
            if kind not in ordered:
                ordered.append(kind)
        return cls(version=version, configs=tuple(ordered))

    def to_dict(self) -> dict:
        return {
            'version': self.version,
            'configs': [kind.value for kind in self.configs],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data) -> 'TransferManifest':
        """
        Validate and deserialize a manifest.

        Raises:
            InvalidArchiveError: if the record is malformed or empty
        """
        if not isinstance(data, dict):
            raise InvalidArchiveError("Share metadata is not a JSON object")

        version = data.get('version')
        if not isinstance(version, int) or isinstance(version, bool):
            raise InvalidArchiveError("Share metadata has no valid version")

        configs = data.get('configs')
        if not isinstance(configs, list) or not configs:
            raise InvalidArchiveError("Share metadata lists no configs")

        try:
            return cls.for_kinds(configs, version=version)
        except ConfigurationError as e:
            raise InvalidArchiveError(f"Share metadata is invalid: {e}") from None

    @classmethod
    def from_json(cls, text: str) -> 'TransferManifest':
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise InvalidArchiveError(f"Share metadata is not valid JSON: {e}") from None
        return cls.from_dict(data)
