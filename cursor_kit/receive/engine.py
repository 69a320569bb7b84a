"""
Receive Engine

Receive Flow:
1. Validate the share URL (no I/O yet)
2. Download the archive to a private temp file
3. Read the manifest entry only; reject the archive if it is missing
4. Resolve every listed kind against the destination, flag conflicts
5. Pick a strategy: overwrite if nothing conflicts or --force,
   otherwise ask (overwrite | merge | cancel)
6. Extract selectively (skipped entirely on cancel)
7. Delete the temp file on every path out of receive()
8. Confirm to the sender (best effort; failure is only logged)
"""

import logging
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import httpx

from ..archive import TransferManifest, read_manifest
from ..config import Config
from ..configs import ConfigDescriptor, ConfigKind, describe_config
from ..errors import ConfigurationError
from .download import ProgressCallback, download_archive, send_confirmation, validate_url
from .extract import ConflictStrategy, extract_archive

logger = logging.getLogger(__name__)

TEMP_PREFIX = "cursor-kit-receive-"

# Asked only when there are conflicts and force is off
StrategyChooser = Callable[[List[ConfigDescriptor]], ConflictStrategy]
# Shown the manifest and resolved configs before anything is written
ManifestCallback = Callable[[TransferManifest, List[ConfigDescriptor]], None]


@dataclass
class ReceiveOutcome:
    """Result of one receive() call."""
    url: str
    destination: Path
    strategy: ConflictStrategy
    configs: List[ConfigDescriptor] = field(default_factory=list)
    bytes_received: int = 0
    files_written: int = 0
    files_skipped: int = 0
    confirmation: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self.strategy is ConflictStrategy.CANCEL

    @property
    def confirmed(self) -> bool:
        return self.confirmation in ('confirmed', 'already_confirmed')

    def actions(self) -> Dict[ConfigKind, str]:
        """What happened to each config: added, replaced or merged."""
        result = {}
        for config in self.configs:
            if not config.has_conflict:
                result[config.kind] = 'added'
            elif self.strategy is ConflictStrategy.MERGE:
                result[config.kind] = 'merged'
            else:
                result[config.kind] = 'replaced'
        return result


def make_temp_path() -> Path:
    return Path(tempfile.gettempdir()) / f"{TEMP_PREFIX}{uuid.uuid4()}.zip"


class ReceiveEngine:
    """
    Downloads a share and writes its configs into a working directory.

    Hooks are plain callables so the CLI can prompt and render, and tests
    can answer without a terminal.
    """

    def __init__(self, config: Optional[Config] = None,
                 choose_strategy: Optional[StrategyChooser] = None,
                 on_manifest: Optional[ManifestCallback] = None,
                 progress_callback: Optional[ProgressCallback] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or Config()
        self.choose_strategy = choose_strategy
        self.on_manifest = on_manifest
        self.progress_callback = progress_callback
        self.transport = transport

    async def receive(self, url: str, destination: Path,
                      force: bool = False) -> ReceiveOutcome:
        """
        Receive a share into destination.

        Args:
            url: Share URL printed by the sender
            destination: Existing directory to write configs into
            force: Overwrite conflicts without asking

        Returns:
            ReceiveOutcome (strategy CANCEL if the operator cancelled)

        Raises:
            ConfigurationError, NetworkError, InvalidArchiveError, ExtractionError
        """
        base_url = validate_url(url)
        destination = Path(destination).resolve()
        if not destination.is_dir():
            raise ConfigurationError(f"Destination is not a directory: {destination}")

        temp_path = make_temp_path()
        try:
            logger.info(f"Connecting to {base_url}...")
            size = await download_archive(
                base_url, temp_path,
                timeout=self.config.connect_timeout,
                progress_callback=self.progress_callback,
                chunk_size=self.config.chunk_size,
                transport=self.transport,
            )
            logger.info(f"Received {size:,} bytes")

            manifest = read_manifest(temp_path)
            configs = [describe_config(kind, destination) for kind in manifest.configs]
            if self.on_manifest:
                self.on_manifest(manifest, configs)

            strategy = self._resolve_strategy(configs, force)
            outcome = ReceiveOutcome(
                url=base_url,
                destination=destination,
                strategy=strategy,
                configs=configs,
                bytes_received=size,
            )

            if outcome.cancelled:
                logger.info("Receive cancelled, nothing was written")
                return outcome

            stats = await extract_archive(
                temp_path, destination, configs, strategy,
                chunk_size=self.config.chunk_size,
            )
            outcome.files_written = stats.files_written
            outcome.files_skipped = stats.files_skipped
        finally:
            _remove_temp(temp_path)

        outcome.confirmation = await send_confirmation(
            base_url,
            timeout=self.config.confirm_request_timeout,
            transport=self.transport,
        )
        return outcome

    def _resolve_strategy(self, configs: Sequence[ConfigDescriptor],
                          force: bool) -> ConflictStrategy:
        conflicts = [c for c in configs if c.has_conflict]
        if not conflicts or force:
            return ConflictStrategy.OVERWRITE

        if self.choose_strategy is None:
            logger.warning(f"{len(conflicts)} existing config(s) found and no way to ask; cancelling")
            return ConflictStrategy.CANCEL

        return ConflictStrategy.parse(self.choose_strategy(conflicts))


def _remove_temp(path: Path):
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.error(f"Could not remove temporary file {path}: {e}")
