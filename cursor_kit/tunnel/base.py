"""
Tunnel Provider Base

Design Decision: Tunnel Backends
================================

Options Considered:
1. Python SDKs for each service
   - Not every service has one; versions drift from the CLIs users install
2. Drive the official CLIs as subprocesses
   - Same binaries users already authenticate with
   - URL is read from the CLI's own output

Decision: Subprocess backends behind a common interface
- Each backend knows its command line and how to spot the public URL
- Output is drained for the tunnel's lifetime so the child never blocks
- close() terminates the child, escalating to kill after a grace period
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Union

from ..errors import ConfigurationError, TunnelError

logger = logging.getLogger(__name__)

TERMINATE_GRACE_SECONDS = 5.0


class TunnelProviderKind(str, Enum):
    """Supported tunnel backends."""
    LOCALTUNNEL = "localtunnel"
    NGROK = "ngrok"

    @classmethod
    def parse(cls, value: Union[str, 'TunnelProviderKind']) -> 'TunnelProviderKind':
        try:
            return cls(value)
        except ValueError:
            known = ", ".join(k.value for k in cls)
            raise ConfigurationError(
                f"Unknown tunnel provider: {value!r} (expected one of: {known})"
            ) from None


@dataclass
class TunnelHandle:
    """A live tunnel. close() may be awaited any number of times."""
    provider: TunnelProviderKind
    url: str
    _closer: Callable[[], Awaitable[None]] = field(repr=False)
    _closed: bool = field(default=False, repr=False)

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def close(self):
        if self._closed:
            return
        self._closed = True
        await self._closer()
        logger.info(f"{self.provider.value} tunnel closed")


class TunnelProvider(ABC):
    """Exposes a local TCP port at a public URL."""

    kind: TunnelProviderKind

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    @abstractmethod
    async def create(self, port: int) -> TunnelHandle:
        """
        Start a tunnel to localhost:port.

        Raises:
            TunnelError: with a remediation hint when the backend is
                missing, unauthenticated or fails to start
        """


class SubprocessTunnelProvider(TunnelProvider):
    """Shared plumbing for CLI-driven backends."""

    def __init__(self, timeout: float = 30.0):
        super().__init__(timeout)
        self._output: List[str] = []

    @abstractmethod
    def build_command(self, port: int) -> List[str]:
        """Command line to run. Raises TunnelError if the CLI is missing."""

    @abstractmethod
    def parse_line(self, line: str) -> Optional[str]:
        """Return the public URL if this output line announces it."""

    def build_env(self) -> Optional[dict]:
        return None

    def describe_exit(self, returncode: Optional[int], output: List[str]) -> TunnelError:
        tail = " | ".join(output[-3:]) or "no output"
        return TunnelError(f"{self.kind.value} exited with code {returncode}: {tail}")

    async def create(self, port: int) -> TunnelHandle:
        argv = self.build_command(port)
        logger.info(f"Starting {self.kind.value} tunnel for port {port}...")
        logger.debug(f"Tunnel command: {' '.join(argv)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=self.build_env(),
            )
        except OSError as e:
            raise TunnelError(f"Could not start {self.kind.value}: {e}") from e

        try:
            url = await asyncio.wait_for(self._wait_for_url(process), timeout=self.timeout)
        except asyncio.TimeoutError:
            await self._terminate(process)
            raise TunnelError(
                f"{self.kind.value} did not report a public URL within {self.timeout:.0f}s"
            ) from None
        except BaseException:
            await self._terminate(process)
            raise

        drain_task = asyncio.create_task(self._drain(process))

        async def closer():
            drain_task.cancel()
            await asyncio.wait([drain_task])
            await self._terminate(process)

        logger.info(f"Tunnel established: {url}")
        return TunnelHandle(provider=self.kind, url=url, _closer=closer)

    async def _wait_for_url(self, process: asyncio.subprocess.Process) -> str:
        async for raw in process.stdout:
            line = raw.decode('utf-8', errors='replace').strip()
            if not line:
                continue
            self._output.append(line)
            logger.debug(f"[{self.kind.value}] {line}")
            url = self.parse_line(line)
            if url:
                return url

        await process.wait()
        raise self.describe_exit(process.returncode, self._output)

    async def _drain(self, process: asyncio.subprocess.Process):
        async for raw in process.stdout:
            logger.debug(f"[{self.kind.value}] {raw.decode('utf-8', errors='replace').rstrip()}")

    async def _terminate(self, process: asyncio.subprocess.Process):
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(f"{self.kind.value} did not exit, killing it")
            process.kill()
            await process.wait()
