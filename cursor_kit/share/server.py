"""
Share Server

Binds the share listener, optionally exposes it through a tunnel, and
serves until the session winds down.

Port Selection:
- Try the requested port, then port+1, port+2, ... up to the retry limit
- Only "address in use" moves on to the next port; any other bind error
  is fatal immediately
- The bound socket is handed to uvicorn so there is no window between
  probing and listening

Teardown Order (confirmation, failure or interrupt):
1. uvicorn stops accepting and finishes in-flight responses
2. the tunnel (if any) is closed
3. the session moves to `closed`
"""

import errno
import logging
import socket
import sys
from typing import List, Optional, Sequence

import uvicorn

from ..archive import ArchiveBuilder
from ..configs import ConfigDescriptor
from ..config import Config
from ..errors import PortUnavailableError
from ..tunnel import TunnelHandle, create_tunnel
from .app import create_app
from .session import SessionEvent, SessionState, TransferSession

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8080
MAX_PORT_RETRIES = 10

_ADDR_IN_USE = {errno.EADDRINUSE}
if hasattr(errno, 'WSAEADDRINUSE'):
    _ADDR_IN_USE.add(errno.WSAEADDRINUSE)


def bind_available_port(host: str, start_port: int,
                        retries: int = MAX_PORT_RETRIES) -> socket.socket:
    """
    Bind and listen on the first free port starting at start_port.

    Returns:
        A listening socket; its port is sock.getsockname()[1]

    Raises:
        PortUnavailableError: if every port tried is in use (the walk
            stops early at 65535)
        OSError: for any other bind failure
    """
    family = socket.AF_INET6 if ':' in host else socket.AF_INET

    tried = 0
    for attempt in range(retries):
        port = start_port + attempt
        if port > 65535:
            break
        tried += 1

        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            if sys.platform != 'win32':
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            sock.listen(128)
        except OSError as e:
            sock.close()
            if e.errno in _ADDR_IN_USE:
                logger.debug(f"Port {port} is already in use")
                continue
            raise

        if attempt:
            logger.info(f"Port {start_port} busy, using {port}")
        return sock

    raise PortUnavailableError(start_port, tried)


def get_local_ip() -> str:
    """Best guess at this machine's LAN IPv4 address."""
    try:
        # No packets are sent; connect() only selects the outgoing interface
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("10.255.255.255", 1))
            ip = s.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    return ip


class ShareServer:
    """
    One share session: listener + optional tunnel + state machine.

    Usage:
        server = ShareServer(configs, config, tunnel_provider="ngrok")
        port = await server.start()
        print(server.url)
        await server.serve()
    """

    def __init__(self, configs: Sequence[ConfigDescriptor],
                 config: Optional[Config] = None,
                 tunnel_provider: Optional[str] = None):
        if not configs:
            raise ValueError("Nothing to share")

        self.config = config or Config()
        self.configs: List[ConfigDescriptor] = list(configs)
        self.tunnel_provider = tunnel_provider

        self.session = TransferSession(confirm_timeout=self.config.confirm_timeout)
        self.session.on_transition(self._on_transition)

        self.port: Optional[int] = None
        self.tunnel: Optional[TunnelHandle] = None

        self._socket: Optional[socket.socket] = None
        self._server: Optional[uvicorn.Server] = None

    @property
    def lan_url(self) -> Optional[str]:
        if self.port is None:
            return None
        return f"http://{get_local_ip()}:{self.port}"

    @property
    def url(self) -> Optional[str]:
        """URL the receiver should use."""
        if self.tunnel is not None:
            return self.tunnel.url
        return self.lan_url

    def build_archive(self) -> ArchiveBuilder:
        return ArchiveBuilder.from_descriptors(
            self.configs,
            compression_level=self.config.compression_level,
            chunk_size=self.config.chunk_size,
        )

    async def start(self) -> int:
        """
        Bind the listener and, in internet mode, open the tunnel.

        Returns:
            The port actually bound

        Raises:
            PortUnavailableError, TunnelError
        """
        self._socket = bind_available_port(
            self.config.host, self.config.port, self.config.max_port_retries
        )
        self.port = self._socket.getsockname()[1]

        app = create_app(self.session, self.build_archive)
        self._server = uvicorn.Server(uvicorn.Config(
            app,
            log_level="warning",
            access_log=False,
            lifespan="off",
        ))

        if self.tunnel_provider:
            try:
                self.tunnel = await create_tunnel(
                    self.port, self.tunnel_provider, timeout=self.config.tunnel_timeout
                )
            except BaseException:
                await self._teardown()
                raise

        self.session.listen_started()
        logger.info(f"Share server listening on {self.config.host}:{self.port}")
        return self.port

    async def serve(self) -> TransferSession:
        """
        Serve until the session is confirmed, fails or is interrupted.

        Returns:
            The finished session (inspect .confirmation / .failed)
        """
        if self._server is None or self._socket is None:
            raise RuntimeError("ShareServer.start() must be called first")

        try:
            await self._server.serve(sockets=[self._socket])
        finally:
            # Reaching here in a live state means uvicorn stopped on an
            # operator signal (or we were cancelled), not on confirmation
            await self._teardown()

        return self.session

    async def stop(self):
        """Request shutdown regardless of transfer phase."""
        if self._server is not None and self._server.started:
            # serve() tears down once uvicorn has drained
            self._server.should_exit = True
            await self.session.wait_closed()
        else:
            await self._teardown()

    async def _teardown(self):
        if self.tunnel is not None:
            try:
                await self.tunnel.close()
            except Exception as e:
                logger.error(f"Failed to close tunnel: {e}")
        if self._socket is not None:
            self._socket.close()
            self._socket = None

        if self.session.state in (SessionState.CONFIRMED, SessionState.FAILED,
                                  SessionState.IDLE):
            self.session.shutdown_complete()
        else:
            self.session.interrupt()

    def _on_transition(self, old_state: SessionState, event: SessionEvent,
                       new_state: SessionState):
        if new_state in (SessionState.CONFIRMED, SessionState.FAILED):
            if self._server is not None:
                self._server.should_exit = True
