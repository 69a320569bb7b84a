"""
Tunnel Module - Internet-mode exposure

Makes a locally bound share session reachable from outside the LAN.
New backends are added to PROVIDERS; callers only use create_tunnel().
"""

from typing import Dict, Type, Union

from .base import TunnelHandle, TunnelProvider, TunnelProviderKind
from .localtunnel import LocaltunnelProvider
from .ngrok import NgrokProvider

PROVIDERS: Dict[TunnelProviderKind, Type[TunnelProvider]] = {
    TunnelProviderKind.LOCALTUNNEL: LocaltunnelProvider,
    TunnelProviderKind.NGROK: NgrokProvider,
}


async def create_tunnel(port: int, provider: Union[str, TunnelProviderKind],
                        timeout: float = 30.0) -> TunnelHandle:
    """
    Expose localhost:port through the given backend.

    Returns:
        A TunnelHandle; await handle.close() before exiting
    """
    kind = TunnelProviderKind.parse(provider)
    return await PROVIDERS[kind](timeout=timeout).create(port)


__all__ = [
    'TunnelHandle',
    'TunnelProvider',
    'TunnelProviderKind',
    'LocaltunnelProvider',
    'NgrokProvider',
    'PROVIDERS',
    'create_tunnel',
]
