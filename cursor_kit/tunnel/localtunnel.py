"""
localtunnel backend

Runs the `lt` CLI (or `npx localtunnel`), which prints
`your url is: https://<name>.loca.lt` once the tunnel is up.
"""

import re
import shutil
from typing import List, Optional

from ..errors import TunnelError
from .base import SubprocessTunnelProvider, TunnelProviderKind

URL_PATTERN = re.compile(r"your url is:\s*(https?://\S+)", re.IGNORECASE)


class LocaltunnelProvider(SubprocessTunnelProvider):
    kind = TunnelProviderKind.LOCALTUNNEL

    def build_command(self, port: int) -> List[str]:
        lt = shutil.which('lt')
        if lt:
            return [lt, '--port', str(port)]

        npx = shutil.which('npx')
        if npx:
            return [npx, '--yes', 'localtunnel', '--port', str(port)]

        raise TunnelError(
            "localtunnel is not installed. Run: npm install -g localtunnel\n"
            "(Node.js is required; alternatively use --tunnel ngrok)"
        )

    def parse_line(self, line: str) -> Optional[str]:
        match = URL_PATTERN.search(line)
        return match.group(1) if match else None
