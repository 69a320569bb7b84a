"""
ngrok backend

Runs `ngrok http <port>` with JSON logging on stdout and waits for the
`started tunnel` record. ngrok needs an auth token, either configured
with `ngrok config add-authtoken` or passed through NGROK_AUTHTOKEN.
"""

import json
import logging
import os
import shutil
from typing import List, Optional

from ..errors import TunnelError
from .base import SubprocessTunnelProvider, TunnelProviderKind

logger = logging.getLogger(__name__)

AUTHTOKEN_ENV = 'NGROK_AUTHTOKEN'
AUTH_ERROR_MARKERS = ('authtoken', 'ERR_NGROK_4018', 'authentication failed')

INSTALL_HINT = (
    "ngrok is not installed. Download it from https://ngrok.com/download\n"
    "Then configure your auth token: ngrok config add-authtoken <your-token>"
)
AUTH_HINT = (
    "ngrok requires an auth token. Get one at "
    "https://dashboard.ngrok.com/get-started/your-authtoken\n"
    f"Then run: ngrok config add-authtoken <your-token> (or set {AUTHTOKEN_ENV})"
)


class NgrokProvider(SubprocessTunnelProvider):
    kind = TunnelProviderKind.NGROK

    def build_command(self, port: int) -> List[str]:
        ngrok = shutil.which('ngrok')
        if not ngrok:
            raise TunnelError(INSTALL_HINT)

        argv = [ngrok, 'http', str(port), '--log', 'stdout', '--log-format', 'json']
        token = os.getenv(AUTHTOKEN_ENV)
        if token:
            argv += ['--authtoken', token]
        return argv

    def parse_line(self, line: str) -> Optional[str]:
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            # Startup failures are printed as plain text before logging begins
            _raise_on_auth_error(line)
            return None
        if not isinstance(record, dict):
            return None

        if record.get('lvl') in ('eror', 'crit'):
            message = str(record.get('err') or record.get('msg') or '')
            logger.debug(f"ngrok error: {message}")
            _raise_on_auth_error(message)

        if record.get('msg') == 'started tunnel' and record.get('url'):
            return record['url']
        return None


def _raise_on_auth_error(text: str):
    lowered = text.lower()
    if any(marker.lower() in lowered for marker in AUTH_ERROR_MARKERS):
        raise TunnelError(AUTH_HINT)
