"""Rejects Composer 1 clients.

Only the Composer 2 metadata format is served. Composer 1 would
misinterpret it, so those clients get a 406 with an explanation instead.
"""

import re
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from pkgbroker.api.errors import error_response
from pkgbroker.core.errors import UnsupportedClientError

COMPOSER_1_AGENT = re.compile(r"^Composer/1\.", re.IGNORECASE)

# Paths any client may reach
EXCLUDED_PREFIXES = ("/health",)


class ComposerVersionMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.startswith(EXCLUDED_PREFIXES):
            return await call_next(request)

        user_agent = request.headers.get("User-Agent", "")
        if COMPOSER_1_AGENT.match(user_agent):
            return error_response(
                request,
                UnsupportedClientError(
                    "Composer 1 is not supported, upgrade to Composer 2 (composer self-update --2)"
                ),
            )
        return await call_next(request)
