"""
Function-key authentication for the form filling API.

Callers present the shared key either in the ``x-functions-key`` header or in
the ``code`` query parameter. The middleware in app_server.py guards every
/api/* route except the public ones, so new routes are protected by default.

Environment variables (set in .env):
    FORMFILL_FUNCTION_KEY  –  shared secret; leave unset to disable the check
                              for local development.
"""

from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Request

import config

FUNCTION_KEY_HEADER = "x-functions-key"
FUNCTION_KEY_QUERY = "code"


def auth_enabled() -> bool:
    return bool(config.FUNCTION_KEY)


def presented_key(request: Request) -> Optional[str]:
    return request.headers.get(FUNCTION_KEY_HEADER) or request.query_params.get(FUNCTION_KEY_QUERY)


def key_is_valid(candidate: Optional[str]) -> bool:
    """Constant-time comparison against the configured key."""
    if not auth_enabled():
        return True
    if not candidate:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), config.FUNCTION_KEY.encode("utf-8"))
