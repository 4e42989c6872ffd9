"""
Shared-secret authentication for trigger requests.
"""

from __future__ import annotations

import hmac
from typing import Mapping

TOKEN_HEADER = "x-deploy-token"


def extract_token(headers: Mapping[str, str]) -> str:
    """Return the presented credential: X-Deploy-Token first, then a Bearer token."""
    token = headers.get(TOKEN_HEADER, "")
    if token:
        return token.strip()
    scheme, _, value = headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer":
        return value.strip()
    return ""


def authenticate(presented: str | None, secret: str) -> bool:
    """Constant-time check of a presented token against the configured secret.

    A missing or empty token is always denied, and so is everything when no
    secret is configured.
    """
    if not presented or not secret:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), secret.encode("utf-8"))
