"""Resolve the authenticated user supplied by the host application."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from fastapi import Request

logger = logging.getLogger(__name__)

ANONYMOUS_USER_ID = 0


class IdentityProvider(ABC):
    """Maps an incoming request to the host's authenticated user id.

    Returning :data:`ANONYMOUS_USER_ID` means the caller is not logged in.
    """

    @abstractmethod
    def get_current_user_id(self, request: Request) -> int:
        pass


class HeaderIdentityProvider(IdentityProvider):
    """Trusts a user id header set by the authenticating reverse proxy."""

    def __init__(self, header_name: str = "X-Authenticated-User-Id") -> None:
        self.header_name = header_name

    def get_current_user_id(self, request: Request) -> int:
        raw = request.headers.get(self.header_name, "").strip()
        if not raw:
            return ANONYMOUS_USER_ID
        try:
            return max(int(raw), ANONYMOUS_USER_ID)
        except ValueError:
            logger.warning("Ignoring non-integer %s header", self.header_name)
            return ANONYMOUS_USER_ID
