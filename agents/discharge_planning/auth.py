"""
Caller authorization for discharge workflow mutations.

Identity verification belongs to the host (API gateway, hospital SSO,
signature checks). The workflow only asks an injected Authorizer whether a
caller may proceed, before it validates anything else.
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol

from .errors import Unauthorized

logger = logging.getLogger(__name__)


class Authorizer(Protocol):
    def require_auth(self, caller: str) -> None:
        """Return if ``caller`` may mutate discharge plans, else raise Unauthorized."""
        ...


class AllowAllAuthorizer:
    """Accepts any non-empty caller. For development and trusted gateways."""

    def require_auth(self, caller: str) -> None:
        if not caller:
            raise Unauthorized("Caller identity is required")


class AllowListAuthorizer:
    """Accepts only callers from a fixed set of identities."""

    def __init__(self, callers: Iterable[str]) -> None:
        self.callers = frozenset(callers)
        if not self.callers:
            raise ValueError("AllowListAuthorizer needs at least one caller")

    def require_auth(self, caller: str) -> None:
        if caller not in self.callers:
            logger.warning(f"Rejected caller {caller!r}")
            raise Unauthorized(f"Caller {caller!r} is not authorized")


def authorizer_for(callers: Iterable[str]) -> Authorizer:
    """Allow-list when callers are configured, otherwise accept everyone."""
    callers = list(callers)
    if callers:
        return AllowListAuthorizer(callers)
    return AllowAllAuthorizer()
