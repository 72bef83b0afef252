# Overview: Outlet access resolution; maps a caller's token to the outlets they may act on.

"""
Authentication and outlet grants are owned by an external service. The
engine only needs one question answered: "which outlets may this caller act
on?". AccessResolver is that boundary; StaticAccessResolver answers it from
configuration and is what tests and single-outlet installs use.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

EXTENSION_KEY = "posengine.access_resolver"


@dataclass(frozen=True)
class CallerContext:
    caller_id: str
    outlet_ids: frozenset = field(default_factory=frozenset)

    def may_access(self, outlet_id: int) -> bool:
        return outlet_id in self.outlet_ids


class AccessResolver:
    def resolve(self, token: str) -> CallerContext | None:
        """Return the caller behind token, or None when the token is unknown."""
        raise NotImplementedError


class StaticAccessResolver(AccessResolver):
    """
    Grants from a mapping: {token: {"caller_id": str, "outlet_ids": [int, ...]}}.
    """

    def __init__(self, grants: dict | None = None):
        self._contexts = {
            token: CallerContext(
                caller_id=str(grant.get("caller_id", token)),
                outlet_ids=frozenset(int(o) for o in grant.get("outlet_ids", ())),
            )
            for token, grant in (grants or {}).items()
        }

    def resolve(self, token: str) -> CallerContext | None:
        return self._contexts.get(token)


def get_access_resolver() -> AccessResolver:
    return current_app.extensions[EXTENSION_KEY]
