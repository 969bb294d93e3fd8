"""Explicit identity of the operator issuing a pipeline operation.

Every service call takes a UserContext as its first argument instead of
reading a request-global. Endpoints build it from the verified access
token (see api.deps.get_current_user).
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class UserContext:
    """Immutable identity of the current user."""

    user_id: str
    email: str
