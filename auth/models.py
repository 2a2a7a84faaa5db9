"""
auth/models.py -- Domain dataclass for a resolved caller identity.

Pattern: Data class (pure data container, zero logic). The credential store
produces it; dependencies and routes branch on it.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Identity:
    """The active account behind a valid API token.

    Built from one row of authtoken_token joined to auth_user. Never cached:
    a fresh Identity is resolved on every request, so a deactivated account
    loses access on its next call.
    """

    id: int
    username: str
    email: str = ""
    is_active: bool = True
    is_staff: bool = False
    is_superuser: bool = False

    @property
    def is_privileged(self) -> bool:
        return self.is_staff or self.is_superuser
