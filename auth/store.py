"""
auth/store.py -- Token-to-identity lookup against the shared BLT database.

Pattern: Repository + Data Mapper (same as tracker/store.py).
CredentialStore is the repository; _row_to_identity is the mapper.

The credential tables (authtoken_token, auth_user) are owned by the main BLT
application. This store only reads them and never creates schema.

Security:
  All queries use bound parameters. The token is compared by exact match in
  SQL, one round trip per call, and the result is never cached.
  A token whose account is disabled resolves to None, exactly like an
  unknown token.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.engine import Engine

from auth.models import Identity
from core.database import make_engine
from tracker.schema import tokens, users

# DRF keys are 40 hex characters. Anything longer cannot match and is refused
# before it reaches the database.
MAX_CREDENTIAL_LENGTH = 40


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        username=row.username,
        email=row.email or "",
        is_active=bool(row.is_active),
        is_staff=bool(row.is_staff),
        is_superuser=bool(row.is_superuser),
    )


class CredentialStore:
    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)

    def resolve(self, credential: Optional[str]) -> Optional[Identity]:
        """Return the active Identity for credential, or None.

        Empty, oversized, unknown and inactive-account credentials all give
        None. Database errors propagate to the caller, which decides whether
        they mean "anonymous" or "401".
        """
        if not credential or len(credential) > MAX_CREDENTIAL_LENGTH:
            return None
        statement = (
            select(
                users.c.id,
                users.c.username,
                users.c.email,
                users.c.is_active,
                users.c.is_staff,
                users.c.is_superuser,
            )
            .select_from(tokens.join(users, tokens.c.user_id == users.c.id))
            .where(tokens.c.key == credential, users.c.is_active.is_(True))
        )
        with self.engine.connect() as conn:
            row = conn.execute(statement).first()
        return _row_to_identity(row) if row is not None else None

    def close(self) -> None:
        """Dispose of the connection pool."""
        self.engine.dispose()
