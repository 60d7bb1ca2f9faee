"""
MSAL token cache bound to one user and one browser session.

MSAL keeps tokens in an in-memory `SerializableTokenCache`; this subclass moves
that state in and out of a `TokenCacheStore` at explicit points:

  - `hydrate()` before each MSAL call (read only)
  - `flush()` after each MSAL call (writes only if MSAL changed something)
"""

from __future__ import annotations

import msal
import structlog

from .token_store import TokenCacheStore

logger = structlog.get_logger(__name__)

_CT = msal.TokenCache.CredentialType


class SessionTokenCache(msal.SerializableTokenCache):
    """The token cache of a single subject; do not reuse across subjects."""

    def __init__(self, subject: str, store: TokenCacheStore):
        if not subject:
            raise ValueError("A token cache must be bound to a subject id")
        super().__init__()
        self.subject = subject
        self._store = store

    @property
    def count(self) -> int:
        """Access + refresh tokens currently persisted for this subject."""
        return self._store.count(self.subject)

    def hydrate(self) -> None:
        """Replace the in-memory state with what the store holds."""
        self.deserialize(self._store.load(self.subject))

    def flush(self) -> bool:
        """Persist the in-memory state if it changed. Returns True when it wrote."""

        if not self.has_state_changed:
            return False
        self._store.save(self.subject, self.serialize())
        return True

    def adopt(self, blob: str) -> None:
        """Take over a cache populated elsewhere (e.g. by the sign-in exchange) and persist it."""

        self.deserialize(blob)
        self.has_state_changed = True
        self.flush()

    def clear(self, client_id: str) -> None:
        """Drop this app's records for the subject and remove the stored entry."""

        self.hydrate()
        query = {"client_id": client_id}
        for at in list(self.search(_CT.ACCESS_TOKEN, query=query)):
            self.remove_at(at)
        for rt in list(self.search(_CT.REFRESH_TOKEN, query=query)):
            self.remove_rt(rt)
        for idt in list(self.search(_CT.ID_TOKEN, query=query)):
            self.remove_idt(idt)
        self.has_state_changed = False
        self._store.clear(self.subject)
        logger.info("token_cache_cleared", subject=self.subject)
