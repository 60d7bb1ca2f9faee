"""
Server-side storage for per-user MSAL token caches.

Each browser session gets a random scope id (kept in the Flask session); a
user's serialized MSAL cache is stored under `token_cache:<scope>:<subject>` in
a `cachelib` backend, with the session lifetime as its timeout. Entries
therefore never leak between sessions or users and never outlive the session.

Backends:
  - filesystem (default): `cachelib.FileSystemCache` under TOKEN_CACHE_DIR
  - simple: in-process `cachelib.SimpleCache` (tests, single-worker dev)
  - redis: `cachelib.RedisCache` from REDIS_URL, for multi-instance deployments
"""

from __future__ import annotations

import json
import os
import secrets
from typing import Any, Mapping

import redis
import structlog
from cachelib import BaseCache, FileSystemCache, RedisCache, SimpleCache
from flask import current_app, session

logger = structlog.get_logger(__name__)

SCOPE_SESSION_KEY = "token_cache_scope"
DEFAULT_FILE_THRESHOLD = 500

# MSAL cache sections that hold usable credentials.
_CREDENTIAL_SECTIONS = ("AccessToken", "RefreshToken")


def count_records(blob: str | None) -> int:
    """Number of access + refresh token records in a serialized MSAL cache."""

    if not blob:
        return 0
    try:
        state = json.loads(blob)
    except ValueError:
        return 0
    if not isinstance(state, dict):
        return 0
    return sum(len(state.get(section) or {}) for section in _CREDENTIAL_SECTIONS)


class TokenCacheStore:
    """
    Subject -> serialized token cache, for one browser session.

    None of the methods raise: a missing, malformed or unreachable entry reads
    as empty.
    """

    def __init__(self, backend: BaseCache, scope: str, timeout: int = 0):
        if not scope:
            raise ValueError("scope is required")
        self._backend = backend
        self._scope = scope
        self._timeout = timeout

    @property
    def scope(self) -> str:
        return self._scope

    def _key(self, subject: str) -> str:
        return f"token_cache:{self._scope}:{subject}"

    def _entry(self, subject: str) -> dict[str, Any] | None:
        try:
            entry = self._backend.get(self._key(subject))
        except Exception:
            logger.warning("token_cache_read_failed", subject=subject, exc_info=True)
            return None
        if not isinstance(entry, dict) or not isinstance(entry.get("blob"), str):
            return None
        return entry

    def load(self, subject: str) -> str:
        entry = self._entry(subject)
        return entry["blob"] if entry else ""

    def save(self, subject: str, blob: str) -> None:
        """Replace the subject's entry with `blob`."""

        entry = {"blob": blob, "count": count_records(blob)}
        try:
            self._backend.set(self._key(subject), entry, timeout=self._timeout)
        except Exception:
            logger.warning("token_cache_write_failed", subject=subject, exc_info=True)
            return
        logger.debug("token_cache_saved", subject=subject, records=entry["count"])

    def clear(self, subject: str) -> None:
        try:
            self._backend.delete(self._key(subject))
        except Exception:
            logger.warning("token_cache_clear_failed", subject=subject, exc_info=True)

    def count(self, subject: str) -> int:
        entry = self._entry(subject)
        if not entry:
            return 0
        count = entry.get("count")
        return count if isinstance(count, int) and count > 0 else 0


def build_backend(config: Mapping[str, Any]) -> BaseCache:
    """Create the cachelib backend selected by TOKEN_CACHE_TYPE."""

    cache_type = (config.get("TOKEN_CACHE_TYPE") or "filesystem").strip().lower()

    if cache_type == "simple":
        return SimpleCache()

    if cache_type == "redis":
        url = config.get("REDIS_URL")
        if not url:
            raise RuntimeError("TOKEN_CACHE_TYPE=redis requires REDIS_URL.")
        return RedisCache(host=redis.Redis.from_url(url), key_prefix="outlook-web:")

    if cache_type == "filesystem":
        cache_dir = config.get("TOKEN_CACHE_DIR") or os.path.join(os.getcwd(), ".token_cache")
        os.makedirs(cache_dir, exist_ok=True)
        # Past the threshold cachelib drops expired entries first, then the
        # ones closest to expiry.
        threshold = int(config.get("TOKEN_CACHE_THRESHOLD") or DEFAULT_FILE_THRESHOLD)
        return FileSystemCache(cache_dir, threshold=threshold, mode=0o600)

    raise RuntimeError(f"Unknown TOKEN_CACHE_TYPE '{cache_type}'. Use filesystem, simple or redis.")


def init_token_store(app, backend: BaseCache | None = None) -> BaseCache:
    """Attach the token cache backend to the app (built from config unless given)."""

    backend = backend or app.config.get("TOKEN_CACHE_BACKEND") or build_backend(app.config)
    app.extensions["token_cache_backend"] = backend
    return backend


def store_for_request() -> TokenCacheStore:
    """The token cache store for the current request's browser session."""

    scope = session.get(SCOPE_SESSION_KEY)
    if not isinstance(scope, str) or not scope:
        scope = secrets.token_urlsafe(16)
        session[SCOPE_SESSION_KEY] = scope
    timeout = int(current_app.permanent_session_lifetime.total_seconds())
    return TokenCacheStore(current_app.extensions["token_cache_backend"], scope, timeout=timeout)
