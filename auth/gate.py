"""
Per-request session gate.

Runs before every request. A session that claims a signed-in user but has no
token cache (e.g. the token cache backend was wiped by a restart while the
browser kept its session cookie) is treated as signed out: the session is
cleared and the browser is sent to the anonymous home page.
"""

from __future__ import annotations

import enum
from functools import wraps
from typing import Any, Callable, TypeVar

import structlog
from flask import Flask, g, redirect, request, session, url_for

from .models import Identity
from .msal_auth import current_settings
from .token_cache import SessionTokenCache
from .token_store import TokenCacheStore, store_for_request

logger = structlog.get_logger(__name__)

F = TypeVar("F", bound=Callable[..., object])

EXEMPT_ENDPOINTS = frozenset({"static", "auth.signin", "auth.callback", "auth.signout", "error"})


class GateOutcome(enum.Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"
    FORCE_SIGN_OUT = "force_sign_out"


def check_principal(
    user: Any, store_factory: Callable[[], TokenCacheStore]
) -> tuple[GateOutcome, Identity | None]:
    """Decide what the session's stored principal is worth for this request."""

    if not user:
        return GateOutcome.ANONYMOUS, None

    identity = Identity.from_session(user)
    if identity is None:
        return GateOutcome.FORCE_SIGN_OUT, None

    if store_factory().count(identity.subject) <= 0:
        return GateOutcome.FORCE_SIGN_OUT, identity

    return GateOutcome.AUTHENTICATED, identity


def _session_gate():  # type: ignore[no-untyped-def]
    g.identity = None
    if request.endpoint in EXEMPT_ENDPOINTS:
        return None

    outcome, identity = check_principal(session.get("user"), store_for_request)
    if outcome is GateOutcome.FORCE_SIGN_OUT:
        logger.info("session_forced_sign_out", subject=identity.subject if identity else None)
        if identity is not None:
            SessionTokenCache(identity.subject, store_for_request()).clear(current_settings().client_id)
        session.clear()
        return redirect(url_for("index"))

    g.identity = identity
    return None


def init_gate(app: Flask) -> None:
    app.before_request(_session_gate)


def current_identity() -> Identity | None:
    """The identity the session gate accepted for this request, if any."""

    return g.get("identity")


def login_required(fn: F) -> F:
    """Send anonymous requests to the home page, which offers sign-in."""

    @wraps(fn)
    def wrapper(*args, **kwargs):  # type: ignore[no-untyped-def]
        if current_identity() is not None:
            return fn(*args, **kwargs)
        return redirect(url_for("index"))

    return wrapper  # type: ignore[return-value]
