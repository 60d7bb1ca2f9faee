"""
Auth routes (MSAL / Entra ID).

Endpoints:
  - GET  /auth/signin
  - GET  /auth/callback
  - GET  /auth/signout

Implementation notes:
  - Uses MSAL Authorization Code Flow.
  - The code is redeemed into a scratch token cache; once the user's subject id
    is known the cache is handed to that user's `SessionTokenCache`.
  - Sign-out clears the token cache (with this app's client id) before the
    session itself.
"""

from __future__ import annotations

import msal
import requests
import structlog
from flask import Blueprint, redirect, render_template, request, session, url_for

from .config import AuthSettings
from .models import Identity
from .msal_auth import build_msal_app, current_settings, new_state_token
from .token_cache import SessionTokenCache
from .token_store import store_for_request

logger = structlog.get_logger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _redirect_uri(settings: AuthSettings) -> str:
    return settings.redirect_uri or url_for("auth.callback", _external=True)


def _sign_in_failed(message: str, debug: str = "", status: int = 400):  # type: ignore[no-untyped-def]
    session.clear()
    return render_template("error.html", title="Sign-in failed", message=message, debug=debug), status


def _provider_unreachable(exc: Exception):  # type: ignore[no-untyped-def]
    logger.warning("sign_in_provider_unreachable", error=str(exc))
    return _sign_in_failed("Could not contact the identity provider. Please try again.", str(exc), status=503)


@auth_bp.get("/signin")
def signin():
    """
    Start the sign-in flow by redirecting the user to Microsoft.

    Optional query param:
      - next: where to redirect after successful sign-in
    """

    s = current_settings()
    state = new_state_token()
    try:
        auth_url = build_msal_app(s).get_authorization_request_url(
            scopes=s.api_scopes,
            state=state,
            redirect_uri=_redirect_uri(s),
            prompt="select_account",
        )
    except (requests.RequestException, ValueError) as exc:
        return _provider_unreachable(exc)

    session["auth_state"] = state
    session["post_login_redirect"] = request.args.get("next") or url_for("index")
    return redirect(auth_url)


@auth_bp.get("/callback")
def callback():
    """Handle the OAuth2 redirect from Microsoft and populate the user's token cache."""

    # CSRF check
    expected_state = session.get("auth_state")
    received_state = request.args.get("state")
    if not expected_state or expected_state != received_state:
        return _sign_in_failed("Authentication failed (invalid state). Please try again.")

    code = request.args.get("code")
    if not code:
        # Azure sends error params when sign-in fails/cancelled.
        error = request.args.get("error") or "unknown_error"
        return _sign_in_failed("Authentication failed.", f"{error}: {request.args.get('error_description') or ''}")

    s = current_settings()
    scratch = msal.SerializableTokenCache()
    try:
        result = build_msal_app(s, cache=scratch).acquire_token_by_authorization_code(
            code=code,
            scopes=s.api_scopes,
            redirect_uri=_redirect_uri(s),
        )
    except (requests.RequestException, ValueError) as exc:
        return _provider_unreachable(exc)

    if not isinstance(result, dict) or "error" in result:
        result = result if isinstance(result, dict) else {}
        logger.warning("sign_in_exchange_failed", error=result.get("error"))
        return _sign_in_failed(
            "Authentication failed.", f"{result.get('error')}: {result.get('error_description') or ''}"
        )

    identity = Identity.from_claims(result.get("id_token_claims"))
    if identity is None:
        return _sign_in_failed("Authentication failed: no user id or name returned by identity provider.")

    session.pop("auth_state", None)
    next_url = session.pop("post_login_redirect", None) or url_for("index")

    session["user"] = identity.to_session()
    SessionTokenCache(identity.subject, store_for_request()).adopt(scratch.serialize())
    logger.info("signed_in", subject=identity.subject)

    return redirect(next_url)


@auth_bp.get("/signout")
def signout():
    """Clear the user's token cache, then the local session."""

    identity = Identity.from_session(session.get("user"))
    if identity is not None:
        SessionTokenCache(identity.subject, store_for_request()).clear(current_settings().client_id)
        logger.info("signed_out", subject=identity.subject)

    session.clear()
    return redirect(url_for("index"))
