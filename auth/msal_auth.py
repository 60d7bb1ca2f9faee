"""
MSAL helpers.

This wraps MSAL (Microsoft Authentication Library) setup for Entra ID
authentication. We use the OAuth2 Authorization Code Flow to sign in and
silent acquisition (cached or refreshed tokens) afterwards.
"""

from __future__ import annotations

import secrets

import msal
from flask import Flask, current_app

from .config import AuthSettings


def current_settings(app: Flask | None = None) -> AuthSettings:
    app = app or current_app  # type: ignore[assignment]
    settings = app.config.get("AUTH_SETTINGS")
    if not isinstance(settings, AuthSettings):
        raise RuntimeError("Auth settings not initialized. Call auth.config.init_auth(app) during app startup.")
    return settings


def build_msal_app(
    settings: AuthSettings, cache: msal.TokenCache | None = None
) -> msal.ConfidentialClientApplication:
    """Create an MSAL confidential client app, optionally bound to a token cache."""

    return msal.ConfidentialClientApplication(
        client_id=settings.client_id,
        client_credential=settings.client_secret,
        authority=settings.authority,
        token_cache=cache,
    )


def new_state_token() -> str:
    """Generate a cryptographically secure state token for CSRF protection."""

    return secrets.token_urlsafe(32)
