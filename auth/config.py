"""
Authentication configuration.

All secrets are sourced from environment variables (or a local `.env` file).
This module validates presence of required settings and exposes a single
`init_auth(app)` entrypoint. The parsed settings are immutable for the life of
the process and are passed explicitly to whatever needs them.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass

from flask import Flask

DEFAULT_SCOPES = "openid offline_access User.Read Mail.Read Calendars.Read Contacts.Read"

# MSAL adds these itself and refuses them in acquire_token_* calls.
RESERVED_SCOPES = frozenset({"openid", "profile", "offline_access"})


@dataclass(frozen=True)
class AuthSettings:
    """Configuration needed for Entra ID / MSAL auth."""

    client_id: str
    client_secret: str
    redirect_uri: str | None
    tenant_id: str
    scopes: tuple[str, ...]

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}"

    @property
    def api_scopes(self) -> list[str]:
        """Scopes to pass to MSAL token calls (reserved OIDC scopes removed)."""
        return [s for s in self.scopes if s.lower() not in RESERVED_SCOPES]


def parse_scopes(raw: str) -> tuple[str, ...]:
    """Split a space and/or comma delimited scope list, dropping empties and duplicates."""

    seen: list[str] = []
    for scope in re.split(r"[\s,]+", raw or ""):
        if scope and scope not in seen:
            seen.append(scope)
    return tuple(seen)


def load_auth_settings() -> AuthSettings:
    """
    Load auth settings from environment variables.

    Required:
      - AAD_CLIENT_ID
      - AAD_CLIENT_SECRET

    Optional:
      - AAD_REDIRECT_URI (default: external URL of the callback route)
      - AAD_TENANT_ID (default: common)
      - AAD_SCOPES (default: 'openid offline_access User.Read Mail.Read Calendars.Read Contacts.Read')
    """

    client_id = os.environ.get("AAD_CLIENT_ID", "").strip()
    client_secret = os.environ.get("AAD_CLIENT_SECRET", "").strip()

    missing = [k for k, v in [("AAD_CLIENT_ID", client_id), ("AAD_CLIENT_SECRET", client_secret)] if not v]
    if missing:
        raise RuntimeError(
            "Missing required auth environment variables: "
            + ", ".join(missing)
            + ". Set them in your App Service Configuration (or your local env) before starting the app."
        )

    redirect_uri = os.environ.get("AAD_REDIRECT_URI", "").strip() or None
    tenant_id = os.environ.get("AAD_TENANT_ID", "").strip() or "common"

    scopes = parse_scopes(os.environ.get("AAD_SCOPES", DEFAULT_SCOPES))
    if not [s for s in scopes if s.lower() not in RESERVED_SCOPES]:
        raise RuntimeError("AAD_SCOPES must name at least one API scope (e.g. Mail.Read).")

    return AuthSettings(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        tenant_id=tenant_id,
        scopes=scopes,
    )


def init_auth(app: Flask, settings: AuthSettings | None = None) -> AuthSettings:
    """
    Validate and attach auth settings to Flask `app.config`.

    Returns the parsed `AuthSettings` for convenience.
    """

    settings = settings or load_auth_settings()
    app.config["AUTH_SETTINGS"] = settings
    return settings
