"""
Silent token acquisition.

Given a signed-in subject and the scopes a page needs, produce an access token
from the subject's cached MSAL state, letting MSAL redeem the refresh token when
the cached access token has expired. Failures come back as a typed
`AcquisitionResult` rather than exceptions so the calling page can choose
between "send the user to sign in" and "show an error page".
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

import msal
import requests
import structlog

from .config import RESERVED_SCOPES, AuthSettings
from .models import AcquisitionFailure, AcquisitionResult
from .msal_auth import build_msal_app
from .token_cache import SessionTokenCache
from .token_store import TokenCacheStore

logger = structlog.get_logger(__name__)

ClientFactory = Callable[[AuthSettings, msal.TokenCache], Any]

# OAuth2/AAD errors meaning the stored grant is no longer usable.
_GRANT_REJECTED = frozenset(
    {
        "invalid_grant",
        "interaction_required",
        "login_required",
        "consent_required",
        "invalid_client",
        "unauthorized_client",
    }
)


class SilentAcquisitionFlow:
    """Acquire access tokens for a subject without user interaction."""

    def __init__(self, settings: AuthSettings, client_factory: ClientFactory | None = None):
        self._settings = settings
        self._client_factory = client_factory or build_msal_app

    def _requested_scopes(self, scopes: Iterable[str] | None) -> list[str]:
        if scopes is None:
            requested = self._settings.api_scopes
        else:
            requested = [s for s in scopes if s and s.lower() not in RESERVED_SCOPES]
        if not requested:
            raise ValueError("At least one API scope must be requested")
        return requested

    @staticmethod
    def _account_for(client: Any, subject: str) -> dict[str, Any] | None:
        for account in client.get_accounts() or []:
            if account.get("local_account_id") == subject:
                return account
            home = account.get("home_account_id") or ""
            if home.split(".", 1)[0] == subject:
                return account
        return None

    def acquire(
        self, subject: str, store: TokenCacheStore, scopes: Iterable[str] | None = None
    ) -> AcquisitionResult:
        """
        Return a usable access token for `subject`, or the reason there is none.

        The store is only written when MSAL refreshed the token; a cache hit
        leaves it untouched. A rejected refresh token does not clear the cache.
        """

        requested = self._requested_scopes(scopes)
        cache = SessionTokenCache(subject, store)
        cache.hydrate()

        if cache.count == 0:
            logger.info("token_acquisition_failed", subject=subject, failure=AcquisitionFailure.NO_CACHE.value)
            return AcquisitionResult.failed(AcquisitionFailure.NO_CACHE, "No cached tokens for this user.")

        try:
            # Building the client runs authority discovery over HTTP.
            client = self._client_factory(self._settings, cache)
            account = self._account_for(client, subject)
            if account is None:
                logger.info("token_acquisition_failed", subject=subject, failure="no_account")
                return AcquisitionResult.failed(AcquisitionFailure.NO_CACHE, "No cached account for this user.")
            result = client.acquire_token_silent_with_error(requested, account=account)
        except (requests.RequestException, ValueError) as exc:
            logger.warning("token_provider_unreachable", subject=subject, error=str(exc))
            return AcquisitionResult.failed(
                AcquisitionFailure.PROVIDER_ERROR, "Could not contact the identity provider.", debug=str(exc)
            )

        if not result:
            logger.info("token_acquisition_failed", subject=subject, failure=AcquisitionFailure.NO_CACHE.value)
            return AcquisitionResult.failed(AcquisitionFailure.NO_CACHE, "No usable token or refresh token cached.")

        if result.get("access_token"):
            refreshed = cache.flush()
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(result.get("expires_in") or 0))
            logger.info("token_acquired", subject=subject, refreshed=refreshed)
            return AcquisitionResult.success(result["access_token"], expires_at)

        error = result.get("error") or "unknown_error"
        debug = f"{error}: {result.get('error_description') or ''}".strip()
        if error in _GRANT_REJECTED:
            logger.info("token_refresh_rejected", subject=subject, error=error)
            return AcquisitionResult.failed(
                AcquisitionFailure.REFRESH_FAILED, "The identity provider rejected the cached sign-in.", debug=debug
            )

        logger.warning("token_provider_error", subject=subject, error=error)
        return AcquisitionResult.failed(
            AcquisitionFailure.PROVIDER_ERROR, "The identity provider returned an error.", debug=debug
        )

    def get_access_token(
        self, subject: str, store: TokenCacheStore, scopes: Iterable[str] | None = None
    ) -> str:
        """Token string for the API client; "" when the user could not be authenticated."""

        return self.acquire(subject, store, scopes).access_token
