"""
Minimal Outlook REST client (Microsoft Graph `/me` endpoints).

Responsibilities:
  - Fetch the signed-in user's profile (for the X-AnchorMailbox routing hint).
  - List the 10 newest inbox messages, the 10 latest events, and the first 10
    contacts by name.

Every call asks `get_access_token()` for a bearer token first; an empty string
means the user could not be authenticated and the call is not made.
"""

from __future__ import annotations

from typing import Any, Callable

import requests
import structlog

from .models import DisplayContact, DisplayEvent, DisplayMessage

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://graph.microsoft.com/v1.0"


class OutlookApiError(Exception):
    """A Graph call failed; `debug` is a short, user-presentable detail string."""

    def __init__(self, message: str, debug: str = "", status: int | None = None):
        super().__init__(message)
        self.message = message
        self.debug = debug
        self.status = status


class NotAuthenticated(OutlookApiError):
    """No access token was available, so the call was suppressed."""


class OutlookClient:
    def __init__(
        self,
        get_access_token: Callable[[], str],
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30,
        session: requests.Session | None = None,
    ):
        self._get_access_token = get_access_token
        self.base = base_url.rstrip("/")
        self.timeout = timeout
        # Reuse an HTTP session across requests for connection pooling.
        self.session = session or requests.Session()
        self.anchor_mailbox: str | None = None

    def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        token = self._get_access_token()
        if not token:
            raise NotAuthenticated("Could not authenticate the current user.")

        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Prefer": 'outlook.timezone="UTC"',
        }
        if self.anchor_mailbox:
            headers["X-AnchorMailbox"] = self.anchor_mailbox

        url = f"{self.base}{path}"
        try:
            r = self.session.get(url, headers=headers, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("outlook_request_failed", path=path, error=str(exc))
            raise OutlookApiError("Could not reach the Outlook API.", debug=str(exc)) from exc

        if not r.ok:
            try:
                err = (r.json() or {}).get("error") or {}
            except ValueError:
                err = {}
            debug = f"{err.get('code') or r.status_code}: {err.get('message') or r.reason or ''}".strip()
            logger.warning("outlook_request_rejected", path=path, status=r.status_code)
            raise OutlookApiError("Outlook API request failed.", debug=debug, status=r.status_code)
        return r.json()

    def me(self) -> dict[str, Any]:
        return self._get("/me", {"$select": "displayName,mail,userPrincipalName"})

    def user_email(self) -> str | None:
        """The user's mailbox address; also remembered as the anchor mailbox."""

        profile = self.me()
        email = profile.get("mail") or profile.get("userPrincipalName")
        self.anchor_mailbox = email or None
        return email

    def messages(self, top: int = 10) -> list[DisplayMessage]:
        data = self._get(
            "/me/mailfolders/inbox/messages",
            {"$top": top, "$select": "subject,receivedDateTime,from", "$orderby": "receivedDateTime DESC"},
        )
        return [DisplayMessage.from_graph(m) for m in data.get("value", [])]

    def events(self, top: int = 10) -> list[DisplayEvent]:
        data = self._get(
            "/me/events",
            {"$top": top, "$select": "subject,start,end", "$orderby": "start/dateTime DESC"},
        )
        return [DisplayEvent.from_graph(e) for e in data.get("value", [])]

    def contacts(self, top: int = 10) -> list[DisplayContact]:
        data = self._get(
            "/me/contacts",
            {"$top": top, "$select": "displayName,emailAddresses,mobilePhone", "$orderby": "displayName ASC"},
        )
        return [DisplayContact.from_graph(c) for c in data.get("value", [])]
