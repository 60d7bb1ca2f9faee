"""Value types shared by the sign-in, gate and acquisition code."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any

MAX_DEBUG_LENGTH = 300


@dataclass(frozen=True)
class Identity:
    """The signed-in user, as reported by the identity provider."""

    subject: str
    name: str
    email: str | None = None

    @staticmethod
    def from_claims(claims: dict[str, Any] | None) -> "Identity | None":
        """
        Build an identity from ID token claims.

        Entra ID puts the stable object id in `oid`; `sub` is pairwise per app
        and is only used when `oid` is missing. Returns None when either the
        subject or a display name cannot be found.
        """

        if not claims:
            return None
        subject = _first_str(claims, "oid", "sub")
        name = _first_str(claims, "name", "preferred_username")
        if not subject or not name:
            return None
        return Identity(subject=subject, name=name, email=_first_str(claims, "preferred_username", "email", "upn"))

    def to_session(self) -> dict[str, str | None]:
        return {"subject": self.subject, "name": self.name, "email": self.email}

    @staticmethod
    def from_session(data: Any) -> "Identity | None":
        if not isinstance(data, dict):
            return None
        subject = data.get("subject")
        name = data.get("name")
        if not isinstance(subject, str) or not subject or not isinstance(name, str) or not name:
            return None
        email = data.get("email")
        return Identity(subject=subject, name=name, email=email if isinstance(email, str) else None)


def _first_str(claims: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        val = claims.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return None


class AcquisitionFailure(str, enum.Enum):
    NO_CACHE = "no_cache"
    REFRESH_FAILED = "refresh_failed"
    PROVIDER_ERROR = "provider_error"

    @property
    def requires_sign_in(self) -> bool:
        """NoCache and RefreshFailed both mean the user has to sign in again."""
        return self is not AcquisitionFailure.PROVIDER_ERROR


@dataclass(frozen=True)
class AcquisitionResult:
    """Outcome of a silent token acquisition: a token or a typed failure."""

    access_token: str = ""
    expires_at: datetime | None = None
    failure: AcquisitionFailure | None = None
    message: str = ""
    debug: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None and bool(self.access_token)

    @classmethod
    def success(cls, access_token: str, expires_at: datetime) -> "AcquisitionResult":
        return cls(access_token=access_token, expires_at=expires_at)

    @classmethod
    def failed(cls, failure: AcquisitionFailure, message: str, debug: str = "") -> "AcquisitionResult":
        return cls(failure=failure, message=message, debug=debug[:MAX_DEBUG_LENGTH])
