"""View models for the inbox, calendar and contacts pages."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

_FRACTION = re.compile(r"\.(\d{6})\d+")


def parse_graph_datetime(value: Any, tz_name: str | None = None) -> datetime | None:
    """
    Parse a Graph timestamp.

    Graph uses ISO 8601 with a trailing `Z` for message times and a 7-digit
    fraction plus a separate timeZone for event times; only UTC is supported
    for the latter (we request UTC via the Prefer header).
    """

    if not isinstance(value, str) or not value:
        return None
    text = _FRACTION.sub(r".\1", value.strip())
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None and (tz_name or "UTC").upper() == "UTC":
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class DisplayMessage:
    subject: str
    received: datetime | None
    sender: str

    @staticmethod
    def from_graph(item: dict[str, Any]) -> "DisplayMessage":
        address = (item.get("from") or {}).get("emailAddress") or {}
        if address:
            sender = f"{address.get('name') or ''} ({address.get('address') or ''})"
        else:
            sender = "EMPTY"
        return DisplayMessage(
            subject=item.get("subject") or "",
            received=parse_graph_datetime(item.get("receivedDateTime")),
            sender=sender,
        )


@dataclass(frozen=True)
class DisplayEvent:
    subject: str
    start: datetime | None
    end: datetime | None

    @staticmethod
    def from_graph(item: dict[str, Any]) -> "DisplayEvent":
        start = item.get("start") or {}
        end = item.get("end") or {}
        return DisplayEvent(
            subject=item.get("subject") or "",
            start=parse_graph_datetime(start.get("dateTime"), start.get("timeZone")),
            end=parse_graph_datetime(end.get("dateTime"), end.get("timeZone")),
        )


@dataclass(frozen=True)
class DisplayContact:
    name: str
    email: str
    mobile_phone: str

    @staticmethod
    def from_graph(item: dict[str, Any]) -> "DisplayContact":
        addresses = item.get("emailAddresses") or []
        email = (addresses[0].get("address") or "") if addresses else ""
        return DisplayContact(
            name=item.get("displayName") or "",
            email=email or "NONE",
            mobile_phone=item.get("mobilePhone") or "NONE",
        )
