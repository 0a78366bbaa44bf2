"""Data types exchanged with a gpodder-compatible sync server."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from dateutil.parser import isoparse

from ..utils.time_utils import to_naive_utc


@dataclass(frozen=True)
class ServerSession:
    """An authenticated session against one account on one server."""

    server_url: str
    username: str
    device_id: str
    token: str  # Cookie header value returned by the login endpoint


@dataclass
class SubscriptionChanges:
    """Subscription delta returned by the subscriptions endpoint."""

    add: List[str] = field(default_factory=list)
    remove: List[str] = field(default_factory=list)
    timestamp: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubscriptionChanges":
        return cls(
            add=[str(url) for url in data.get("add") or []],
            remove=[str(url) for url in data.get("remove") or []],
            timestamp=_optional_int(data.get("timestamp")),
        )


@dataclass
class RemoteEpisodeAction:
    """One entry of the server's episode action history."""

    podcast: str
    episode: str
    action: str
    timestamp: Optional[datetime] = None  # Naive UTC
    position: Optional[int] = None
    started: Optional[int] = None
    total: Optional[int] = None
    device: Optional[str] = None
    guid: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteEpisodeAction":
        return cls(
            podcast=str(data["podcast"]),
            episode=str(data["episode"]),
            action=str(data["action"]).lower(),
            timestamp=parse_timestamp(data.get("timestamp")),
            position=_optional_int(data.get("position")),
            started=_optional_int(data.get("started")),
            total=_optional_int(data.get("total")),
            device=data.get("device"),
            guid=data.get("guid"),
        )

    @property
    def is_play(self) -> bool:
        return self.action == "play"

    @property
    def is_completed(self) -> bool:
        """True when the reported position reaches the reported total."""
        return bool(self.total) and self.position is not None and self.position >= self.total


@dataclass
class EpisodeActionChanges:
    """Episode action history returned by the episodes endpoint."""

    actions: List[RemoteEpisodeAction] = field(default_factory=list)
    timestamp: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EpisodeActionChanges":
        return cls(
            actions=[RemoteEpisodeAction.from_dict(item) for item in data.get("actions") or []],
            timestamp=_optional_int(data.get("timestamp")),
        )


@dataclass
class UploadResponse:
    """Acknowledgment of a subscription or episode action upload.

    `update_urls` lists (submitted, rewritten) URL pairs the server
    sanitized.
    """

    timestamp: Optional[int] = None
    update_urls: List[Tuple[str, str]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "UploadResponse":
        data = data or {}
        pairs = []
        for pair in data.get("update_urls") or []:
            if len(pair) == 2:
                pairs.append((str(pair[0]), str(pair[1])))
        return cls(timestamp=_optional_int(data.get("timestamp")), update_urls=pairs)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a gpodder timestamp (ISO-8601 string or epoch seconds) into naive UTC.

    Examples:
        >>> parse_timestamp("2024-03-01T12:30:00")
        datetime.datetime(2024, 3, 1, 12, 30)
        >>> parse_timestamp(0)
        datetime.datetime(1970, 1, 1, 0, 0)
    """
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return to_naive_utc(datetime.fromtimestamp(value, tz=timezone.utc))
    text = str(value).strip()
    try:
        return to_naive_utc(isoparse(text))
    except ValueError:
        return to_naive_utc(datetime.fromtimestamp(float(text), tz=timezone.utc))


def format_timestamp(value: datetime) -> str:
    """Format a naive UTC datetime the way gpodder expects (second precision)."""
    return to_naive_utc(value).replace(microsecond=0).isoformat()


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)
