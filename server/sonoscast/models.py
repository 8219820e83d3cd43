"""Data shapes exchanged with the casting API and returned to the host."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Union

from pydantic import BaseModel, ConfigDict, Field

# Reserved group selector meaning "all groups". Never a real id.
WILDCARD = "*"
ALL_GROUPS_LABEL = "All Groups"

# "*", a single group id, or a list of group ids
TargetSelector = Union[str, list[str]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with a Z suffix, e.g. 2024-01-01T12:00:00.000Z."""
    return utcnow().isoformat(timespec="milliseconds").replace("+00:00", "Z")


class TokenState(BaseModel):
    """OAuth credentials for one account.

    Written as a whole by the token store; never partially updated.
    """

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str = "Bearer"
    scope: str | None = None
    obtained_at: datetime = Field(default_factory=utcnow)

    @property
    def expires_at(self) -> datetime | None:
        if self.expires_in is None:
            return None
        return self.obtained_at + timedelta(seconds=self.expires_in)

    def is_expired(self, skew: int = 0, now: datetime | None = None) -> bool:
        """True when the token is known to expire within `skew` seconds.

        Tokens without an expires_in never count as expired; the remote's 401
        is the only signal for them.
        """
        expires_at = self.expires_at
        if expires_at is None:
            return False
        now = now or utcnow()
        return now >= expires_at - timedelta(seconds=skew)


class Household(BaseModel):
    id: str
    name: str | None = None


class SpeakerOption(BaseModel):
    """A group or player as shown in a selection list."""

    id: str
    name: str


class Topology(BaseModel):
    groups: list[SpeakerOption] = []
    players: list[SpeakerOption] = []


class LivenessReport(BaseModel):
    """Result of the whoami check; remote capability flags are kept as extras."""

    model_config = ConfigDict(extra="allow")

    authenticated: bool = True
    connection_label: str | None = None


class ClipType(str, Enum):
    CUSTOM = "CUSTOM"
    CHIME = "CHIME"


class ClipPriority(str, Enum):
    LOW = "LOW"
    HIGH = "HIGH"


class PlaybackOutcome(BaseModel):
    session_id: str
    url: str
    groups: TargetSelector
    successful_groups: list[str] = []
    failed_count: int = 0
    volume: int | None = None
    status: str
    timestamp: str = Field(default_factory=utc_timestamp)


class AudioClipOutcome(BaseModel):
    id: str
    player_id: str
    name: str
    status: str = "scheduled"
    timestamp: str = Field(default_factory=utc_timestamp)
