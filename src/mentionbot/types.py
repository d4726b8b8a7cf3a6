"""Data models for mentionbot."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

Role = Literal["member", "admin", "superadmin"]

GROUP_SUFFIX = "@g.us"


class ConnectionState(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_PAIRING = "awaiting_pairing"
    OPEN = "open"
    CLOSED = "closed"


class DisconnectKind(StrEnum):
    LOGGED_OUT = "logged_out"
    INVALID_SESSION = "invalid_session"
    TRANSIENT = "transient"


@dataclass(frozen=True)
class Participant:
    """One roster entry.

    ``address`` is the roster's preferred addressable form; for groups using
    aliased (LID) addressing it is the alias and ``phone_address`` carries the
    phone-based address when the platform exposes it.
    """

    address: str
    phone_address: str | None = None
    role: Role = "member"

    @property
    def is_admin(self) -> bool:
        return self.role in ("admin", "superadmin")


@dataclass
class Roster:
    conversation: str
    participants: list[Participant] = field(default_factory=list)


@dataclass(frozen=True)
class QuotedRef:
    """Reference to an earlier message, used as a reply anchor."""

    message_id: str
    conversation: str
    participant: str | None = None
    payload: Any = None  # transport-native copy of the quoted message


@dataclass
class InboundMessage:
    id: str
    conversation: str
    sender: str
    text: str
    mentions: list[str] = field(default_factory=list)
    quoted: QuotedRef | None = None
    is_from_me: bool = False
    sender_phone: str | None = None  # alternate phone address when sender is aliased

    @property
    def is_group(self) -> bool:
        return self.conversation.endswith(GROUP_SUFFIX)


@dataclass
class OutgoingText:
    text: str
    mentions: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ConnectionUpdate:
    state: Literal["connecting", "open", "close"]
    status_code: int | None = None
    error: str | None = None
