"""Contract between the bot core and the messaging transport.

The core never talks to the protocol client directly. A :class:`Transport`
creates :class:`Session` objects; each session reports activity through the
:class:`SessionHandlers` it was created with.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from mentionbot.types import ConnectionUpdate, InboundMessage, OutgoingText, QuotedRef, Roster


@dataclass(frozen=True)
class SessionHandlers:
    on_connection_update: Callable[[ConnectionUpdate], Awaitable[None]]
    on_credentials: Callable[[dict[str, Any]], None]
    on_message: Callable[[InboundMessage], None]


@runtime_checkable
class Session(Protocol):
    """One live protocol session."""

    @property
    def self_address(self) -> str | None: ...

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def request_pairing_code(self, phone_hint: str) -> str: ...

    async def fetch_roster(self, conversation: str) -> Roster: ...

    async def lookup_identity(self, number: str) -> str | None:
        """Return the platform address for *number*, or None if it isn't registered."""
        ...

    async def send(
        self,
        conversation: str,
        payload: OutgoingText,
        quoted: QuotedRef | None = None,
    ) -> None: ...


class Transport(Protocol):
    def create_session(self, handlers: SessionHandlers) -> Session: ...
