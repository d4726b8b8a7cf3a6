"""Shared test fixtures for mentionbot."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest

from mentionbot.transport import SessionHandlers
from mentionbot.types import (
    ConnectionUpdate,
    InboundMessage,
    OutgoingText,
    Participant,
    QuotedRef,
    Roster,
)

BOT = "919900000001@s.whatsapp.net"
GROUP = "120363001234567890@g.us"

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, importable by test files)
# ---------------------------------------------------------------------------


def make_settings(**overrides):
    """Create a Settings object with defaults for testing.

    Accepts model fields (bot, pairing, ...) and the cached path properties
    (project_root, auth_dir, data_dir, registry_path).
    """
    from mentionbot.config import (
        BotConfig,
        DispatchConfig,
        LoggingConfig,
        PairingConfig,
        ReconnectConfig,
        ServerConfig,
        Settings,
        StorageConfig,
    )

    cached_names = {"project_root", "auth_dir", "data_dir", "registry_path", "http_port"}
    cached = {k: overrides.pop(k) for k in list(overrides) if k in cached_names}

    defaults = {
        "bot": BotConfig(),
        "pairing": PairingConfig(),
        "dispatch": DispatchConfig(),
        "reconnect": ReconnectConfig(),
        "storage": StorageConfig(),
        "server": ServerConfig(),
        "logging": LoggingConfig(),
    }
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)
    for key, value in cached.items():
        s.__dict__[key] = value
    return s


def member(number: str, role: str = "member", *, lid: str | None = None) -> Participant:
    """Roster entry; with *lid* the participant is alias-addressed."""
    phone = f"{number}@s.whatsapp.net"
    if lid:
        return Participant(address=f"{lid}@lid", phone_address=phone, role=role)  # type: ignore[arg-type]
    return Participant(address=phone, role=role)  # type: ignore[arg-type]


@dataclass
class SentMessage:
    conversation: str
    payload: OutgoingText
    quoted: QuotedRef | None


@dataclass
class FakeSession:
    """In-memory stand-in for a transport session."""

    handlers: SessionHandlers | None = None
    self_address: str | None = BOT
    rosters: dict[str, list[Participant]] = field(default_factory=dict)
    directory: dict[str, str | None] = field(default_factory=dict)
    sent: list[SentMessage] = field(default_factory=list)
    pairing_codes: list[str] = field(default_factory=list)
    roster_fetches: int = 0
    fail_send_at: int | None = None
    lookup_error: Exception | None = None
    pairing_error: Exception | None = None
    connect_error: Exception | None = None
    connect_updates: list[ConnectionUpdate] = field(default_factory=list)
    closed: bool = False

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        for update in self.connect_updates:
            await self.handlers.on_connection_update(update)  # type: ignore[union-attr]

    async def close(self) -> None:
        self.closed = True

    async def request_pairing_code(self, phone_hint: str) -> str:
        if self.pairing_error is not None:
            raise self.pairing_error
        self.pairing_codes.append(phone_hint)
        return "ABCD-1234"

    async def fetch_roster(self, conversation: str) -> Roster:
        self.roster_fetches += 1
        return Roster(conversation=conversation, participants=list(self.rosters.get(conversation, [])))

    async def lookup_identity(self, number: str) -> str | None:
        if self.lookup_error is not None:
            raise self.lookup_error
        return self.directory.get(number)

    async def send(
        self,
        conversation: str,
        payload: OutgoingText,
        quoted: QuotedRef | None = None,
    ) -> None:
        if self.fail_send_at is not None and len(self.sent) == self.fail_send_at:
            raise RuntimeError("send failed")
        self.sent.append(SentMessage(conversation, payload, quoted))

    # --- Test helpers ---

    async def emit(self, state: str, status_code: int | None = None) -> None:
        await self.handlers.on_connection_update(  # type: ignore[union-attr]
            ConnectionUpdate(state=state, status_code=status_code)  # type: ignore[arg-type]
        )

    def texts(self) -> list[str]:
        return [m.payload.text for m in self.sent]


class FakeTransport:
    """Hands out pre-built sessions (or fresh ones) and remembers them."""

    def __init__(self, *sessions: FakeSession) -> None:
        self._queued = list(sessions)
        self.created: list[FakeSession] = []

    def create_session(self, handlers: SessionHandlers) -> FakeSession:
        session = self._queued.pop(0) if self._queued else FakeSession()
        session.handlers = handlers
        self.created.append(session)
        return session


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch, tmp_path):
    """Each test starts from default settings rooted in a temp directory."""
    safe = make_settings(
        project_root=tmp_path,
        auth_dir=tmp_path / "auth_info",
        data_dir=tmp_path / "data",
        registry_path=tmp_path / "data" / "subgroups.json",
    )
    monkeypatch.setattr("mentionbot.config._settings", safe)


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def make_msg():
    """Factory fixture for inbound messages with defaults."""

    def _make(
        text: str = "!help",
        *,
        conversation: str = GROUP,
        sender: str = "919800000001@s.whatsapp.net",
        mentions: list[str] | None = None,
        quoted: QuotedRef | None = None,
        sender_phone: str | None = None,
        id: str = "MSG1",
        **extra: Any,
    ) -> InboundMessage:
        return InboundMessage(
            id=id,
            conversation=conversation,
            sender=sender,
            text=text,
            mentions=mentions or [],
            quoted=quoted,
            sender_phone=sender_phone,
            **extra,
        )

    return _make
