"""Connection lifecycle: pairing, disconnect classification, reconnect backoff.

States::

    IDLE → CONNECTING → AWAITING_PAIRING → OPEN → CLOSED(kind)

How a close is handled depends on its classification:

- ``LOGGED_OUT``: terminal. The device was unlinked; an operator has to run
  ``mentionbot reset-auth`` and restart.
- ``INVALID_SESSION``: credentials are purged and a fresh session starts
  after a short fixed delay. Backoff is left alone.
- ``TRANSIENT``: reconnect after ``min(backoff * growth, ceiling)``.

Only one session exists at a time, and only one reconnect can be pending;
close events that arrive while a reconnect is scheduled, or from a session
that has already been replaced, are ignored.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from mentionbot.config import PairingConfig, ReconnectConfig, get_settings
from mentionbot.credentials import CredentialStore
from mentionbot.errors import PairingError
from mentionbot.logger import logger
from mentionbot.transport import Session, SessionHandlers, Transport
from mentionbot.types import ConnectionState, ConnectionUpdate, DisconnectKind, InboundMessage

LOGGED_OUT_CODES = frozenset({401})
INVALID_SESSION_CODES = frozenset({403, 440, 500})

_TRANSIENT_PAIRING_MARKERS = ("conflict", "rate")

_BANNER = "━" * 28


def classify_disconnect(status_code: int | None) -> DisconnectKind:
    if status_code in LOGGED_OUT_CODES:
        return DisconnectKind.LOGGED_OUT
    if status_code in INVALID_SESSION_CODES:
        return DisconnectKind.INVALID_SESSION
    return DisconnectKind.TRANSIENT


def _is_transient_pairing_failure(err: BaseException) -> bool:
    text = str(err).lower()
    return any(marker in text for marker in _TRANSIENT_PAIRING_MARKERS)


class ConnectionManager:
    def __init__(
        self,
        transport: Transport,
        credentials: CredentialStore,
        on_message: Callable[[InboundMessage], None],
        *,
        pairing: PairingConfig | None = None,
        reconnect: ReconnectConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        s = get_settings()
        self._transport = transport
        self._credentials = credentials
        self._on_message = on_message
        self._pairing = pairing or s.pairing
        self._reconnect = reconnect or s.reconnect
        self._sleep = sleep

        self.state = ConnectionState.IDLE
        self.close_kind: DisconnectKind | None = None
        self.backoff = self._reconnect.floor
        self._session: Session | None = None
        self._starting = False
        self._stopped = False
        self._generation = 0
        self._registered = False
        self._pairing_requested = False
        self._reconnect_task: asyncio.Task[None] | None = None
        self.pending_reconnect_delay: float | None = None

    # --- Public API ---

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def start(self) -> None:
        """Create and connect a session. No-op while one already exists."""
        if self._session is not None or self._starting:
            logger.warning("Session already exists, skipping start")
            return
        self._starting = True
        self._stopped = False
        self.state = ConnectionState.IDLE
        self.close_kind = None
        try:
            creds = self._credentials.inspect()
            self._registered = creds.registered
            self._pairing_requested = False
            self._generation += 1
            self._session = self._transport.create_session(self._handlers(self._generation))
            await self._session.connect()
        except Exception:
            logger.exception("Fatal error while starting session")
            await self._drop_session()
            self._schedule_backoff()
        finally:
            self._starting = False

    async def stop(self) -> None:
        self._stopped = True
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
            self.pending_reconnect_delay = None
        await self._drop_session()
        self.state = ConnectionState.CLOSED

    # --- Session callbacks ---

    def _handlers(self, generation: int) -> SessionHandlers:
        async def on_update(update: ConnectionUpdate) -> None:
            if generation != self._generation:
                logger.debug("Ignoring update from replaced session", state=update.state)
                return
            await self._on_connection_update(update)

        def on_credentials(update: dict[str, Any]) -> None:
            if generation != self._generation:
                return
            self._credentials.save(update)
            if "registered" in update:
                self._registered = update["registered"] is True

        def on_message(message: InboundMessage) -> None:
            if generation == self._generation:
                self._on_message(message)

        return SessionHandlers(
            on_connection_update=on_update,
            on_credentials=on_credentials,
            on_message=on_message,
        )

    async def _on_connection_update(self, update: ConnectionUpdate) -> None:
        logger.debug("Connection update", state=update.state, status_code=update.status_code)
        if update.state == "connecting":
            if self.state is not ConnectionState.AWAITING_PAIRING:
                self.state = ConnectionState.CONNECTING
            await self._maybe_request_pairing()
        elif update.state == "open":
            self._on_open()
        elif update.state == "close":
            await self._on_close(update)

    # --- Transitions ---

    async def _maybe_request_pairing(self) -> None:
        if self._pairing_requested:
            return
        self._pairing_requested = True
        if self._registered:
            logger.info("Using existing credentials")
            return

        self.state = ConnectionState.AWAITING_PAIRING
        session = self._session
        await self._sleep(self._pairing.settle_delay)
        if session is None or session is not self._session:
            return
        if self.state is ConnectionState.OPEN:
            logger.info("Connected during pairing settle, no code needed")
            return
        try:
            if not self._pairing.phone_hint:
                raise PairingError("pairing.phone_hint is not configured")
            code = await session.request_pairing_code(self._pairing.phone_hint)
        except Exception as err:
            logger.error("Pairing code request failed", error=str(err))
            if _is_transient_pairing_failure(err):
                logger.info("Waiting before pairing retry", delay=self._pairing.retry_delay)
                await self._sleep(self._pairing.retry_delay)
            self._pairing_requested = False
            return
        logger.info(
            f"\n{_BANNER}\n"
            f"🔐 PAIRING CODE: {code}\n"
            f"{_BANNER}\n"
            "1. Open WhatsApp on your phone\n"
            "2. Settings → Linked Devices\n"
            "3. Link a Device → Link with phone number instead\n"
            f"4. Enter code: {code}\n"
            "5. Keep the bot running until it reports a connection\n"
            f"{_BANNER}",
            phone=self._pairing.phone_hint,
        )

    def _on_open(self) -> None:
        self.state = ConnectionState.OPEN
        self.close_kind = None
        self._pairing_requested = False
        self.backoff = self._reconnect.floor
        account = self._session.self_address if self._session else None
        logger.info("Connected", account=account)

    async def _on_close(self, update: ConnectionUpdate) -> None:
        kind = classify_disconnect(update.status_code)
        logger.warning(
            "Disconnected",
            status_code=update.status_code,
            reason=update.error or "unknown",
            kind=kind.value,
        )
        if self.reconnect_pending:
            logger.debug("Reconnect already scheduled, ignoring close")
            return

        self.state = ConnectionState.CLOSED
        self.close_kind = kind
        self._pairing_requested = False
        await self._drop_session()
        if self._stopped:
            return

        if kind is DisconnectKind.LOGGED_OUT:
            logger.error(
                "Logged out. Run 'mentionbot reset-auth' and restart to pair again.",
            )
            return

        if kind is DisconnectKind.INVALID_SESSION:
            logger.warning("Invalid session, deleting credentials")
            self._credentials.purge()
            self._schedule_reconnect(self._reconnect.invalid_session_delay)
            return

        self._schedule_backoff()

    # --- Reconnect scheduling ---

    def _schedule_backoff(self) -> None:
        delay = min(self.backoff * self._reconnect.growth, self._reconnect.ceiling)
        self.backoff = delay
        self._schedule_reconnect(delay)

    def _schedule_reconnect(self, delay: float) -> None:
        if self._stopped or self.reconnect_pending:
            return
        logger.info("Reconnecting", delay=round(delay, 2))
        self.pending_reconnect_delay = delay
        self._reconnect_task = asyncio.ensure_future(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        self._reconnect_task = None
        self.pending_reconnect_delay = None
        await self.start()

    async def _drop_session(self) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        # Late events from the dropped session no longer match
        self._generation += 1
        try:
            await session.close()
        except Exception as err:
            logger.debug("Error closing session", error=str(err))
