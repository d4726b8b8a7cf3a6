"""WhatsApp transport using neonize (whatsmeow Python bindings).

Translates neonize events into :class:`~mentionbot.types.ConnectionUpdate`,
credential updates and :class:`~mentionbot.types.InboundMessage`, and learns
alias (LID) → phone mappings as a side effect of the traffic it sees.

Disconnect codes follow the platform's numbering. Logouts, bans and outdated
clients are reported as 401, a removed main device as 403 and a session
taken over by another client as 440. Other connect failures and a dropped
socket (428) carry no terminal status and are retried.
"""

from __future__ import annotations

import asyncio
import contextlib
from pathlib import Path
from typing import Any

from neonize.aioze import client as neonize_client
from neonize.aioze import events as neonize_events
from neonize.aioze.client import NewAClient
from neonize.events import (
    ClientOutdatedEv,
    ConnectedEv,
    ConnectFailureEv,
    DisconnectedEv,
    LoggedOutEv,
    MessageEv,
    PairStatusEv,
    StreamReplacedEv,
    TemporaryBanEv,
)
from neonize.proto.Neonize_pb2 import JID
from neonize.proto.waE2E.WAWebProtobufsE2E_pb2 import ContextInfo, ExtendedTextMessage, Message
from neonize.utils.jid import Jid2String

from mentionbot.aliases import ReverseAliasStore
from mentionbot.credentials import CredentialStore
from mentionbot.identity import ALIAS_SERVER, DIRECT_SERVER
from mentionbot.logger import logger
from mentionbot.transport import SessionHandlers
from mentionbot.types import (
    ConnectionUpdate,
    InboundMessage,
    OutgoingText,
    Participant,
    QuotedRef,
    Role,
    Roster,
)
from mentionbot.utils import create_background_task

STATUS_LOGGED_OUT = 401
STATUS_INVALID_SESSION = 403
STATUS_CONNECTION_CLOSED = 428
STATUS_CONNECTION_REPLACED = 440

# neonize ConnectFailureReason ordinals → (disconnect status, description).
# Reasons not listed are retried with backoff.
_FAILURE_REASONS: dict[int, tuple[int, str]] = {
    2: (STATUS_LOGGED_OUT, "logged out"),
    3: (STATUS_LOGGED_OUT, "temporarily banned"),
    4: (STATUS_INVALID_SESSION, "main device gone"),
    5: (STATUS_LOGGED_OUT, "unknown logout"),
    6: (STATUS_LOGGED_OUT, "client outdated"),
    7: (STATUS_LOGGED_OUT, "bad user agent"),
}

_CONTEXT_CARRIERS = ("extendedTextMessage", "imageMessage", "videoMessage", "documentMessage")


def _failure_status(reason: Any) -> tuple[int | None, str | None]:
    """Disconnect status and description for a ConnectFailureReason value."""
    try:
        ordinal = int(reason or 0)
    except (TypeError, ValueError):
        return None, None
    return _FAILURE_REASONS.get(ordinal, (None, None))


def _phone_jid(jid: Any) -> str | None:
    if jid is None or not getattr(jid, "User", ""):
        return None
    if getattr(jid, "Server", "") != DIRECT_SERVER:
        return None
    return f"{jid.User}@{DIRECT_SERVER}"


def _message_text(msg: Any) -> str:
    return (
        msg.conversation
        or msg.extendedTextMessage.text
        or msg.imageMessage.caption
        or msg.videoMessage.caption
        or ""
    )


def _context_info(msg: Any) -> Any | None:
    for name in _CONTEXT_CARRIERS:
        if not msg.HasField(name):
            continue
        inner = getattr(msg, name)
        if inner.HasField("contextInfo"):
            return inner.contextInfo
    return None


def _role(participant: Any) -> Role:
    if getattr(participant, "IsSuperAdmin", False):
        return "superadmin"
    if getattr(participant, "IsAdmin", False):
        return "admin"
    return "member"


class WhatsAppSession:
    """One neonize client bound to the bot's auth database."""

    def __init__(
        self,
        auth_db_path: str,
        handlers: SessionHandlers,
        aliases: ReverseAliasStore,
    ) -> None:
        self._handlers = handlers
        self._aliases = aliases
        self._idle_task: asyncio.Task[None] | None = None
        self._closed = False

        # Both neonize modules hold the loop created at import time
        loop = asyncio.get_running_loop()
        neonize_events.event_global_loop = loop
        neonize_client.event_global_loop = loop

        Path(auth_db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        self._client = NewAClient(auth_db_path)
        self._register_events()

    # --- Event wiring ---

    def _register_events(self) -> None:
        @self._client.event.qr
        async def on_qr(_client: NewAClient, _qr_data: bytes) -> None:
            logger.debug("QR code ignored, pairing by phone number instead")

        @self._client.event(ConnectedEv)
        async def on_connected(_client: NewAClient, _ev: ConnectedEv) -> None:
            me = self._client.me
            jid = getattr(me, "JID", None)
            lid = getattr(me, "LID", None)
            phone = _phone_jid(jid)
            if phone and lid is not None and lid.User:
                self._aliases.record(f"{lid.User}@{ALIAS_SERVER}", phone)
            if phone:
                self._handlers.on_credentials({"registered": True, "me": {"id": phone}})
            await self._emit(ConnectionUpdate(state="open"))

        @self._client.event(PairStatusEv)
        async def on_pair_status(_client: NewAClient, ev: PairStatusEv) -> None:
            logger.info("WhatsApp paired", user=ev.ID.User)
            self._handlers.on_credentials(
                {"registered": True, "me": {"id": f"{ev.ID.User}@{DIRECT_SERVER}"}}
            )

        @self._client.event(LoggedOutEv)
        async def on_logged_out(_client: NewAClient, ev: LoggedOutEv) -> None:
            status, description = _failure_status(getattr(ev, "Reason", None))
            self._handlers.on_credentials({"registered": False})
            await self._emit(
                ConnectionUpdate(
                    state="close",
                    status_code=status or STATUS_LOGGED_OUT,
                    error=description or "logged out",
                )
            )

        @self._client.event(ConnectFailureEv)
        async def on_connect_failure(_client: NewAClient, ev: ConnectFailureEv) -> None:
            status, description = _failure_status(getattr(ev, "Reason", None))
            message = getattr(ev, "Message", "") or description or "connect failure"
            await self._emit(ConnectionUpdate(state="close", status_code=status, error=message))

        @self._client.event(TemporaryBanEv)
        async def on_temporary_ban(_client: NewAClient, ev: TemporaryBanEv) -> None:
            logger.error("Account temporarily banned", code=getattr(ev, "Code", None))
            await self._emit(
                ConnectionUpdate(
                    state="close", status_code=STATUS_LOGGED_OUT, error="temporarily banned"
                )
            )

        @self._client.event(ClientOutdatedEv)
        async def on_client_outdated(_client: NewAClient, _ev: ClientOutdatedEv) -> None:
            await self._emit(
                ConnectionUpdate(state="close", status_code=STATUS_LOGGED_OUT, error="client outdated")
            )

        @self._client.event(StreamReplacedEv)
        async def on_stream_replaced(_client: NewAClient, _ev: StreamReplacedEv) -> None:
            await self._emit(
                ConnectionUpdate(
                    state="close",
                    status_code=STATUS_CONNECTION_REPLACED,
                    error="connection replaced",
                )
            )

        @self._client.event(DisconnectedEv)
        async def on_disconnected(_client: NewAClient, _ev: DisconnectedEv) -> None:
            await self._emit(
                ConnectionUpdate(
                    state="close",
                    status_code=STATUS_CONNECTION_CLOSED,
                    error="connection closed",
                )
            )

        @self._client.event(MessageEv)
        async def on_message(_client: NewAClient, message: MessageEv) -> None:
            try:
                inbound = self._to_inbound(message)
            except Exception:
                logger.exception(
                    "Failed to decode inbound message",
                    message_id=getattr(getattr(message, "Info", None), "ID", "unknown"),
                )
                return
            if inbound is not None:
                self._handlers.on_message(inbound)

    async def _emit(self, update: ConnectionUpdate) -> None:
        if self._closed:
            return
        await self._handlers.on_connection_update(update)

    # --- Session API ---

    @property
    def self_address(self) -> str | None:
        me = self._client.me
        return _phone_jid(getattr(me, "JID", None)) if me else None

    async def connect(self) -> None:
        await self._client.connect()
        self._idle_task = asyncio.ensure_future(self._client.idle())
        create_background_task(self._emit(ConnectionUpdate(state="connecting")), name="connecting")

    async def close(self) -> None:
        self._closed = True
        if self._idle_task:
            self._idle_task.cancel()
        with contextlib.suppress(Exception):
            await self._client.disconnect()

    async def request_pairing_code(self, phone_hint: str) -> str:
        return await self._client.PairPhone(phone_hint, show_push_notification=True)

    async def fetch_roster(self, conversation: str) -> Roster:
        info = await self._client.get_group_info(self._parse_jid(conversation))
        participants: list[Participant] = []
        for p in info.Participants:
            address = Jid2String(p.JID)
            phone: str | None = None
            if p.JID.Server == ALIAS_SERVER:
                phone = _phone_jid(getattr(p, "PhoneNumber", None))
                if phone:
                    self._aliases.record(address, phone)
            else:
                lid = getattr(p, "LID", None)
                if lid is not None and lid.User:
                    self._aliases.record(f"{lid.User}@{ALIAS_SERVER}", address)
            participants.append(Participant(address=address, phone_address=phone, role=_role(p)))
        return Roster(conversation=conversation, participants=participants)

    async def lookup_identity(self, number: str) -> str | None:
        responses = await self._client.is_on_whatsapp(number)
        for r in responses:
            if r.IsIn:
                return Jid2String(r.JID)
        return None

    async def send(
        self,
        conversation: str,
        payload: OutgoingText,
        quoted: QuotedRef | None = None,
    ) -> None:
        ctx = ContextInfo(mentionedJID=payload.mentions)
        if quoted is not None:
            ctx.stanzaID = quoted.message_id
            if quoted.participant:
                ctx.participant = quoted.participant
            if quoted.payload is not None:
                ctx.quotedMessage.CopyFrom(quoted.payload)
        message = Message(extendedTextMessage=ExtendedTextMessage(text=payload.text, contextInfo=ctx))
        await self._client.send_message(self._parse_jid(conversation), message)

    # --- Translation ---

    def _to_inbound(self, message: MessageEv) -> InboundMessage | None:
        info = message.Info
        source = info.MessageSource
        chat = Jid2String(source.Chat)
        if not chat or chat == "status@broadcast":
            return None

        msg = message.Message
        ctx = _context_info(msg)
        mentions = list(ctx.mentionedJID) if ctx is not None else []
        quoted = None
        if ctx is not None and ctx.stanzaID:
            quoted = QuotedRef(
                message_id=ctx.stanzaID,
                conversation=chat,
                participant=ctx.participant or None,
                payload=ctx.quotedMessage if ctx.HasField("quotedMessage") else None,
            )

        sender = Jid2String(source.Sender) if source.Sender.User else chat
        sender_phone = _phone_jid(getattr(source, "SenderAlt", None))
        if sender_phone and source.Sender.Server == ALIAS_SERVER:
            self._aliases.record(sender, sender_phone)

        return InboundMessage(
            id=info.ID,
            conversation=chat,
            sender=sender,
            text=_message_text(msg),
            mentions=mentions,
            quoted=quoted,
            is_from_me=source.IsFromMe,
            sender_phone=sender_phone,
        )

    @staticmethod
    def _parse_jid(jid_str: str) -> JID:
        from neonize.utils.jid import build_jid

        if "@" not in jid_str:
            return build_jid(jid_str)
        user, server = jid_str.split("@", 1)
        return build_jid(user, server)


class WhatsAppTransport:
    def __init__(self, credentials: CredentialStore, aliases: ReverseAliasStore) -> None:
        self._credentials = credentials
        self._aliases = aliases

    def create_session(self, handlers: SessionHandlers) -> WhatsAppSession:
        return WhatsAppSession(str(self._credentials.session_db_path), handlers, self._aliases)
