"""Main orchestrator: wires all subsystems together.

Inbound messages are queued and handled by a single worker, one at a time,
so a multi-batch broadcast finishes before the next command starts and the
registry never sees concurrent read-modify-write cycles.
"""

from __future__ import annotations

import asyncio
import os
import signal

from aiohttp import web

from mentionbot.aliases import ReverseAliasStore
from mentionbot.config import get_settings
from mentionbot.connection import ConnectionManager
from mentionbot.credentials import CredentialStore
from mentionbot.dispatch import MentionDispatcher
from mentionbot.http_server import start_http_server
from mentionbot.logger import configure_logging, logger
from mentionbot.registry import SubgroupRegistry
from mentionbot.resolver import IdentityResolver
from mentionbot.router import CommandRouter
from mentionbot.transport import Transport
from mentionbot.types import InboundMessage
from mentionbot.utils import create_background_task


class MentionBotApp:
    def __init__(self, transport: Transport | None = None) -> None:
        s = get_settings()
        self.credentials = CredentialStore(s.auth_dir)
        self.aliases = ReverseAliasStore(s.auth_dir)
        self.registry = SubgroupRegistry(s.registry_path)
        self.resolver = IdentityResolver(self.aliases)
        self.dispatcher = MentionDispatcher(
            batch_size=s.dispatch.batch_size,
            delay=s.dispatch.delay_ms / 1000,
        )
        self.router = CommandRouter(self.registry, self.resolver, self.dispatcher, s.bot)
        self.inbound: asyncio.Queue[InboundMessage] = asyncio.Queue()

        if transport is None:
            from mentionbot.transport.whatsapp import WhatsAppTransport

            transport = WhatsAppTransport(self.credentials, self.aliases)
        self.connection = ConnectionManager(transport, self.credentials, self.enqueue)

        self._worker: asyncio.Task[None] | None = None
        self._http_runner: web.AppRunner | None = None
        self._shutting_down = False
        self._stopped = asyncio.Event()

    # --- Inbound queue ---

    def enqueue(self, message: InboundMessage) -> None:
        self.inbound.put_nowait(message)

    async def _drain_inbound(self) -> None:
        while True:
            message = await self.inbound.get()
            try:
                await self._handle(message)
            except Exception:
                logger.exception("Unhandled error in message handler", message_id=message.id)
            finally:
                self.inbound.task_done()

    async def _handle(self, message: InboundMessage) -> None:
        session = self.connection.session
        if session is None:
            logger.warning(
                "No live session, dropping message",
                message_id=message.id,
                conversation=message.conversation,
            )
            return
        await self.router.handle(session, message)

    # --- HTTP deps ---

    def connection_state(self) -> str:
        return self.connection.state.value

    def pending_commands(self) -> int:
        return self.inbound.qsize()

    # --- Lifecycle ---

    async def shutdown(self, sig_name: str) -> None:
        """Graceful shutdown handler. Second signal force-exits."""
        if self._shutting_down:
            logger.info("Force shutdown")
            os._exit(1)
        self._shutting_down = True
        logger.info("Shutdown signal received", signal=sig_name)

        # Hard-exit watchdog in case a disconnect blocks
        loop = asyncio.get_running_loop()
        loop.call_later(12, lambda: os._exit(1))

        await self.connection.stop()
        if self._worker is not None:
            self._worker.cancel()
        if self._http_runner is not None:
            await self._http_runner.cleanup()
        self._stopped.set()

    async def run(self) -> None:
        """Main entry point: startup sequence."""
        s = get_settings()
        configure_logging(s.logging.level)
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda sig=sig: asyncio.ensure_future(self.shutdown(sig.name)),
            )

        self._worker = create_background_task(self._drain_inbound(), name="inbound-worker")

        if s.server.enabled:
            self._http_runner = await start_http_server(self, s.http_port)

        await self.connection.start()
        await self._stopped.wait()
