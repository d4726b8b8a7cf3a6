"""Tests for the app orchestrator: inbound queue and HTTP deps wiring."""

from __future__ import annotations

from unittest.mock import AsyncMock, Mock

import pytest

from conftest import BOT, GROUP, FakeSession, FakeTransport, make_settings, member
from mentionbot.app import MentionBotApp
from mentionbot.config import LoggingConfig, ServerConfig
from mentionbot.types import Participant
from mentionbot.utils import create_background_task

ADMIN = "919800000020@s.whatsapp.net"


@pytest.fixture
def session():
    return FakeSession(
        rosters={
            GROUP: [
                member("919800000020", "admin"),
                member("919800000001"),
                Participant(address=BOT),
            ]
        }
    )


@pytest.fixture
def app(session):
    return MentionBotApp(transport=FakeTransport(session))


async def _drain(app: MentionBotApp) -> None:
    worker = create_background_task(app._drain_inbound(), name="test-worker")
    await app.inbound.join()
    worker.cancel()


class TestInboundQueue:
    async def test_commands_handled_in_arrival_order(self, app, session, make_msg):
        await app.connection.start()
        app.enqueue(make_msg("!tagall", sender=ADMIN, id="M1"))
        app.enqueue(make_msg("!group list", sender=ADMIN, id="M2"))

        await _drain(app)

        assert session.sent[0].payload.mentions == [ADMIN, "919800000001@s.whatsapp.net"]
        assert session.texts()[1] == "🧩 *Group Subgroups*\n_No subgroups yet._"

    async def test_session_messages_reach_the_queue(self, app, session, make_msg):
        await app.connection.start()
        session.handlers.on_message(make_msg("!help", sender=ADMIN))
        assert app.pending_commands() == 1

    async def test_message_dropped_without_session(self, app, session, make_msg):
        app.enqueue(make_msg("!tagall", sender=ADMIN))
        await _drain(app)
        assert session.sent == []

    async def test_handler_error_does_not_stop_worker(self, app, make_msg):
        await app.connection.start()
        app.router.handle = AsyncMock(side_effect=[RuntimeError("boom"), None])
        app.enqueue(make_msg("!tagall", id="M1"))
        app.enqueue(make_msg("!tagall", id="M2"))

        await _drain(app)

        assert app.router.handle.await_count == 2


class TestHttpDeps:
    def test_connection_state_before_start(self, app):
        assert app.connection_state() == "idle"

    async def test_connection_state_follows_manager(self, app, session):
        await app.connection.start()
        await session.emit("open")
        assert app.connection_state() == "open"

    def test_pending_commands(self, app, make_msg):
        assert app.pending_commands() == 0
        app.enqueue(make_msg())
        assert app.pending_commands() == 1


def test_stores_rooted_in_settings(app, tmp_path):
    assert app.credentials.auth_dir == tmp_path / "auth_info"
    assert app.registry.path == tmp_path / "data" / "subgroups.json"


async def test_run_applies_configured_log_level(monkeypatch, session, tmp_path):
    monkeypatch.setattr(
        "mentionbot.config._settings",
        make_settings(
            logging=LoggingConfig(level="warning"),
            server=ServerConfig(enabled=False),
            project_root=tmp_path,
            auth_dir=tmp_path / "auth_info",
            data_dir=tmp_path / "data",
            registry_path=tmp_path / "data" / "subgroups.json",
        ),
    )
    configure = Mock()
    monkeypatch.setattr("mentionbot.app.configure_logging", configure)
    app = MentionBotApp(transport=FakeTransport(session))
    app.connection.start = AsyncMock(side_effect=lambda: app._stopped.set())

    await app.run()
    app._worker.cancel()

    configure.assert_called_once_with("WARNING")
