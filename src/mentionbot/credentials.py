"""Auth directory management.

The protocol client keeps its own session database inside the auth
directory. Next to it the bot stores ``creds.json``, a summary written from
the transport's credential updates: whether the device finished
registration and which account it is bound to. A summary that claims
registration without a usable self identity means a half-finished pairing
left the directory unusable; the whole directory is purged so the next
attempt starts fresh.
"""

from __future__ import annotations

import json
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from mentionbot.errors import CredentialCorruptionError
from mentionbot.identity import DIRECT_SERVER
from mentionbot.logger import logger
from mentionbot.utils import write_json_atomic

CREDS_FILE = "creds.json"
SESSION_DB = "session.db"


@dataclass(frozen=True)
class CredentialState:
    registered: bool = False
    self_address: str | None = None


class CredentialStore:
    def __init__(self, auth_dir: Path) -> None:
        self.auth_dir = auth_dir

    @property
    def creds_path(self) -> Path:
        return self.auth_dir / CREDS_FILE

    @property
    def session_db_path(self) -> Path:
        return self.auth_dir / SESSION_DB

    def load(self) -> dict[str, Any]:
        """Read ``creds.json``. Missing file → ``{}``."""
        if not self.creds_path.exists():
            return {}
        try:
            data = json.loads(self.creds_path.read_text())
        except (OSError, json.JSONDecodeError) as err:
            raise CredentialCorruptionError(f"Failed to parse {self.creds_path}") from err
        if not isinstance(data, dict):
            raise CredentialCorruptionError(f"{self.creds_path} is not a JSON object")
        return data

    def state(self) -> CredentialState:
        """Validate stored credentials without side effects."""
        data = self.load()
        registered = data.get("registered") is True
        me = data.get("me") if isinstance(data.get("me"), dict) else {}
        me_id = me.get("id") if isinstance(me.get("id"), str) else None
        has_valid_me = bool(me_id) and f"@{DIRECT_SERVER}" in me_id
        if registered and not has_valid_me:
            raise CredentialCorruptionError("Registered credentials lack a self identity")
        return CredentialState(registered=registered, self_address=me_id if has_valid_me else None)

    def inspect(self) -> CredentialState:
        """Return the credential state, purging the directory if it is corrupt."""
        try:
            state = self.state()
        except CredentialCorruptionError as err:
            logger.warning("Corrupted credentials detected, purging auth directory", reason=str(err))
            self.purge()
            state = CredentialState()
        else:
            if state.registered:
                logger.info("Found existing credentials", account=state.self_address)
        if not self.auth_dir.exists():
            self.auth_dir.mkdir(parents=True, exist_ok=True)
            logger.info("Starting fresh authentication")
        return state

    def save(self, update: dict[str, Any]) -> None:
        """Merge a transport credential update into ``creds.json``."""
        try:
            current = self.load()
        except CredentialCorruptionError:
            current = {}
        current.update(update)
        write_json_atomic(self.creds_path, current, indent=2)

    def purge(self) -> None:
        shutil.rmtree(self.auth_dir, ignore_errors=True)
        logger.info("Auth directory purged", path=str(self.auth_dir))
