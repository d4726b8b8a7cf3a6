"""Reverse alias store: maps aliased (LID) identities to phone numbers.

One JSON file per alias inside the auth directory,
``lid-mapping-<alias digits>_reverse.json``, holding the phone number as a
JSON string. The transport writes entries as it learns them; the resolver
only reads. A missing entry is the common case, not an error.
"""

from __future__ import annotations

import json
from pathlib import Path

from mentionbot.identity import direct_address, normalize
from mentionbot.logger import logger
from mentionbot.utils import write_json_atomic


class ReverseAliasStore:
    def __init__(self, directory: Path) -> None:
        self._dir = directory

    def _path(self, alias_digits: str) -> Path:
        return self._dir / f"lid-mapping-{alias_digits}_reverse.json"

    def lookup(self, alias: str) -> str | None:
        """Return the phone digits recorded for *alias* (any address form)."""
        digits = normalize(alias)
        if not digits:
            return None
        path = self._path(digits)
        if not path.exists():
            return None
        try:
            value = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as err:
            logger.warning("Unreadable alias mapping", alias=digits, error=str(err))
            return None
        phone = normalize(str(value)) if value else ""
        return phone or None

    def resolve(self, alias: str) -> str | None:
        """Return the Direct address for *alias*, or None when unmapped."""
        phone = self.lookup(alias)
        return direct_address(phone) if phone else None

    def record(self, alias: str, phone: str) -> None:
        """Store *alias* → *phone*. Existing identical entries are left alone."""
        alias_digits = normalize(alias)
        phone_digits = normalize(phone)
        if not alias_digits or not phone_digits or alias_digits == phone_digits:
            return
        if self.lookup(alias_digits) == phone_digits:
            return
        write_json_atomic(self._path(alias_digits), phone_digits)
        logger.debug("Alias mapping recorded", alias=alias_digits)
