"""Durable registry of named subgroups.

Layout of the backing document::

    {
      "<group id>@g.us": {"design": ["9199...@s.whatsapp.net", ...]},
      "global": {"oncall": [...]}
    }

Every call reloads the document and every mutation rewrites it whole with
an atomic rename.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path

from mentionbot.errors import RegistryCorruptedError
from mentionbot.identity import normalize
from mentionbot.logger import logger
from mentionbot.utils import write_json_atomic

GLOBAL_SCOPE = "global"

Document = dict[str, dict[str, list[str]]]


def _key(name: str) -> str:
    return name.strip().lower()


def _dedupe(members: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for member in members:
        identity = normalize(member) or member
        if identity in seen:
            continue
        seen.add(identity)
        out.append(member)
    return out


class SubgroupRegistry:
    def __init__(self, path: Path) -> None:
        self.path = path

    # --- Document I/O ---

    def _load(self) -> Document:
        if not self.path.exists():
            return {}
        try:
            raw = self.path.read_text()
            data = json.loads(raw) if raw.strip() else {}
        except (OSError, json.JSONDecodeError) as err:
            raise RegistryCorruptedError(f"Cannot read subgroup registry {self.path}") from err
        if not isinstance(data, dict):
            raise RegistryCorruptedError(f"Subgroup registry {self.path} is not a JSON object")
        for scope, groups in data.items():
            if not isinstance(groups, dict):
                raise RegistryCorruptedError(f"Scope {scope!r} in {self.path} is not an object")
            for name, members in groups.items():
                if not isinstance(members, list) or not all(isinstance(m, str) for m in members):
                    raise RegistryCorruptedError(
                        f"Subgroup {name!r} in scope {scope!r} of {self.path} is not a list of addresses"
                    )
        return data

    def _store(self, doc: Document) -> None:
        write_json_atomic(self.path, doc, indent=2)

    # --- Queries ---

    def show(self, scope: str, name: str) -> list[str]:
        return list(self._load().get(scope, {}).get(_key(name), []))

    def list(self, scope: str) -> list[tuple[str, int]]:
        groups = self._load().get(scope, {})
        return [(name, len(members)) for name, members in groups.items()]

    def lookup(self, scope: str, name: str) -> list[str] | None:
        """Members of *name* in *scope*, falling back to the global scope.

        The fallback only applies when the name is absent from *scope*; an
        existing empty subgroup there is returned as-is.
        """
        doc = self._load()
        key = _key(name)
        if key in doc.get(scope, {}):
            return list(doc[scope][key])
        if key in doc.get(GLOBAL_SCOPE, {}):
            return list(doc[GLOBAL_SCOPE][key])
        return None

    # --- Mutations ---

    def add(self, scope: str, name: str, members: Iterable[str]) -> int:
        """Union *members* into the subgroup, creating it if needed. Returns the new size."""
        doc = self._load()
        key = _key(name)
        groups = doc.setdefault(scope, {})
        updated = _dedupe([*groups.get(key, []), *members])
        groups[key] = updated
        self._store(doc)
        logger.info("Subgroup updated", scope=scope, name=key, size=len(updated))
        return len(updated)

    def remove(self, scope: str, name: str, members: Iterable[str]) -> int | None:
        """Remove *members*. Returns the new size, or None when the subgroup doesn't exist."""
        doc = self._load()
        key = _key(name)
        groups = doc.get(scope, {})
        if key not in groups:
            return None
        drop = {normalize(m) or m for m in members}
        updated = [m for m in groups[key] if (normalize(m) or m) not in drop]
        groups[key] = updated
        self._store(doc)
        logger.info("Subgroup updated", scope=scope, name=key, size=len(updated))
        return len(updated)

    def delete(self, scope: str, name: str) -> bool:
        doc = self._load()
        key = _key(name)
        groups = doc.get(scope, {})
        if key not in groups:
            return False
        del groups[key]
        self._store(doc)
        logger.info("Subgroup deleted", scope=scope, name=key)
        return True
