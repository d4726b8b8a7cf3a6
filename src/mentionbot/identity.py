"""Participant address helpers.

Every equality check between participants goes through :func:`normalize`,
so a phone address (``919900000000@s.whatsapp.net``), a device-qualified
address (``919900000000:12@s.whatsapp.net``) and a bare number all compare
equal. Aliased (``@lid``) addresses normalize to the alias digits, which
only match a phone identity after resolution.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from mentionbot.transport import Session

DIRECT_SERVER = "s.whatsapp.net"
LEGACY_DIRECT_SERVER = "c.us"
ALIAS_SERVER = "lid"

_IDENTITY_RE = re.compile(r"\d{6,15}")

AddressKind = Literal["direct", "aliased", "other"]


def normalize(address: str | None) -> str:
    """Return the first run of 6-15 digits in *address*, or ``""``."""
    if not address:
        return ""
    match = _IDENTITY_RE.search(address)
    return match.group(0) if match else ""


def address_kind(address: str) -> AddressKind:
    server = address.rpartition("@")[2] if "@" in address else ""
    if server in (DIRECT_SERVER, LEGACY_DIRECT_SERVER):
        return "direct"
    if server == ALIAS_SERVER:
        return "aliased"
    return "other"


def is_aliased(address: str) -> bool:
    return address_kind(address) == "aliased"


def direct_address(digits: str) -> str:
    return f"{digits}@{DIRECT_SERVER}"


def mention_marker(address: str) -> str:
    """Text marker that renders as a mention for *address* (``@<user>``)."""
    user = address.split("@", 1)[0].split(":", 1)[0]
    return f"@{user}"


def self_identity(session: Session | None) -> str:
    if session is None:
        return ""
    return normalize(session.self_address)
