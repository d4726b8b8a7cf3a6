"""Turns message references into roster addresses.

A command like ``!group add design @alice @bob`` can name members three
ways: structured mentions, replying to a member's message, or typing phone
numbers. Mentions may arrive as aliased (LID) addresses, which can't be
matched against phone identities until resolved. Aliases go through an
ordered chain of strategies; the first one that returns an address wins.
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Iterable

from mentionbot.aliases import ReverseAliasStore
from mentionbot.identity import address_kind, direct_address, is_aliased, normalize
from mentionbot.logger import logger
from mentionbot.transport import Session
from mentionbot.types import InboundMessage, Participant, Roster

_INLINE_NUMBER_RE = re.compile(r"\b\d{8,15}\b")

AliasStrategy = Callable[[Session, str, Roster | None], Awaitable[str | None]]


class RosterIndex:
    """Canonical digits → participant, keyed by both address and phone forms."""

    def __init__(self, roster: Roster) -> None:
        self.roster = roster
        self._by_digits: dict[str, Participant] = {}
        for p in roster.participants:
            for form in (p.phone_address, p.address):
                digits = normalize(form)
                if digits:
                    self._by_digits.setdefault(digits, p)

    def find(self, address: str | None) -> Participant | None:
        digits = normalize(address)
        return self._by_digits.get(digits) if digits else None

    def canonical(self, address: str | None) -> str | None:
        """The roster's stored form for *address*: phone address when known."""
        p = self.find(address)
        if p is None:
            return None
        return p.phone_address or p.address


def extract_numbers(text: str) -> list[str]:
    """Inline phone numbers (8-15 digits), deduplicated, in order of appearance."""
    return list(dict.fromkeys(_INLINE_NUMBER_RE.findall(text)))


class IdentityResolver:
    def __init__(self, aliases: ReverseAliasStore) -> None:
        self._aliases = aliases
        self._alias_strategies: tuple[AliasStrategy, ...] = (
            self._from_alias_store,
            self._from_lookup,
            self._from_roster_substring,
        )

    # --- Alias strategies ---

    async def _from_alias_store(
        self, _session: Session, alias: str, _roster: Roster | None
    ) -> str | None:
        return self._aliases.resolve(alias)

    async def _from_lookup(self, session: Session, alias: str, _roster: Roster | None) -> str | None:
        digits = normalize(alias)
        if not digits:
            return None
        try:
            found = await session.lookup_identity(digits)
        except Exception as err:
            logger.debug("Alias lookup failed", alias=alias, error=str(err))
            return None
        if found and not is_aliased(found):
            return found
        return None

    async def _from_roster_substring(
        self, _session: Session, alias: str, roster: Roster | None
    ) -> str | None:
        digits = normalize(alias)
        if roster is None or not digits:
            return None
        for p in roster.participants:
            if digits in p.address:
                logger.debug("Resolved alias via roster member", alias=alias, match=p.address)
                return p.phone_address or p.address
        return None

    # --- Public API ---

    def resolve_aliased(self, address: str) -> str | None:
        return self._aliases.resolve(address)

    def resolve_sender(self, address: str, phone_hint: str | None = None) -> str:
        """Best-effort phone address for a sender; falls back to the raw address."""
        if not is_aliased(address):
            return address
        if phone_hint and not is_aliased(phone_hint):
            return phone_hint
        return self.resolve_aliased(address) or address

    async def resolve_alias_chain(
        self, session: Session, alias: str, roster: Roster | None
    ) -> str | None:
        for strategy in self._alias_strategies:
            resolved = await strategy(session, alias, roster)
            if resolved:
                return resolved
        logger.info("Could not resolve aliased mention", alias=alias)
        return None

    async def resolve_mentions(
        self,
        session: Session,
        message: InboundMessage,
        roster: Roster | None,
    ) -> list[str]:
        """Members referenced by *message*.

        With a roster (group context) the result only contains current roster
        participants, in their canonical form. Without one (direct context)
        references are returned as Direct addresses.
        """
        index = RosterIndex(roster) if roster is not None else None

        resolved = await self._from_mentions(session, message.mentions, roster)

        if not resolved and index is not None and message.quoted is not None:
            if index.find(message.quoted.participant) is not None:
                resolved = [message.quoted.participant]  # type: ignore[list-item]

        if not resolved:
            resolved = await self._from_text(session, message.text, index)

        return self._finalize(resolved, index)

    async def _from_mentions(
        self, session: Session, mentions: Iterable[str], roster: Roster | None
    ) -> list[str]:
        out: list[str] = []
        for ref in mentions:
            kind = address_kind(ref)
            if kind == "aliased":
                resolved = await self.resolve_alias_chain(session, ref, roster)
                if resolved:
                    out.append(resolved)
            elif kind == "direct":
                out.append(ref)
        return out

    async def _from_text(
        self, session: Session, text: str, index: RosterIndex | None
    ) -> list[str]:
        out: list[str] = []
        for number in extract_numbers(text):
            try:
                found = await session.lookup_identity(number)
            except Exception as err:
                logger.debug("Number lookup failed", number=number, error=str(err))
                if index is None:
                    out.append(direct_address(number))
                continue
            if not found:
                continue
            if index is None or index.find(found) is not None:
                out.append(found)
        return out

    @staticmethod
    def _finalize(candidates: Iterable[str], index: RosterIndex | None) -> list[str]:
        seen: set[str] = set()
        out: list[str] = []
        for candidate in candidates:
            if index is not None:
                canonical = index.canonical(candidate)
                if canonical is None:
                    continue
            else:
                digits = normalize(candidate)
                canonical = direct_address(digits) if digits and not is_aliased(candidate) else candidate
            digits = normalize(canonical)
            if not digits or digits in seen:
                continue
            seen.add(digits)
            out.append(canonical)
        return out
