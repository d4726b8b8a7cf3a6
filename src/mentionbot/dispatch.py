"""Mention dispatch: paced, batched bulk mentions.

Candidates are intersected with the conversation's live roster, so a saved
subgroup only ever pings people who are in the group right now. Batches
go out one at a time with a fixed pause between them; the pause is the
only throttle toward the platform.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from mentionbot.errors import DispatchSendError
from mentionbot.identity import mention_marker, normalize, self_identity
from mentionbot.logger import logger
from mentionbot.transport import Session
from mentionbot.types import OutgoingText, QuotedRef, Roster
from mentionbot.utils import chunked


@dataclass
class DispatchResult:
    members: list[str] = field(default_factory=list)
    batches_sent: int = 0

    @property
    def nobody_present(self) -> bool:
        return not self.members


def presence_map(roster: Roster, exclude: str = "") -> dict[str, str]:
    """Canonical digits → the roster's addressable form, without *exclude*.

    A participant is reachable under both its phone digits and its address
    digits; the roster address is what gets mentioned either way.
    """
    present: dict[str, str] = {}
    for p in roster.participants:
        keys = [normalize(p.phone_address), normalize(p.address)]
        if exclude and exclude in keys:
            continue
        for digits in keys:
            if digits:
                present.setdefault(digits, p.address)
    return present


def intersect(candidates: Iterable[str], present: dict[str, str]) -> list[str]:
    """Candidates present in the roster, in candidate order, without duplicates."""
    out: list[str] = []
    seen: set[str] = set()
    for candidate in candidates:
        mapped = present.get(normalize(candidate))
        if mapped is None or mapped in seen:
            continue
        seen.add(mapped)
        out.append(mapped)
    return out


def compose_batch(members: list[str]) -> OutgoingText:
    return OutgoingText(
        text=" ".join(mention_marker(m) for m in members),
        mentions=list(members),
    )


class MentionDispatcher:
    def __init__(
        self,
        *,
        batch_size: int = 20,
        delay: float = 0.4,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.batch_size = batch_size
        self.delay = delay
        self._sleep = sleep

    async def dispatch(
        self,
        session: Session,
        conversation: str,
        candidates: Iterable[str],
        quoted: QuotedRef | None = None,
    ) -> DispatchResult:
        roster = await session.fetch_roster(conversation)
        present = presence_map(roster, exclude=self_identity(session))
        members = intersect(candidates, present)
        if not members:
            logger.info("Nobody to mention", conversation=conversation)
            return DispatchResult()

        batches = chunked(members, self.batch_size)
        result = DispatchResult(members=members)
        for i, batch in enumerate(batches):
            if i > 0:
                await self._sleep(self.delay)
            try:
                await session.send(conversation, compose_batch(batch), quoted if i == 0 else None)
            except Exception as err:
                raise DispatchSendError(
                    f"Mention batch {i + 1}/{len(batches)} failed: {err}",
                    sent_batches=result.batches_sent,
                    total_batches=len(batches),
                ) from err
            result.batches_sent += 1
        logger.info(
            "Mentions dispatched",
            conversation=conversation,
            members=len(members),
            batches=result.batches_sent,
        )
        return result
