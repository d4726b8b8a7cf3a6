"""Exception types raised across the bot.

Disconnect causes are classified with :class:`mentionbot.types.DisconnectKind`
rather than exceptions; these cover the failures that travel up a call stack.
"""

from __future__ import annotations


class MentionBotError(Exception):
    """Base class for bot errors."""


class CredentialCorruptionError(MentionBotError):
    """Stored credentials are unreadable or claim a registration they can't back up."""


class PairingError(MentionBotError):
    """A pairing code could not be requested."""


class RegistryCorruptedError(MentionBotError):
    """The subgroup document exists but can't be parsed.

    Never treated as an empty document.
    """


class DispatchSendError(MentionBotError):
    """A mention batch failed to send; the remaining batches were not attempted."""

    def __init__(self, message: str, *, sent_batches: int, total_batches: int) -> None:
        super().__init__(message)
        self.sent_batches = sent_batches
        self.total_batches = total_batches
