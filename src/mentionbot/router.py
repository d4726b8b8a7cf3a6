"""Command routing: permission policy and command handlers.

Every prefixed message passes the permission check before anything else
happens, whether or not the command itself is valid:

- direct chats: the sender must be one of the configured owners;
- groups: the sender must be an admin of that group right now.
"""

from __future__ import annotations

from dataclasses import replace

from mentionbot.commands import (
    Command,
    group_usage,
    help_text,
    parse_command,
    subgroup_name,
)
from mentionbot.config import BotConfig, get_settings
from mentionbot.dispatch import MentionDispatcher
from mentionbot.errors import DispatchSendError, RegistryCorruptedError
from mentionbot.identity import normalize
from mentionbot.logger import logger
from mentionbot.registry import GLOBAL_SCOPE, SubgroupRegistry
from mentionbot.resolver import IdentityResolver, RosterIndex
from mentionbot.transport import Session
from mentionbot.types import InboundMessage, OutgoingText, Roster

NOT_OWNER = "🚫 You don't have permission to use this bot."
NOT_ADMIN = "🚫 Only *group admins* can use these commands."
GROUP_ONLY = "This command only works in groups."
NO_MEMBERS_GROUP = "No valid members found. Please @mention them or reply to a member's message."
NO_MEMBERS_DIRECT = "No valid members found. List their phone numbers or @mention them."
REGISTRY_UNREADABLE = "⚠️ Subgroup storage is unreadable. Ask the operator to check the logs."


class CommandRouter:
    def __init__(
        self,
        registry: SubgroupRegistry,
        resolver: IdentityResolver,
        dispatcher: MentionDispatcher,
        bot: BotConfig | None = None,
    ) -> None:
        self._registry = registry
        self._resolver = resolver
        self._dispatcher = dispatcher
        self._bot = bot or get_settings().bot

    async def handle(self, session: Session, message: InboundMessage) -> None:
        command = parse_command(message.text, self._bot.prefix)
        if command is None:
            return

        roster: Roster | None = None
        if message.is_group:
            roster = await session.fetch_roster(message.conversation)
            if not self._is_group_admin(message, roster):
                logger.info("Rejected command from non-admin", sender=message.sender)
                await self._reply(session, message, NOT_ADMIN)
                return
        elif not self._is_owner(message):
            logger.info("Rejected direct command from non-owner", sender=message.sender)
            await self._reply(session, message, NOT_OWNER)
            return

        logger.info(
            "Command received",
            command=command.name,
            conversation=message.conversation,
            sender=message.sender,
        )
        try:
            await self._route(session, message, command, roster)
        except RegistryCorruptedError:
            logger.exception("Subgroup registry unreadable")
            await self._reply(session, message, REGISTRY_UNREADABLE)

    # --- Permission policy ---

    def _is_owner(self, message: InboundMessage) -> bool:
        # Sent from the linked account itself
        if message.is_from_me:
            return True
        sender = self._resolver.resolve_sender(message.sender, message.sender_phone)
        return normalize(sender) in self._bot.owners

    def _is_group_admin(self, message: InboundMessage, roster: Roster) -> bool:
        index = RosterIndex(roster)
        participant = (
            index.find(message.sender)
            or index.find(message.sender_phone)
            or index.find(self._resolver.resolve_sender(message.sender))
        )
        return participant is not None and participant.is_admin

    # --- Routing ---

    async def _route(
        self,
        session: Session,
        message: InboundMessage,
        command: Command,
        roster: Roster | None,
    ) -> None:
        bot = self._bot
        if command.name == bot.tagall_command:
            await self._tag_all(session, message, roster)
        elif command.name == "group":
            await self._group(session, message, command, roster)
        elif command.name == "help":
            await self._reply(
                session, message, help_text(bot.prefix, bot.tagall_command, bot.subgroup_prefix)
            )
        elif (name := subgroup_name(command, bot.subgroup_prefix, bot.tagall_command)) is not None:
            await self._tag_subgroup(session, message, name)
        else:
            logger.debug("Ignoring unknown command", command=command.name)

    async def _tag_all(
        self, session: Session, message: InboundMessage, roster: Roster | None
    ) -> None:
        if roster is None:
            await self._reply(session, message, GROUP_ONLY)
            return
        candidates = [p.phone_address or p.address for p in roster.participants]
        sent = await self._broadcast(session, message, candidates)
        if sent is False:
            await self._reply(session, message, "No members found to tag.")

    async def _tag_subgroup(self, session: Session, message: InboundMessage, name: str) -> None:
        if not message.is_group:
            await self._reply(session, message, GROUP_ONLY)
            return
        members = self._registry.lookup(message.conversation, name)
        if not members:
            await self._reply(session, message, f"No members in subgroup *{name}*.")
            return
        sent = await self._broadcast(session, message, members)
        if sent is False:
            await self._reply(
                session, message, f"No members of subgroup *{name}* are present in this group."
            )

    async def _broadcast(
        self, session: Session, message: InboundMessage, candidates: list[str]
    ) -> bool | None:
        """Dispatch mentions. False when nobody was present, None when a batch failed."""
        try:
            result = await self._dispatcher.dispatch(
                session, message.conversation, candidates, quoted=message.quoted
            )
        except DispatchSendError as err:
            logger.error(
                "Mention dispatch aborted",
                conversation=message.conversation,
                sent_batches=err.sent_batches,
                total_batches=err.total_batches,
                error=str(err),
            )
            return None
        return not result.nobody_present

    async def _group(
        self,
        session: Session,
        message: InboundMessage,
        command: Command,
        roster: Roster | None,
    ) -> None:
        prefix = self._bot.prefix
        if not command.args:
            await self._reply(session, message, group_usage(prefix))
            return

        sub = command.args[0].lower()
        name = command.args[1].lower() if len(command.args) > 1 else ""
        scope = message.conversation if message.is_group else GLOBAL_SCOPE

        if sub == "list":
            groups = self._registry.list(scope)
            lines = (
                "\n".join(f"• *{n}* ({size})" for n, size in groups)
                if groups
                else "_No subgroups yet._"
            )
            title = "Global" if scope == GLOBAL_SCOPE else "Group"
            await self._reply(session, message, f"🧩 *{title} Subgroups*\n{lines}")
            return

        if sub not in ("show", "add", "remove", "delete"):
            await self._reply(
                session, message, f"Unknown subcommand *{sub}*.\n\n{group_usage(prefix)}"
            )
            return

        if not name:
            await self._reply(session, message, f"Usage: {prefix}group {sub} <name>")
            return

        if sub == "show":
            members = self._registry.show(scope, name)
            if not members:
                await self._reply(session, message, f"No members in *{name}*.")
                return
            listing = " ".join(f"+{normalize(m) or m}" for m in members)
            await self._reply(session, message, f"👥 *{name}* ({len(members)})\n{listing}")
        elif sub == "delete":
            if self._registry.delete(scope, name):
                await self._reply(session, message, f"🗑️ Deleted subgroup *{name}*.")
            else:
                await self._reply(session, message, f"No subgroup named *{name}*.")
        else:
            await self._update_members(session, message, command, scope, roster)

    async def _update_members(
        self,
        session: Session,
        message: InboundMessage,
        command: Command,
        scope: str,
        roster: Roster | None,
    ) -> None:
        sub = command.args[0].lower()
        name = command.args[1].lower()
        # Only the words after the name count as references
        refs = replace(message, text=" ".join(command.args[2:]))
        members = await self._resolver.resolve_mentions(session, refs, roster)
        if not members:
            await self._reply(
                session, message, NO_MEMBERS_GROUP if message.is_group else NO_MEMBERS_DIRECT
            )
            return

        if sub == "add":
            size = self._registry.add(scope, name, members)
        else:
            size = self._registry.remove(scope, name, members)
            if size is None:
                await self._reply(session, message, f"No subgroup named *{name}*.")
                return
        await self._reply(session, message, f"✅ Updated *{name}* ({size} members).")

    @staticmethod
    async def _reply(session: Session, message: InboundMessage, text: str) -> None:
        await session.send(message.conversation, OutgoingText(text=text))
