"""Chat command parsing and reply texts."""

from __future__ import annotations

from dataclasses import dataclass, field

GROUP_SUBCOMMANDS = ("list", "show", "add", "remove", "delete")


@dataclass(frozen=True)
class Command:
    name: str
    args: list[str] = field(default_factory=list)


def parse_command(text: str, prefix: str) -> Command | None:
    """Split ``<prefix><name> <args...>``. Returns None for text without the prefix."""
    trimmed = (text or "").strip()
    if not trimmed.startswith(prefix):
        return None
    words = trimmed[len(prefix) :].split()
    if not words:
        return None
    return Command(name=words[0].lower(), args=words[1:])


def subgroup_name(command: Command, subgroup_prefix: str, tagall: str) -> str | None:
    """Name targeted by a ``tag<name>`` command, or None if *command* isn't one."""
    if command.name == tagall or not command.name.startswith(subgroup_prefix):
        return None
    return command.name[len(subgroup_prefix) :] or None


def help_text(prefix: str, tagall: str, subgroup_prefix: str) -> str:
    p = prefix
    return (
        "🛠️ *Available Commands*\n"
        f"• {p}{tagall} — tag everyone in this group\n"
        f"• {p}{subgroup_prefix}<name> — tag a saved subgroup (e.g. {p}{subgroup_prefix}design)\n"
        f"• {p}group list — list subgroups\n"
        f"• {p}group show <name> — show members\n"
        f"• {p}group add <name> <@mentions, reply or numbers>\n"
        f"• {p}group remove <name> <@mentions, reply or numbers>\n"
        f"• {p}group delete <name>\n"
        "Group commands are for admins; in a direct chat only owners can use them "
        "and subgroups are saved globally."
    )


def group_usage(prefix: str) -> str:
    p = prefix
    return (
        "🧩 *Subgroup Commands*\n"
        f"• {p}group add <name> <numbers or @mentions>\n"
        f"• {p}group remove <name> <numbers or @mentions>\n"
        f"• {p}group show <name>\n"
        f"• {p}group list\n"
        f"• {p}group delete <name>"
    )
