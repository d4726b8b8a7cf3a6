"""Entry point for `python -m mentionbot` / `mentionbot`.

Subcommands:
    mentionbot              Run the bot (default)
    mentionbot reset-auth   Delete stored credentials so the next start pairs again
"""

from __future__ import annotations

import argparse
import asyncio
import sys


def _run() -> None:
    from mentionbot.app import MentionBotApp

    async def _main() -> None:
        app = MentionBotApp()
        await app.run()

    asyncio.run(_main())


def _reset_auth(yes: bool) -> None:
    from mentionbot.config import get_settings
    from mentionbot.credentials import CredentialStore

    store = CredentialStore(get_settings().auth_dir)
    if not store.auth_dir.exists():
        print(f"Nothing to delete: {store.auth_dir} does not exist")
        return
    if not yes:
        answer = input(f"Delete {store.auth_dir} and unlink this bot? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted.")
            sys.exit(1)
    store.purge()
    print(f"Deleted {store.auth_dir}. Start the bot to pair again.")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="mentionbot",
        description="WhatsApp group mention bot",
    )
    sub = parser.add_subparsers(dest="command")
    reset = sub.add_parser("reset-auth", help="Delete stored credentials")
    reset.add_argument("-y", "--yes", action="store_true", help="Don't ask for confirmation")

    args = parser.parse_args()

    match args.command:
        case "reset-auth":
            _reset_auth(args.yes)
        case _:
            _run()


if __name__ == "__main__":
    main()
