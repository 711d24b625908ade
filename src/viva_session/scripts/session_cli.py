"""Command-line access to the locally persisted Viva session."""

from __future__ import annotations

import argparse
import asyncio
from getpass import getpass

from ..app import VivaApp, create_app
from ..config import VivaSettings, load_settings
from ..errors import VivaClientError
from ..logging import configure_logging


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``viva-session`` command."""
    parser = argparse.ArgumentParser(prog="viva-session", description="Manage the Viva session")
    subparsers = parser.add_subparsers(dest="command", required=True)

    account_commands = {
        "sign-in": "Sign in with email and password",
        "sign-up": "Create an account and sign in",
    }
    for name, help_text in account_commands.items():
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("email")

    reset = subparsers.add_parser("reset-password", help="Send a password reset email")
    reset.add_argument("email")

    subparsers.add_parser("sign-out", help="Clear the stored session")
    subparsers.add_parser("status", help="Show the stored session")

    args = parser.parse_args(argv)

    settings = load_settings()
    configure_logging(settings.log_level, settings.log_json)

    try:
        return asyncio.run(_run(args, settings))
    except VivaClientError as e:
        print(f"Error: {e.user_friendly_message}")
        return 1


async def _run(args: argparse.Namespace, settings: VivaSettings) -> int:
    password = ""
    if args.command in ("sign-in", "sign-up"):
        password = _prompt_password(confirm=args.command == "sign-up")

    async with create_app(settings) as app:
        if args.command == "sign-in":
            await app.auth.sign_in(args.email, password)
            _print_status(app)
        elif args.command == "sign-up":
            await app.auth.sign_up(args.email, password)
            _print_status(app)
        elif args.command == "reset-password":
            response = await app.auth.reset_password(args.email)
            print(f"Password reset email sent to {response.email}")
        elif args.command == "sign-out":
            await app.auth.sign_out()
            print("Signed out.")
        else:
            _print_status(app)
    return 0


def _prompt_password(confirm: bool) -> str:
    """Prompt for a password, optionally asking twice."""
    while True:
        password = getpass("Password: ")
        if not password:
            print("A password is required.")
            continue
        if confirm and getpass("Confirm password: ") != password:
            print("Passwords do not match.")
            continue
        return password


def _print_status(app: VivaApp) -> None:
    state = app.session.state
    if not state.is_logged_in or state.profile is None:
        print("Not signed in.")
        return
    print("=" * 60)
    print(f"Signed in as {state.profile.display_name} <{state.profile.email_address}>")
    print(f"User ID:       {state.profile.id}")
    print(f"Reward points: {state.profile.reward_points}")
    print(f"Usable:        {'yes' if state.is_usable else 'no (tokens missing)'}")
    print("=" * 60)


if __name__ == "__main__":
    raise SystemExit(main())
