#!/usr/bin/env python3
"""
Account provisioning.

Creates login accounts and resets passwords from the command line. A password
reset also revokes every session of the account.

Usage:
    python create_user.py alice                          # Prompt for a password
    python create_user.py alice --role admin             # Create an administrator
    python create_user.py alice --password-env ALICE_PW  # Read the password from the environment
    python create_user.py alice --reset-password         # Set a new password, end all sessions
"""
import argparse
import asyncio
import getpass
import logging
import os
import sys

from session_guard.database import AsyncSessionLocal
from session_guard.models.base import UserRole
from session_guard.models.user import User
from session_guard.services.auth_service import AuthService
from session_guard.services.user_service import UserService, UserServiceError

logger = logging.getLogger("session_guard.accounts")


async def provision_user(
    username: str,
    password: str,
    role: UserRole = UserRole.USER,
    session_factory=AsyncSessionLocal,
) -> User:
    """Create an account and return it."""
    async with session_factory() as session:
        user = await UserService(session).create_user(username, password, role)
        print(f"Created {user.role} account '{user.username}' ({user.user_id})")
        return user


async def reset_password(
    username: str,
    password: str,
    session_factory=AsyncSessionLocal,
) -> int:
    """
    Set a new password for an existing account.

    Returns:
        Number of sessions revoked
    """
    async with session_factory() as session:
        revoked = await AuthService(session).reset_password(username, password)
        print(f"Password reset for '{username}'; revoked {revoked} session(s)")
        return revoked


def _read_password(args) -> str | None:
    if args.password_env:
        return os.environ.get(args.password_env) or None

    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Confirm password: "):
        print("Passwords do not match", file=sys.stderr)
        return None
    return password


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the provisioning script."""
    parser = argparse.ArgumentParser(
        description="Create login accounts or reset their passwords",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s alice                     # Create a regular account
  %(prog)s root --role admin         # Create an administrator
  %(prog)s alice --reset-password    # Replace the password and log out everywhere
        """
    )
    parser.add_argument("username", help="Account username")
    parser.add_argument(
        "--role",
        choices=[role.value for role in UserRole],
        default=UserRole.USER.value,
        help="Role for a new account (default: user)"
    )
    parser.add_argument(
        "--password-env",
        metavar="NAME",
        help="Read the password from this environment variable instead of prompting"
    )
    parser.add_argument(
        "--reset-password",
        action="store_true",
        help="Reset the password of an existing account and revoke its sessions"
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    password = _read_password(args)
    if not password:
        logger.error("No password provided")
        return 1

    try:
        if args.reset_password:
            asyncio.run(reset_password(args.username, password, session_factory=AsyncSessionLocal))
        else:
            asyncio.run(provision_user(
                args.username, password, UserRole(args.role), session_factory=AsyncSessionLocal
            ))
    except UserServiceError as e:
        logger.error(f"Account operation failed: {e}")
        return 1
    except Exception as e:
        logger.error(f"Error during account operation: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
