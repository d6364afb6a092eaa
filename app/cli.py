from __future__ import annotations

import argparse
import getpass
import sys
from typing import Optional

from .config import get_settings, redacted_settings
from .db import create_tables, open_session
from .models import User
from .security import hash_password
from .s3 import build_storage
from .storage import get_user_storage_usage, format_storage_size
from .tree import empty_trash


def _find_user(db, email: str) -> User:
    u = db.query(User).filter(User.email == email.lower()).first()
    if not u:
        print(f"Error: user '{email}' not found", file=sys.stderr)
        sys.exit(1)
    return u


def _print_user(db, u: User, show_storage: bool = False):
    print(f"id={u.id} username={u.username} email={u.email} created_at={u.created_at}")
    if show_storage:
        usage = get_user_storage_usage(u, db)
        print(f"  storage: {usage['formatted_used']} / {usage['formatted_quota']} ({usage['my_files_count']} files)")


def change_user_password(email: str, password: Optional[str] = None, prompt: bool = False):
    if prompt or not password:
        pw1 = getpass.getpass("New password: ")
        pw2 = getpass.getpass("Confirm password: ")
        if pw1 != pw2:
            print("Error: passwords do not match", file=sys.stderr)
            sys.exit(2)
        password = pw1
    if len(password) < 8:
        print("Error: password must be at least 8 characters", file=sys.stderr)
        sys.exit(2)
    create_tables()
    db = open_session()
    try:
        u = _find_user(db, email)
        u.password_hash = hash_password(password)
        db.commit()
        print("Password updated.")
    finally:
        db.close()


def list_users(show_storage: bool = False):
    create_tables()
    db = open_session()
    try:
        users = db.query(User).order_by(User.id.asc()).all()
        for u in users:
            _print_user(db, u, show_storage)
        if not users:
            print("(no users)")
    finally:
        db.close()


def show_storage_usage(email: str):
    """Show detailed storage usage for a user"""
    create_tables()
    db = open_session()
    try:
        user = _find_user(db, email)
        usage = get_user_storage_usage(user, db)
        print(f"Storage usage for {user.email}:")
        print(f"  Used: {usage['formatted_used']} (in trash: {format_storage_size(usage['trashed_storage_bytes'])})")
        print(f"  Quota: {usage['formatted_quota']}")
        print(f"  Available: {usage['formatted_remaining']}")
        print(f"  Usage: {usage['usage_percentage']:.1f}%")
        print(f"  Files: {usage['my_files_count']} owned, {usage['files_shared_with_me_count']} shared with user")
    finally:
        db.close()


def empty_trash_cli(email: str):
    """Permanently delete everything in a user's trash"""
    create_tables()
    db = open_session()
    try:
        user = _find_user(db, email)
        result = empty_trash(db, build_storage(get_settings()), user.id)
        print(f"Trash emptied for {user.email}: {result['deleted_folders']} folders, {result['deleted_files']} files removed")
    finally:
        db.close()


def show_config():
    """Print the effective settings with credentials masked"""
    for key, value in sorted(redacted_settings().items()):
        print(f"{key} = {value!r}")


def _help(parser, cmd_parsers, command=None):
    if not command:
        parser.print_help()
        return
    sp = cmd_parsers.get(command)
    if sp is None:
        print(f"Unknown command: {command}", file=sys.stderr)
        parser.print_help()
        sys.exit(1)
    sp.print_help()


def main(argv=None):
    parser = argparse.ArgumentParser(prog="cloudbox-cli", description="Cloudbox – user and storage management CLI")
    sub = parser.add_subparsers(dest="cmd", required=True)
    cmd_parsers = {}

    p_cup = sub.add_parser("change-user-password", help="Change a user's password"); cmd_parsers['change-user-password'] = p_cup
    p_cup.add_argument("--email", required=True)
    pw_grp = p_cup.add_mutually_exclusive_group()
    pw_grp.add_argument("--password")
    pw_grp.add_argument("--prompt", action="store_true")
    p_cup.set_defaults(func=lambda a: change_user_password(a.email, a.password, a.prompt))

    p_ls = sub.add_parser("list-users", help="List users"); cmd_parsers['list-users'] = p_ls
    p_ls.add_argument("--show-storage", action="store_true", help="Show storage information")
    p_ls.set_defaults(func=lambda a: list_users(a.show_storage))

    p_usage = sub.add_parser("show-storage-usage", help="Show detailed storage usage for a user"); cmd_parsers['show-storage-usage'] = p_usage
    p_usage.add_argument("--email", required=True, help="User email")
    p_usage.set_defaults(func=lambda a: show_storage_usage(a.email))

    p_trash = sub.add_parser("empty-trash", help="Permanently delete a user's trashed files and folders"); cmd_parsers['empty-trash'] = p_trash
    p_trash.add_argument("--email", required=True, help="User email")
    p_trash.set_defaults(func=lambda a: empty_trash_cli(a.email))

    p_cfg = sub.add_parser("show-config", help="Show the effective configuration"); cmd_parsers['show-config'] = p_cfg
    p_cfg.set_defaults(func=lambda a: show_config())

    p_help = sub.add_parser("help", help="Show help or help for a command"); cmd_parsers['help'] = p_help
    p_help.add_argument("command", nargs="?")
    p_help.set_defaults(func=lambda a: _help(parser, cmd_parsers, a.command))

    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
