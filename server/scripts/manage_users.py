#!/usr/bin/env python3
"""
User and membership management CLI for ModelHub.

Runs against the database configured in the environment / .env, with the
same validation and invariants as the REST API. Role changes run as a
global admin principal, so the last-admin and containment rules still hold.

Usage:
  python manage_users.py create-user --user NAME [--email EMAIL] [--fname F] [--lname L] [--admin]
  python manage_users.py list-users
  python manage_users.py set-role --org ORG [--project P [--element E]] --user NAME --role TIER
  python manage_users.py list-members --org ORG [--project P [--element E]]
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from modelhub.config import get_settings  # noqa: E402
from modelhub.controllers import users  # noqa: E402
from modelhub.errors import ModelHubError  # noqa: E402
from modelhub.hierarchy import element_ref, org_ref, project_ref  # noqa: E402
from modelhub.logging_config import configure_logging  # noqa: E402
from modelhub.permissions import get_permission_engine  # noqa: E402
from modelhub.user_context import system_principal  # noqa: E402

CLI_PRINCIPAL = system_principal("cli-admin")


def _ref_from_args(args):
    delimiter = get_settings().id_delimiter
    if args.element and not args.project:
        print("Error: --element requires --project.")
        raise SystemExit(1)
    if args.element:
        return element_ref(args.org, args.project, args.element, delimiter)
    if args.project:
        return project_ref(args.org, args.project, delimiter)
    return org_ref(args.org, delimiter)


# ==========================================================================
# Commands
# ==========================================================================

def cmd_create_user(args):
    user = users.create_user(
        CLI_PRINCIPAL, args.user, email=args.email, fname=args.fname,
        lname=args.lname, admin=args.admin,
    )
    print(f"\n=== User Created ===")
    print(f"User:   {user['username']}")
    print(f"Email:  {user['email'] or '-'}")
    print(f"Admin:  {'yes' if user['admin'] else 'no'}")


def cmd_list_users(args):
    result = users.list_users(CLI_PRINCIPAL)
    if not result["users"]:
        print("No users found.")
        return
    print(f"\n{'Username':<24} {'Email':<32} {'Admin':<6} {'Created'}")
    print("-" * 80)
    for u in result["users"]:
        print(f"{u['username']:<24} {(u['email'] or '-'):<32} "
              f"{'yes' if u['admin'] else 'no':<6} {u['created_on'][:19]}")


def cmd_set_role(args):
    ref = _ref_from_args(args)
    store = get_permission_engine().set_tier(CLI_PRINCIPAL, ref, args.user, args.role)
    held = [t.value for t in store.effective_tiers(args.user)]
    print(f"{args.user} on {ref}: {', '.join(held) if held else 'no access'}")


def cmd_list_members(args):
    ref = _ref_from_args(args)
    role_map = get_permission_engine().effective_role_map(ref, actor=CLI_PRINCIPAL)
    if not role_map:
        print(f"No members on {ref}.")
        return
    print(f"\nMembers of {ref}:")
    for username, roles in role_map.items():
        print(f"  {username:<24} {', '.join(roles)}")


def _add_ref_args(p):
    p.add_argument("--org", required=True, help="Organization id")
    p.add_argument("--project", help="Project id within the organization")
    p.add_argument("--element", help="Element id within the project")


def main():
    parser = argparse.ArgumentParser(description="ModelHub User Manager")
    sub = parser.add_subparsers(dest="command")

    # create-user
    p_create = sub.add_parser("create-user", help="Create a user")
    p_create.add_argument("--user", required=True, help="Username")
    p_create.add_argument("--email", help="Email address")
    p_create.add_argument("--fname", help="First name")
    p_create.add_argument("--lname", help="Last name")
    p_create.add_argument("--admin", action="store_true", help="Make the user a global admin")

    # list-users
    sub.add_parser("list-users", help="List all users")

    # set-role
    p_role = sub.add_parser("set-role", help="Set a user's tier on a resource")
    _add_ref_args(p_role)
    p_role.add_argument("--user", required=True, help="Username")
    p_role.add_argument("--role", required=True, choices=["read", "write", "admin", "none"],
                        help="Tier to set ('none' removes the user)")

    # list-members
    p_members = sub.add_parser("list-members", help="List members of a resource")
    _add_ref_args(p_members)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return

    configure_logging(get_settings().log_level)
    commands = {
        "create-user": cmd_create_user,
        "list-users": cmd_list_users,
        "set-role": cmd_set_role,
        "list-members": cmd_list_members,
    }
    try:
        commands[args.command](args)
    except ModelHubError as e:
        print(f"Error ({e.code}): {e.message}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
