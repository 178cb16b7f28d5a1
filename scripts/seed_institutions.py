"""
Seed institutions (and optionally an approved admin user) into the store.

Example:
    python scripts/seed_institutions.py -i "Northfield University:NFU2024" \
        --admin-email admin@nfu.edu --admin-password 'change-me-now' \
        --admin-institution NFU2024
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from academic_chat.accounts import AccountService
from academic_chat.chat import ChatService
from academic_chat.config import get_settings
from academic_chat.dependencies import get_db_client
from academic_chat.errors import ConflictError, ServiceError
from academic_chat.institutions import InstitutionService
from academic_chat.models import UserRole
from academic_chat.presence import PresenceService
from academic_chat.users import UserService

logger = logging.getLogger(__name__)


def parse_institution(value: str) -> tuple[str, str]:
    name, sep, code = value.rpartition(":")
    if not sep or not name.strip() or not code.strip():
        raise argparse.ArgumentTypeError("Institutions must be given as NAME:CODE")
    return name.strip(), code.strip()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Seed academic chat institutions")
    parser.add_argument(
        "-i",
        "--institution",
        type=parse_institution,
        action="append",
        default=[],
        help="Institution as NAME:CODE (repeatable)",
    )
    parser.add_argument("--admin-username", type=str, default="admin")
    parser.add_argument("--admin-email", type=str, default=None)
    parser.add_argument("--admin-password", type=str, default=None)
    parser.add_argument(
        "--admin-institution",
        type=str,
        default=None,
        help="Institution code the admin belongs to",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    db = get_db_client()
    chat = ChatService(db, settings)
    accounts = AccountService(db, settings)
    institutions = InstitutionService(db, settings, chat)
    users = UserService(
        db, settings, accounts, institutions, PresenceService(db, settings)
    )

    for name, code in args.institution:
        try:
            institution = institutions.create_institution(name, code)
            logger.info("Seeded %s (%s)", institution.institution_name, code)
        except ConflictError:
            logger.info("Institution %s already exists, skipping", code)

    if args.admin_email:
        if not args.admin_password or not args.admin_institution:
            parser.error("--admin-password and --admin-institution are required with --admin-email")
        try:
            user, session = users.register_user(
                args.admin_username,
                args.admin_email,
                args.admin_password,
                args.admin_institution,
            )
        except ServiceError as exc:
            logger.error("Could not create admin user: %s", exc.message)
            return 1
        accounts.delete_session(session.token)
        users.approve_user(user.user_id)
        users.update_user_role(user.user_id, UserRole.ADMIN.value)
        logger.info("Seeded admin user %s", user.user_id)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
