#!/usr/bin/env python3
"""Set a member's role and, optionally, their agency (idempotent).

Usage:
  python scripts/set_member_role.py --email jo@example.com --role core_member
  python scripts/set_member_role.py --email sam@example.com --role agency_member --agency "Head Office"
"""

import sys
import os
import argparse
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.teamspace.models import ROLE_AGENCY_MEMBER, ROLE_CORE_MEMBER, Agency, User
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="Member email")
    parser.add_argument("--role", required=True, choices=(ROLE_CORE_MEMBER, ROLE_AGENCY_MEMBER))
    parser.add_argument("--agency", help="Agency name to assign")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///teamspace.db").strip()
    with script_session(db_url) as s:
        user = s.query(User).filter(User.email.ilike(args.email)).one_or_none()
        if not user:
            print(f"User not found: {args.email}")
            return
        if args.agency:
            agency = s.query(Agency).filter(Agency.name == args.agency).one_or_none()
            if not agency:
                print(f"Agency not found: {args.agency}")
                return
            user.agency_id = agency.id
        if user.role == args.role and not args.agency:
            print(f"User already has role {args.role}: {args.email}")
            return
        user.role = args.role
        print(f"{args.email} is now {args.role}" + (f" in {args.agency}" if args.agency else ""))


if __name__ == "__main__":
    main()
