import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.teamspace.models import ROLE_CORE_MEMBER, Agency, User
from app.teamspace.modules.chat.service import resolve_agency_channel, resolve_group_channel
from scripts._db_utils import script_session

DEFAULT_AGENCY_NAME = "Head Office"


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the default agency, its channel, the group channel and an optional core admin.
    Idempotent. Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or ""
    admin_name = (os.environ.get("ADMIN_NAME") or "Administrator").strip()
    agency_name = (os.environ.get("DEFAULT_AGENCY_NAME") or DEFAULT_AGENCY_NAME).strip()

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///teamspace.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        agency = s.query(Agency).filter(Agency.name == agency_name).one_or_none()
        if not agency:
            agency = Agency(name=agency_name, description="Default agency")
            s.add(agency)
            s.flush()
        resolve_agency_channel(s, agency)
        resolve_group_channel(s)

        if admin_email and admin_password:
            user = s.query(User).filter(User.email == admin_email).one_or_none()
            if not user:
                user = User(
                    name=admin_name,
                    email=admin_email,
                    password_hash=generate_password_hash(admin_password),
                    role=ROLE_CORE_MEMBER,
                    is_active=True,
                )
                s.add(user)
            elif user.role != ROLE_CORE_MEMBER:
                user.role = ROLE_CORE_MEMBER

    print("Initialized database (seed_only).")
    print(f"Default agency: {agency_name}")
    if admin_email:
        print(f"Admin email: {admin_email}")
        print("Admin password: (from ADMIN_PASSWORD)")
    else:
        print("ADMIN_EMAIL not set; no admin account seeded.")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
