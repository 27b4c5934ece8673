import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.fooddash.models import AdminPermission, User  # noqa: E402
from app.fooddash.permissions import seed_roles  # noqa: E402
from app.fooddash.rbac import ADMIN  # noqa: E402
from app.fooddash.settings import seed_default_settings  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles, default platform settings and the admin user in an
    idempotent way. Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@fooddash.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    # Direct engine/session so this can run in release without importing app.wsgi (avoids recursion).
    with script_session(database_url) as s:
        roles = seed_roles(s)
        seed_default_settings(s)

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(email=admin_email, password_hash=generate_password_hash(admin_password), full_name="Administrator", is_active=True)
            s.add(user)
        if roles[ADMIN] not in user.roles:
            user.roles.append(roles[ADMIN])
        # The bootstrap admin is the one who can grant admin access to others.
        if user.admin_permissions is None:
            user.admin_permissions = AdminPermission(can_manage_admins=True)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
