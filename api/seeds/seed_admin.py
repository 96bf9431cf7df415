"""Seed the initial admin account.

Usage:
    python -m api.seeds.seed_admin [username] [password]
"""
import logging
import sys

from api import crud_users
from api.db import SessionLocal
from api.roles import Role
from api.schemas_auth import UserCreateIn

logger = logging.getLogger(__name__)

DEFAULT_USERNAME = "admin"
DEFAULT_PASSWORD = "admin12345"


def seed_admin(username: str = DEFAULT_USERNAME, password: str = DEFAULT_PASSWORD) -> None:
    """Create an admin user unless an active admin already exists."""
    db = SessionLocal()
    try:
        admins = crud_users.active_admins(db)
        if admins:
            logger.info(f"Admin already exists: {admins[0].username} (id={admins[0].id})")
            return

        if crud_users.get_user_by_username(db, username):
            logger.error(f"Username '{username}' is taken by a non-admin account; grant the role instead")
            return

        user = crud_users.create_user(
            db,
            UserCreateIn(username=username, full_name="System Administrator", password=password, role=Role.admin),
        )
        db.commit()
        logger.info(f"Admin user created: {user.username} (id={user.id}). Change the password after first login.")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    seed_admin(*sys.argv[1:3])
