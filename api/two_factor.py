"""TOTP second factor: enrolment, code checks and backup codes."""
import logging
import secrets
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import pyotp
from sqlalchemy.orm import Session

from api.auth import hash_password, verify_password
from api.config import settings
from api.models_users import User, UserTwoFactor

logger = logging.getLogger(__name__)

# accept the previous and the next 30 s step for clock drift
VALID_WINDOW = 1


def get_two_factor(db: Session, user_id: int) -> Optional[UserTwoFactor]:
    return db.query(UserTwoFactor).filter(UserTwoFactor.user_id == user_id).first()


def is_enabled(db: Session, user_id: int) -> bool:
    row = get_two_factor(db, user_id)
    return row is not None and row.is_enabled


def generate_backup_codes(count: Optional[int] = None) -> List[str]:
    return [secrets.token_hex(4).upper() for _ in range(count or settings.BACKUP_CODE_COUNT)]


def provisioning_uri(secret: str, user: User) -> str:
    return pyotp.TOTP(secret).provisioning_uri(name=user.username, issuer_name=settings.TOTP_ISSUER)


def begin_setup(db: Session, user: User) -> Tuple[UserTwoFactor, List[str]]:
    """
    Fresh secret and backup codes for a user; the factor stays disabled
    until `verify` accepts a TOTP code. Plain backup codes are returned
    once and only their hashes are stored.
    """
    row = get_two_factor(db, user.id)
    if row is None:
        row = UserTwoFactor(user_id=user.id)
        db.add(row)
    codes = generate_backup_codes()
    row.secret = pyotp.random_base32()
    row.is_enabled = False
    row.backup_codes = [hash_password(code) for code in codes]
    row.last_used_at = None
    db.flush()
    return row, codes


def check_totp(row: UserTwoFactor, code: str) -> bool:
    if not row.secret or not code:
        return False
    return pyotp.TOTP(row.secret).verify(code.strip(), valid_window=VALID_WINDOW)


def consume_backup_code(row: UserTwoFactor, code: str) -> bool:
    """Drop the matching hash so a backup code works once."""
    code = (code or "").strip().upper()
    if not code:
        return False
    for stored in row.backup_codes or []:
        if verify_password(code, stored):
            row.backup_codes = [h for h in row.backup_codes if h != stored]
            return True
    return False


def verify_code(row: UserTwoFactor, code: str) -> Optional[str]:
    """
    "totp" or "backup" for an accepted code, None otherwise.

    Backup codes count only once the factor is enabled.
    """
    if check_totp(row, code):
        method = "totp"
    elif row.is_enabled and consume_backup_code(row, code):
        method = "backup"
    else:
        return None
    row.last_used_at = datetime.now(timezone.utc).replace(tzinfo=None)
    return method


def status_dict(row: Optional[UserTwoFactor]) -> dict:
    return {
        "enabled": bool(row and row.is_enabled),
        "pending_setup": bool(row and not row.is_enabled and row.secret),
        "backup_codes_remaining": len(row.backup_codes or []) if row and row.is_enabled else 0,
        "last_used_at": row.last_used_at.isoformat() if row and row.last_used_at else None,
    }
