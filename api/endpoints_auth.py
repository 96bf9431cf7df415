"""Authentication endpoints: password login, TOTP second factor and the caller's capability object."""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from api import crud_users, two_factor
from api.ai_context import AI_FEATURES, can_access_ai_feature
from api.auth import create_access_token, verify_password
from api.config import settings
from api.db import get_db
from api.deps_auth import SecureAuth, get_secure_auth, require_authenticated
from api.models_users import User
from api.roles import load_role_set
from api.schemas_auth import PasswordLoginIn, TokenResponse, TwoFactorCodeIn, TwoFactorSetupOut
from api.utils.audit import write_audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _check_login_code(db: Session, user: User, code: str | None) -> None:
    """401 unless `code` passes the enabled second factor; a used backup code is audited."""
    if not code:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Two-factor code required"
        )
    row = two_factor.get_two_factor(db, user.id)
    method = two_factor.verify_code(row, code)
    if method is None:
        logger.info(f"Failed 2FA code for username={user.username}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid two-factor code"
        )
    if method == "backup":
        write_audit(db, "2FA_BACKUP_CODE_USED", user.id, "user_2fa", row.id,
                    new_values={"backup_codes_remaining": len(row.backup_codes)})
    db.commit()


@router.post("/login", response_model=TokenResponse)
async def password_login(credentials: PasswordLoginIn, db: Session = Depends(get_db)):
    """Authenticate using username/password."""
    user = crud_users.get_user_by_username(db, credentials.username)

    if not user or not user.password_hash or not verify_password(credentials.password, user.password_hash):
        logger.info(f"Failed login for username={credentials.username}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials"
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account disabled"
        )

    if two_factor.is_enabled(db, user.id):
        _check_login_code(db, user, credentials.otp_code)

    role_set = load_role_set(db, user.id)
    access_token = create_access_token(user.id, user.username, role_set.primary_role.value)

    return TokenResponse(
        access_token=access_token,
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user_id=user.id,
        username=user.username,
        full_name=user.full_name,
        primary_role=role_set.primary_role.value,
    )


@router.get("/me")
async def get_me(auth: SecureAuth = Depends(get_secure_auth)):
    """Capability object of the caller; anonymous callers get the guest view."""
    return auth.to_dict()


@router.get("/ai-context")
async def get_my_ai_context(auth: SecureAuth = Depends(require_authenticated)):
    """AI policy for the caller plus which AI features are unlocked."""
    return {
        "context": auth.ai_context.to_dict(),
        "features": {
            feature: can_access_ai_feature(auth.role_set, feature, auth.is_authenticated)
            for feature in AI_FEATURES
        },
    }


# --- Two-factor authentication ---

def _account(auth: SecureAuth) -> User:
    if auth.user is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Two-factor settings need a user account"
        )
    return auth.user


@router.get("/2fa")
async def get_two_factor_status(
    auth: SecureAuth = Depends(require_authenticated),
    db: Session = Depends(get_db)
):
    user = _account(auth)
    return two_factor.status_dict(two_factor.get_two_factor(db, user.id))


@router.post("/2fa/setup", response_model=TwoFactorSetupOut)
async def setup_two_factor(
    auth: SecureAuth = Depends(require_authenticated),
    db: Session = Depends(get_db)
):
    """
    Start enrolment: new secret, provisioning URI for authenticator apps
    and backup codes (shown once). Refused while 2FA is already enabled.
    """
    user = _account(auth)
    if two_factor.is_enabled(db, user.id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Two-factor authentication is already enabled"
        )
    row, codes = two_factor.begin_setup(db, user)
    write_audit(db, "2FA_SETUP", user.id, "user_2fa", row.id)
    db.commit()
    return TwoFactorSetupOut(
        secret=row.secret,
        provisioning_uri=two_factor.provisioning_uri(row.secret, user),
        backup_codes=codes,
    )


@router.post("/2fa/verify")
async def verify_two_factor(
    data: TwoFactorCodeIn,
    auth: SecureAuth = Depends(require_authenticated),
    db: Session = Depends(get_db)
):
    """Check a code; the first valid TOTP code after setup enables 2FA."""
    user = _account(auth)
    row = two_factor.get_two_factor(db, user.id)
    if row is None or not row.secret:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Two-factor setup not started"
        )

    method = two_factor.verify_code(row, data.code)
    if method is None:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid two-factor code"
        )

    if not row.is_enabled:
        row.is_enabled = True
        write_audit(db, "2FA_ENABLED", user.id, "user_2fa", row.id)
        logger.info(f"2FA enabled for user {user.id}")
    elif method == "backup":
        write_audit(db, "2FA_BACKUP_CODE_USED", user.id, "user_2fa", row.id,
                    new_values={"backup_codes_remaining": len(row.backup_codes)})
    db.commit()
    return {"verified": True, "method": method, **two_factor.status_dict(row)}


@router.post("/2fa/disable")
async def disable_two_factor(
    data: TwoFactorCodeIn,
    auth: SecureAuth = Depends(require_authenticated),
    db: Session = Depends(get_db)
):
    """Turn 2FA off; needs a current TOTP or backup code. Secret and codes are wiped."""
    user = _account(auth)
    row = two_factor.get_two_factor(db, user.id)
    if row is None or not row.is_enabled:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Two-factor authentication is not enabled"
        )
    if two_factor.verify_code(row, data.code) is None:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid two-factor code"
        )

    row.is_enabled = False
    row.secret = None
    row.backup_codes = []
    write_audit(db, "2FA_DISABLED", user.id, "user_2fa", row.id)
    db.commit()
    logger.info(f"2FA disabled for user {user.id}")
    return two_factor.status_dict(row)
