"""
Bearer Token Auth — HMAC-signed "<user_id>.<issued_at>.<signature>" tokens.
"""
import time
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from lovepages.config import get_settings
from lovepages.database import get_db
from lovepages.models.user import User
from lovepages.utils.hashing import hmac_sha256_hex, signatures_match


def issue_token(user_id: str, issued_at: Optional[int] = None) -> str:
    settings = get_settings()
    issued_at = int(issued_at if issued_at is not None else time.time())
    body = f"{user_id}.{issued_at}"
    return f"{body}.{hmac_sha256_hex(settings.SECRET_KEY, body)}"


def parse_token(token: str) -> Optional[str]:
    """Return the user id of a valid, unexpired token, else None."""
    settings = get_settings()
    try:
        user_id, issued_at, signature = token.rsplit(".", 2)
        issued = int(issued_at)
    except ValueError:
        return None
    expected = hmac_sha256_hex(settings.SECRET_KEY, f"{user_id}.{issued_at}")
    if not signatures_match(expected, signature):
        return None
    if time.time() - issued > settings.TOKEN_MAX_AGE_SECONDS:
        return None
    return user_id


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> User:
    """FastAPI dependency: the authenticated user, or 401."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing authentication token")

    user_id = parse_token(authorization[len("Bearer "):].strip())
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=401, detail="Unknown user")
    return user
