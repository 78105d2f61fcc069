"""
User Routes — account creation and the entitlement view.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from lovepages.database import get_db
from lovepages.models.user import User
from lovepages.schemas.schemas import UserCreateRequest, UserCreateResponse, UserProfileResponse
from lovepages.services.entitlement_store import EntitlementStore
from lovepages.utils.auth import get_current_user, issue_token
from lovepages.utils.rate_limiter import rate_limit

router = APIRouter(prefix="/api/users", tags=["Users"])


@router.post("", response_model=UserCreateResponse, status_code=201)
def create_user(
    payload: UserCreateRequest,
    db: Session = Depends(get_db),
    _throttle: bool = Depends(rate_limit(requests=10, window=60)),
):
    """Create a user and return a bearer token for it."""
    store = EntitlementStore(db)
    if "@" not in payload.email:
        raise HTTPException(status_code=422, detail="Invalid email address")
    if store.find_user_by_email(payload.email):
        raise HTTPException(status_code=409, detail="Email already registered")

    user = store.create_user(payload.email, payload.display_name)
    return UserCreateResponse(user_id=user.id, token=issue_token(user.id))


@router.get("/me", response_model=UserProfileResponse)
def get_me(user: User = Depends(get_current_user)):
    """Entitlement view for the authenticated user."""
    return UserProfileResponse(
        user_id=user.id,
        email=user.email,
        display_name=user.display_name,
        is_pro=user.is_pro_active(),
        pro_expires_at=user.pro_expires_at,
        total_payments=len(user.payments),
    )
