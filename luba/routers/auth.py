"""
Auth router: sign-up, sign-in and account management.

Credentials are checked by the identity provider; on success we issue our
own short-lived session JWT.
"""
import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from luba.database import get_db
from luba.errors import AuthError, ValidationError
from luba.middleware.auth import create_access_token, get_current_customer
from luba.schemas.schemas import (
    AccountDeleteRequest,
    AccountResponse,
    PasswordChangeRequest,
    PasswordResetRequest,
    SessionResponse,
    SignInRequest,
    SignUpRequest,
)
from luba.services import accounts, identity

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/auth", tags=["Auth"])


def _session(account) -> SessionResponse:
    token = create_access_token({"sub": account.id, "role": account.role, "name": account.username})
    return SessionResponse(
        access_token=token,
        user_id=account.id,
        username=account.username,
        role=account.role,
    )


@router.post("/signup", status_code=status.HTTP_201_CREATED, response_model=SessionResponse)
async def signup(payload: SignUpRequest, db: AsyncSession = Depends(get_db)):
    accounts.validate_signup(
        payload.username, payload.email, payload.password, payload.confirm_password, payload.phone
    )
    email = accounts.normalize_email(payload.email)
    creds = await identity.sign_up(email, payload.password)
    account = await accounts.register_customer(db, creds["uid"], payload.username.strip(), email, payload.phone)
    return _session(account)


@router.post("/signin", response_model=SessionResponse)
async def signin(payload: SignInRequest, db: AsyncSession = Depends(get_db)):
    accounts.validate_signin(payload.email, payload.password)
    creds = await identity.sign_in(accounts.normalize_email(payload.email), payload.password)
    account = await accounts.get_account(db, creds["uid"])
    if not account.active:
        raise AuthError("This account has been deactivated.")
    logger.info("User=%s signed in", account.id)
    return _session(account)


@router.post("/password-reset", status_code=status.HTTP_202_ACCEPTED)
async def password_reset(payload: PasswordResetRequest):
    email = accounts.normalize_email(payload.email)
    if not accounts.EMAIL_RE.match(email):
        raise ValidationError("Please enter a valid email address.")
    await identity.send_password_reset(email)
    return {"status": "sent"}


@router.get("/me", response_model=AccountResponse)
async def me(db: AsyncSession = Depends(get_db), user_id: str = Depends(get_current_customer)):
    return AccountResponse.model_validate(await accounts.get_account(db, user_id))


@router.post("/password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password(
    payload: PasswordChangeRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_customer),
):
    accounts.validate_password_change(payload.current_password, payload.new_password, payload.confirm_password)
    account = await accounts.get_account(db, user_id)
    await identity.update_password(account.email, payload.current_password, payload.new_password)


@router.post("/deactivate", response_model=AccountResponse)
async def deactivate(db: AsyncSession = Depends(get_db), user_id: str = Depends(get_current_customer)):
    return AccountResponse.model_validate(await accounts.deactivate_account(db, user_id))


@router.delete("/account", status_code=status.HTTP_204_NO_CONTENT)
async def delete_account(
    payload: AccountDeleteRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_customer),
):
    account = await accounts.get_account(db, user_id)
    await identity.delete_account(account.email, payload.password)
    await accounts.delete_account(db, user_id)
