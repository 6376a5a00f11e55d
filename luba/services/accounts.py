"""
Customer accounts and driver onboarding.
"""
import logging
import re
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from luba.config import get_settings
from luba.database import safe_commit
from luba.errors import NotFound, ValidationError
from luba.models.customer import CustomerAccount
from luba.models.driver import DriverPresence, DriverProfile
from luba.schemas.schemas import ApprovalStatus, RoleEnum

logger = logging.getLogger(__name__)
settings = get_settings()

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PASSWORD_RE = re.compile(
    r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]).{8,}$"
)
PHONE_RE = re.compile(r"^(?:\+27|0)\d{9}$")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def validate_signup(
    username: str,
    email: str,
    password: str,
    confirm_password: str,
    phone: Optional[str] = None,
) -> None:
    errs: dict[str, str] = {}
    if not username or len(username) < 6:
        errs["username"] = "Username must be at least 6 characters."
    elif "@" in username:
        errs["username"] = "Username must not be an email."

    trimmed = normalize_email(email)
    if not trimmed:
        errs["email"] = "Email is required."
    elif not EMAIL_RE.match(trimmed):
        errs["email"] = "Please enter a valid email address."

    if not password:
        errs["password"] = "Password is required."
    elif not PASSWORD_RE.match(password):
        errs["password"] = (
            "Password must be at least 8 characters and include uppercase, "
            "lowercase, number, and special character."
        )

    if password != confirm_password:
        errs["confirm_password"] = "Passwords do not match."

    if phone and not PHONE_RE.match(phone.replace(" ", "")):
        errs["phone"] = "Please enter a valid phone number."

    if errs:
        raise ValidationError(next(iter(errs.values())), fields=errs)


def validate_signin(email: str, password: str) -> None:
    errs: dict[str, str] = {}
    trimmed = normalize_email(email)
    if not trimmed:
        errs["email"] = "Email is required."
    elif not EMAIL_RE.match(trimmed):
        errs["email"] = "Please enter a valid email address."
    if not password:
        errs["password"] = "Password is required."
    if errs:
        raise ValidationError(next(iter(errs.values())), fields=errs)


def validate_password_change(current_password: str, new_password: str, confirm_password: str) -> None:
    if not current_password or not new_password or not confirm_password:
        raise ValidationError("Please fill in all password fields.")
    if new_password != confirm_password:
        raise ValidationError("New passwords do not match.")
    if len(new_password) < 6:
        raise ValidationError("New password must be at least 6 characters.")


def validate_phone(phone: str) -> str:
    cleaned = (phone or "").replace(" ", "")
    if not PHONE_RE.match(cleaned):
        raise ValidationError("Please enter a valid phone number.", fields={"phone_number": "invalid"})
    return cleaned


# ---------------------------------------------------------------------------
# Customer accounts
# ---------------------------------------------------------------------------

async def register_customer(
    db: AsyncSession,
    uid: str,
    username: str,
    email: str,
    phone: Optional[str] = None,
) -> CustomerAccount:
    account = CustomerAccount(
        id=uid,
        username=username,
        email=normalize_email(email),
        phone=phone.replace(" ", "") if phone else None,
        role=RoleEnum.customer.value,
        active=True,
    )
    db.add(account)
    await safe_commit(db, f"registering account={uid}")
    logger.info("Registered customer=%s", uid)
    return account


async def get_account(db: AsyncSession, uid: str) -> CustomerAccount:
    account = await db.get(CustomerAccount, uid)
    if account is None:
        raise NotFound("Account not found.")
    return account


async def deactivate_account(db: AsyncSession, uid: str) -> CustomerAccount:
    account = await get_account(db, uid)
    account.active = False
    await safe_commit(db, f"deactivating account={uid}")
    logger.info("Deactivated account=%s", uid)
    return account


async def delete_account(db: AsyncSession, uid: str) -> None:
    """Delete the profile records of a user whose provider account is gone."""
    await db.execute(delete(DriverPresence).where(DriverPresence.driver_id == uid))
    await db.execute(delete(DriverProfile).where(DriverProfile.driver_id == uid))
    await db.execute(delete(CustomerAccount).where(CustomerAccount.id == uid))
    await safe_commit(db, f"deleting account={uid}")
    logger.info("Deleted account=%s", uid)


# ---------------------------------------------------------------------------
# Driver onboarding
# ---------------------------------------------------------------------------

async def submit_application(
    db: AsyncSession,
    driver_id: str,
    full_name: str,
    phone_number: str,
    address: str,
    driver_image_url: str,
    license_photo_url: str,
    car_image_url: str,
    email: Optional[str] = None,
) -> DriverProfile:
    if not all([full_name, phone_number, address, driver_image_url, license_photo_url, car_image_url]):
        raise ValidationError("Please fill all fields and upload all photos.")
    phone_number = validate_phone(phone_number)

    status = ApprovalStatus.approved if settings.auto_approve_drivers else ApprovalStatus.pending
    profile = await db.get(DriverProfile, driver_id)
    if profile is None:
        profile = DriverProfile(driver_id=driver_id)
        db.add(profile)
    profile.full_name = full_name.strip()
    profile.phone_number = phone_number
    profile.address = address.strip()
    profile.email = email
    profile.driver_image_url = driver_image_url
    profile.license_photo_url = license_photo_url
    profile.car_image_url = car_image_url
    profile.approval_status = status.value
    profile.active = True

    account = await db.get(CustomerAccount, driver_id)
    if account is not None:
        account.role = RoleEnum.driver.value
    await safe_commit(db, f"saving application for driver={driver_id}")
    logger.info("Driver application from %s is %s", driver_id, status.value)
    return profile


async def get_driver_profile(db: AsyncSession, driver_id: str) -> DriverProfile:
    profile = await db.get(DriverProfile, driver_id, populate_existing=True)
    if profile is None:
        raise NotFound("Driver profile not found.")
    return profile


async def update_driver_profile(db: AsyncSession, driver_id: str, **changes) -> DriverProfile:
    profile = await get_driver_profile(db, driver_id)
    if changes.get("phone_number") is not None:
        changes["phone_number"] = validate_phone(changes["phone_number"])
    for field, value in changes.items():
        if value is not None:
            setattr(profile, field, value)
    await safe_commit(db, f"updating driver={driver_id}")
    return profile


async def set_approval(db: AsyncSession, driver_id: str, status: ApprovalStatus) -> DriverProfile:
    profile = await get_driver_profile(db, driver_id)
    profile.approval_status = status.value
    await safe_commit(db, f"setting approval for driver={driver_id}")
    logger.info("Driver=%s approval set to %s", driver_id, status.value)
    return profile


async def deactivate_driver(db: AsyncSession, driver_id: str) -> DriverProfile:
    profile = await get_driver_profile(db, driver_id)
    profile.active = False
    await safe_commit(db, f"deactivating driver={driver_id}")
    return profile
