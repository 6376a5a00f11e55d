from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class VehicleEnum(str, Enum):
    mini_van = "Mini Van"
    van = "Van"
    bakkie = "Bakkie"
    mini_truck = "Mini Truck"
    full_truck = "Full Truck"
    passenger_van = "Passenger Van"


class PaymentMethodEnum(str, Enum):
    cash = "cash"
    card = "card"
    apple_pay = "apple_pay"


class RideStatus(str, Enum):
    """Status of the shared dispatch-queue copy."""

    pending = "pending"
    accepted = "accepted"
    completed = "completed"
    declined = "declined"


class CustomerRideStatus(str, Enum):
    """Status of the customer's private copy."""

    pending = "pending"
    accepted = "accepted"
    completed = "completed"
    driver_declined = "driver_declined"

    @classmethod
    def mirror_of(cls, status: RideStatus) -> "CustomerRideStatus":
        if status is RideStatus.declined:
            return cls.driver_declined
        return cls(status.value)


class ApprovalStatus(str, Enum):
    not_applied = "not_applied"
    pending = "pending"
    approved = "approved"


class RoleEnum(str, Enum):
    customer = "customer"
    driver = "driver"


class PaymentStatusEnum(str, Enum):
    initiated = "initiated"
    callback_success = "callback_success"
    cancelled = "cancelled"
    failed = "failed"
    verified = "verified"


# ---------------------------------------------------------------------------
# Ride schemas
# ---------------------------------------------------------------------------

class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class QuoteRequest(BaseModel):
    pickup: str = Field(..., min_length=1, max_length=255)
    dropoff: str = Field(..., min_length=1, max_length=255)
    vehicle: VehicleEnum


class QuoteResponse(BaseModel):
    pickup_coords: Optional[Coordinates] = None
    dropoff_coords: Optional[Coordinates] = None
    distance_km: float
    base_price: float
    distance_fee: float
    price: float
    currency: str = "ZAR"


class RideCreateRequest(BaseModel):
    pickup: str = Field(..., min_length=1, max_length=255)
    dropoff: str = Field(..., min_length=1, max_length=255)
    vehicle: VehicleEnum
    payment_method: PaymentMethodEnum = PaymentMethodEnum.cash
    help_with_loading: bool = False
    scheduled_for: Optional[datetime] = None
    # skip geocoding when the client already resolved the addresses
    pickup_coords: Optional[Coordinates] = None
    dropoff_coords: Optional[Coordinates] = None

    @field_validator("pickup", "dropoff")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("address must not be blank")
        return v.strip()


class RideRequestResponse(BaseModel):
    id: str
    customer_id: str
    customer_booking_id: Optional[str] = None
    pickup: str
    dropoff: str
    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    dropoff_lat: Optional[float] = None
    dropoff_lng: Optional[float] = None
    vehicle: str
    price: Decimal
    payment_method: str
    help_with_loading: bool
    scheduled_for: Optional[datetime] = None
    status: RideStatus
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None
    booking_time: datetime
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    declined_by: Optional[str] = None

    model_config = {"from_attributes": True}


class CustomerRideResponse(BaseModel):
    id: str
    request_id: Optional[str] = None
    pickup: str
    dropoff: str
    vehicle: str
    price: Decimal
    payment_method: str
    help_with_loading: bool
    scheduled_for: Optional[datetime] = None
    status: CustomerRideStatus
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None
    booking_time: datetime
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TransitionResponse(BaseModel):
    request: RideRequestResponse
    previous_status: RideStatus
    partially_applied: bool = False
    shift_id: Optional[str] = None


class RebookRequest(BaseModel):
    payment_method: Optional[PaymentMethodEnum] = None


# ---------------------------------------------------------------------------
# Driver schemas
# ---------------------------------------------------------------------------

class DriverApplicationRequest(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=255)
    phone_number: str = Field(..., min_length=10, max_length=20)
    address: str = Field(..., min_length=2, max_length=255)
    driver_image_url: str = Field(..., min_length=1)
    license_photo_url: str = Field(..., min_length=1)
    car_image_url: str = Field(..., min_length=1)


class DriverProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    phone_number: Optional[str] = Field(default=None, min_length=10, max_length=20)
    address: Optional[str] = Field(default=None, min_length=2, max_length=255)
    driver_image_url: Optional[str] = None
    car_image_url: Optional[str] = None


class DriverProfileResponse(BaseModel):
    driver_id: str
    full_name: str
    phone_number: str
    address: str
    email: Optional[str] = None
    approval_status: ApprovalStatus
    driver_image_url: Optional[str] = None
    license_photo_url: Optional[str] = None
    car_image_url: Optional[str] = None
    active: bool

    model_config = {"from_attributes": True}


class ApprovalRequest(BaseModel):
    approval_status: ApprovalStatus


class ShiftResponse(BaseModel):
    id: str
    driver_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    total_earnings: Decimal
    completed_rides: int

    model_config = {"from_attributes": True}


class WeeklySummaryResponse(BaseModel):
    driver_id: str
    rides: int
    earnings: Decimal
    shifts: int
    currency: str = "ZAR"


class ShiftReportResponse(BaseModel):
    id: str
    week_key: str
    generated_at: datetime
    rows: list[dict]
    completed_rides: int
    total_earnings: Decimal

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Account schemas
# ---------------------------------------------------------------------------

class SignUpRequest(BaseModel):
    username: str
    email: str
    password: str
    confirm_password: str
    phone: Optional[str] = None


class SignInRequest(BaseModel):
    email: str
    password: str


class PasswordResetRequest(BaseModel):
    email: str


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str


class AccountDeleteRequest(BaseModel):
    password: str


class SessionResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    username: str
    role: RoleEnum


class AccountResponse(BaseModel):
    id: str
    username: str
    email: str
    phone: Optional[str] = None
    role: RoleEnum
    active: bool

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Payment schemas
# ---------------------------------------------------------------------------

class CheckoutRequest(BaseModel):
    request_id: str
    name_first: Optional[str] = None
    name_last: Optional[str] = None
    email: Optional[str] = None
    cell_number: Optional[str] = None


class CheckoutResponse(BaseModel):
    payment_id: str
    payment_url: str
    reference: str
    amount: str


class CallbackRequest(BaseModel):
    reference: str
    url: str


class PaymentResponse(BaseModel):
    payment_id: str
    reference: str
    status: PaymentStatusEnum
    amount: float
    currency: str
    verified: bool


# ---------------------------------------------------------------------------
# Feedback schemas
# ---------------------------------------------------------------------------

class FeedbackRequest(BaseModel):
    message: str
    # email or phone, optional
    contact: Optional[str] = None


class FeedbackResponse(BaseModel):
    id: str
    message: str
    contact: Optional[str] = None
    submitted_at: datetime

    model_config = {"from_attributes": True}
