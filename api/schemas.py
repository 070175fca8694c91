"""API Schemas - Request and Response DTOs"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID
from typing import Any, Dict, List, Optional

from domain.enums import BookingSource, PaymentMethod, PaymentType, TransactionStatus


# ============================================================================
# BOOKING SCHEMAS
# ============================================================================

class RoomGuestsRequest(BaseModel):
    """Guests placed in one room of a booking"""
    room_id: str
    guests_in_room: int = Field(ge=0)


class CreateBookingRequest(BaseModel):
    """Create booking request DTO"""
    room_ids: List[str] = Field(min_length=1)
    customer_name: str
    customer_email: str
    customer_phone: str
    check_in_date: date
    check_out_date: date
    guests_count: int = Field(ge=1)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    booking_source: BookingSource = BookingSource.DIRECT
    special_requests: Optional[str] = None
    coupon_code: Optional[str] = None
    room_breakdown: Optional[List[RoomGuestsRequest]] = None


class UpdateBookingRequest(BaseModel):
    """Update booking request DTO"""
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    guests_count: Optional[int] = Field(None, ge=1)
    special_requests: Optional[str] = None


class CheckAvailabilityRequest(BaseModel):
    """Availability pre-flight request DTO"""
    room_ids: List[str] = Field(min_length=1)
    check_in_date: date
    check_out_date: date


class CheckInRequest(BaseModel):
    """Check-in request DTO"""
    payment_method: Optional[PaymentMethod] = None
    extra_charges: Optional[Decimal] = Field(None, ge=0)
    extra_charges_description: Optional[str] = None
    notes: Optional[str] = None


class CheckOutRequest(BaseModel):
    """Check-out request DTO"""
    payment_method: Optional[PaymentMethod] = None
    extra_charges: Optional[Decimal] = Field(None, ge=0)
    extra_charges_description: Optional[str] = None


class CancelBookingRequest(BaseModel):
    """Cancel booking request DTO"""
    reason: Optional[str] = None


class RoomBreakdownResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    room_id: str
    room_number: Optional[str] = None
    guests_in_room: int
    price_per_night: Decimal
    nights: int
    subtotal: Decimal


class BookingResponse(BaseModel):
    """Booking response DTO"""
    model_config = ConfigDict(from_attributes=True)

    reservation_id: UUID
    booking_reference: str
    hotel_id: str
    room_ids: List[str]
    total_rooms: int
    room_breakdown: List[RoomBreakdownResponse]
    customer_name: str
    customer_email: str
    customer_phone: str
    guests_count: int
    check_in_date: date
    check_out_date: date
    actual_check_in: Optional[datetime] = None
    actual_check_out: Optional[datetime] = None
    early_check_in: bool
    late_check_out: bool
    checked_in_by: Optional[str] = None
    checked_out_by: Optional[str] = None
    status: str
    booking_source: str
    special_requests: str
    coupon_code: Optional[str] = None
    total_amount: Decimal
    discount_amount: Decimal
    extra_charges: Decimal
    extra_charges_description: Optional[str] = None
    paid_amount: Decimal
    pending_amount: Decimal
    payment_status: str
    payment_method: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    created_by: str
    version: int


class RoomDetailResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    room_id: str
    room_number: str
    floor: int
    category_name: Optional[str] = None
    status: str
    price_per_night: Optional[Decimal] = None
    max_occupancy: Optional[int] = None
    guests_in_room: Optional[int] = None
    nights: Optional[int] = None
    subtotal: Optional[Decimal] = None
    changed: bool = False


class BookingSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_rooms: int
    nights: int
    subtotal: Decimal
    discount: Decimal
    total: Decimal


class CreateBookingResponse(BaseModel):
    """Created booking with its priced rooms"""
    booking: BookingResponse
    room_details: List[RoomDetailResponse]
    booking_summary: BookingSummaryResponse


class BookingDetailResponse(BaseModel):
    booking: BookingResponse
    room_details: List[RoomDetailResponse]


class TransitionResponse(BaseModel):
    """Booking after a lifecycle transition plus the rooms it holds"""
    message: str
    booking: BookingResponse
    rooms: List[RoomDetailResponse]
    actual_nights_stayed: Optional[int] = None
    billing: Optional[Dict[str, Any]] = None


class RoomAvailabilityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    room_id: str
    room_number: Optional[str] = None
    room_status: Optional[str] = None
    price_per_night: Optional[Decimal] = None
    subtotal: Optional[Decimal] = None
    available: bool
    reason: Optional[str] = None


class AvailabilityResponse(BaseModel):
    """Availability pre-flight response DTO"""
    model_config = ConfigDict(from_attributes=True)

    available: bool
    nights: int
    estimated_total: Decimal
    errors: List[str] = []
    rooms: List[RoomAvailabilityResponse]


# ============================================================================
# PAYMENT SCHEMAS
# ============================================================================

class AddPaymentRequest(BaseModel):
    """Add payment request DTO"""
    booking_id: UUID
    amount: Decimal = Field(gt=0)
    payment_method: PaymentMethod
    payment_type: PaymentType = PaymentType.BOOKING
    external_transaction_id: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None

    @field_validator('amount')
    @classmethod
    def two_decimal_places(cls, v: Decimal) -> Decimal:
        if v.as_tuple().exponent < -2:
            raise ValueError('Amount cannot have more than 2 decimal places')
        return v


class RefundPaymentRequest(BaseModel):
    """Refund payment request DTO"""
    notes: Optional[str] = None


class TransactionResponse(BaseModel):
    """Settlement transaction response DTO"""
    model_config = ConfigDict(from_attributes=True)

    transaction_id: UUID
    hotel_id: str
    reservation_id: UUID
    amount: Decimal
    payment_method: str
    status: str
    payment_type: str
    payment_date: datetime
    external_transaction_id: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    processed_by: Optional[str] = None
    receipt_number: str


class PaymentResponse(BaseModel):
    """Payment plus the booking's settlement after it was applied"""
    message: str
    payment: TransactionResponse
    booking: BookingResponse


class PaymentListItem(BaseModel):
    payment: TransactionResponse
    booking_info: Dict[str, Any] = {}


class PaymentListResponse(BaseModel):
    payments: List[PaymentListItem]
    summary: Dict[str, Any]


class BookingPaymentsResponse(BaseModel):
    payments: List[TransactionResponse]
    summary: Dict[str, Any]


# ============================================================================
# AUTH SCHEMAS
# ============================================================================

class Token(BaseModel):
    """Token response DTO"""
    access_token: str
    token_type: str

class TokenData(BaseModel):
    """Token payload DTO"""
    username: Optional[str] = None
    hotel_id: Optional[str] = None

class UserResponse(BaseModel):
    """User response DTO"""
    user_id: UUID
    username: str
    hotel_id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    disabled: bool
