"""Domain Entities - Aggregates"""
import math
import random
import string
from datetime import datetime, date, time, timezone
from decimal import Decimal
from typing import Dict, Optional, List
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from domain.enums import (
    ReservationStatus, RoomStatus, BookingSource, PaymentStatus, PaymentMethod,
    TransactionStatus, PaymentType, TERMINAL_STATUSES, UNBOOKABLE_ROOM_STATUSES,
)
from domain.exceptions import (
    InvalidAmount, InvalidStateTransition, OccupancyExceeded, Overpayment, PaymentRejected,
)
from domain.value_objects import DateRange, GuestInfo, RoomBreakdownEntry

ZERO = Decimal("0")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_booking_reference(hotel_id: str, day: date, sequence: int) -> str:
    """HOTEL-YYYYMMDD-XXXX, the format downstream consumers parse"""
    return f"{hotel_id[-4:].upper()}-{day.strftime('%Y%m%d')}-{str(sequence).zfill(4)}"


class RoomCategory(BaseModel):
    """Room category as published by the room catalog"""
    model_config = ConfigDict(from_attributes=True)

    category_id: str
    hotel_id: str
    category_name: str
    max_occupancy: int = Field(ge=1)
    base_price: Optional[Decimal] = None


class Room(BaseModel):
    """Physical room as published by the room catalog"""
    model_config = ConfigDict(from_attributes=True)

    room_id: str
    hotel_id: str
    room_number: str
    floor: int = 0
    category_id: str
    status: RoomStatus = RoomStatus.AVAILABLE
    current_price: Decimal = Field(ge=0)
    last_updated: datetime = Field(default_factory=utcnow)

    def is_bookable(self) -> bool:
        return self.status not in UNBOOKABLE_ROOM_STATUSES

    def occupy(self) -> bool:
        """Mark room occupied; returns True when the status changed"""
        if self.status == RoomStatus.OCCUPIED:
            return False
        self.status = RoomStatus.OCCUPIED
        self.last_updated = utcnow()
        return True

    def release(self) -> bool:
        """Free an occupied room; rooms under maintenance stay where they are"""
        if self.status != RoomStatus.OCCUPIED:
            return False
        self.status = RoomStatus.AVAILABLE
        self.last_updated = utcnow()
        return True


class Reservation(BaseModel):
    """Reservation Aggregate Root Entity"""
    model_config = ConfigDict(from_attributes=True)

    # Identity
    reservation_id: UUID = Field(default_factory=uuid4)
    booking_reference: str
    hotel_id: str

    # Room set
    room_ids: List[str]
    room_breakdown: List[RoomBreakdownEntry]

    # Guest
    customer_name: str
    customer_email: str
    customer_phone: str
    guests_count: int = Field(ge=1)

    # Stay window
    check_in_date: date
    check_out_date: date
    actual_check_in: Optional[datetime] = None
    actual_check_out: Optional[datetime] = None
    early_check_in: bool = False
    late_check_out: bool = False
    checked_in_by: Optional[str] = None
    checked_out_by: Optional[str] = None

    # Status
    status: ReservationStatus = ReservationStatus.CONFIRMED
    booking_source: BookingSource = BookingSource.DIRECT
    special_requests: str = ""
    coupon_code: Optional[str] = None

    # Money
    total_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    extra_charges: Decimal = ZERO
    extra_charges_description: Optional[str] = None
    paid_amount: Decimal = ZERO
    pending_amount: Decimal = ZERO
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: Optional[PaymentMethod] = None

    # Metadata
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    created_by: str = "SYSTEM"
    version: int = 1

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create(
        hotel_id: str,
        booking_reference: str,
        room_breakdown: List[RoomBreakdownEntry],
        guest: GuestInfo,
        date_range: DateRange,
        guests_count: int,
        discount_amount: Decimal = ZERO,
        booking_source: BookingSource = BookingSource.DIRECT,
        special_requests: Optional[str] = None,
        coupon_code: Optional[str] = None,
        created_by: str = "SYSTEM",
        now: Optional[datetime] = None,
    ) -> "Reservation":
        """Create a confirmed reservation from an already validated room set"""
        if discount_amount < 0:
            raise InvalidAmount("Discount cannot be negative", discount_amount=discount_amount)

        now = now or utcnow()
        reservation = Reservation(
            booking_reference=booking_reference,
            hotel_id=hotel_id,
            room_ids=[entry.room_id for entry in room_breakdown],
            room_breakdown=room_breakdown,
            customer_name=guest.name,
            customer_email=guest.email,
            customer_phone=guest.phone,
            guests_count=guests_count,
            check_in_date=date_range.check_in,
            check_out_date=date_range.check_out,
            booking_source=booking_source,
            special_requests=special_requests or "",
            coupon_code=coupon_code,
            discount_amount=discount_amount,
            created_at=now,
            updated_at=now,
            created_by=created_by,
        )
        reservation._apply_pricing()
        return reservation

    # ==================== QUERY METHODS ====================
    @property
    def total_rooms(self) -> int:
        return len(self.room_ids)

    @property
    def date_range(self) -> DateRange:
        return DateRange(check_in=self.check_in_date, check_out=self.check_out_date)

    @property
    def subtotal(self) -> Decimal:
        return sum((entry.subtotal for entry in self.room_breakdown), ZERO)

    @property
    def grand_total(self) -> Decimal:
        return self.total_amount + self.extra_charges

    def get_nights(self) -> int:
        return (self.check_out_date - self.check_in_date).days

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_modifiable(self) -> bool:
        return not self.is_terminal()

    def actual_nights(self) -> Optional[int]:
        if not (self.actual_check_in and self.actual_check_out):
            return None
        seconds = (self.actual_check_out - self.actual_check_in).total_seconds()
        return max(1, math.ceil(seconds / 86400))

    # ==================== SETTLEMENT PROJECTION ====================
    def recompute_settlement(self) -> None:
        """Derive pending amount and payment status from the stored amounts.

        Runs after every change to paid_amount, total_amount or extra_charges.
        A cancelled booking that was flagged refunded keeps that flag.
        """
        self.pending_amount = max(ZERO, self.total_amount + self.extra_charges - self.paid_amount)

        if self.status == ReservationStatus.CANCELLED and self.payment_status == PaymentStatus.REFUNDED:
            return
        if self.pending_amount <= 0:
            self.payment_status = PaymentStatus.PAID
        elif self.paid_amount > 0:
            self.payment_status = PaymentStatus.PARTIAL
        else:
            self.payment_status = PaymentStatus.PENDING

    def record_payment(self, amount: Decimal, method: Optional[PaymentMethod] = None) -> None:
        """Apply a successful settlement transaction"""
        if self.status == ReservationStatus.CANCELLED:
            raise PaymentRejected(
                "Cannot add payment to cancelled booking",
                booking_reference=self.booking_reference,
            )
        if amount <= 0:
            raise InvalidAmount("Payment amount must be greater than 0", amount=amount)

        self.recompute_settlement()
        if amount > self.pending_amount:
            raise Overpayment(amount=amount, pending=self.pending_amount)

        self.paid_amount += amount
        if method is not None:
            self.payment_method = method
        self.recompute_settlement()
        self._touch()

    def reverse_payment(self, amount: Decimal) -> None:
        """Take back the contribution of a refunded or deleted transaction"""
        self.paid_amount = max(ZERO, self.paid_amount - amount)
        self.recompute_settlement()
        self._touch()

    def add_extra_charges(self, amount: Decimal, description: Optional[str], default_description: str) -> None:
        if amount < 0:
            raise InvalidAmount("Extra charges cannot be negative", extra_charges=amount)
        if amount == 0:
            return
        self.extra_charges += amount
        desc = description or default_description
        self.extra_charges_description = (
            f"{self.extra_charges_description}; {desc}" if self.extra_charges_description else desc
        )
        self.recompute_settlement()

    # ==================== STATE TRANSITION METHODS ====================
    def check_in(
        self,
        actor: str,
        now: datetime,
        payment_method: Optional[PaymentMethod] = None,
        extra_charges: Optional[Decimal] = None,
        extra_charges_description: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> None:
        """Mark guest as arrived"""
        if self.status == ReservationStatus.CHECKED_IN:
            raise InvalidStateTransition("Guest already checked in", self.status.value, ReservationStatus.CHECKED_IN.value)
        if self.status != ReservationStatus.CONFIRMED:
            raise InvalidStateTransition(
                f"Cannot check-in {self.status.value} booking",
                self.status.value,
                ReservationStatus.CHECKED_IN.value,
            )

        self.status = ReservationStatus.CHECKED_IN
        self.actual_check_in = now
        self.checked_in_by = actor
        self.early_check_in = now.date() < self.check_in_date

        if payment_method is not None:
            self.payment_method = payment_method
        if extra_charges:
            self.add_extra_charges(extra_charges, extra_charges_description, "Additional charges")
        if notes:
            self._append_note(f"Check-in Notes: {notes}")
        self._touch(now)

    def check_out(
        self,
        actor: str,
        now: datetime,
        late_check_out_hour: int = 12,
        payment_method: Optional[PaymentMethod] = None,
        extra_charges: Optional[Decimal] = None,
        extra_charges_description: Optional[str] = None,
    ) -> int:
        """Process guest departure; returns actual nights stayed"""
        if self.status != ReservationStatus.CHECKED_IN:
            messages = {
                ReservationStatus.CONFIRMED: "Guest has not checked in yet",
                ReservationStatus.CHECKED_OUT: "Guest already checked out",
            }
            raise InvalidStateTransition(
                messages.get(self.status, f"Cannot check-out {self.status.value} booking"),
                self.status.value,
                ReservationStatus.CHECKED_OUT.value,
            )

        self.status = ReservationStatus.CHECKED_OUT
        self.actual_check_out = now
        self.checked_out_by = actor

        deadline = datetime.combine(self.check_out_date, time(hour=late_check_out_hour), tzinfo=now.tzinfo)
        self.late_check_out = now > deadline

        if payment_method is not None:
            self.payment_method = payment_method
        if extra_charges:
            self.add_extra_charges(extra_charges, extra_charges_description, "Additional checkout charges")
        self._touch(now)
        return self.actual_nights()

    def cancel(self, reason: Optional[str] = None, now: Optional[datetime] = None) -> None:
        """Cancel before arrival"""
        if self.status == ReservationStatus.CHECKED_IN:
            raise InvalidStateTransition(
                "Cannot cancel booking - guest is currently checked in. Please check-out first.",
                self.status.value,
                ReservationStatus.CANCELLED.value,
            )
        if self.status != ReservationStatus.CONFIRMED:
            messages = {
                ReservationStatus.CANCELLED: "Booking is already cancelled",
                ReservationStatus.CHECKED_OUT: "Cannot cancel completed booking",
            }
            raise InvalidStateTransition(
                messages.get(self.status, f"Cannot cancel {self.status.value} booking"),
                self.status.value,
                ReservationStatus.CANCELLED.value,
            )

        self.status = ReservationStatus.CANCELLED
        if self.payment_status == PaymentStatus.PAID:
            self.payment_status = PaymentStatus.REFUNDED
        if reason:
            self._append_note(f"Cancellation reason: {reason}")
        self._touch(now)

    def mark_no_show(self, now: Optional[datetime] = None) -> None:
        """Guest never arrived"""
        if self.status != ReservationStatus.CONFIRMED:
            messages = {
                ReservationStatus.CHECKED_IN: "Guest has already checked in",
                ReservationStatus.CHECKED_OUT: "Booking already completed",
            }
            raise InvalidStateTransition(
                messages.get(self.status, f"Cannot mark {self.status.value} booking as no-show"),
                self.status.value,
                ReservationStatus.NO_SHOW.value,
            )

        self.status = ReservationStatus.NO_SHOW
        self._touch(now)

    # ==================== MODIFICATION METHODS ====================
    def reschedule(self, date_range: DateRange, room_breakdown: List[RoomBreakdownEntry],
                   now: Optional[datetime] = None) -> None:
        """Move the stay window; breakdown must be re-priced for the new nights"""
        self.ensure_reschedulable()
        self.check_in_date = date_range.check_in
        self.check_out_date = date_range.check_out
        self.room_breakdown = room_breakdown
        self._apply_pricing()
        self._touch(now)

    def ensure_reschedulable(self) -> None:
        """Dates can move until the reservation reaches a terminal status"""
        self._ensure_modifiable()

    def update_contact(
        self,
        customer_name: Optional[str] = None,
        customer_email: Optional[str] = None,
        customer_phone: Optional[str] = None,
        special_requests: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        self._ensure_modifiable()
        if customer_email:
            GuestInfo.validate_email(customer_email)
            self.customer_email = customer_email.strip()
        if customer_name:
            self.customer_name = customer_name.strip()
        if customer_phone:
            self.customer_phone = customer_phone.strip()
        if special_requests is not None:
            self.special_requests = special_requests
        self._touch(now)

    def change_guest_count(
        self,
        guests_count: int,
        max_occupancy: int,
        placement: Optional[Dict[str, int]] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """Set the party size; placement maps room id to guests in that room"""
        self._ensure_modifiable()
        if guests_count < 1:
            raise InvalidAmount("At least 1 guest is required", guests_count=guests_count)
        if guests_count > max_occupancy:
            raise OccupancyExceeded(max_occupancy=max_occupancy, requested=guests_count)
        self.guests_count = guests_count
        if placement is not None:
            self.room_breakdown = [
                entry.model_copy(update={"guests_in_room": placement.get(entry.room_id, 0)})
                for entry in self.room_breakdown
            ]
        self._touch(now)

    # ==================== PRIVATE METHODS ====================
    def _apply_pricing(self) -> None:
        self.total_amount = max(ZERO, self.subtotal - self.discount_amount)
        self.recompute_settlement()

    def _ensure_modifiable(self) -> None:
        if self.is_terminal():
            raise InvalidStateTransition(
                f"Cannot update {self.status.value} booking",
                self.status.value,
            )

    def _append_note(self, note: str) -> None:
        self.special_requests = f"{self.special_requests}\n\n{note}" if self.special_requests else note

    def _touch(self, now: Optional[datetime] = None) -> None:
        self.updated_at = now or utcnow()
        self.version += 1


class SettlementTransaction(BaseModel):
    """One discrete payment recorded against a reservation"""
    model_config = ConfigDict(from_attributes=True)

    transaction_id: UUID = Field(default_factory=uuid4)
    hotel_id: str
    reservation_id: UUID
    amount: Decimal = Field(gt=0)
    payment_method: PaymentMethod
    status: TransactionStatus = TransactionStatus.SUCCESS
    payment_type: PaymentType = PaymentType.BOOKING
    payment_date: datetime = Field(default_factory=utcnow)
    external_transaction_id: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    processed_by: Optional[str] = None
    receipt_number: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @staticmethod
    def generate_receipt_number(day: date) -> str:
        suffix = ''.join(random.choices(string.ascii_uppercase + string.digits, k=6))
        return f"RCP-{day.strftime('%Y%m%d')}-{suffix}"

    def is_refundable(self) -> bool:
        return self.status == TransactionStatus.SUCCESS

    def refund(self, notes: Optional[str] = None, now: Optional[datetime] = None) -> None:
        if self.status == TransactionStatus.REFUNDED:
            raise PaymentRejected("Payment is already refunded", transaction_id=str(self.transaction_id))
        if not self.is_refundable():
            raise PaymentRejected(
                "Only successful payments can be refunded",
                transaction_id=str(self.transaction_id),
                status=self.status.value,
            )
        self.status = TransactionStatus.REFUNDED
        if notes:
            self.notes = notes
        self.updated_at = now or utcnow()
