"""Domain Value Objects"""
import re
from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, ValidationInfo

from domain.exceptions import InvalidGuestInfo

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class DateRange(BaseModel):
    """Half-open stay window [check_in, check_out)"""
    model_config = ConfigDict(frozen=True)

    check_in: date
    check_out: date

    @field_validator('check_out')
    @classmethod
    def check_out_after_check_in(cls, v: date, info: ValidationInfo) -> date:
        check_in = info.data.get('check_in')
        if check_in is not None and v <= check_in:
            raise ValueError('Check-out must be after check-in')
        return v

    def nights(self) -> int:
        """Calculate number of nights"""
        return (self.check_out - self.check_in).days

    def overlaps(self, check_in: date, check_out: date) -> bool:
        """A check-out on day D does not collide with a check-in on day D"""
        return self.check_in < check_out and check_in < self.check_out

    def contains(self, day: date) -> bool:
        return self.check_in <= day < self.check_out


class StayValidation(BaseModel):
    """Outcome of a stay-window check; nights is reported even when invalid"""
    is_valid: bool
    errors: List[str] = []
    nights: int


class StayPolicy(BaseModel):
    """Hotel policy limits for a stay window"""
    model_config = ConfigDict(frozen=True)

    min_nights: int = Field(default=1, ge=1)
    max_nights: int = Field(default=30, ge=1)
    late_check_out_hour: int = Field(default=12, ge=0, le=23)

    def validate_window(self, check_in: date, check_out: date, today: date,
                        allow_past_check_in: bool = False) -> StayValidation:
        errors = []
        nights = (check_out - check_in).days

        if check_in < today and not allow_past_check_in:
            errors.append("Check-in date cannot be in the past")
        if check_out <= check_in:
            errors.append("Check-out date must be after check-in date")
        if nights < self.min_nights:
            errors.append(f"Minimum stay is {self.min_nights} night{'s' if self.min_nights > 1 else ''}")
        if nights > self.max_nights:
            errors.append(f"Maximum stay is {self.max_nights} nights")

        return StayValidation(is_valid=not errors, errors=errors, nights=nights)


class GuestInfo(BaseModel):
    """Contact details of the lead guest"""
    model_config = ConfigDict(frozen=True)

    name: str
    email: str
    phone: str

    @staticmethod
    def create(name: Optional[str], email: Optional[str], phone: Optional[str]) -> "GuestInfo":
        """Build guest info, rejecting missing fields and malformed email"""
        missing = [
            label for label, value in (("customer_name", name), ("customer_email", email), ("customer_phone", phone))
            if not value or not str(value).strip()
        ]
        if missing:
            raise InvalidGuestInfo(f"Missing required field(s): {', '.join(missing)}", fields=missing)
        GuestInfo.validate_email(email)
        return GuestInfo(name=name.strip(), email=email.strip(), phone=phone.strip())

    @staticmethod
    def validate_email(email: str) -> None:
        if not EMAIL_PATTERN.match(email.strip()):
            raise InvalidGuestInfo(f"Invalid email format: {email}", email=email)


class RoomBreakdownEntry(BaseModel):
    """Per-room pricing line of a reservation"""
    model_config = ConfigDict(from_attributes=True)

    room_id: str
    room_number: Optional[str] = None
    guests_in_room: int = Field(default=0, ge=0)
    price_per_night: Decimal
    nights: int = Field(ge=0)
    subtotal: Decimal

    @staticmethod
    def price(room_id: str, room_number: Optional[str], price_per_night: Decimal,
              nights: int, guests_in_room: int = 0) -> "RoomBreakdownEntry":
        return RoomBreakdownEntry(
            room_id=room_id,
            room_number=room_number,
            guests_in_room=guests_in_room,
            price_per_night=price_per_night,
            nights=nights,
            subtotal=price_per_night * nights,
        )
