"""
Domain layer tests: value objects, the Reservation aggregate and settlement
transactions. No store or services involved.
"""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from domain.entities import Reservation, Room, SettlementTransaction, format_booking_reference
from domain.enums import (
    ReservationStatus, RoomStatus, PaymentStatus, PaymentMethod, TransactionStatus,
)
from domain.exceptions import (
    InvalidAmount, InvalidGuestInfo, InvalidStateTransition, OccupancyExceeded, Overpayment,
    PaymentRejected, RoomUnavailable, InvalidDateRange, ReservationEngineError,
)
from domain.value_objects import DateRange, GuestInfo, RoomBreakdownEntry, StayPolicy

NOW = datetime(2026, 1, 5, 9, tzinfo=timezone.utc)


def _at(day: date, hour: int) -> datetime:
    return datetime(day.year, day.month, day.day, hour, tzinfo=timezone.utc)


@pytest.fixture
def guest():
    return GuestInfo.create("Asha Rao", "asha@example.com", "+91 98450 00000")


@pytest.fixture
def reservation(guest):
    """Two rooms, two nights, 1000/night each"""
    breakdown = [
        RoomBreakdownEntry.price("room-101", "101", Decimal("1000"), 2, 2),
        RoomBreakdownEntry.price("room-102", "102", Decimal("1000"), 2, 1),
    ]
    return Reservation.create(
        hotel_id="hotel-demo-0001",
        booking_reference="0001-20260105-0001",
        room_breakdown=breakdown,
        guest=guest,
        date_range=DateRange(check_in=date(2026, 1, 10), check_out=date(2026, 1, 12)),
        guests_count=3,
        now=NOW,
    )


# ============================================================================
# VALUE OBJECTS
# ============================================================================

class TestDateRange:

    @pytest.mark.unit
    @pytest.mark.domain
    def test_nights(self):
        assert DateRange(check_in=date(2026, 1, 10), check_out=date(2026, 1, 12)).nights() == 2

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_check_out_must_follow_check_in(self):
        with pytest.raises(ValidationError):
            DateRange(check_in=date(2026, 1, 10), check_out=date(2026, 1, 10))

    @pytest.mark.unit
    @pytest.mark.domain
    def test_overlap_is_half_open(self):
        stay = DateRange(check_in=date(2026, 1, 10), check_out=date(2026, 1, 12))
        assert stay.overlaps(date(2026, 1, 11), date(2026, 1, 13))
        assert stay.overlaps(date(2026, 1, 9), date(2026, 1, 11))
        assert not stay.overlaps(date(2026, 1, 12), date(2026, 1, 14))
        assert not stay.overlaps(date(2026, 1, 8), date(2026, 1, 10))

    @pytest.mark.unit
    @pytest.mark.domain
    def test_contains_excludes_check_out_day(self):
        stay = DateRange(check_in=date(2026, 1, 10), check_out=date(2026, 1, 12))
        assert stay.contains(date(2026, 1, 11))
        assert not stay.contains(date(2026, 1, 12))


class TestStayPolicy:

    @pytest.mark.unit
    @pytest.mark.domain
    def test_valid_window(self):
        result = StayPolicy().validate_window(date(2026, 1, 10), date(2026, 1, 12), date(2026, 1, 5))
        assert result.is_valid
        assert result.nights == 2
        assert result.errors == []

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_past_check_in_rejected(self):
        result = StayPolicy().validate_window(date(2026, 1, 4), date(2026, 1, 6), date(2026, 1, 5))
        assert not result.is_valid
        assert "Check-in date cannot be in the past" in result.errors

    @pytest.mark.unit
    @pytest.mark.domain
    def test_kept_past_check_in_allowed(self):
        result = StayPolicy().validate_window(
            date(2026, 1, 4), date(2026, 1, 8), date(2026, 1, 5), allow_past_check_in=True
        )
        assert result.is_valid
        assert result.nights == 4

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_reversed_window_reports_every_reason(self):
        result = StayPolicy().validate_window(date(2026, 1, 10), date(2026, 1, 9), date(2026, 1, 5))
        assert not result.is_valid
        assert result.nights == -1
        assert "Check-out date must be after check-in date" in result.errors
        assert "Minimum stay is 1 night" in result.errors

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_maximum_stay(self):
        policy = StayPolicy()
        assert policy.validate_window(date(2026, 1, 10), date(2026, 2, 9), date(2026, 1, 5)).is_valid
        result = policy.validate_window(date(2026, 1, 10), date(2026, 2, 10), date(2026, 1, 5))
        assert result.errors == ["Maximum stay is 30 nights"]

    @pytest.mark.unit
    @pytest.mark.domain
    def test_same_day_check_in_allowed(self):
        assert StayPolicy().validate_window(date(2026, 1, 5), date(2026, 1, 6), date(2026, 1, 5)).is_valid


class TestGuestInfo:

    @pytest.mark.unit
    @pytest.mark.domain
    def test_create_strips_whitespace(self):
        guest = GuestInfo.create("  Asha ", " asha@example.com ", " 123 ")
        assert guest.name == "Asha"
        assert guest.email == "asha@example.com"
        assert guest.phone == "123"

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    @pytest.mark.parametrize("email", ["asha", "asha@", "asha@example", "as ha@example.com"])
    def test_invalid_email(self, email):
        with pytest.raises(InvalidGuestInfo, match="Invalid email format"):
            GuestInfo.create("Asha", email, "123")

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_missing_fields_are_named(self):
        with pytest.raises(InvalidGuestInfo) as exc:
            GuestInfo.create("", "asha@example.com", None)
        assert exc.value.details["fields"] == ["customer_name", "customer_phone"]


class TestRoomBreakdownEntry:

    @pytest.mark.unit
    @pytest.mark.domain
    def test_price(self):
        entry = RoomBreakdownEntry.price("room-101", "101", Decimal("1250.50"), 3, 2)
        assert entry.subtotal == Decimal("3751.50")
        assert entry.guests_in_room == 2


class TestBookingReference:

    @pytest.mark.unit
    @pytest.mark.domain
    def test_format(self):
        assert format_booking_reference("hotel-demo-ab12", date(2026, 1, 5), 7) == "AB12-20260105-0007"


class TestErrors:

    @pytest.mark.unit
    @pytest.mark.domain
    def test_domain_errors_are_value_errors(self):
        assert isinstance(RoomUnavailable(["101"]), ValueError)

    @pytest.mark.unit
    @pytest.mark.domain
    def test_to_dict_carries_details(self):
        payload = Overpayment(amount=Decimal("1"), pending=Decimal("0")).to_dict()
        assert payload["error"] == "overpayment"
        assert payload["amount"] == 1.0
        assert payload["pending"] == 0.0

    @pytest.mark.unit
    @pytest.mark.domain
    def test_occupancy_details(self):
        payload = OccupancyExceeded(max_occupancy=4, requested=5).to_dict()
        assert payload["max"] == 4
        assert payload["requested"] == 5

    @pytest.mark.unit
    @pytest.mark.domain
    def test_invalid_date_range_lists_reasons(self):
        error = InvalidDateRange(["a", "b"])
        assert error.reasons == ["a", "b"]
        assert isinstance(error, ReservationEngineError)


# ============================================================================
# ROOM
# ============================================================================

class TestRoom:

    @pytest.mark.unit
    @pytest.mark.domain
    def test_occupy_and_release(self):
        room = Room(room_id="r", hotel_id="h", room_number="1", category_id="c", current_price=Decimal("1"))
        assert room.occupy()
        assert not room.occupy()
        assert room.release()
        assert room.status == RoomStatus.AVAILABLE

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_release_leaves_maintenance_alone(self):
        room = Room(room_id="r", hotel_id="h", room_number="1", category_id="c",
                    current_price=Decimal("1"), status=RoomStatus.MAINTENANCE)
        assert not room.is_bookable()
        assert not room.release()
        assert room.status == RoomStatus.MAINTENANCE


# ============================================================================
# RESERVATION AGGREGATE
# ============================================================================

class TestReservationCreation:

    @pytest.mark.unit
    @pytest.mark.domain
    def test_totals(self, reservation):
        assert reservation.status == ReservationStatus.CONFIRMED
        assert reservation.total_rooms == 2
        assert reservation.subtotal == Decimal("4000")
        assert reservation.total_amount == Decimal("4000")
        assert reservation.pending_amount == Decimal("4000")
        assert reservation.payment_status == PaymentStatus.PENDING
        assert reservation.version == 1

    @pytest.mark.unit
    @pytest.mark.domain
    def test_discount_keeps_breakdown_unchanged(self, guest):
        breakdown = [RoomBreakdownEntry.price("room-101", "101", Decimal("1000"), 2)]
        reservation = Reservation.create(
            "hotel-demo-0001", "REF", breakdown, guest,
            DateRange(check_in=date(2026, 1, 10), check_out=date(2026, 1, 12)), 1,
            discount_amount=Decimal("300"),
        )
        assert reservation.total_amount == Decimal("1700")
        assert reservation.subtotal == reservation.total_amount + reservation.discount_amount

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_discount_larger_than_subtotal_floors_at_zero(self, guest):
        breakdown = [RoomBreakdownEntry.price("room-101", "101", Decimal("100"), 1)]
        reservation = Reservation.create(
            "hotel-demo-0001", "REF", breakdown, guest,
            DateRange(check_in=date(2026, 1, 10), check_out=date(2026, 1, 11)), 1,
            discount_amount=Decimal("500"),
        )
        assert reservation.total_amount == Decimal("0")
        assert reservation.pending_amount == Decimal("0")
        assert reservation.payment_status == PaymentStatus.PAID
        assert reservation.status == ReservationStatus.CONFIRMED

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_negative_discount_rejected(self, guest):
        breakdown = [RoomBreakdownEntry.price("room-101", "101", Decimal("100"), 1)]
        with pytest.raises(InvalidAmount):
            Reservation.create(
                "hotel-demo-0001", "REF", breakdown, guest,
                DateRange(check_in=date(2026, 1, 10), check_out=date(2026, 1, 11)), 1,
                discount_amount=Decimal("-1"),
            )


class TestReservationSettlement:

    @pytest.mark.unit
    @pytest.mark.domain
    def test_partial_then_paid(self, reservation):
        reservation.record_payment(Decimal("1500"), PaymentMethod.CASH)
        assert reservation.payment_status == PaymentStatus.PARTIAL
        assert reservation.pending_amount == Decimal("2500")
        assert reservation.payment_method == PaymentMethod.CASH

        reservation.record_payment(Decimal("2500"), PaymentMethod.UPI)
        assert reservation.payment_status == PaymentStatus.PAID
        assert reservation.pending_amount == Decimal("0")

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_overpayment_rejected_without_change(self, reservation):
        reservation.record_payment(Decimal("4000"))
        version = reservation.version
        with pytest.raises(Overpayment) as exc:
            reservation.record_payment(Decimal("1"))
        assert exc.value.pending == Decimal("0")
        assert reservation.paid_amount == Decimal("4000")
        assert reservation.version == version

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
    def test_non_positive_payment_rejected(self, reservation, amount):
        with pytest.raises(InvalidAmount):
            reservation.record_payment(amount)

    @pytest.mark.unit
    @pytest.mark.domain
    def test_reverse_payment_floors_at_zero(self, reservation):
        reservation.record_payment(Decimal("1000"))
        reservation.reverse_payment(Decimal("5000"))
        assert reservation.paid_amount == Decimal("0")
        assert reservation.payment_status == PaymentStatus.PENDING
        assert reservation.pending_amount == Decimal("4000")

    @pytest.mark.unit
    @pytest.mark.domain
    def test_extra_charges_reopen_balance(self, reservation):
        reservation.record_payment(Decimal("4000"))
        reservation.add_extra_charges(Decimal("250"), "Minibar", "Additional charges")
        assert reservation.grand_total == Decimal("4250")
        assert reservation.pending_amount == Decimal("250")
        assert reservation.payment_status == PaymentStatus.PARTIAL

    @pytest.mark.unit
    @pytest.mark.domain
    def test_cancelling_paid_booking_flags_refunded(self, reservation):
        reservation.record_payment(Decimal("4000"))
        reservation.cancel("Flight cancelled", NOW)
        assert reservation.payment_status == PaymentStatus.REFUNDED
        reservation.recompute_settlement()
        assert reservation.payment_status == PaymentStatus.REFUNDED

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_payment_on_cancelled_booking_rejected(self, reservation):
        reservation.cancel(None, NOW)
        with pytest.raises(PaymentRejected, match="cancelled"):
            reservation.record_payment(Decimal("10"))


class TestReservationLifecycle:

    @pytest.mark.unit
    @pytest.mark.domain
    def test_check_in_on_arrival_day(self, reservation):
        reservation.check_in("Front Desk", _at(date(2026, 1, 10), 14))
        assert reservation.status == ReservationStatus.CHECKED_IN
        assert reservation.checked_in_by == "Front Desk"
        assert not reservation.early_check_in

    @pytest.mark.unit
    @pytest.mark.domain
    def test_early_check_in(self, reservation):
        reservation.check_in("Front Desk", _at(date(2026, 1, 9), 20))
        assert reservation.early_check_in

    @pytest.mark.unit
    @pytest.mark.domain
    def test_check_in_extras_and_notes(self, reservation):
        reservation.special_requests = "Late arrival"
        reservation.check_in(
            "Front Desk", _at(date(2026, 1, 10), 14),
            payment_method=PaymentMethod.CARD,
            extra_charges=Decimal("300"),
            notes="Extra pillows",
        )
        assert reservation.extra_charges == Decimal("300")
        assert reservation.extra_charges_description == "Additional charges"
        assert reservation.pending_amount == Decimal("4300")
        assert reservation.special_requests == "Late arrival\n\nCheck-in Notes: Extra pillows"

    @pytest.mark.unit
    @pytest.mark.domain
    def test_check_out_adds_extras_and_counts_nights(self, reservation):
        reservation.check_in("Front Desk", _at(date(2026, 1, 10), 14), extra_charges=Decimal("100"),
                             extra_charges_description="Airport pickup")
        nights = reservation.check_out("Front Desk", _at(date(2026, 1, 12), 11),
                                       extra_charges=Decimal("50"), extra_charges_description="Laundry")
        assert nights == 2
        assert reservation.status == ReservationStatus.CHECKED_OUT
        assert reservation.extra_charges == Decimal("150")
        assert reservation.extra_charges_description == "Airport pickup; Laundry"
        assert not reservation.late_check_out

    @pytest.mark.unit
    @pytest.mark.domain
    def test_late_check_out_after_noon(self, reservation):
        reservation.check_in("Front Desk", _at(date(2026, 1, 10), 14))
        reservation.check_out("Front Desk", _at(date(2026, 1, 12), 13))
        assert reservation.late_check_out

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_short_stay_counts_one_night(self, reservation):
        reservation.check_in("Front Desk", _at(date(2026, 1, 10), 14))
        assert reservation.check_out("Front Desk", _at(date(2026, 1, 10), 18)) == 1

    @pytest.mark.unit
    @pytest.mark.domain
    def test_no_show(self, reservation):
        reservation.mark_no_show(NOW)
        assert reservation.status == ReservationStatus.NO_SHOW
        assert reservation.is_terminal()

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_cancel_while_checked_in_rejected(self, reservation):
        reservation.check_in("Front Desk", _at(date(2026, 1, 10), 14))
        with pytest.raises(InvalidStateTransition, match="check-out first"):
            reservation.cancel("Changed plans", NOW)
        assert reservation.status == ReservationStatus.CHECKED_IN

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_check_out_before_check_in_rejected(self, reservation):
        with pytest.raises(InvalidStateTransition, match="not checked in"):
            reservation.check_out("Front Desk", NOW)

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_terminal_states_are_final(self, reservation):
        reservation.check_in("Front Desk", _at(date(2026, 1, 10), 14))
        reservation.check_out("Front Desk", _at(date(2026, 1, 12), 10))
        snapshot = reservation.model_dump()

        for attempt in (
            lambda: reservation.check_in("Front Desk", NOW),
            lambda: reservation.check_out("Front Desk", NOW),
            lambda: reservation.cancel(None, NOW),
            lambda: reservation.mark_no_show(NOW),
        ):
            with pytest.raises(InvalidStateTransition):
                attempt()
        assert reservation.model_dump() == snapshot

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_state_error_names_states(self, reservation):
        reservation.mark_no_show(NOW)
        with pytest.raises(InvalidStateTransition) as exc:
            reservation.check_in("Front Desk", NOW)
        assert exc.value.current == "no_show"
        assert exc.value.target == "checked_in"


class TestReservationUpdates:

    @pytest.mark.unit
    @pytest.mark.domain
    def test_reschedule_reprices_and_keeps_discount(self, guest):
        breakdown = [RoomBreakdownEntry.price("room-101", "101", Decimal("1000"), 2)]
        reservation = Reservation.create(
            "hotel-demo-0001", "REF", breakdown, guest,
            DateRange(check_in=date(2026, 1, 10), check_out=date(2026, 1, 12)), 1,
            discount_amount=Decimal("200"),
        )
        reservation.reschedule(
            DateRange(check_in=date(2026, 1, 10), check_out=date(2026, 1, 13)),
            [RoomBreakdownEntry.price("room-101", "101", Decimal("1000"), 3)],
        )
        assert reservation.total_amount == Decimal("2800")
        assert reservation.pending_amount == Decimal("2800")
        assert reservation.version == 2

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_checked_in_stay_can_be_extended(self, reservation):
        reservation.check_in("Front Desk", _at(date(2026, 1, 10), 14))
        breakdown = [
            RoomBreakdownEntry.price(entry.room_id, entry.room_number, entry.price_per_night, 3, entry.guests_in_room)
            for entry in reservation.room_breakdown
        ]
        reservation.reschedule(DateRange(check_in=date(2026, 1, 10), check_out=date(2026, 1, 13)), breakdown)

        assert reservation.status == ReservationStatus.CHECKED_IN
        assert reservation.check_out_date == date(2026, 1, 13)
        assert reservation.total_amount == Decimal("6000")

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_reschedule_rejected_after_check_out(self, reservation):
        reservation.check_in("Front Desk", _at(date(2026, 1, 10), 14))
        reservation.check_out("Front Desk", _at(date(2026, 1, 12), 9))
        with pytest.raises(InvalidStateTransition, match="Cannot update checked_out booking"):
            reservation.ensure_reschedulable()

    @pytest.mark.unit
    @pytest.mark.domain
    def test_update_contact_validates_email(self, reservation):
        with pytest.raises(InvalidGuestInfo):
            reservation.update_contact(customer_email="not-an-email")
        reservation.update_contact(customer_email="new@example.com", customer_phone="555")
        assert reservation.customer_email == "new@example.com"
        assert reservation.customer_phone == "555"

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_update_after_cancel_rejected(self, reservation):
        reservation.cancel(None, NOW)
        with pytest.raises(InvalidStateTransition, match="Cannot update cancelled booking"):
            reservation.update_contact(customer_name="Someone")

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_guest_count_checked_against_occupancy(self, reservation):
        with pytest.raises(OccupancyExceeded):
            reservation.change_guest_count(5, max_occupancy=4)
        reservation.change_guest_count(4, max_occupancy=4)
        assert reservation.guests_count == 4
        with pytest.raises(InvalidAmount):
            reservation.change_guest_count(0, max_occupancy=4)

    @pytest.mark.unit
    @pytest.mark.domain
    def test_guest_count_change_moves_placement(self, reservation):
        reservation.change_guest_count(1, max_occupancy=4, placement={"room-101": 1, "room-102": 0})
        assert reservation.guests_count == 1
        assert [e.guests_in_room for e in reservation.room_breakdown] == [1, 0]
        assert reservation.total_amount == Decimal("4000")


# ============================================================================
# SETTLEMENT TRANSACTION
# ============================================================================

class TestSettlementTransaction:

    @pytest.fixture
    def transaction(self, reservation):
        return SettlementTransaction(
            hotel_id=reservation.hotel_id,
            reservation_id=reservation.reservation_id,
            amount=Decimal("500"),
            payment_method=PaymentMethod.CASH,
            receipt_number=SettlementTransaction.generate_receipt_number(date(2026, 1, 5)),
        )

    @pytest.mark.unit
    @pytest.mark.domain
    def test_receipt_number_format(self, transaction):
        prefix, day, suffix = transaction.receipt_number.split("-")
        assert prefix == "RCP"
        assert day == "20260105"
        assert len(suffix) == 6 and suffix.isalnum() and suffix.upper() == suffix

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_amount_must_be_positive(self, reservation):
        with pytest.raises(ValidationError):
            SettlementTransaction(
                hotel_id="h", reservation_id=reservation.reservation_id, amount=Decimal("0"),
                payment_method=PaymentMethod.CASH, receipt_number="RCP-1",
            )

    @pytest.mark.unit
    @pytest.mark.domain
    def test_refund_once(self, transaction):
        transaction.refund("Guest complaint", NOW)
        assert transaction.status == TransactionStatus.REFUNDED
        assert transaction.notes == "Guest complaint"
        with pytest.raises(PaymentRejected, match="already refunded"):
            transaction.refund()

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.edge_case
    def test_failed_payment_not_refundable(self, transaction):
        transaction.status = TransactionStatus.FAILED
        with pytest.raises(PaymentRejected, match="Only successful payments"):
            transaction.refund()
