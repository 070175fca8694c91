"""Application Services - Business use cases"""
import asyncio
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel

from domain.entities import (
    Reservation, Room, RoomCategory, SettlementTransaction, format_booking_reference, utcnow, ZERO,
)
from domain.enums import (
    ReservationStatus, BookingSource, PaymentMethod, PaymentType, TransactionStatus,
    NotificationEvent, UNBOOKABLE_ROOM_STATUSES,
)
from domain.exceptions import (
    ConcurrencyConflict, DuplicateKey, InvalidAmount, InvalidDateRange, InvalidRoomSelection,
    OccupancyExceeded, ReservationNotFound, RoomBlocked, RoomNotFound, RoomUnavailable,
    TransactionNotFound,
)
from domain.notifications import NotificationHook, Notification, build_notification
from domain.repositories import ReservationStore, ReservationFilter, PaymentFilter
from domain.value_objects import DateRange, GuestInfo, RoomBreakdownEntry, StayPolicy, StayValidation

logger = logging.getLogger(__name__)

T = TypeVar("T")

REFERENCE_ALLOCATION_ATTEMPTS = 5
RECEIPT_ALLOCATION_ATTEMPTS = 5


# ============================================================================
# RESULTS
# ============================================================================

class RoomDetail(BaseModel):
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


class BookingSummary(BaseModel):
    total_rooms: int
    nights: int
    subtotal: Decimal
    discount: Decimal
    total: Decimal


class BookingResult(BaseModel):
    reservation: Reservation
    room_details: List[RoomDetail]
    booking_summary: BookingSummary


class TransitionResult(BaseModel):
    reservation: Reservation
    rooms: List[RoomDetail]
    actual_nights_stayed: Optional[int] = None


class PaymentResult(BaseModel):
    transaction: SettlementTransaction
    reservation: Reservation


class RoomAvailability(BaseModel):
    room_id: str
    room_number: Optional[str] = None
    room_status: Optional[str] = None
    price_per_night: Optional[Decimal] = None
    subtotal: Optional[Decimal] = None
    available: bool
    reason: Optional[str] = None


class AvailabilityReport(BaseModel):
    available: bool
    nights: int
    estimated_total: Decimal
    errors: List[str] = []
    rooms: List[RoomAvailability]


# ============================================================================
# SHARED PLUMBING
# ============================================================================

class _StoreBackedService:
    """Runs units of work against the store and retries transient conflicts"""

    def __init__(
        self,
        store: ReservationStore,
        notifier: Optional[NotificationHook] = None,
        clock: Callable[[], datetime] = utcnow,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.05,
    ):
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.retry_attempts = max(1, retry_attempts)
        self.retry_base_delay = retry_base_delay

    def today(self) -> date:
        return self.clock().date()

    async def _atomic(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        """Run operation inside one store transaction, retrying on ConcurrencyConflict"""
        for attempt in range(self.retry_attempts):
            try:
                async with self.store.transaction():
                    return await operation()
            except ConcurrencyConflict as e:
                if attempt + 1 >= self.retry_attempts:
                    logger.warning("%s gave up after %d attempts: %s", description, attempt + 1, e)
                    raise
                delay = self.retry_base_delay * (2 ** attempt)
                logger.warning("%s conflicted (attempt %d), retrying in %.3fs: %s",
                               description, attempt + 1, delay, e)
                await asyncio.sleep(delay)

    async def _notify(self, notification: Notification) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.send(notification)
        except Exception:
            logger.exception("Failed to deliver %s notification for %s",
                              notification.event.value, notification.booking_reference)

    async def _load_reservation(self, hotel_id: str, reservation_id: UUID) -> Reservation:
        reservation = await self.store.reservations.find_by_id(hotel_id, reservation_id)
        if reservation is None:
            raise ReservationNotFound(str(reservation_id))
        return reservation

    async def _categories_for(self, rooms: List[Room]) -> Dict[str, RoomCategory]:
        categories = await self.store.rooms.get_categories_by_ids([room.category_id for room in rooms])
        return {category.category_id: category for category in categories}


def _room_detail(room: Room, category: Optional[RoomCategory], changed: bool = False,
                 entry: Optional[RoomBreakdownEntry] = None) -> RoomDetail:
    return RoomDetail(
        room_id=room.room_id,
        room_number=room.room_number,
        floor=room.floor,
        category_name=category.category_name if category else None,
        status=room.status.value,
        price_per_night=entry.price_per_night if entry else room.current_price,
        max_occupancy=category.max_occupancy if category else None,
        guests_in_room=entry.guests_in_room if entry else None,
        nights=entry.nights if entry else None,
        subtotal=entry.subtotal if entry else None,
        changed=changed,
    )


# ============================================================================
# AVAILABILITY INDEX
# ============================================================================

class AvailabilityService(_StoreBackedService):
    """Date-range conflict detection per room"""

    def __init__(self, store: ReservationStore, policy: Optional[StayPolicy] = None, **kwargs):
        super().__init__(store, **kwargs)
        self.policy = policy or StayPolicy()

    async def is_available(
        self,
        room_id: str,
        check_in: date,
        check_out: date,
        exclude_reservation_id: Optional[UUID] = None,
    ) -> bool:
        """True when no confirmed or checked-in reservation overlaps [check_in, check_out)"""
        blocking = await self.store.reservations.find_blocking(
            room_id, check_in, check_out, exclude_reservation_id
        )
        return not blocking

    async def find_conflicts(
        self,
        rooms: List[Room],
        check_in: date,
        check_out: date,
        exclude_reservation_id: Optional[UUID] = None,
    ) -> List[str]:
        """Room numbers among rooms that are taken for the window"""
        conflicts = []
        for room in rooms:
            if not await self.is_available(room.room_id, check_in, check_out, exclude_reservation_id):
                conflicts.append(room.room_number)
        return conflicts

    def validate_stay(self, check_in: date, check_out: date, allow_past_check_in: bool = False) -> StayValidation:
        return self.policy.validate_window(check_in, check_out, self.today(), allow_past_check_in)

    async def check_availability(
        self,
        hotel_id: str,
        room_ids: List[str],
        check_in: date,
        check_out: date,
    ) -> AvailabilityReport:
        """Read-only pre-flight for a prospective booking"""
        if not room_ids:
            raise InvalidRoomSelection("At least one room must be selected")

        validation = self.validate_stay(check_in, check_out)
        rooms = {room.room_id: room for room in await self.store.rooms.get_rooms_by_ids(hotel_id, room_ids)}
        nights = max(validation.nights, 0)

        report_rooms = []
        estimated_total = ZERO
        for room_id in dict.fromkeys(room_ids):
            room = rooms.get(room_id)
            if room is None:
                report_rooms.append(RoomAvailability(room_id=room_id, available=False, reason="Room not found"))
                continue

            subtotal = room.current_price * nights
            estimated_total += subtotal
            reason = None
            if room.status in UNBOOKABLE_ROOM_STATUSES:
                reason = f"Room is currently {room.status.value}"
            elif validation.is_valid and not await self.is_available(room_id, check_in, check_out):
                reason = "Room is booked for an overlapping window"

            report_rooms.append(RoomAvailability(
                room_id=room_id,
                room_number=room.room_number,
                room_status=room.status.value,
                price_per_night=room.current_price,
                subtotal=subtotal,
                available=reason is None and validation.is_valid,
                reason=reason,
            ))

        return AvailabilityReport(
            available=validation.is_valid and all(r.available for r in report_rooms),
            nights=validation.nights,
            estimated_total=estimated_total,
            errors=validation.errors,
            rooms=report_rooms,
        )


# ============================================================================
# RESERVATION BUILDER
# ============================================================================

class ReservationService(_StoreBackedService):
    """Service for Reservation creation, updates and queries"""

    def __init__(self, store: ReservationStore, availability: AvailabilityService, **kwargs):
        super().__init__(store, **kwargs)
        self.availability = availability

    @property
    def policy(self) -> StayPolicy:
        return self.availability.policy

    async def create_reservation(
        self,
        hotel_id: str,
        room_ids: List[str],
        customer_name: str,
        customer_email: str,
        customer_phone: str,
        check_in: date,
        check_out: date,
        guests_count: int,
        discount_amount: Decimal = ZERO,
        booking_source: BookingSource = BookingSource.DIRECT,
        special_requests: Optional[str] = None,
        coupon_code: Optional[str] = None,
        room_breakdown: Optional[List[Dict[str, Any]]] = None,
        created_by: str = "SYSTEM",
    ) -> BookingResult:
        """Create new reservation for a room set; all rooms or none"""
        guest = GuestInfo.create(customer_name, customer_email, customer_phone)
        room_ids = self._validate_room_ids(room_ids)
        if guests_count is None or guests_count < 1:
            raise InvalidAmount("At least 1 guest is required", guests_count=guests_count)
        if discount_amount is None:
            discount_amount = ZERO
        if discount_amount < 0:
            raise InvalidAmount("Discount cannot be negative", discount_amount=discount_amount)

        validation = self.availability.validate_stay(check_in, check_out)
        if not validation.is_valid:
            raise InvalidDateRange(validation.errors)
        date_range = DateRange(check_in=check_in, check_out=check_out)
        requested_guests = {
            entry["room_id"]: int(entry["guests_in_room"])
            for entry in (room_breakdown or [])
            if entry.get("room_id") and entry.get("guests_in_room") is not None
        }

        async def operation() -> BookingResult:
            rooms = await self._resolve_rooms(hotel_id, room_ids)
            categories = await self._categories_for(rooms)

            max_occupancy = self._max_occupancy(rooms, categories)
            if guests_count > max_occupancy:
                raise OccupancyExceeded(max_occupancy=max_occupancy, requested=guests_count)

            conflicts = await self.availability.find_conflicts(rooms, check_in, check_out)
            if conflicts:
                raise RoomUnavailable(conflicts)

            breakdown = self._price_rooms(rooms, categories, validation.nights, guests_count, requested_guests)
            now = self.clock()
            reservation = None
            for _ in range(REFERENCE_ALLOCATION_ATTEMPTS):
                reference = await self._allocate_reference(hotel_id, now.date())
                reservation = Reservation.create(
                    hotel_id=hotel_id,
                    booking_reference=reference,
                    room_breakdown=breakdown,
                    guest=guest,
                    date_range=date_range,
                    guests_count=guests_count,
                    discount_amount=Decimal(discount_amount),
                    booking_source=booking_source,
                    special_requests=special_requests,
                    coupon_code=coupon_code,
                    created_by=created_by,
                    now=now,
                )
                try:
                    await self.store.reservations.add(reservation)
                    break
                except DuplicateKey:
                    logger.warning("Booking reference %s already taken, allocating another", reference)
            else:
                raise ConcurrencyConflict(f"Could not allocate a booking reference for hotel {hotel_id}")

            room_details = [
                _room_detail(room, categories.get(room.category_id), entry=entry)
                for room, entry in zip(rooms, breakdown)
            ]
            return BookingResult(
                reservation=reservation,
                room_details=room_details,
                booking_summary=BookingSummary(
                    total_rooms=reservation.total_rooms,
                    nights=validation.nights,
                    subtotal=reservation.subtotal,
                    discount=reservation.discount_amount,
                    total=reservation.total_amount,
                ),
            )

        result = await self._atomic(operation, f"Create booking for rooms {room_ids}")
        logger.info("Booking %s created for %d room(s), %s to %s",
                    result.reservation.booking_reference, len(room_ids), check_in, check_out)
        await self._notify(build_notification(NotificationEvent.BOOKING_CREATED, result.reservation, {
            "total_rooms": result.reservation.total_rooms,
            "total_amount": str(result.reservation.total_amount),
        }))
        return result

    async def update_reservation(
        self,
        hotel_id: str,
        reservation_id: UUID,
        check_in: Optional[date] = None,
        check_out: Optional[date] = None,
        customer_name: Optional[str] = None,
        customer_email: Optional[str] = None,
        customer_phone: Optional[str] = None,
        guests_count: Optional[int] = None,
        special_requests: Optional[str] = None,
    ) -> Reservation:
        """Modify dates or contact details of a non-terminal reservation"""

        async def operation() -> Reservation:
            reservation = await self._load_reservation(hotel_id, reservation_id)
            expected_version = reservation.version
            now = self.clock()

            if check_in or check_out:
                new_check_in = check_in or reservation.check_in_date
                new_check_out = check_out or reservation.check_out_date
                if (new_check_in, new_check_out) != (reservation.check_in_date, reservation.check_out_date):
                    await self._reschedule(reservation, new_check_in, new_check_out, now)

            if guests_count is not None:
                rooms = await self._resolve_rooms(hotel_id, reservation.room_ids, check_blocked=False)
                categories = await self._categories_for(rooms)
                max_occupancy = self._max_occupancy(rooms, categories)
                if guests_count > max_occupancy:
                    raise OccupancyExceeded(max_occupancy=max_occupancy, requested=guests_count)
                placement = self._place_guests(rooms, categories, guests_count, {})
                reservation.change_guest_count(guests_count, max_occupancy, placement, now)

            if any(v is not None for v in (customer_name, customer_email, customer_phone, special_requests)):
                reservation.update_contact(
                    customer_name=customer_name,
                    customer_email=customer_email,
                    customer_phone=customer_phone,
                    special_requests=special_requests,
                    now=now,
                )

            return await self.store.reservations.update(reservation, expected_version)

        reservation = await self._atomic(operation, f"Update booking {reservation_id}")
        logger.info("Booking %s updated", reservation.booking_reference)
        await self._notify(build_notification(NotificationEvent.BOOKING_UPDATED, reservation))
        return reservation

    async def _reschedule(self, reservation: Reservation, check_in: date, check_out: date, now: datetime) -> None:
        reservation.ensure_reschedulable()

        # An arrival date that is kept may already lie in the past
        validation = self.availability.validate_stay(
            check_in, check_out, allow_past_check_in=check_in == reservation.check_in_date
        )
        if not validation.is_valid:
            raise InvalidDateRange(validation.errors)

        rooms = await self._resolve_rooms(reservation.hotel_id, reservation.room_ids, check_blocked=False)
        conflicts = await self.availability.find_conflicts(
            rooms, check_in, check_out, exclude_reservation_id=reservation.reservation_id
        )
        if conflicts:
            raise RoomUnavailable(conflicts)

        guests = {entry.room_id: entry.guests_in_room for entry in reservation.room_breakdown}
        breakdown = [
            RoomBreakdownEntry.price(room.room_id, room.room_number, room.current_price,
                                     validation.nights, guests.get(room.room_id, 0))
            for room in rooms
        ]
        reservation.reschedule(DateRange(check_in=check_in, check_out=check_out), breakdown, now)

    # ==================== QUERIES ====================

    async def get_reservation(self, hotel_id: str, reservation_id: UUID) -> Optional[Reservation]:
        """Get reservation by ID"""
        return await self.store.reservations.find_by_id(hotel_id, reservation_id)

    async def get_reservation_by_reference(self, hotel_id: str, booking_reference: str) -> Optional[Reservation]:
        """Get reservation by booking reference"""
        return await self.store.reservations.find_by_reference(hotel_id, booking_reference)

    async def list_reservations(self, hotel_id: str, criteria: Optional[ReservationFilter] = None) -> List[Reservation]:
        return await self.store.reservations.search(hotel_id, criteria or ReservationFilter())

    async def get_room_details(self, reservation: Reservation) -> List[RoomDetail]:
        rooms = await self.store.rooms.get_rooms_by_ids(reservation.hotel_id, reservation.room_ids)
        categories = await self._categories_for(rooms)
        entries = {entry.room_id: entry for entry in reservation.room_breakdown}
        return [
            _room_detail(room, categories.get(room.category_id), entry=entries.get(room.room_id))
            for room in rooms
        ]

    async def upcoming_check_ins(self, hotel_id: str, days: int = 7) -> List[Reservation]:
        today = self.today()
        reservations = await self.list_reservations(hotel_id, ReservationFilter(
            status=[ReservationStatus.CONFIRMED],
            check_in_from=today,
            check_in_to=today + timedelta(days=days),
        ))
        return sorted(reservations, key=lambda r: r.check_in_date)

    async def upcoming_check_outs(self, hotel_id: str, days: int = 7) -> List[Reservation]:
        today = self.today()
        reservations = await self.list_reservations(hotel_id, ReservationFilter(
            status=[ReservationStatus.CHECKED_IN],
            check_out_from=today,
            check_out_to=today + timedelta(days=days),
        ))
        return sorted(reservations, key=lambda r: r.check_out_date)

    async def todays_check_ins(self, hotel_id: str) -> List[Reservation]:
        today = self.today()
        return await self.list_reservations(hotel_id, ReservationFilter(
            status=[ReservationStatus.CONFIRMED, ReservationStatus.CHECKED_IN],
            check_in_from=today,
            check_in_to=today,
        ))

    async def todays_check_outs(self, hotel_id: str) -> List[Reservation]:
        today = self.today()
        return await self.list_reservations(hotel_id, ReservationFilter(
            status=[ReservationStatus.CHECKED_IN, ReservationStatus.CHECKED_OUT],
            check_out_from=today,
            check_out_to=today,
        ))

    async def currently_checked_in(self, hotel_id: str) -> List[Reservation]:
        reservations = await self.list_reservations(
            hotel_id, ReservationFilter(status=[ReservationStatus.CHECKED_IN])
        )
        return sorted(reservations, key=lambda r: r.actual_check_in, reverse=True)

    async def booking_history(self, hotel_id: str, reservation_id: UUID) -> Optional[Dict[str, Any]]:
        """Timeline, durations and money of one booking"""
        reservation = await self.get_reservation(hotel_id, reservation_id)
        if reservation is None:
            return None

        expected_nights = reservation.get_nights()
        actual_nights = reservation.actual_nights()
        return {
            "booking_reference": reservation.booking_reference,
            "customer_name": reservation.customer_name,
            "rooms": await self.get_room_details(reservation),
            "timeline": {
                "booking_created": reservation.created_at,
                "expected_check_in": reservation.check_in_date,
                "actual_check_in": reservation.actual_check_in,
                "checked_in_by": reservation.checked_in_by,
                "early_check_in": reservation.early_check_in,
                "expected_check_out": reservation.check_out_date,
                "actual_check_out": reservation.actual_check_out,
                "checked_out_by": reservation.checked_out_by,
                "late_check_out": reservation.late_check_out,
            },
            "duration": {
                "expected_nights": expected_nights,
                "actual_nights": actual_nights,
                "difference": actual_nights - expected_nights if actual_nights is not None else None,
            },
            "status": reservation.status.value,
            "financial": {
                "room_charges": reservation.total_amount,
                "extra_charges": reservation.extra_charges,
                "extra_charges_description": reservation.extra_charges_description,
                "discount": reservation.discount_amount,
                "grand_total": reservation.grand_total,
                "paid_amount": reservation.paid_amount,
                "pending_amount": reservation.pending_amount,
                "payment_status": reservation.payment_status.value,
                "payment_method": reservation.payment_method.value if reservation.payment_method else None,
            },
        }

    async def booking_statistics(
        self,
        hotel_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Count and revenue per status for bookings created in [start, end]"""
        now = self.clock()
        start = start or now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        end = end or now
        reservations = await self.list_reservations(
            hotel_id, ReservationFilter(created_from=start, created_to=end)
        )

        by_status = {status.value: {"count": 0, "revenue": ZERO} for status in ReservationStatus}
        for reservation in reservations:
            bucket = by_status[reservation.status.value]
            bucket["count"] += 1
            bucket["revenue"] += reservation.total_amount

        return {
            "period": {"start": start, "end": end},
            "by_status": by_status,
            "total_bookings": len(reservations),
            "total_revenue": sum((b["revenue"] for b in by_status.values()), ZERO),
        }

    # ==================== PRIVATE METHODS ====================

    @staticmethod
    def _validate_room_ids(room_ids: List[str]) -> List[str]:
        if not room_ids:
            raise InvalidRoomSelection("At least one room must be selected")
        duplicates = sorted({room_id for room_id in room_ids if room_ids.count(room_id) > 1})
        if duplicates:
            raise InvalidRoomSelection(
                f"Room(s) selected more than once: {', '.join(duplicates)}", room_ids=duplicates
            )
        return list(room_ids)

    async def _resolve_rooms(self, hotel_id: str, room_ids: List[str], check_blocked: bool = True) -> List[Room]:
        """Rooms in requested order; every id must belong to the hotel"""
        found = {room.room_id: room for room in await self.store.rooms.get_rooms_by_ids(hotel_id, room_ids)}
        missing = [room_id for room_id in room_ids if room_id not in found]
        if missing:
            raise RoomNotFound(missing)

        rooms = [found[room_id] for room_id in room_ids]
        if check_blocked:
            blocked = [room for room in rooms if not room.is_bookable()]
            if blocked:
                reasons = sorted({room.status.value for room in blocked})
                raise RoomBlocked(
                    [room.room_number for room in blocked],
                    f"currently {' / '.join(reasons)}",
                )
        return rooms

    @staticmethod
    def _max_occupancy(rooms: List[Room], categories: Dict[str, RoomCategory]) -> int:
        missing = sorted({room.category_id for room in rooms if room.category_id not in categories})
        if missing:
            raise RoomNotFound([f"category {category_id}" for category_id in missing])
        return sum(categories[room.category_id].max_occupancy for room in rooms)

    @staticmethod
    def _price_rooms(
        rooms: List[Room],
        categories: Dict[str, RoomCategory],
        nights: int,
        guests_count: int,
        requested_guests: Dict[str, int],
    ) -> List[RoomBreakdownEntry]:
        """Price every room for the stay and place guests room by room"""
        placement = ReservationService._place_guests(rooms, categories, guests_count, requested_guests)
        return [
            RoomBreakdownEntry.price(
                room.room_id, room.room_number, room.current_price, nights, placement[room.room_id]
            )
            for room in rooms
        ]

    @staticmethod
    def _place_guests(
        rooms: List[Room],
        categories: Dict[str, RoomCategory],
        guests_count: int,
        requested_guests: Dict[str, int],
    ) -> Dict[str, int]:
        """Guests per room id.

        Rooms with a client-chosen count keep it; the remaining guests fill the
        other rooms in order up to their category occupancy. Every guest must end
        up in exactly one room.
        """
        room_ids = {room.room_id for room in rooms}
        outside = sorted(set(requested_guests) - room_ids)
        if outside:
            raise InvalidRoomSelection(
                f"Guest placement names room(s) outside the booking: {', '.join(outside)}", room_ids=outside
            )

        placement = {}
        for room in rooms:
            if room.room_id not in requested_guests:
                continue
            guests = requested_guests[room.room_id]
            capacity = categories[room.category_id].max_occupancy
            if guests < 0:
                raise InvalidAmount("Guests in a room cannot be negative", room_id=room.room_id)
            if guests > capacity:
                raise OccupancyExceeded(max_occupancy=capacity, requested=guests)
            placement[room.room_id] = guests

        remaining = guests_count - sum(placement.values())
        if remaining < 0:
            raise InvalidRoomSelection(
                f"Guest placement seats {guests_count - remaining} guests but the booking is for {guests_count}",
                guests_count=guests_count,
            )
        for room in rooms:
            if room.room_id in placement:
                continue
            guests = min(remaining, categories[room.category_id].max_occupancy)
            placement[room.room_id] = guests
            remaining -= guests
        if remaining:
            raise InvalidRoomSelection(
                f"Guest placement leaves {remaining} guest(s) without a room", unplaced=remaining
            )
        return placement

    async def _allocate_reference(self, hotel_id: str, day: date) -> str:
        sequence = await self.store.sequences.next_value(f"booking_reference:{hotel_id}:{day.isoformat()}")
        return format_booking_reference(hotel_id, day, sequence)


# ============================================================================
# LIFECYCLE CONTROLLER
# ============================================================================

class LifecycleService(_StoreBackedService):
    """State machine of a reservation and the rooms it holds"""

    def __init__(self, store: ReservationStore, policy: Optional[StayPolicy] = None, **kwargs):
        super().__init__(store, **kwargs)
        self.policy = policy or StayPolicy()

    async def check_in(
        self,
        hotel_id: str,
        reservation_id: UUID,
        actor: str,
        payment_method: Optional[PaymentMethod] = None,
        extra_charges: Optional[Decimal] = None,
        extra_charges_description: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TransitionResult:
        """confirmed -> checked_in; every held room becomes occupied"""

        async def operation() -> TransitionResult:
            reservation = await self._load_reservation(hotel_id, reservation_id)
            expected_version = reservation.version
            now = self.clock()

            reservation.check_in(
                actor, now,
                payment_method=payment_method,
                extra_charges=extra_charges,
                extra_charges_description=extra_charges_description,
                notes=notes,
            )

            rooms = await self.store.rooms.get_rooms_by_ids(hotel_id, reservation.room_ids)
            blocked = [room.room_number for room in rooms if room.status in UNBOOKABLE_ROOM_STATUSES]
            if blocked:
                raise RoomBlocked(blocked, "room is not in service")
            in_use = []
            for room in rooms:
                holders = await self.store.reservations.find_checked_in_for_room(room.room_id)
                if any(h.reservation_id != reservation.reservation_id for h in holders):
                    in_use.append(room.room_number)
            if in_use:
                raise RoomUnavailable(in_use)

            changed = set()
            for room in rooms:
                if room.occupy():
                    await self.store.rooms.save_room(room)
                    changed.add(room.room_id)

            await self.store.reservations.update(reservation, expected_version)
            return TransitionResult(reservation=reservation, rooms=await self._details(rooms, changed))

        result = await self._atomic(operation, f"Check-in {reservation_id}")
        logger.info("Booking %s checked in by %s (early=%s)",
                    result.reservation.booking_reference, actor, result.reservation.early_check_in)
        await self._notify(build_notification(NotificationEvent.CHECKED_IN, result.reservation))
        return result

    async def check_out(
        self,
        hotel_id: str,
        reservation_id: UUID,
        actor: str,
        payment_method: Optional[PaymentMethod] = None,
        extra_charges: Optional[Decimal] = None,
        extra_charges_description: Optional[str] = None,
    ) -> TransitionResult:
        """checked_in -> checked_out; rooms are freed"""

        async def operation() -> TransitionResult:
            reservation = await self._load_reservation(hotel_id, reservation_id)
            expected_version = reservation.version

            nights = reservation.check_out(
                actor, self.clock(),
                late_check_out_hour=self.policy.late_check_out_hour,
                payment_method=payment_method,
                extra_charges=extra_charges,
                extra_charges_description=extra_charges_description,
            )
            await self.store.reservations.update(reservation, expected_version)
            rooms = await self._release_rooms(reservation)
            return TransitionResult(reservation=reservation, rooms=rooms, actual_nights_stayed=nights)

        result = await self._atomic(operation, f"Check-out {reservation_id}")
        logger.info("Booking %s checked out by %s after %s night(s) (late=%s)",
                    result.reservation.booking_reference, actor,
                    result.actual_nights_stayed, result.reservation.late_check_out)
        await self._notify(build_notification(NotificationEvent.CHECKED_OUT, result.reservation, {
            "grand_total": str(result.reservation.grand_total),
            "pending_amount": str(result.reservation.pending_amount),
        }))
        return result

    async def cancel(
        self,
        hotel_id: str,
        reservation_id: UUID,
        actor: str,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        """confirmed -> cancelled; a fully paid booking is flagged refunded"""

        async def operation() -> TransitionResult:
            reservation = await self._load_reservation(hotel_id, reservation_id)
            expected_version = reservation.version
            reservation.cancel(reason, self.clock())
            await self.store.reservations.update(reservation, expected_version)
            rooms = await self._release_rooms(reservation)
            return TransitionResult(reservation=reservation, rooms=rooms)

        result = await self._atomic(operation, f"Cancel {reservation_id}")
        logger.info("Booking %s cancelled by %s", result.reservation.booking_reference, actor)
        await self._notify(build_notification(NotificationEvent.CANCELLED, result.reservation, {
            "payment_status": result.reservation.payment_status.value,
        }))
        return result

    async def mark_no_show(self, hotel_id: str, reservation_id: UUID, actor: str) -> TransitionResult:
        """confirmed -> no_show; the whole room set is released"""

        async def operation() -> TransitionResult:
            reservation = await self._load_reservation(hotel_id, reservation_id)
            expected_version = reservation.version
            reservation.mark_no_show(self.clock())
            await self.store.reservations.update(reservation, expected_version)
            rooms = await self._release_rooms(reservation)
            return TransitionResult(reservation=reservation, rooms=rooms)

        result = await self._atomic(operation, f"No-show {reservation_id}")
        logger.info("Booking %s marked no-show by %s", result.reservation.booking_reference, actor)
        await self._notify(build_notification(NotificationEvent.NO_SHOW, result.reservation))
        return result

    async def _release_rooms(self, reservation: Reservation) -> List[RoomDetail]:
        """Free rooms no other checked-in stay still holds"""
        rooms = await self.store.rooms.get_rooms_by_ids(reservation.hotel_id, reservation.room_ids)
        changed = set()
        for room in rooms:
            holders = await self.store.reservations.find_checked_in_for_room(room.room_id)
            if any(h.reservation_id != reservation.reservation_id for h in holders):
                continue
            if room.release():
                await self.store.rooms.save_room(room)
                changed.add(room.room_id)
        return await self._details(rooms, changed)

    async def _details(self, rooms: List[Room], changed: set) -> List[RoomDetail]:
        categories = await self._categories_for(rooms)
        return [_room_detail(room, categories.get(room.category_id), room.room_id in changed) for room in rooms]


# ============================================================================
# SETTLEMENT LEDGER
# ============================================================================

class SettlementService(_StoreBackedService):
    """Payments and refunds against a reservation"""

    def __init__(self, store: ReservationStore, list_limit: int = 100, **kwargs):
        super().__init__(store, **kwargs)
        self.list_limit = list_limit

    async def add_payment(
        self,
        hotel_id: str,
        reservation_id: UUID,
        amount: Decimal,
        payment_method: PaymentMethod,
        processed_by: Optional[str] = None,
        external_transaction_id: Optional[str] = None,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
        payment_type: PaymentType = PaymentType.BOOKING,
    ) -> PaymentResult:
        """Record a successful payment; amount may not exceed what is pending"""
        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidAmount("Payment amount must be greater than 0", amount=amount)

        async def operation() -> PaymentResult:
            reservation = await self._load_reservation(hotel_id, reservation_id)
            expected_version = reservation.version
            reservation.record_payment(amount, payment_method)

            now = self.clock()
            transaction = None
            for _ in range(RECEIPT_ALLOCATION_ATTEMPTS):
                receipt = SettlementTransaction.generate_receipt_number(now.date())
                if await self.store.transactions.receipt_exists(hotel_id, receipt):
                    continue
                transaction = SettlementTransaction(
                    hotel_id=hotel_id,
                    reservation_id=reservation.reservation_id,
                    amount=amount,
                    payment_method=payment_method,
                    status=TransactionStatus.SUCCESS,
                    payment_type=payment_type,
                    payment_date=now,
                    external_transaction_id=external_transaction_id,
                    reference_number=reference_number,
                    notes=notes,
                    processed_by=processed_by,
                    receipt_number=receipt,
                    created_at=now,
                    updated_at=now,
                )
                try:
                    await self.store.transactions.add(transaction)
                    break
                except DuplicateKey:
                    transaction = None
            if transaction is None:
                raise ConcurrencyConflict("Could not allocate a unique receipt number")

            await self.store.reservations.update(reservation, expected_version)
            return PaymentResult(transaction=transaction, reservation=reservation)

        result = await self._atomic(operation, f"Payment for {reservation_id}")
        logger.info("Payment %s of %s recorded on %s (paid=%s, pending=%s, status=%s)",
                    result.transaction.receipt_number, amount, result.reservation.booking_reference,
                    result.reservation.paid_amount, result.reservation.pending_amount,
                    result.reservation.payment_status.value)
        await self._notify(build_notification(NotificationEvent.PAYMENT_RECEIVED, result.reservation, {
            "receipt_number": result.transaction.receipt_number,
            "amount": str(amount),
        }))
        return result

    async def refund(self, hotel_id: str, transaction_id: UUID, notes: Optional[str] = None) -> PaymentResult:
        """success -> refunded; the amount comes off the reservation's paid total"""

        async def operation() -> PaymentResult:
            transaction = await self._load_transaction(hotel_id, transaction_id)
            transaction.refund(notes, self.clock())

            reservation = await self._load_reservation(hotel_id, transaction.reservation_id)
            expected_version = reservation.version
            reservation.reverse_payment(transaction.amount)

            await self.store.transactions.update(transaction)
            await self.store.reservations.update(reservation, expected_version)
            return PaymentResult(transaction=transaction, reservation=reservation)

        result = await self._atomic(operation, f"Refund {transaction_id}")
        logger.info("Payment %s refunded on %s (paid=%s, pending=%s)",
                    result.transaction.receipt_number, result.reservation.booking_reference,
                    result.reservation.paid_amount, result.reservation.pending_amount)
        await self._notify(build_notification(NotificationEvent.PAYMENT_REFUNDED, result.reservation, {
            "receipt_number": result.transaction.receipt_number,
            "amount": str(result.transaction.amount),
        }))
        return result

    async def delete_transaction(self, hotel_id: str, transaction_id: UUID) -> Reservation:
        """Remove a transaction, reversing its effect on the reservation first"""

        async def operation() -> Reservation:
            transaction = await self._load_transaction(hotel_id, transaction_id)
            reservation = await self._load_reservation(hotel_id, transaction.reservation_id)
            if transaction.status == TransactionStatus.SUCCESS:
                expected_version = reservation.version
                reservation.reverse_payment(transaction.amount)
                await self.store.reservations.update(reservation, expected_version)
            await self.store.transactions.delete(hotel_id, transaction_id)
            return reservation

        reservation = await self._atomic(operation, f"Delete payment {transaction_id}")
        logger.info("Payment %s deleted from %s", transaction_id, reservation.booking_reference)
        return reservation

    async def get_reservation_payments(self, hotel_id: str, reservation_id: UUID) -> Dict[str, Any]:
        """Payment history and totals for one booking"""
        reservation = await self._load_reservation(hotel_id, reservation_id)
        payments = await self.store.transactions.find_by_reservation(hotel_id, reservation_id)

        successful = [p for p in payments if p.status == TransactionStatus.SUCCESS]
        refunded = [p for p in payments if p.status == TransactionStatus.REFUNDED]
        return {
            "payments": payments,
            "summary": {
                "booking_reference": reservation.booking_reference,
                "customer_name": reservation.customer_name,
                "total_amount": reservation.grand_total,
                "paid_amount": reservation.paid_amount,
                "pending_amount": reservation.pending_amount,
                "payment_status": reservation.payment_status.value,
                "total_transactions": len(payments),
                "successful_payments": len(successful),
                "refunded_payments": len(refunded),
                "total_refunded": sum((p.amount for p in refunded), ZERO),
            },
        }

    async def list_payments(
        self,
        hotel_id: str,
        payment_method: Optional[PaymentMethod] = None,
        status: Optional[TransactionStatus] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Recent payments of the hotel with booking info and totals"""
        payments = await self.store.transactions.search(hotel_id, PaymentFilter(
            payment_method=payment_method,
            status=status,
            from_date=from_date,
            to_date=to_date,
            limit=self.list_limit,
        ))

        booking_info = {}
        for reservation_id in dict.fromkeys(p.reservation_id for p in payments):
            reservation = await self.store.reservations.find_by_id(hotel_id, reservation_id)
            if reservation is not None:
                booking_info[reservation_id] = {
                    "booking_reference": reservation.booking_reference,
                    "customer_name": reservation.customer_name,
                }

        total_amount = sum((p.amount for p in payments if p.status == TransactionStatus.SUCCESS), ZERO)
        total_refunded = sum((p.amount for p in payments if p.status == TransactionStatus.REFUNDED), ZERO)
        return {
            "payments": [
                {"transaction": p, "booking_info": booking_info.get(p.reservation_id, {})}
                for p in payments
            ],
            "summary": {
                "total_transactions": len(payments),
                "total_amount": total_amount,
                "total_refunded": total_refunded,
                "net_amount": total_amount - total_refunded,
            },
        }

    async def _load_transaction(self, hotel_id: str, transaction_id: UUID) -> SettlementTransaction:
        transaction = await self.store.transactions.find_by_id(hotel_id, transaction_id)
        if transaction is None:
            raise TransactionNotFound(str(transaction_id))
        return transaction
