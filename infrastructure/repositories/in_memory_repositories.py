"""In-Memory Repository Implementations

All repositories share one InMemoryStore. A transaction holds the store lock
for its whole duration and restores a snapshot of the state when the block
raises, so units of work are serializable and all-or-nothing. Entities are
copied on the way in and out, the way a database hands back fresh rows.
"""
import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, List, Dict
from uuid import UUID

from domain.entities import Reservation, Room, RoomCategory, SettlementTransaction
from domain.enums import BLOCKING_STATUSES, ReservationStatus
from domain.exceptions import ConcurrencyConflict, DuplicateKey
from domain.repositories import (
    ReservationRepository, RoomRepository, TransactionRepository, SequenceRepository,
    ReservationStore, ReservationFilter, PaymentFilter,
)

logger = logging.getLogger(__name__)


@dataclass
class _StoreState:
    reservations: Dict[UUID, Reservation] = field(default_factory=dict)
    references: Dict[str, UUID] = field(default_factory=dict)
    rooms: Dict[str, Room] = field(default_factory=dict)
    categories: Dict[str, RoomCategory] = field(default_factory=dict)
    transactions: Dict[UUID, SettlementTransaction] = field(default_factory=dict)
    receipts: Dict[str, UUID] = field(default_factory=dict)
    sequences: Dict[str, int] = field(default_factory=dict)


def _overlapping(reservation: Reservation, room_id: str, check_in: date, check_out: date) -> bool:
    return (
        reservation.status in BLOCKING_STATUSES
        and room_id in reservation.room_ids
        and reservation.check_in_date < check_out
        and check_in < reservation.check_out_date
    )


class InMemoryReservationRepository(ReservationRepository):
    """In-memory implementation of ReservationRepository"""

    def __init__(self, state: _StoreState):
        self._state = state

    async def add(self, reservation: Reservation) -> Reservation:
        """Insert reservation, enforcing reference uniqueness and room exclusivity"""
        if reservation.booking_reference in self._state.references:
            raise DuplicateKey("booking_reference", reservation.booking_reference)
        self._check_exclusive(reservation)

        stored = reservation.model_copy(deep=True)
        self._state.reservations[stored.reservation_id] = stored
        self._state.references[stored.booking_reference] = stored.reservation_id
        return reservation

    async def find_by_id(self, hotel_id: str, reservation_id: UUID) -> Optional[Reservation]:
        """Find reservation by ID"""
        reservation = self._state.reservations.get(reservation_id)
        if reservation is None or reservation.hotel_id != hotel_id:
            return None
        return reservation.model_copy(deep=True)

    async def find_by_reference(self, hotel_id: str, booking_reference: str) -> Optional[Reservation]:
        """Find reservation by booking reference"""
        reservation_id = self._state.references.get(booking_reference)
        if reservation_id is None:
            return None
        return await self.find_by_id(hotel_id, reservation_id)

    async def find_blocking(
        self,
        room_id: str,
        check_in: date,
        check_out: date,
        exclude_reservation_id: Optional[UUID] = None,
    ) -> List[Reservation]:
        return [
            r.model_copy(deep=True) for r in self._state.reservations.values()
            if r.reservation_id != exclude_reservation_id and _overlapping(r, room_id, check_in, check_out)
        ]

    async def find_checked_in_for_room(self, room_id: str) -> List[Reservation]:
        return [
            r.model_copy(deep=True) for r in self._state.reservations.values()
            if r.status == ReservationStatus.CHECKED_IN and room_id in r.room_ids
        ]

    async def search(self, hotel_id: str, criteria: ReservationFilter) -> List[Reservation]:
        results = [r for r in self._state.reservations.values() if r.hotel_id == hotel_id]

        if criteria.status:
            results = [r for r in results if r.status in criteria.status]
        if criteria.check_in_from:
            results = [r for r in results if r.check_in_date >= criteria.check_in_from]
        if criteria.check_in_to:
            results = [r for r in results if r.check_in_date <= criteria.check_in_to]
        if criteria.check_out_from:
            results = [r for r in results if r.check_out_date >= criteria.check_out_from]
        if criteria.check_out_to:
            results = [r for r in results if r.check_out_date <= criteria.check_out_to]
        if criteria.created_from:
            results = [r for r in results if r.created_at >= criteria.created_from]
        if criteria.created_to:
            results = [r for r in results if r.created_at <= criteria.created_to]
        if criteria.search:
            needle = criteria.search.lower()
            results = [
                r for r in results
                if any(needle in value.lower() for value in (
                    r.customer_name, r.customer_email, r.customer_phone, r.booking_reference,
                ))
            ]

        results.sort(key=lambda r: r.created_at, reverse=True)
        return [r.model_copy(deep=True) for r in results]

    async def update(self, reservation: Reservation, expected_version: int) -> Reservation:
        """Replace reservation if nobody else changed it since it was read"""
        current = self._state.reservations.get(reservation.reservation_id)
        if current is None:
            raise ValueError("Reservation not found")
        if current.version != expected_version:
            raise ConcurrencyConflict(
                f"Reservation {reservation.booking_reference} changed concurrently "
                f"(expected version {expected_version}, found {current.version})"
            )
        self._check_exclusive(reservation)
        self._state.reservations[reservation.reservation_id] = reservation.model_copy(deep=True)
        return reservation

    def _check_exclusive(self, reservation: Reservation) -> None:
        if reservation.status not in BLOCKING_STATUSES:
            return
        for room_id in reservation.room_ids:
            for other in self._state.reservations.values():
                if other.reservation_id == reservation.reservation_id:
                    continue
                if _overlapping(other, room_id, reservation.check_in_date, reservation.check_out_date):
                    raise ConcurrencyConflict(
                        f"Room {room_id} already held by {other.booking_reference} for an overlapping window"
                    )


class InMemoryRoomRepository(RoomRepository):
    """In-memory room catalog"""

    def __init__(self, state: _StoreState):
        self._state = state

    async def get_rooms_by_ids(self, hotel_id: str, room_ids: List[str]) -> List[Room]:
        rooms = []
        for room_id in room_ids:
            room = self._state.rooms.get(room_id)
            if room is not None and room.hotel_id == hotel_id:
                rooms.append(room.model_copy(deep=True))
        return rooms

    async def get_categories_by_ids(self, category_ids: List[str]) -> List[RoomCategory]:
        return [
            self._state.categories[c].model_copy(deep=True)
            for c in dict.fromkeys(category_ids) if c in self._state.categories
        ]

    async def save_room(self, room: Room) -> Room:
        self._state.rooms[room.room_id] = room.model_copy(deep=True)
        return room

    async def save_category(self, category: RoomCategory) -> RoomCategory:
        self._state.categories[category.category_id] = category.model_copy(deep=True)
        return category


class InMemoryTransactionRepository(TransactionRepository):
    """In-memory implementation of TransactionRepository"""

    def __init__(self, state: _StoreState):
        self._state = state

    async def add(self, transaction: SettlementTransaction) -> SettlementTransaction:
        receipt_key = f"{transaction.hotel_id}:{transaction.receipt_number}"
        if receipt_key in self._state.receipts:
            raise DuplicateKey("receipt_number", transaction.receipt_number)
        self._state.transactions[transaction.transaction_id] = transaction.model_copy(deep=True)
        self._state.receipts[receipt_key] = transaction.transaction_id
        return transaction

    async def find_by_id(self, hotel_id: str, transaction_id: UUID) -> Optional[SettlementTransaction]:
        transaction = self._state.transactions.get(transaction_id)
        if transaction is None or transaction.hotel_id != hotel_id:
            return None
        return transaction.model_copy(deep=True)

    async def find_by_reservation(self, hotel_id: str, reservation_id: UUID) -> List[SettlementTransaction]:
        results = [
            t for t in self._state.transactions.values()
            if t.hotel_id == hotel_id and t.reservation_id == reservation_id
        ]
        results.sort(key=lambda t: t.payment_date, reverse=True)
        return [t.model_copy(deep=True) for t in results]

    async def receipt_exists(self, hotel_id: str, receipt_number: str) -> bool:
        return f"{hotel_id}:{receipt_number}" in self._state.receipts

    async def search(self, hotel_id: str, criteria: PaymentFilter) -> List[SettlementTransaction]:
        results = [t for t in self._state.transactions.values() if t.hotel_id == hotel_id]

        if criteria.payment_method:
            results = [t for t in results if t.payment_method == criteria.payment_method]
        if criteria.status:
            results = [t for t in results if t.status == criteria.status]
        if criteria.from_date:
            results = [t for t in results if t.payment_date >= criteria.from_date]
        if criteria.to_date:
            results = [t for t in results if t.payment_date <= criteria.to_date]

        results.sort(key=lambda t: t.payment_date, reverse=True)
        return [t.model_copy(deep=True) for t in results[:criteria.limit]]

    async def update(self, transaction: SettlementTransaction) -> SettlementTransaction:
        if transaction.transaction_id not in self._state.transactions:
            raise ValueError("Transaction not found")
        self._state.transactions[transaction.transaction_id] = transaction.model_copy(deep=True)
        return transaction

    async def delete(self, hotel_id: str, transaction_id: UUID) -> bool:
        transaction = self._state.transactions.get(transaction_id)
        if transaction is None or transaction.hotel_id != hotel_id:
            return False
        del self._state.transactions[transaction_id]
        self._state.receipts.pop(f"{hotel_id}:{transaction.receipt_number}", None)
        return True


class InMemorySequenceRepository(SequenceRepository):
    """Named counters living in the store state"""

    def __init__(self, state: _StoreState):
        self._state = state

    async def next_value(self, name: str) -> int:
        value = self._state.sequences.get(name, 0) + 1
        self._state.sequences[name] = value
        return value


class InMemoryStore(ReservationStore):
    """Reservation store kept in process memory"""

    def __init__(self):
        self._state = _StoreState()
        self._lock = asyncio.Lock()
        self.reservations = InMemoryReservationRepository(self._state)
        self.rooms = InMemoryRoomRepository(self._state)
        self.transactions = InMemoryTransactionRepository(self._state)
        self.sequences = InMemorySequenceRepository(self._state)

    @asynccontextmanager
    async def transaction(self):
        async with self._lock:
            snapshot = copy.deepcopy(self._state.__dict__)
            try:
                yield self
            except BaseException:
                self._state.__dict__.update(snapshot)
                logger.debug("Store transaction rolled back")
                raise
