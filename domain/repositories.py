"""Domain Repository Interfaces"""
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel

from domain.entities import Reservation, Room, RoomCategory, SettlementTransaction
from domain.enums import ReservationStatus, PaymentMethod, TransactionStatus


class ReservationFilter(BaseModel):
    """Listing criteria for reservations of one hotel"""
    status: Optional[List[ReservationStatus]] = None
    check_in_from: Optional[date] = None
    check_in_to: Optional[date] = None
    check_out_from: Optional[date] = None
    check_out_to: Optional[date] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    search: Optional[str] = None


class PaymentFilter(BaseModel):
    """Listing criteria for settlement transactions of one hotel"""
    payment_method: Optional[PaymentMethod] = None
    status: Optional[TransactionStatus] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    limit: int = 100


class ReservationRepository(ABC):
    """Repository interface for Reservation Aggregate"""

    @abstractmethod
    async def add(self, reservation: Reservation) -> Reservation:
        """Insert a new reservation.

        Raises DuplicateKey when the booking reference is taken and
        ConcurrencyConflict when an active reservation already holds one of
        the rooms for an overlapping window.
        """
        pass

    @abstractmethod
    async def find_by_id(self, hotel_id: str, reservation_id: UUID) -> Optional[Reservation]:
        """Find reservation by ID within a hotel"""
        pass

    @abstractmethod
    async def find_by_reference(self, hotel_id: str, booking_reference: str) -> Optional[Reservation]:
        """Find reservation by booking reference within a hotel"""
        pass

    @abstractmethod
    async def find_blocking(
        self,
        room_id: str,
        check_in: date,
        check_out: date,
        exclude_reservation_id: Optional[UUID] = None,
    ) -> List[Reservation]:
        """Active reservations holding room_id for a window overlapping [check_in, check_out)"""
        pass

    @abstractmethod
    async def find_checked_in_for_room(self, room_id: str) -> List[Reservation]:
        """Reservations currently checked in to room_id"""
        pass

    @abstractmethod
    async def search(self, hotel_id: str, criteria: ReservationFilter) -> List[Reservation]:
        """Find reservations of a hotel matching criteria"""
        pass

    @abstractmethod
    async def update(self, reservation: Reservation, expected_version: int) -> Reservation:
        """Replace a reservation; raises ConcurrencyConflict on version mismatch"""
        pass


class RoomRepository(ABC):
    """Room/category lookup owned by the room catalog"""

    @abstractmethod
    async def get_rooms_by_ids(self, hotel_id: str, room_ids: List[str]) -> List[Room]:
        """Rooms of the hotel among room_ids; unknown ids are simply absent"""
        pass

    @abstractmethod
    async def get_categories_by_ids(self, category_ids: List[str]) -> List[RoomCategory]:
        """Categories among category_ids"""
        pass

    @abstractmethod
    async def save_room(self, room: Room) -> Room:
        """Insert or replace a room"""
        pass

    @abstractmethod
    async def save_category(self, category: RoomCategory) -> RoomCategory:
        """Insert or replace a category"""
        pass


class TransactionRepository(ABC):
    """Repository interface for settlement transactions"""

    @abstractmethod
    async def add(self, transaction: SettlementTransaction) -> SettlementTransaction:
        """Insert a transaction; raises DuplicateKey on a taken receipt number"""
        pass

    @abstractmethod
    async def find_by_id(self, hotel_id: str, transaction_id: UUID) -> Optional[SettlementTransaction]:
        pass

    @abstractmethod
    async def find_by_reservation(self, hotel_id: str, reservation_id: UUID) -> List[SettlementTransaction]:
        """Transactions of a reservation, most recent first"""
        pass

    @abstractmethod
    async def receipt_exists(self, hotel_id: str, receipt_number: str) -> bool:
        pass

    @abstractmethod
    async def search(self, hotel_id: str, criteria: PaymentFilter) -> List[SettlementTransaction]:
        """Transactions of a hotel matching criteria, most recent first"""
        pass

    @abstractmethod
    async def update(self, transaction: SettlementTransaction) -> SettlementTransaction:
        pass

    @abstractmethod
    async def delete(self, hotel_id: str, transaction_id: UUID) -> bool:
        pass


class SequenceRepository(ABC):
    """Atomic named counters"""

    @abstractmethod
    async def next_value(self, name: str) -> int:
        """Increment counter `name` and return the new value (first call returns 1)"""
        pass


class ReservationStore(ABC):
    """Transactional boundary over all repositories of the engine.

    Everything done inside one `transaction()` block commits together or not
    at all; blocks are serializable with respect to each other.
    """

    reservations: ReservationRepository
    rooms: RoomRepository
    transactions: TransactionRepository
    sequences: SequenceRepository

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager:
        """Open a serializable unit of work"""
        pass
