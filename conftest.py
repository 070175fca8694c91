"""Shared fixtures: a seeded store, services on a fixed clock, and an API client"""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from application.services import (
    AvailabilityService, ReservationService, LifecycleService, SettlementService,
)
from domain.entities import Room, RoomCategory
from domain.enums import RoomStatus
from domain.value_objects import StayPolicy
from infrastructure.config import settings
from infrastructure.notifications import InMemoryNotificationHook
from infrastructure.repositories.in_memory_repositories import InMemoryStore

HOTEL_ID = settings.DEMO_HOTEL_ID
OTHER_HOTEL_ID = "hotel-other-0099"

# Scenario dates sit a few days after "today"
TODAY = date(2026, 1, 5)


class FixedClock:
    """Callable clock the tests can move forward"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)

    def set(self, day: date, hour: int = 10) -> None:
        self.now = datetime(day.year, day.month, day.day, hour, tzinfo=timezone.utc)


async def seed_catalog(store: InMemoryStore) -> None:
    async with store.transaction():
        for category in (
            RoomCategory(category_id="cat-std", hotel_id=HOTEL_ID, category_name="Standard", max_occupancy=2),
            RoomCategory(category_id="cat-suite", hotel_id=HOTEL_ID, category_name="Suite", max_occupancy=4),
            RoomCategory(category_id="cat-other", hotel_id=OTHER_HOTEL_ID, category_name="Standard", max_occupancy=2),
        ):
            await store.rooms.save_category(category)

        for room in (
            Room(room_id="room-101", hotel_id=HOTEL_ID, room_number="101", floor=1,
                 category_id="cat-std", current_price=Decimal("1000")),
            Room(room_id="room-102", hotel_id=HOTEL_ID, room_number="102", floor=1,
                 category_id="cat-std", current_price=Decimal("1000")),
            Room(room_id="room-103", hotel_id=HOTEL_ID, room_number="103", floor=1,
                 category_id="cat-std", current_price=Decimal("800")),
            Room(room_id="room-301", hotel_id=HOTEL_ID, room_number="301", floor=3,
                 category_id="cat-suite", current_price=Decimal("3500")),
            Room(room_id="room-302", hotel_id=HOTEL_ID, room_number="302", floor=3,
                 category_id="cat-suite", current_price=Decimal("3500"), status=RoomStatus.MAINTENANCE),
            Room(room_id="room-901", hotel_id=OTHER_HOTEL_ID, room_number="901", floor=9,
                 category_id="cat-other", current_price=Decimal("500")),
        ):
            await store.rooms.save_room(room)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def clock():
    return FixedClock(datetime(TODAY.year, TODAY.month, TODAY.day, 9, tzinfo=timezone.utc))


@pytest.fixture
def notifier():
    return InMemoryNotificationHook()


@pytest.fixture
async def store():
    store = InMemoryStore()
    await seed_catalog(store)
    return store


@pytest.fixture
def service_options(notifier, clock):
    return {"notifier": notifier, "clock": clock, "retry_attempts": 3, "retry_base_delay": 0}


@pytest.fixture
def availability_service(store, service_options):
    return AvailabilityService(store, StayPolicy(), **service_options)


@pytest.fixture
def reservation_service(store, availability_service, service_options):
    return ReservationService(store, availability_service, **service_options)


@pytest.fixture
def lifecycle_service(store, service_options):
    return LifecycleService(store, StayPolicy(), **service_options)


@pytest.fixture
def settlement_service(store, service_options):
    return SettlementService(store, 100, **service_options)


@pytest.fixture
def book(reservation_service):
    """Create a booking with sensible defaults"""

    async def _book(room_ids=("room-101",), check_in=date(2026, 1, 10), nights=2, guests=2, **kwargs):
        return await reservation_service.create_reservation(
            hotel_id=kwargs.pop("hotel_id", HOTEL_ID),
            room_ids=list(room_ids),
            customer_name=kwargs.pop("customer_name", "Asha Rao"),
            customer_email=kwargs.pop("customer_email", "asha@example.com"),
            customer_phone=kwargs.pop("customer_phone", "+91 98450 00000"),
            check_in=check_in,
            check_out=check_in + timedelta(days=nights),
            guests_count=guests,
            **kwargs,
        )

    return _book


@pytest.fixture
def client(store, notifier, clock):
    """FastAPI test client bound to the seeded test store"""
    from main import app, get_store, get_notifier, get_clock

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(client):
    """Get authentication headers with valid token"""
    response = client.post("/token", data={"username": "frontdesk", "password": "frontdesk123"})
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}
