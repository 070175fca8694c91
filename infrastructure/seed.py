"""Demo room catalog for local runs"""
import logging
from decimal import Decimal

from domain.entities import Room, RoomCategory
from domain.repositories import ReservationStore

logger = logging.getLogger(__name__)

DEMO_CATEGORIES = [
    ("cat-standard", "Standard", 2, Decimal("1000")),
    ("cat-deluxe", "Deluxe", 3, Decimal("1800")),
    ("cat-suite", "Suite", 4, Decimal("3500")),
]

# room number, floor, category
DEMO_ROOMS = [
    ("101", 1, "cat-standard"),
    ("102", 1, "cat-standard"),
    ("103", 1, "cat-standard"),
    ("201", 2, "cat-deluxe"),
    ("202", 2, "cat-deluxe"),
    ("301", 3, "cat-suite"),
]


async def seed_demo_data(store: ReservationStore, hotel_id: str) -> int:
    """Load the demo catalog for hotel_id; returns number of rooms written"""
    prices = {}
    async with store.transaction():
        for category_id, name, max_occupancy, price in DEMO_CATEGORIES:
            await store.rooms.save_category(RoomCategory(
                category_id=category_id,
                hotel_id=hotel_id,
                category_name=name,
                max_occupancy=max_occupancy,
                base_price=price,
            ))
            prices[category_id] = price

        for room_number, floor, category_id in DEMO_ROOMS:
            await store.rooms.save_room(Room(
                room_id=f"room-{room_number}",
                hotel_id=hotel_id,
                room_number=room_number,
                floor=floor,
                category_id=category_id,
                current_price=prices[category_id],
            ))

    logger.info("Seeded %d demo rooms for hotel %s", len(DEMO_ROOMS), hotel_id)
    return len(DEMO_ROOMS)
