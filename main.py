import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional
from uuid import UUID

from fastapi import FastAPI, HTTPException, Depends, Query, Request
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm

from api.schemas import (
    # Bookings
    CreateBookingRequest, UpdateBookingRequest, CheckAvailabilityRequest,
    CheckInRequest, CheckOutRequest, CancelBookingRequest,
    BookingResponse, RoomBreakdownResponse, RoomDetailResponse, BookingSummaryResponse,
    CreateBookingResponse, BookingDetailResponse, TransitionResponse, AvailabilityResponse,
    # Payments
    AddPaymentRequest, RefundPaymentRequest, TransactionResponse, PaymentResponse,
    PaymentListItem, PaymentListResponse, BookingPaymentsResponse,
    # Auth
    Token, UserResponse
)

from api.dependencies import get_current_active_user, fake_users_db, get_user
from infrastructure.config import settings
from infrastructure.logging_config import setup_logging
from infrastructure.notifications import LoggingNotificationHook
from infrastructure.security import verify_password, create_access_token
from infrastructure.seed import seed_demo_data
from domain.auth import User

from application.services import (
    AvailabilityService, ReservationService, LifecycleService, SettlementService,
    TransitionResult,
)
from infrastructure.repositories.in_memory_repositories import InMemoryStore
from domain.entities import Reservation, SettlementTransaction, utcnow
from domain.enums import (
    ReservationStatus, RoomStatus, BookingSource, PaymentStatus, PaymentMethod, TransactionStatus,
)
from domain.exceptions import (
    ReservationEngineError, NotFound, ConflictError, StorageError, ConcurrencyConflict,
    DuplicateKey,
)
from domain.notifications import NotificationHook
from domain.repositories import ReservationStore, ReservationFilter

logger = logging.getLogger(__name__)

# Initialize store and notification hook
store = InMemoryStore()
notifier = LoggingNotificationHook()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if settings.SEED_DEMO_DATA:
        await seed_demo_data(store, settings.DEMO_HOTEL_ID)
    logger.info("%s started", settings.APP_NAME)
    yield


app = FastAPI(
    title=settings.APP_NAME,
    description="Multi-room hotel reservations, stay lifecycle and payment settlement",
    version="1.0.0",
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# Dependency injection
def get_store() -> ReservationStore:
    return store

def get_notifier() -> NotificationHook:
    return notifier

def get_clock() -> Callable[[], datetime]:
    return utcnow

def _service_options(notifier: NotificationHook, clock: Callable[[], datetime]) -> dict:
    return {
        "notifier": notifier,
        "clock": clock,
        "retry_attempts": settings.CONFLICT_RETRY_ATTEMPTS,
        "retry_base_delay": settings.CONFLICT_RETRY_BASE_DELAY,
    }

def get_availability_service(
    store: ReservationStore = Depends(get_store),
    notifier: NotificationHook = Depends(get_notifier),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AvailabilityService:
    return AvailabilityService(store, settings.stay_policy(), **_service_options(notifier, clock))

def get_reservation_service(
    store: ReservationStore = Depends(get_store),
    availability: AvailabilityService = Depends(get_availability_service),
    notifier: NotificationHook = Depends(get_notifier),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> ReservationService:
    return ReservationService(store, availability, **_service_options(notifier, clock))

def get_lifecycle_service(
    store: ReservationStore = Depends(get_store),
    notifier: NotificationHook = Depends(get_notifier),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> LifecycleService:
    return LifecycleService(store, settings.stay_policy(), **_service_options(notifier, clock))

def get_settlement_service(
    store: ReservationStore = Depends(get_store),
    notifier: NotificationHook = Depends(get_notifier),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> SettlementService:
    return SettlementService(store, settings.PAYMENT_LIST_LIMIT, **_service_options(notifier, clock))

# ============================================================================
# ERROR HANDLERS
# ============================================================================

def _status_for(exc: ReservationEngineError) -> int:
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, ConflictError):
        return 409
    return 400

@app.exception_handler(ReservationEngineError)
async def reservation_error_handler(request: Request, exc: ReservationEngineError):
    status_code = _status_for(exc)
    logger.warning("%s %s rejected (%d): %s", request.method, request.url.path, status_code, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())

@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    if isinstance(exc, (ConcurrencyConflict, DuplicateKey)):
        logger.warning("%s %s conflicted: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=409,
            content={"detail": "The booking was changed by someone else, please retry", "error": "concurrency_conflict"},
        )
    logger.error("%s %s failed, store unavailable: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Reservation store unavailable", "error": "store_unavailable"},
    )

# ============================================================================
# HEALTH & ENUM REFERENCE ENDPOINTS
# ============================================================================

@app.get("/api/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "API is running"}

@app.get("/api/enums/booking-status", tags=["Enum Reference"])
async def get_booking_statuses():
    """Get all ReservationStatus enum values"""
    return {
        "values": [item.value for item in ReservationStatus],
        "description": "Booking status values: confirmed, checked_in, checked_out, cancelled, no_show"
    }

@app.get("/api/enums/booking-source", tags=["Enum Reference"])
async def get_booking_sources():
    """Get all BookingSource enum values"""
    return {
        "values": [item.value for item in BookingSource],
        "description": "Booking source values: direct, booking.com, makemytrip, walk_in"
    }

@app.get("/api/enums/payment-status", tags=["Enum Reference"])
async def get_payment_statuses():
    """Get all PaymentStatus enum values"""
    return {
        "values": [item.value for item in PaymentStatus],
        "description": "Payment status values: pending, partial, paid, refunded"
    }

@app.get("/api/enums/payment-method", tags=["Enum Reference"])
async def get_payment_methods():
    """Get all PaymentMethod enum values"""
    return {
        "values": [item.value for item in PaymentMethod],
        "description": "Payment method values: cash, card, upi, online, bank_transfer, cheque"
    }

@app.get("/api/enums/room-status", tags=["Enum Reference"])
async def get_room_statuses():
    """Get all RoomStatus enum values"""
    return {
        "values": [item.value for item in RoomStatus],
        "description": "Room status values: available, occupied, maintenance, out_of_order"
    }

# ============================================================================
# AUTH ENDPOINTS
# ============================================================================

@app.post("/token", response_model=Token, tags=["Auth"])
async def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends()):
    user = get_user(fake_users_db, form_data.username)
    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=401,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_access_token(
        data={"sub": user.username, "hotel_id": user.hotel_id}, expires_delta=access_token_expires
    )
    return {"access_token": access_token, "token_type": "bearer"}

@app.get("/users/me", response_model=UserResponse, tags=["Auth"])
async def read_users_me(current_user: User = Depends(get_current_active_user)):
    return current_user

# ============================================================================
# BOOKING ENDPOINTS
# ============================================================================

@app.post("/api/bookings", response_model=CreateBookingResponse, status_code=201, tags=["Bookings"])
async def create_booking(
    request: CreateBookingRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Create new booking for one or more rooms"""
    result = await service.create_reservation(
        hotel_id=current_user.hotel_id,
        room_ids=request.room_ids,
        customer_name=request.customer_name,
        customer_email=request.customer_email,
        customer_phone=request.customer_phone,
        check_in=request.check_in_date,
        check_out=request.check_out_date,
        guests_count=request.guests_count,
        discount_amount=request.discount_amount,
        booking_source=request.booking_source,
        special_requests=request.special_requests,
        coupon_code=request.coupon_code,
        room_breakdown=[entry.model_dump() for entry in request.room_breakdown or []],
        created_by=current_user.actor,
    )
    return CreateBookingResponse(
        booking=_booking_to_response(result.reservation),
        room_details=[RoomDetailResponse.model_validate(d, from_attributes=True) for d in result.room_details],
        booking_summary=BookingSummaryResponse.model_validate(result.booking_summary, from_attributes=True),
    )

@app.get("/api/bookings", response_model=List[BookingResponse], tags=["Bookings"])
async def list_bookings(
    status: Optional[List[ReservationStatus]] = Query(None),
    check_in_from: Optional[date] = None,
    check_in_to: Optional[date] = None,
    check_out_from: Optional[date] = None,
    check_out_to: Optional[date] = None,
    search: Optional[str] = None,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """List bookings of the operator's hotel, newest first"""
    reservations = await service.list_reservations(current_user.hotel_id, ReservationFilter(
        status=status,
        check_in_from=check_in_from,
        check_in_to=check_in_to,
        check_out_from=check_out_from,
        check_out_to=check_out_to,
        search=search,
    ))
    return [_booking_to_response(r) for r in reservations]

@app.post("/api/bookings/check-availability", response_model=AvailabilityResponse, tags=["Bookings"])
async def check_availability(
    request: CheckAvailabilityRequest,
    service: AvailabilityService = Depends(get_availability_service),
    current_user: User = Depends(get_current_active_user)
):
    """Check whether a room set is free for a stay window"""
    report = await service.check_availability(
        current_user.hotel_id, request.room_ids, request.check_in_date, request.check_out_date
    )
    return AvailabilityResponse.model_validate(report, from_attributes=True)

@app.get("/api/bookings/stats", tags=["Bookings"])
async def booking_statistics(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Booking count and revenue per status"""
    return await service.booking_statistics(current_user.hotel_id, start, end)

@app.get("/api/bookings/upcoming/check-ins", response_model=List[BookingResponse], tags=["Bookings"])
async def upcoming_check_ins(
    days: int = Query(settings.UPCOMING_WINDOW_DAYS, ge=0),
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    reservations = await service.upcoming_check_ins(current_user.hotel_id, days)
    return [_booking_to_response(r) for r in reservations]

@app.get("/api/bookings/upcoming/check-outs", response_model=List[BookingResponse], tags=["Bookings"])
async def upcoming_check_outs(
    days: int = Query(settings.UPCOMING_WINDOW_DAYS, ge=0),
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    reservations = await service.upcoming_check_outs(current_user.hotel_id, days)
    return [_booking_to_response(r) for r in reservations]

@app.get("/api/bookings/today/check-ins", response_model=List[BookingResponse], tags=["Bookings"])
async def todays_check_ins(
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    reservations = await service.todays_check_ins(current_user.hotel_id)
    return [_booking_to_response(r) for r in reservations]

@app.get("/api/bookings/today/check-outs", response_model=List[BookingResponse], tags=["Bookings"])
async def todays_check_outs(
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    reservations = await service.todays_check_outs(current_user.hotel_id)
    return [_booking_to_response(r) for r in reservations]

@app.get("/api/bookings/checked-in", response_model=List[BookingResponse], tags=["Bookings"])
async def currently_checked_in(
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Guests currently in house"""
    reservations = await service.currently_checked_in(current_user.hotel_id)
    return [_booking_to_response(r) for r in reservations]

@app.get("/api/bookings/reference/{booking_reference}", response_model=BookingDetailResponse, tags=["Bookings"])
async def get_booking_by_reference(
    booking_reference: str,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get booking by booking reference"""
    reservation = await service.get_reservation_by_reference(current_user.hotel_id, booking_reference)
    if not reservation:
        raise HTTPException(status_code=404, detail="Booking not found")
    return await _booking_detail(service, reservation)

@app.get("/api/bookings/{booking_id}", response_model=BookingDetailResponse, tags=["Bookings"])
async def get_booking(
    booking_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get booking by ID"""
    reservation = await service.get_reservation(current_user.hotel_id, booking_id)
    if not reservation:
        raise HTTPException(status_code=404, detail="Booking not found")
    return await _booking_detail(service, reservation)

@app.get("/api/bookings/{booking_id}/history", tags=["Bookings"])
async def get_booking_history(
    booking_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Timeline and financial summary of a booking"""
    history = await service.booking_history(current_user.hotel_id, booking_id)
    if history is None:
        raise HTTPException(status_code=404, detail="Booking not found")
    return history

@app.put("/api/bookings/{booking_id}", response_model=BookingResponse, tags=["Bookings"])
async def update_booking(
    booking_id: UUID,
    request: UpdateBookingRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Change dates, guest count or contact details"""
    reservation = await service.update_reservation(
        current_user.hotel_id,
        booking_id,
        check_in=request.check_in_date,
        check_out=request.check_out_date,
        customer_name=request.customer_name,
        customer_email=request.customer_email,
        customer_phone=request.customer_phone,
        guests_count=request.guests_count,
        special_requests=request.special_requests,
    )
    return _booking_to_response(reservation)

# ============================================================================
# LIFECYCLE ENDPOINTS
# ============================================================================

@app.post("/api/bookings/{booking_id}/check-in", response_model=TransitionResponse, tags=["Lifecycle"])
async def check_in_guest(
    booking_id: UUID,
    request: Optional[CheckInRequest] = None,
    service: LifecycleService = Depends(get_lifecycle_service),
    current_user: User = Depends(get_current_active_user)
):
    """Check-in guest; all rooms of the booking become occupied"""
    request = request or CheckInRequest()
    result = await service.check_in(
        current_user.hotel_id,
        booking_id,
        actor=current_user.actor,
        payment_method=request.payment_method,
        extra_charges=request.extra_charges,
        extra_charges_description=request.extra_charges_description,
        notes=request.notes,
    )
    return _transition_to_response("Guest checked in successfully", result)

@app.post("/api/bookings/{booking_id}/check-out", response_model=TransitionResponse, tags=["Lifecycle"])
async def check_out_guest(
    booking_id: UUID,
    request: Optional[CheckOutRequest] = None,
    service: LifecycleService = Depends(get_lifecycle_service),
    current_user: User = Depends(get_current_active_user)
):
    """Check-out guest; rooms are released"""
    request = request or CheckOutRequest()
    result = await service.check_out(
        current_user.hotel_id,
        booking_id,
        actor=current_user.actor,
        payment_method=request.payment_method,
        extra_charges=request.extra_charges,
        extra_charges_description=request.extra_charges_description,
    )
    reservation = result.reservation
    billing = {
        "room_charges": reservation.total_amount,
        "extra_charges": reservation.extra_charges,
        "grand_total": reservation.grand_total,
        "paid_amount": reservation.paid_amount,
        "pending_amount": reservation.pending_amount,
        "payment_status": reservation.payment_status.value,
    }
    return _transition_to_response("Guest checked out successfully", result, billing)

@app.post("/api/bookings/{booking_id}/cancel", response_model=TransitionResponse, tags=["Lifecycle"])
async def cancel_booking(
    booking_id: UUID,
    request: Optional[CancelBookingRequest] = None,
    service: LifecycleService = Depends(get_lifecycle_service),
    current_user: User = Depends(get_current_active_user)
):
    """Cancel booking"""
    request = request or CancelBookingRequest()
    result = await service.cancel(current_user.hotel_id, booking_id, current_user.actor, request.reason)
    return _transition_to_response("Booking cancelled successfully", result)

@app.post("/api/bookings/{booking_id}/no-show", response_model=TransitionResponse, tags=["Lifecycle"])
async def mark_no_show(
    booking_id: UUID,
    service: LifecycleService = Depends(get_lifecycle_service),
    current_user: User = Depends(get_current_active_user)
):
    """Mark booking as no-show"""
    result = await service.mark_no_show(current_user.hotel_id, booking_id, current_user.actor)
    return _transition_to_response("Booking marked as no-show", result)

# ============================================================================
# PAYMENT ENDPOINTS
# ============================================================================

@app.post("/api/payments", response_model=PaymentResponse, status_code=201, tags=["Payments"])
async def add_payment(
    request: AddPaymentRequest,
    service: SettlementService = Depends(get_settlement_service),
    current_user: User = Depends(get_current_active_user)
):
    """Record a payment against a booking"""
    result = await service.add_payment(
        current_user.hotel_id,
        request.booking_id,
        amount=request.amount,
        payment_method=request.payment_method,
        processed_by=current_user.actor,
        external_transaction_id=request.external_transaction_id,
        reference_number=request.reference_number,
        notes=request.notes,
        payment_type=request.payment_type,
    )
    return PaymentResponse(
        message="Payment added successfully",
        payment=_transaction_to_response(result.transaction),
        booking=_booking_to_response(result.reservation),
    )

@app.get("/api/payments", response_model=PaymentListResponse, tags=["Payments"])
async def list_payments(
    payment_method: Optional[PaymentMethod] = None,
    status: Optional[TransactionStatus] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    service: SettlementService = Depends(get_settlement_service),
    current_user: User = Depends(get_current_active_user)
):
    """Recent payments of the hotel"""
    listing = await service.list_payments(current_user.hotel_id, payment_method, status, from_date, to_date)
    return PaymentListResponse(
        payments=[
            PaymentListItem(payment=_transaction_to_response(item["transaction"]), booking_info=item["booking_info"])
            for item in listing["payments"]
        ],
        summary=listing["summary"],
    )

@app.get("/api/payments/booking/{booking_id}", response_model=BookingPaymentsResponse, tags=["Payments"])
async def get_booking_payments(
    booking_id: UUID,
    service: SettlementService = Depends(get_settlement_service),
    current_user: User = Depends(get_current_active_user)
):
    """Payment history of one booking"""
    history = await service.get_reservation_payments(current_user.hotel_id, booking_id)
    return BookingPaymentsResponse(
        payments=[_transaction_to_response(t) for t in history["payments"]],
        summary=history["summary"],
    )

@app.put("/api/payments/{transaction_id}/refund", response_model=PaymentResponse, tags=["Payments"])
async def refund_payment(
    transaction_id: UUID,
    request: Optional[RefundPaymentRequest] = None,
    service: SettlementService = Depends(get_settlement_service),
    current_user: User = Depends(get_current_active_user)
):
    """Refund a successful payment"""
    request = request or RefundPaymentRequest()
    result = await service.refund(current_user.hotel_id, transaction_id, request.notes)
    return PaymentResponse(
        message="Payment refunded successfully",
        payment=_transaction_to_response(result.transaction),
        booking=_booking_to_response(result.reservation),
    )

@app.delete("/api/payments/{transaction_id}", tags=["Payments"])
async def delete_payment(
    transaction_id: UUID,
    service: SettlementService = Depends(get_settlement_service),
    current_user: User = Depends(get_current_active_user)
):
    """Delete a payment, reversing its effect on the booking"""
    reservation = await service.delete_transaction(current_user.hotel_id, transaction_id)
    return {
        "message": "Payment deleted successfully",
        "booking": _booking_to_response(reservation),
    }

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _booking_to_response(reservation: Reservation) -> BookingResponse:
    """Convert Reservation entity to response DTO"""
    return BookingResponse(
        reservation_id=reservation.reservation_id,
        booking_reference=reservation.booking_reference,
        hotel_id=reservation.hotel_id,
        room_ids=reservation.room_ids,
        total_rooms=reservation.total_rooms,
        room_breakdown=[RoomBreakdownResponse.model_validate(e) for e in reservation.room_breakdown],
        customer_name=reservation.customer_name,
        customer_email=reservation.customer_email,
        customer_phone=reservation.customer_phone,
        guests_count=reservation.guests_count,
        check_in_date=reservation.check_in_date,
        check_out_date=reservation.check_out_date,
        actual_check_in=reservation.actual_check_in,
        actual_check_out=reservation.actual_check_out,
        early_check_in=reservation.early_check_in,
        late_check_out=reservation.late_check_out,
        checked_in_by=reservation.checked_in_by,
        checked_out_by=reservation.checked_out_by,
        status=reservation.status.value,
        booking_source=reservation.booking_source.value,
        special_requests=reservation.special_requests,
        coupon_code=reservation.coupon_code,
        total_amount=reservation.total_amount,
        discount_amount=reservation.discount_amount,
        extra_charges=reservation.extra_charges,
        extra_charges_description=reservation.extra_charges_description,
        paid_amount=reservation.paid_amount,
        pending_amount=reservation.pending_amount,
        payment_status=reservation.payment_status.value,
        payment_method=reservation.payment_method.value if reservation.payment_method else None,
        created_at=reservation.created_at,
        updated_at=reservation.updated_at,
        created_by=reservation.created_by,
        version=reservation.version,
    )

def _transaction_to_response(transaction: SettlementTransaction) -> TransactionResponse:
    """Convert SettlementTransaction entity to response DTO"""
    return TransactionResponse(
        transaction_id=transaction.transaction_id,
        hotel_id=transaction.hotel_id,
        reservation_id=transaction.reservation_id,
        amount=transaction.amount,
        payment_method=transaction.payment_method.value,
        status=transaction.status.value,
        payment_type=transaction.payment_type.value,
        payment_date=transaction.payment_date,
        external_transaction_id=transaction.external_transaction_id,
        reference_number=transaction.reference_number,
        notes=transaction.notes,
        processed_by=transaction.processed_by,
        receipt_number=transaction.receipt_number,
    )

def _transition_to_response(message: str, result: TransitionResult, billing: Optional[dict] = None) -> TransitionResponse:
    return TransitionResponse(
        message=message,
        booking=_booking_to_response(result.reservation),
        rooms=[RoomDetailResponse.model_validate(r, from_attributes=True) for r in result.rooms],
        actual_nights_stayed=result.actual_nights_stayed,
        billing=billing,
    )

async def _booking_detail(service: ReservationService, reservation: Reservation) -> BookingDetailResponse:
    rooms = await service.get_room_details(reservation)
    return BookingDetailResponse(
        booking=_booking_to_response(reservation),
        room_details=[RoomDetailResponse.model_validate(r, from_attributes=True) for r in rooms],
    )
