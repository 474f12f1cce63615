"""Booking lifecycle: reservation, approval, checkout and payment.

A booking reserves its slot at creation time (the only creation flow):

    PENDING --approve--> APPROVED --checkout--> COMPLETED
       |                    |
       +--decline--> DECLINED
       +--cancel---> CANCELLED <--cancel--+

Every operation runs as one database transaction covering the booking
row, the slot status and the lot's available counter. Status moves are
compare-and-swap updates, so a transition can never be applied twice.
"""
import logging
import time
from contextlib import contextmanager

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError

from .errors import (
    CapacityExhausted, ConcurrencyConflict, CounterOutOfRange, Forbidden,
    InvalidStateTransition, NoCapacity, NoSlotAvailable, NotFound, ParkingError,
    ValidationError,
)
from .lots import ParkingLotDirectory
from .models import Booking, BookingStatus, OPEN_STATUSES, PaymentMethod, PaymentStatus
from .slots import SlotRegistry
from .utils import calculate_amount, calculate_duration, to_utc, utcnow
from .vehicles import VehicleRegistry

# Create Logger
logger = logging.getLogger(__name__)

LOCK_ERROR_MARKERS = (
    "database is locked",
    "lock timeout",
    "could not obtain lock",
    "deadlock",
    "could not serialize",
)


def _is_lock_error(exc):
    text = str(getattr(exc, "orig", exc)).lower()
    return any(marker in text for marker in LOCK_ERROR_MARKERS)


class BookingLifecycle:

    def __init__(self, session, lots=None, slots=None, vehicles=None, clock=None,
                 max_retries=3, retry_delay=0.05):
        self.session = session
        self.lots = lots or ParkingLotDirectory(session)
        self.slots = slots or SlotRegistry(session)
        self.vehicles = vehicles or VehicleRegistry(session)
        self.clock = clock or utcnow
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    # Queries

    def get(self, booking_id):
        booking = self.session.get(Booking, booking_id)
        if booking is None:
            raise NotFound(f"Booking {booking_id} not found")
        return booking

    def get_visible(self, booking_id, user_id=None):
        """Fetch a booking; ``user_id=None`` means the caller is an admin."""
        booking = self.get(booking_id)
        self._check_owner(booking, user_id)
        return booking

    def list_for_user(self, user_id):
        stmt = select(Booking).where(Booking.user_id == user_id).order_by(Booking.id.desc())
        return self.session.scalars(stmt).all()

    def list_all(self, status=None):
        stmt = select(Booking).order_by(Booking.id.desc())
        if status is not None:
            stmt = stmt.where(Booking.status == BookingStatus(status))
        return self.session.scalars(stmt).all()

    # Transitions

    def create(self, user_id, vehicle_id, parking_lot_id, entry_time, checkout_time):
        entry_time = to_utc(entry_time)
        checkout_time = to_utc(checkout_time)
        if checkout_time <= entry_time:
            raise ValidationError("checkoutTime must be after entryTime")
        return self._retrying("create", self._create, user_id, vehicle_id, parking_lot_id,
                              entry_time, checkout_time)

    def approve(self, booking_id):
        return self._retrying("approve", self._approve, booking_id)

    def decline(self, booking_id):
        return self._retrying("decline", self._decline, booking_id)

    def cancel(self, booking_id, user_id):
        return self._retrying("cancel", self._cancel, booking_id, user_id)

    def checkout(self, booking_id, user_id=None):
        return self._retrying("checkout", self._checkout, booking_id, user_id)

    def pay(self, booking_id, payment_method, user_id=None):
        return self._retrying("pay", self._pay, booking_id, PaymentMethod(payment_method),
                              user_id)

    def _create(self, user_id, vehicle_id, parking_lot_id, entry_time, checkout_time):
        with self._atomic():
            vehicle = self.vehicles.get_owned(vehicle_id, user_id)
            lot = self.lots.get(parking_lot_id)
            slot = self._allocate(lot)
            booking = Booking(user_id=user_id, vehicle_id=vehicle.id, parking_lot_id=lot.id,
                              slot_id=slot.id, status=BookingStatus.PENDING,
                              payment_status=PaymentStatus.PENDING,
                              entry_time=entry_time, checkout_time=checkout_time)
            self.session.add(booking)
        logger.info(f"Booking {booking.id} created: vehicle {vehicle_id} in lot {lot.id}, "
                    f"slot {slot.number}")
        return booking

    def _approve(self, booking_id):
        with self._atomic():
            booking = self.get(booking_id)
            self._require(booking, (BookingStatus.PENDING,), "approve")
            if booking.slot_id is not None:
                self._transition(booking, (BookingStatus.PENDING,), BookingStatus.APPROVED)
            else:
                # Rows written before slots were reserved at creation
                try:
                    slot = self._allocate(self.lots.get(booking.parking_lot_id))
                except (NotFound, CapacityExhausted) as exc:
                    logger.info(f"Booking {booking_id} declined at approval: {exc}")
                    self._transition(booking, (BookingStatus.PENDING,), BookingStatus.DECLINED)
                    return booking
                self._transition(booking, (BookingStatus.PENDING,), BookingStatus.APPROVED,
                                 slot_id=slot.id)
        logger.info(f"Booking {booking_id} approved")
        return booking

    def _decline(self, booking_id):
        with self._atomic():
            booking = self.get(booking_id)
            self._transition(booking, (BookingStatus.PENDING,), BookingStatus.DECLINED)
            self._release(booking)
        logger.info(f"Booking {booking_id} declined")
        return booking

    def _cancel(self, booking_id, user_id):
        with self._atomic():
            booking = self.get(booking_id)
            self._check_owner(booking, user_id)
            self._transition(booking, OPEN_STATUSES, BookingStatus.CANCELLED)
            self._release(booking)
        logger.info(f"Booking {booking_id} cancelled by user {user_id}")
        return booking

    def _checkout(self, booking_id, user_id):
        with self._atomic():
            booking = self.get(booking_id)
            self._check_owner(booking, user_id)
            self._require(booking, (BookingStatus.APPROVED,), "check out")
            if booking.lot is None:
                raise NotFound(f"Parking lot for booking {booking_id} no longer exists")

            now = to_utc(self.clock())
            if now < booking.entry_time:
                raise ValidationError(
                    f"Cannot check out before the booked entry time {booking.entry_time.isoformat()}"
                )
            # Actual elapsed time, not the requested window
            hours = calculate_duration(booking.entry_time, now)
            amount = calculate_amount(hours, booking.lot.charging_fee_per_hour)

            self._transition(booking, (BookingStatus.APPROVED,), BookingStatus.COMPLETED,
                             checkout_time=now, amount=amount,
                             payment_status=PaymentStatus.UNPAID)
            self._release(booking)
        logger.info(f"Booking {booking_id} checked out after {hours:.2f}h, amount {amount}")
        return booking

    def _pay(self, booking_id, payment_method, user_id):
        with self._atomic():
            booking = self.get(booking_id)
            self._check_owner(booking, user_id)
            self._require(booking, (BookingStatus.COMPLETED,), "pay for")
            if booking.payment_status == PaymentStatus.PAID:
                raise InvalidStateTransition(f"Booking {booking_id} is already paid")

            result = self.session.execute(
                update(Booking)
                .where(Booking.id == booking.id,
                       Booking.status == BookingStatus.COMPLETED,
                       Booking.payment_status != PaymentStatus.PAID)
                .values(payment_status=PaymentStatus.PAID, payment_method=payment_method)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConcurrencyConflict(f"Booking {booking_id} changed during payment")
            self.session.refresh(booking)
        logger.info(f"Booking {booking_id} paid by {payment_method.value}")
        return booking

    # Helpers

    def _allocate(self, lot):
        """Reserve one slot of ``lot`` and take it off the available counter.

        Nothing is written until both capacity checks have passed.
        """
        self.session.refresh(lot)
        if lot.available_spaces <= 0:
            raise NoCapacity(f"Parking lot {lot.id} is full")
        slot = self.slots.find_available(lot.id)
        if slot is None:
            raise NoSlotAvailable(f"Parking lot {lot.id} has no slot available")

        try:
            self.lots.adjust_available(lot.id, -1)
        except CounterOutOfRange as exc:
            raise ConcurrencyConflict(str(exc)) from exc
        self.slots.mark_occupied(slot.id)
        return slot

    def _release(self, booking):
        if booking.slot_id is None:
            return
        slot = self.slots.get(booking.slot_id)
        self.slots.mark_available(slot.id)
        self.lots.adjust_available(slot.parking_lot_id, 1)

    def _check_owner(self, booking, user_id):
        if user_id is not None and booking.user_id != user_id:
            raise Forbidden(f"Booking {booking.id} does not belong to user {user_id}")

    def _require(self, booking, expected, action):
        if booking.status not in expected:
            raise InvalidStateTransition(
                f"Cannot {action} booking {booking.id} in status {booking.status.value}"
            )

    def _transition(self, booking, expected, new_status, **values):
        self._require(booking, expected, f"move to {new_status.value}")
        result = self.session.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status.in_(expected))
            .values(status=new_status, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflict(f"Booking {booking.id} changed concurrently")
        self.session.refresh(booking)

    @contextmanager
    def _atomic(self):
        try:
            yield
            self.session.commit()
        except ParkingError:
            self.session.rollback()
            raise
        except DBAPIError as exc:
            self.session.rollback()
            if _is_lock_error(exc):
                raise ConcurrencyConflict("The booking could not acquire its lock in time") from exc
            raise
        except Exception:
            self.session.rollback()
            raise

    def _retrying(self, name, operation, *args):
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation(*args)
            except ConcurrencyConflict as exc:
                if attempt > self.max_retries:
                    logger.error(f"{name} gave up after {attempt} attempts: {exc}")
                    raise
                logger.warning(f"{name} conflict on attempt {attempt}, retrying: {exc}")
                time.sleep(self.retry_delay * attempt)
