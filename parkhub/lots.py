import logging
from decimal import Decimal

from sqlalchemy import delete, select, update

from .errors import CounterOutOfRange, InvalidStateTransition, NotFound, ValidationError
from .models import Booking, BookingStatus, OPEN_STATUSES, ParkingLot, Slot, SlotStatus, VehicleType

# Create Logger
logger = logging.getLogger(__name__)


class ParkingLotDirectory:
    """Lot metadata and the authoritative occupancy counter.

    ``adjust_available`` is the only code path that writes
    ``available_spaces`` after a lot is created. Resizing moves
    ``total_spaces`` first when growing and last when shrinking, so the
    counter stays within ``[0, total_spaces]`` between the two writes.
    """

    def __init__(self, session):
        self.session = session

    def get(self, lot_id):
        lot = self.session.get(ParkingLot, lot_id)
        if lot is None:
            raise NotFound(f"Parking lot {lot_id} not found")
        return lot

    def list(self):
        return self.session.scalars(select(ParkingLot).order_by(ParkingLot.id)).all()

    def create(self, admin_id, name, location, total_spaces, charging_fee_per_hour,
               slot_type=VehicleType.CAR):
        if total_spaces < 1:
            raise ValidationError("totalSpaces must be at least 1")
        fee = Decimal(str(charging_fee_per_hour))
        if fee < 0:
            raise ValidationError("chargingFeePerHour must not be negative")

        lot = ParkingLot(name=name, location=location, total_spaces=total_spaces,
                         available_spaces=total_spaces, charging_fee_per_hour=fee,
                         admin_id=admin_id)
        try:
            self.session.add(lot)
            self.session.flush()
            for number in range(1, total_spaces + 1):
                self.session.add(Slot(parking_lot_id=lot.id, number=number, type=slot_type,
                                      status=SlotStatus.AVAILABLE))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Created parking lot {lot.id} '{lot.name}' with {total_spaces} slots")
        return lot

    def adjust_available(self, lot_id, delta):
        """Shift the available counter by ``delta`` inside the caller's transaction.

        The UPDATE is conditional so the row lock it takes also serialises
        concurrent bookings against the same lot.
        """
        result = self.session.execute(
            update(ParkingLot)
            .where(
                ParkingLot.id == lot_id,
                ParkingLot.available_spaces + delta >= 0,
                ParkingLot.available_spaces + delta <= ParkingLot.total_spaces,
            )
            .values(available_spaces=ParkingLot.available_spaces + delta)
            .execution_options(synchronize_session=False)
        )
        lot = self.get(lot_id)
        self.session.refresh(lot)
        if result.rowcount != 1:
            raise CounterOutOfRange(
                f"Lot {lot_id}: adjusting {lot.available_spaces} by {delta} "
                f"leaves [0, {lot.total_spaces}]"
            )
        return lot

    def update(self, lot_id, name=None, location=None, charging_fee_per_hour=None,
               total_spaces=None):
        lot = self.get(lot_id)
        try:
            if name is not None:
                lot.name = name
            if location is not None:
                lot.location = location
            if charging_fee_per_hour is not None:
                fee = Decimal(str(charging_fee_per_hour))
                if fee < 0:
                    raise ValidationError("chargingFeePerHour must not be negative")
                lot.charging_fee_per_hour = fee
            if total_spaces is not None and total_spaces != lot.total_spaces:
                self._resize(lot, total_spaces)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(f"Updated parking lot {lot.id}")
        return lot

    def _resize(self, lot, new_total):
        if new_total < 1:
            raise ValidationError("totalSpaces must be at least 1")

        slots = self.session.scalars(
            select(Slot).where(Slot.parking_lot_id == lot.id).order_by(Slot.number)
        ).all()
        existing = len(slots)
        delta = new_total - existing

        if delta > 0:
            # New slots take the type of the slots already in the lot
            slot_type = slots[-1].type if slots else VehicleType.CAR
            next_number = (slots[-1].number if slots else 0) + 1
            for number in range(next_number, next_number + delta):
                self.session.add(Slot(parking_lot_id=lot.id, number=number, type=slot_type,
                                      status=SlotStatus.AVAILABLE))
            self._set_total(lot.id, new_total)
            self.adjust_available(lot.id, delta)
        elif delta < 0:
            removed = self._removable_slots(lot, slots, -delta)
            removed_ids = [slot.id for slot in removed]
            # Closed bookings keep their row but lose the slot reference
            self.session.execute(
                update(Booking)
                .where(Booking.slot_id.in_(removed_ids))
                .values(slot_id=None)
                .execution_options(synchronize_session=False)
            )
            for slot in removed:
                self.session.delete(slot)
            self.session.flush()
            self.adjust_available(lot.id, delta)
            self._set_total(lot.id, new_total)
        self.session.refresh(lot)
        logger.info(f"Resized parking lot {lot.id} from {existing} to {new_total} slots")

    def _removable_slots(self, lot, slots, surplus):
        """Pick ``surplus`` free slots, highest numbers first, preferring slots never booked."""
        free = [s for s in reversed(slots) if s.status == SlotStatus.AVAILABLE]
        if len(free) < surplus:
            raise InvalidStateTransition(
                f"Cannot reduce lot {lot.id} to {len(slots) - surplus}: too many slots are in use"
            )
        booked = set(self.session.scalars(
            select(Booking.slot_id).where(Booking.slot_id.in_([s.id for s in free]))
        ).all())
        free.sort(key=lambda s: s.id in booked)
        return free[:surplus]

    def _set_total(self, lot_id, total):
        self.session.execute(
            update(ParkingLot)
            .where(ParkingLot.id == lot_id)
            .values(total_spaces=total)
            .execution_options(synchronize_session=False)
        )

    def delete(self, lot_id):
        """Delete a lot and its slots; open bookings are cancelled, history is kept."""
        lot = self.get(lot_id)
        try:
            cancelled = self.session.execute(
                update(Booking)
                .where(Booking.parking_lot_id == lot.id, Booking.status.in_(OPEN_STATUSES))
                .values(status=BookingStatus.CANCELLED)
                .execution_options(synchronize_session=False)
            ).rowcount
            self.session.execute(
                update(Booking)
                .where(Booking.parking_lot_id == lot.id)
                .values(parking_lot_id=None, slot_id=None)
                .execution_options(synchronize_session=False)
            )
            self.session.execute(
                delete(Slot).where(Slot.parking_lot_id == lot.id)
                .execution_options(synchronize_session=False)
            )
            self.session.execute(
                delete(ParkingLot).where(ParkingLot.id == lot.id)
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(f"Deleted parking lot {lot_id}; cancelled {cancelled} open bookings")
