import logging

from sqlalchemy import select, update

from .errors import ConcurrencyConflict, InvalidStateTransition, NotFound
from .models import Slot, SlotStatus

# Create Logger
logger = logging.getLogger(__name__)


class SlotRegistry:
    """Status bookkeeping for individual slots.

    Holds no business rules beyond which status moves are legal; every
    write is a compare-and-swap on the current status so two requests
    can never both take the same slot.
    """

    def __init__(self, session):
        self.session = session

    def get(self, slot_id):
        slot = self.session.get(Slot, slot_id)
        if slot is None:
            raise NotFound(f"Slot {slot_id} not found")
        return slot

    def list_for_lot(self, lot_id):
        stmt = select(Slot).where(Slot.parking_lot_id == lot_id).order_by(Slot.number)
        return self.session.scalars(stmt).all()

    def find_available(self, lot_id):
        stmt = (
            select(Slot)
            .where(Slot.parking_lot_id == lot_id, Slot.status == SlotStatus.AVAILABLE)
            .order_by(Slot.number)
            .limit(1)
            .with_for_update()
        )
        return self.session.scalars(stmt).first()

    def mark_occupied(self, slot_id):
        self._swap(slot_id, (SlotStatus.AVAILABLE,), SlotStatus.OCCUPIED, conflict=True)

    def mark_available(self, slot_id):
        self._swap(slot_id, (SlotStatus.OCCUPIED,), SlotStatus.AVAILABLE)

    def set_maintenance(self, slot_id):
        # An OCCUPIED slot is held by a booking and stays out of reach
        self._swap(slot_id, (SlotStatus.AVAILABLE,), SlotStatus.MAINTENANCE)

    def clear_maintenance(self, slot_id):
        self._swap(slot_id, (SlotStatus.MAINTENANCE,), SlotStatus.AVAILABLE)

    def _swap(self, slot_id, expected, new_status, conflict=False):
        result = self.session.execute(
            update(Slot)
            .where(Slot.id == slot_id, Slot.status.in_(expected))
            .values(status=new_status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            slot = self.session.get(Slot, slot_id)
            if slot is not None:
                self.session.refresh(slot)
            logger.debug(f"Slot {slot_id} -> {new_status.value}")
            return

        slot = self.get(slot_id)
        self.session.refresh(slot)
        if conflict:
            raise ConcurrencyConflict(f"Slot {slot_id} was taken by another booking")
        raise InvalidStateTransition(
            f"Slot {slot_id} cannot go from {slot.status.value} to {new_status.value}"
        )
