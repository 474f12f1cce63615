import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from .errors import Forbidden, InvalidStateTransition, NotFound, ValidationError
from .models import Booking, Vehicle, VehicleType

# Create Logger
logger = logging.getLogger(__name__)


class VehicleRegistry:

    def __init__(self, session):
        self.session = session

    def list_for_owner(self, owner_id):
        stmt = select(Vehicle).where(Vehicle.owner_id == owner_id).order_by(Vehicle.id)
        return self.session.scalars(stmt).all()

    def get_owned(self, vehicle_id, user_id):
        vehicle = self.session.get(Vehicle, vehicle_id)
        if vehicle is None:
            raise NotFound(f"Vehicle {vehicle_id} not found")
        if vehicle.owner_id != user_id:
            raise Forbidden(f"Vehicle {vehicle_id} does not belong to user {user_id}")
        return vehicle

    def create(self, owner_id, plate_number, type=VehicleType.CAR):
        vehicle = Vehicle(owner_id=owner_id, plate_number=plate_number.strip().upper(),
                          type=VehicleType(type))
        self.session.add(vehicle)
        self._commit(plate_number)
        logger.info(f"Registered vehicle {vehicle.plate_number} for user {owner_id}")
        return vehicle

    def update(self, vehicle_id, user_id, plate_number=None, type=None):
        vehicle = self.get_owned(vehicle_id, user_id)
        if plate_number is not None:
            vehicle.plate_number = plate_number.strip().upper()
        if type is not None:
            vehicle.type = VehicleType(type)
        self._commit(plate_number)
        return vehicle

    def delete(self, vehicle_id, user_id):
        vehicle = self.get_owned(vehicle_id, user_id)
        bookings = self.session.scalar(
            select(func.count(Booking.id)).where(Booking.vehicle_id == vehicle.id)
        )
        if bookings:
            raise InvalidStateTransition(
                f"Vehicle {vehicle_id} has booking history and cannot be removed"
            )
        self.session.delete(vehicle)
        self.session.commit()
        logger.info(f"Removed vehicle {vehicle_id}")

    def _commit(self, plate_number):
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise ValidationError(f"Plate number {plate_number} is already registered")
