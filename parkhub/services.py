"""Per-request wiring of the core components onto the Flask-SQLAlchemy session."""
from flask import current_app

from . import db
from .booking import BookingLifecycle
from .lots import ParkingLotDirectory
from .slots import SlotRegistry
from .vehicles import VehicleRegistry


def lot_directory():
    return ParkingLotDirectory(db.session)


def slot_registry():
    return SlotRegistry(db.session)


def vehicle_registry():
    return VehicleRegistry(db.session)


def booking_lifecycle():
    config = current_app.config
    return BookingLifecycle(
        db.session,
        lots=lot_directory(),
        slots=slot_registry(),
        vehicles=vehicle_registry(),
        clock=config.get('CLOCK'),
        max_retries=config['BOOKING_MAX_RETRIES'],
    )
