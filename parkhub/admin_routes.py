from functools import wraps

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user
from pydantic import TypeAdapter
from typing import Optional
import datetime

from . import db, reports
from .errors import Forbidden
from .models import BookingStatus
from .schemas import MaintenanceRequest, ParkingLotRequest, ParkingLotUpdate, parse_body
from .services import booking_lifecycle, lot_directory, slot_registry

admin = Blueprint('admin', __name__)

_optional_datetime = TypeAdapter(Optional[datetime.datetime])
_optional_status = TypeAdapter(Optional[BookingStatus])


def is_admin():
    return current_user.is_authenticated and current_user.is_admin


def admin_required(view):
    @wraps(view)
    @login_required
    def wrapper(*args, **kwargs):
        if not is_admin():
            raise Forbidden("Admin access required")
        return view(*args, **kwargs)
    return wrapper


def _date_range():
    start = _optional_datetime.validate_python(request.args.get('start'))
    end = _optional_datetime.validate_python(request.args.get('end'))
    return start, end


# Booking approval

@admin.route('/bookings/<int:booking_id>/approve', methods=['PUT'])
@admin_required
def approve_booking(booking_id):
    return jsonify(booking_lifecycle().approve(booking_id).to_dict())


@admin.route('/bookings/<int:booking_id>/decline', methods=['PUT'])
@admin_required
def decline_booking(booking_id):
    return jsonify(booking_lifecycle().decline(booking_id).to_dict())


@admin.route('/admin/bookings')
@admin_required
def all_bookings():
    status = _optional_status.validate_python(request.args.get('status'))
    bookings = booking_lifecycle().list_all(status)
    return jsonify([b.to_dict() for b in bookings])


# Parking lots and slots

@admin.route('/admin/parkings', methods=['POST'])
@admin_required
def create_lot():
    body = parse_body(ParkingLotRequest)
    lot = lot_directory().create(current_user.id, body.name, body.location,
                                 body.total_spaces, body.charging_fee_per_hour,
                                 slot_type=body.slot_type)
    return jsonify(lot.to_dict(with_slots=True)), 201


@admin.route('/admin/parkings/<int:lot_id>', methods=['PUT'])
@admin_required
def edit_lot(lot_id):
    body = parse_body(ParkingLotUpdate)
    lot = lot_directory().update(lot_id, name=body.name, location=body.location,
                                 charging_fee_per_hour=body.charging_fee_per_hour,
                                 total_spaces=body.total_spaces)
    return jsonify(lot.to_dict())


@admin.route('/admin/parkings/<int:lot_id>', methods=['DELETE'])
@admin_required
def delete_lot(lot_id):
    lot_directory().delete(lot_id)
    return '', 204


@admin.route('/admin/slots/<int:slot_id>/maintenance', methods=['PUT'])
@admin_required
def toggle_maintenance(slot_id):
    body = parse_body(MaintenanceRequest)
    slots = slot_registry()
    try:
        if body.enabled:
            slots.set_maintenance(slot_id)
        else:
            slots.clear_maintenance(slot_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return jsonify(slots.get(slot_id).to_dict())


# Reports

@admin.route('/admin/history')
@admin_required
def parking_history():
    start, end = _date_range()
    return jsonify([b.to_dict() for b in reports.history(db.session, start, end)])


@admin.route('/admin/earnings')
@admin_required
def total_earnings():
    start, end = _date_range()
    return jsonify(reports.revenue_summary(db.session, start, end))


@admin.route('/admin/occupancy')
@admin_required
def occupancy():
    return jsonify(reports.occupancy(db.session))


@admin.route('/admin/reports/vehicle-types')
@admin_required
def vehicle_type_report():
    start, end = _date_range()
    return jsonify(reports.vehicle_types(db.session, start, end))


@admin.route('/admin/reports/peak-hours')
@admin_required
def peak_hours_report():
    start, end = _date_range()
    return jsonify(reports.peak_hours(db.session, start, end))
