from flask import Blueprint, jsonify
from flask_login import login_required, current_user

from .schemas import BookingRequest, PaymentRequest, VehicleRequest, VehicleUpdate, parse_body
from .services import booking_lifecycle, lot_directory, vehicle_registry


user = Blueprint('user', __name__)


def acting_user_id():
    # Admins act on any booking; ownership is checked for everyone else
    return None if current_user.is_admin else current_user.id


# Parking lots

@user.route('/parkings')
@login_required
def list_parkings():
    return jsonify([lot.to_dict() for lot in lot_directory().list()])


@user.route('/parkings/<int:lot_id>')
@login_required
def get_parking(lot_id):
    return jsonify(lot_directory().get(lot_id).to_dict(with_slots=True))


# Vehicles

@user.route('/vehicles')
@login_required
def list_vehicles():
    vehicles = vehicle_registry().list_for_owner(current_user.id)
    return jsonify([v.to_dict() for v in vehicles])


@user.route('/vehicles', methods=['POST'])
@login_required
def create_vehicle():
    body = parse_body(VehicleRequest)
    vehicle = vehicle_registry().create(current_user.id, body.plate_number, body.type)
    return jsonify(vehicle.to_dict()), 201


@user.route('/vehicles/<int:vehicle_id>', methods=['PUT'])
@login_required
def update_vehicle(vehicle_id):
    body = parse_body(VehicleUpdate)
    vehicle = vehicle_registry().update(vehicle_id, current_user.id,
                                        plate_number=body.plate_number, type=body.type)
    return jsonify(vehicle.to_dict())


@user.route('/vehicles/<int:vehicle_id>', methods=['DELETE'])
@login_required
def delete_vehicle(vehicle_id):
    vehicle_registry().delete(vehicle_id, current_user.id)
    return '', 204


# Bookings

@user.route('/bookings', methods=['POST'])
@login_required
def create_booking():
    body = parse_body(BookingRequest)
    booking = booking_lifecycle().create(current_user.id, body.vehicle_id, body.parking_id,
                                         body.entry_time, body.checkout_time)
    return jsonify(booking.to_dict()), 201


@user.route('/bookings')
@login_required
def my_bookings():
    bookings = booking_lifecycle().list_for_user(current_user.id)
    return jsonify([b.to_dict() for b in bookings])


@user.route('/bookings/<int:booking_id>')
@login_required
def get_booking(booking_id):
    booking = booking_lifecycle().get_visible(booking_id, acting_user_id())
    return jsonify(booking.to_dict())


@user.route('/bookings/<int:booking_id>/cancel', methods=['PUT'])
@login_required
def cancel_booking(booking_id):
    booking = booking_lifecycle().cancel(booking_id, current_user.id)
    return jsonify(booking.to_dict())


@user.route('/checkout/<int:booking_id>', methods=['POST'])
@login_required
def checkout(booking_id):
    booking = booking_lifecycle().checkout(booking_id, acting_user_id())
    return jsonify(booking.to_dict())


@user.route('/bookings/<int:booking_id>/payment', methods=['POST'])
@login_required
def pay(booking_id):
    body = parse_body(PaymentRequest)
    booking = booking_lifecycle().pay(booking_id, body.payment_method, acting_user_id())
    return jsonify(booking.to_dict())
