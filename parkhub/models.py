import enum

from flask_login import UserMixin

from . import db
from .utils import utcnow


class SlotStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    MAINTENANCE = "MAINTENANCE"


class VehicleType(str, enum.Enum):
    CAR = "CAR"
    MOTORCYCLE = "MOTORCYCLE"
    BIKE = "BIKE"


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    UNPAID = "UNPAID"


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    CARD = "CARD"
    ONLINE = "ONLINE"


OPEN_STATUSES = (BookingStatus.PENDING, BookingStatus.APPROVED)
TERMINAL_STATUSES = (BookingStatus.DECLINED, BookingStatus.COMPLETED, BookingStatus.CANCELLED)


def _iso(dt):
    return dt.isoformat() + "Z" if dt else None


def _money(value):
    return str(value) if value is not None else None


class User(db.Model, UserMixin):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(150), unique=True, nullable=False)
    password = db.Column(db.String(256), nullable=False)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    vehicles = db.relationship('Vehicle', backref='owner', lazy=True)
    bookings = db.relationship('Booking', backref='user', lazy=True)

    def to_dict(self):
        return {"id": self.id, "username": self.username, "isAdmin": self.is_admin}


class ParkingLot(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    location = db.Column(db.String(200), nullable=False)
    total_spaces = db.Column(db.Integer, nullable=False)
    available_spaces = db.Column(db.Integer, nullable=False)
    charging_fee_per_hour = db.Column(db.Numeric(10, 2), nullable=False)
    admin_id = db.Column(db.Integer, db.ForeignKey('user.id'))
    created_at = db.Column(db.DateTime, default=utcnow)
    slots = db.relationship('Slot',
                            backref='lot',
                            order_by='Slot.number',
                            cascade="all, delete-orphan")

    __table_args__ = (
        db.CheckConstraint('total_spaces >= 1', name='ck_lot_total_positive'),
        db.CheckConstraint('available_spaces >= 0 AND available_spaces <= total_spaces',
                           name='ck_lot_available_in_range'),
        db.CheckConstraint('charging_fee_per_hour >= 0', name='ck_lot_fee_non_negative'),
    )

    def to_dict(self, with_slots=False):
        data = {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "totalSpaces": self.total_spaces,
            "availableSpaces": self.available_spaces,
            "chargingFeePerHour": _money(self.charging_fee_per_hour),
            "adminId": self.admin_id,
        }
        if with_slots:
            data["slots"] = [slot.to_dict() for slot in self.slots]
        return data


class Slot(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    parking_lot_id = db.Column(db.Integer, db.ForeignKey('parking_lot.id'), nullable=False)
    number = db.Column(db.Integer, nullable=False)
    type = db.Column(db.Enum(VehicleType), default=VehicleType.CAR, nullable=False)
    status = db.Column(db.Enum(SlotStatus), default=SlotStatus.AVAILABLE, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('parking_lot_id', 'number', name='uq_slot_lot_number'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "parkingLotId": self.parking_lot_id,
            "number": self.number,
            "type": self.type.value,
            "status": self.status.value,
        }


class Vehicle(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    plate_number = db.Column(db.String(50), unique=True, nullable=False)
    type = db.Column(db.Enum(VehicleType), default=VehicleType.CAR, nullable=False)
    bookings = db.relationship('Booking', backref='vehicle', lazy=True)

    def to_dict(self):
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "plateNumber": self.plate_number,
            "type": self.type.value,
        }


class Booking(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicle.id'), nullable=False)
    # Both are detached (set to NULL) when the lot is deleted; history stays
    parking_lot_id = db.Column(db.Integer, db.ForeignKey('parking_lot.id'), nullable=True)
    slot_id = db.Column(db.Integer, db.ForeignKey('slot.id'), nullable=True)

    status = db.Column(db.Enum(BookingStatus), default=BookingStatus.PENDING, nullable=False)
    payment_status = db.Column(db.Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    payment_method = db.Column(db.Enum(PaymentMethod), nullable=True)

    entry_time = db.Column(db.DateTime, nullable=False)
    checkout_time = db.Column(db.DateTime)
    amount = db.Column(db.Numeric(10, 2))

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    lot = db.relationship('ParkingLot')
    slot = db.relationship('Slot')

    @property
    def is_open(self):
        return self.status in OPEN_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "vehicleId": self.vehicle_id,
            "parkingId": self.parking_lot_id,
            "slotId": self.slot_id,
            "slotNumber": self.slot.number if self.slot else None,
            "status": self.status.value,
            "paymentStatus": self.payment_status.value,
            "paymentMethod": self.payment_method.value if self.payment_method else None,
            "entryTime": _iso(self.entry_time),
            "checkoutTime": _iso(self.checkout_time),
            "amount": _money(self.amount),
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Booking(id={self.id}, status={self.status}, slot={self.slot_id})>"
