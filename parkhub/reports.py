"""Read-only aggregates over bookings and slots for the admin dashboard."""
from decimal import Decimal

from sqlalchemy import extract, func, select

from .models import Booking, BookingStatus, ParkingLot, Slot, SlotStatus, Vehicle, VehicleType
from .utils import CENTS, calculate_duration, to_utc


def _completed(start=None, end=None):
    stmt = select(Booking).where(Booking.status == BookingStatus.COMPLETED)
    if start is not None:
        stmt = stmt.where(Booking.checkout_time >= to_utc(start))
    if end is not None:
        stmt = stmt.where(Booking.checkout_time <= to_utc(end))
    return stmt


def _created_between(stmt, start=None, end=None):
    if start is not None:
        stmt = stmt.where(Booking.created_at >= to_utc(start))
    if end is not None:
        stmt = stmt.where(Booking.created_at <= to_utc(end))
    return stmt


def history(session, start=None, end=None):
    stmt = _completed(start, end).order_by(Booking.checkout_time.desc())
    return session.scalars(stmt).all()


def revenue_summary(session, start=None, end=None):
    completed = session.scalars(_completed(start, end)).all()

    total_stmt = _created_between(select(func.count(Booking.id)), start, end)

    revenue = sum((b.amount or Decimal(0) for b in completed), Decimal(0))
    stays = [calculate_duration(b.entry_time, b.checkout_time) for b in completed]
    average = (sum(stays, Decimal(0)) / len(stays)) if stays else Decimal(0)

    return {
        "totalBookings": session.scalar(total_stmt),
        "completedBookings": len(completed),
        "totalRevenue": str(revenue.quantize(CENTS)),
        "averageStayHours": float(round(average, 2)),
    }


def occupancy(session):
    counts = session.execute(
        select(Slot.parking_lot_id, Slot.status, func.count(Slot.id))
        .group_by(Slot.parking_lot_id, Slot.status)
    ).all()
    by_lot = {}
    for lot_id, status, count in counts:
        by_lot.setdefault(lot_id, {})[status] = count

    lots = []
    total_slots = occupied_slots = 0
    for lot in session.scalars(select(ParkingLot).order_by(ParkingLot.id)):
        statuses = by_lot.get(lot.id, {})
        slots = sum(statuses.values())
        occupied = statuses.get(SlotStatus.OCCUPIED, 0)
        total_slots += slots
        occupied_slots += occupied
        lots.append({
            "id": lot.id,
            "name": lot.name,
            "totalSlots": slots,
            "occupiedSlots": occupied,
            "maintenanceSlots": statuses.get(SlotStatus.MAINTENANCE, 0),
            "availableSpaces": lot.available_spaces,
            "occupancyRate": round(occupied / slots * 100, 2) if slots else 0.0,
        })

    by_status = session.execute(
        select(Booking.status, func.count(Booking.id)).group_by(Booking.status)
    ).all()

    return {
        "lots": lots,
        "totalSlots": total_slots,
        "occupiedSlots": occupied_slots,
        "occupancyRate": round(occupied_slots / total_slots * 100, 2) if total_slots else 0.0,
        "bookingsByStatus": {status.value: count for status, count in by_status},
    }


def vehicle_types(session, start=None, end=None):
    """Bookings and collected revenue per vehicle type."""
    stmt = _created_between(
        select(Vehicle.type, Booking.status, func.count(Booking.id), func.sum(Booking.amount))
        .select_from(Booking)
        .join(Vehicle, Booking.vehicle_id == Vehicle.id)
        .group_by(Vehicle.type, Booking.status),
        start, end,
    )
    totals = {t: {"bookings": 0, "completed": 0, "revenue": Decimal(0)} for t in VehicleType}
    for vehicle_type, status, count, amount in session.execute(stmt):
        row = totals[vehicle_type]
        row["bookings"] += count
        if status == BookingStatus.COMPLETED:
            row["completed"] += count
            row["revenue"] += Decimal(str(amount or 0))

    return [
        {
            "type": vehicle_type.value,
            "totalBookings": row["bookings"],
            "completedBookings": row["completed"],
            "totalRevenue": str(row["revenue"].quantize(CENTS)),
        }
        for vehicle_type, row in totals.items()
    ]


def peak_hours(session, start=None, end=None):
    """Booking requests grouped by the UTC hour of their entry time."""
    hour = extract("hour", Booking.entry_time)
    stmt = _created_between(
        select(hour, func.count(Booking.id)).group_by(hour),
        start, end,
    )
    counts = {int(h): count for h, count in session.execute(stmt)}
    busiest = max(counts, key=lambda h: (counts[h], -h)) if counts else None
    return {
        "hours": [{"hour": h, "bookings": counts.get(h, 0)} for h in range(24)],
        "peakHour": busiest,
    }
