from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from parkhub import db
from parkhub.errors import (
    CapacityExhausted, ConcurrencyConflict, Forbidden, InvalidStateTransition,
    NoCapacity, NoSlotAvailable, NotFound, ValidationError,
)
from parkhub.models import Booking, BookingStatus, PaymentMethod, PaymentStatus, SlotStatus

from tests.base import AppTestCase, T0


def booking_count():
    return db.session.scalar(select(func.count(Booking.id)))


class TestCreateBooking(AppTestCase):

    def setUp(self):
        super().setUp()
        self.driver = self.make_user()
        self.car = self.make_vehicle(self.driver)

    def test_create_reserves_slot_and_decrements_counter(self):
        lot = self.make_lot(total=2)
        booking = self.book(self.driver, self.car, lot)

        self.assertEqual(booking.status, BookingStatus.PENDING)
        self.assertEqual(booking.payment_status, PaymentStatus.PENDING)
        self.assertIsNotNone(booking.slot_id)
        self.assertIsNone(booking.amount)
        self.assertEqual(self.slots.get(booking.slot_id).status, SlotStatus.OCCUPIED)
        lot = self.assertCounterConsistent(lot.id)
        self.assertEqual(lot.available_spaces, 1)

    def test_two_bookings_get_distinct_slots(self):
        lot = self.make_lot(total=2)
        other = self.make_vehicle(self.driver, plate="RAC555B")
        first = self.book(self.driver, self.car, lot)
        second = self.book(self.driver, other, lot)
        self.assertNotEqual(first.slot_id, second.slot_id)
        self.assertEqual(self.assertCounterConsistent(lot.id).available_spaces, 0)

    def test_full_lot_fails_without_mutation(self):
        lot = self.make_lot(total=1)
        self.book(self.driver, self.car, lot)
        other = self.make_vehicle(self.driver, plate="RAC555B")

        with self.assertRaises(NoCapacity) as caught:
            self.book(self.driver, other, lot)
        self.assertIsInstance(caught.exception, CapacityExhausted)
        self.assertEqual(booking_count(), 1)
        self.assertEqual(self.assertCounterConsistent(lot.id).available_spaces, 0)

    def test_maintenance_slots_are_never_assigned(self):
        lot = self.make_lot(total=1)
        slot = self.slots.find_available(lot.id)
        self.slots.set_maintenance(slot.id)
        db.session.commit()

        with self.assertRaises(NoSlotAvailable):
            self.book(self.driver, self.car, lot)
        self.assertEqual(booking_count(), 0)
        self.assertEqual(self.slots.get(slot.id).status, SlotStatus.MAINTENANCE)
        self.assertEqual(self.assertCounterConsistent(lot.id).available_spaces, 1)

    def test_vehicle_must_belong_to_user(self):
        lot = self.make_lot()
        stranger = self.make_user("stranger")
        with self.assertRaises(Forbidden):
            self.book(stranger, self.car, lot)
        self.assertEqual(self.assertCounterConsistent(lot.id).available_spaces, 1)

    def test_missing_vehicle_or_lot(self):
        lot = self.make_lot()
        with self.assertRaises(NotFound):
            self.lifecycle.create(self.driver.id, 999, lot.id, T0, T0 + timedelta(hours=1))
        with self.assertRaises(NotFound):
            self.lifecycle.create(self.driver.id, self.car.id, 999, T0, T0 + timedelta(hours=1))

    def test_window_must_end_after_it_starts(self):
        lot = self.make_lot()
        with self.assertRaises(ValidationError):
            self.lifecycle.create(self.driver.id, self.car.id, lot.id, T0, T0)
        self.assertEqual(booking_count(), 0)

    def test_conflict_is_retried(self):
        lot = self.make_lot(total=1)
        real_mark = self.slots.mark_occupied
        calls = []

        def flaky(slot_id):
            calls.append(slot_id)
            if len(calls) == 1:
                raise ConcurrencyConflict("slot taken")
            return real_mark(slot_id)

        with patch.object(self.slots, "mark_occupied", side_effect=flaky):
            booking = self.book(self.driver, self.car, lot)

        self.assertEqual(len(calls), 2)
        self.assertEqual(booking.status, BookingStatus.PENDING)
        self.assertEqual(self.assertCounterConsistent(lot.id).available_spaces, 0)

    def test_conflict_surfaces_after_bounded_retries(self):
        lot = self.make_lot(total=1)
        with patch.object(self.slots, "mark_occupied",
                          side_effect=ConcurrencyConflict("slot taken")) as mark:
            with self.assertRaises(ConcurrencyConflict):
                self.book(self.driver, self.car, lot)

        self.assertEqual(mark.call_count, self.lifecycle.max_retries + 1)
        self.assertEqual(booking_count(), 0)
        self.assertEqual(self.assertCounterConsistent(lot.id).available_spaces, 1)

    def test_lock_timeout_becomes_retryable_conflict(self):
        lot = self.make_lot(total=1)
        self.lifecycle.max_retries = 1
        locked = OperationalError("UPDATE parking_lot", {}, Exception("database is locked"))

        with patch.object(self.lots, "adjust_available", side_effect=locked):
            with self.assertRaises(ConcurrencyConflict) as caught:
                self.book(self.driver, self.car, lot)

        self.assertTrue(caught.exception.retryable)
        self.assertEqual(self.assertCounterConsistent(lot.id).available_spaces, 1)


class TestApproveDecline(AppTestCase):

    def setUp(self):
        super().setUp()
        self.driver = self.make_user()
        self.car = self.make_vehicle(self.driver)
        self.lot = self.make_lot(total=1)
        self.booking = self.book(self.driver, self.car, self.lot)

    def test_approve_keeps_the_reserved_slot(self):
        slot_id = self.booking.slot_id
        approved = self.lifecycle.approve(self.booking.id)
        self.assertEqual(approved.status, BookingStatus.APPROVED)
        self.assertEqual(approved.slot_id, slot_id)
        self.assertIsNone(approved.amount)
        self.assertEqual(self.assertCounterConsistent(self.lot.id).available_spaces, 0)

    def test_second_approve_is_rejected_without_side_effects(self):
        self.lifecycle.approve(self.booking.id)
        with self.assertRaises(InvalidStateTransition):
            self.lifecycle.approve(self.booking.id)
        self.assertEqual(self.lifecycle.get(self.booking.id).status, BookingStatus.APPROVED)
        self.assertEqual(self.assertCounterConsistent(self.lot.id).available_spaces, 0)

    def test_decline_releases_slot(self):
        declined = self.lifecycle.decline(self.booking.id)
        self.assertEqual(declined.status, BookingStatus.DECLINED)
        self.assertEqual(self.slots.get(declined.slot_id).status, SlotStatus.AVAILABLE)
        self.assertEqual(self.assertCounterConsistent(self.lot.id).available_spaces, 1)

    def test_decline_is_terminal(self):
        self.lifecycle.decline(self.booking.id)
        for action in (self.lifecycle.decline, self.lifecycle.approve):
            with self.assertRaises(InvalidStateTransition):
                action(self.booking.id)
        self.assertEqual(self.assertCounterConsistent(self.lot.id).available_spaces, 1)

    def test_cannot_decline_approved_booking(self):
        self.lifecycle.approve(self.booking.id)
        with self.assertRaises(InvalidStateTransition):
            self.lifecycle.decline(self.booking.id)

    def test_unknown_booking(self):
        with self.assertRaises(NotFound):
            self.lifecycle.approve(12345)

    def _unassigned_booking(self, lot):
        booking = Booking(user_id=self.driver.id, vehicle_id=self.car.id,
                          parking_lot_id=lot.id, entry_time=T0,
                          checkout_time=T0 + timedelta(hours=1))
        db.session.add(booking)
        db.session.commit()
        return booking

    def test_approve_assigns_slot_when_none_was_reserved(self):
        lot = self.make_lot(total=1, name="Annex")
        booking = self._unassigned_booking(lot)

        approved = self.lifecycle.approve(booking.id)
        self.assertEqual(approved.status, BookingStatus.APPROVED)
        self.assertIsNotNone(approved.slot_id)
        self.assertEqual(self.assertCounterConsistent(lot.id).available_spaces, 0)

    def test_approve_declines_when_no_slot_is_left(self):
        # self.lot's only slot is already held by self.booking
        booking = self._unassigned_booking(self.lot)

        result = self.lifecycle.approve(booking.id)
        self.assertEqual(result.status, BookingStatus.DECLINED)
        self.assertIsNone(result.slot_id)
        self.assertEqual(self.assertCounterConsistent(self.lot.id).available_spaces, 0)


class TestCancel(AppTestCase):

    def setUp(self):
        super().setUp()
        self.driver = self.make_user()
        self.car = self.make_vehicle(self.driver)
        self.lot = self.make_lot(total=1)
        self.booking = self.book(self.driver, self.car, self.lot)

    def test_cancel_pending_restores_exactly_one_space(self):
        cancelled = self.lifecycle.cancel(self.booking.id, self.driver.id)
        self.assertEqual(cancelled.status, BookingStatus.CANCELLED)
        self.assertEqual(self.slots.get(cancelled.slot_id).status, SlotStatus.AVAILABLE)
        self.assertEqual(self.assertCounterConsistent(self.lot.id).available_spaces, 1)

    def test_cancel_approved(self):
        self.lifecycle.approve(self.booking.id)
        self.lifecycle.cancel(self.booking.id, self.driver.id)
        self.assertEqual(self.assertCounterConsistent(self.lot.id).available_spaces, 1)

    def test_cancel_twice_does_not_double_release(self):
        self.lifecycle.cancel(self.booking.id, self.driver.id)
        with self.assertRaises(InvalidStateTransition):
            self.lifecycle.cancel(self.booking.id, self.driver.id)
        self.assertEqual(self.assertCounterConsistent(self.lot.id).available_spaces, 1)

    def test_only_owner_can_cancel(self):
        stranger = self.make_user("stranger")
        with self.assertRaises(Forbidden):
            self.lifecycle.cancel(self.booking.id, stranger.id)
        self.assertEqual(self.lifecycle.get(self.booking.id).status, BookingStatus.PENDING)

    def test_released_slot_can_be_booked_again(self):
        self.lifecycle.cancel(self.booking.id, self.driver.id)
        again = self.book(self.driver, self.car, self.lot)
        self.assertEqual(again.status, BookingStatus.PENDING)
        self.assertEqual(self.assertCounterConsistent(self.lot.id).available_spaces, 0)


class TestCheckoutAndPayment(AppTestCase):

    def setUp(self):
        super().setUp()
        self.driver = self.make_user()
        self.car = self.make_vehicle(self.driver)

    def approved_booking(self, lot, entry=T0):
        booking = self.book(self.driver, self.car, lot, entry=entry)
        return self.lifecycle.approve(booking.id)

    def test_amount_uses_elapsed_time(self):
        lot = self.make_lot(total=1, fee=10)
        booking = self.approved_booking(lot)

        self.now = T0 + timedelta(hours=2, minutes=30)
        done = self.lifecycle.checkout(booking.id, self.driver.id)

        self.assertEqual(done.status, BookingStatus.COMPLETED)
        self.assertEqual(done.amount, Decimal("25.00"))
        self.assertEqual(done.checkout_time, self.now)
        self.assertEqual(done.payment_status, PaymentStatus.UNPAID)

    def test_full_scenario(self):
        lot = self.make_lot(total=1, fee=10)
        booking = self.approved_booking(lot, entry=datetime(2024, 1, 1, 10, 0))

        self.now = datetime(2024, 1, 1, 13, 0)
        done = self.lifecycle.checkout(booking.id)

        self.assertEqual(done.amount, Decimal("30.00"))
        self.assertEqual(self.slots.get(done.slot_id).status, SlotStatus.AVAILABLE)
        self.assertEqual(self.assertCounterConsistent(lot.id).available_spaces, 1)

    def test_amount_is_rounded_to_cents(self):
        lot = self.make_lot(total=1, fee=10)
        booking = self.approved_booking(lot)
        self.now = T0 + timedelta(hours=1, minutes=20)
        self.assertEqual(self.lifecycle.checkout(booking.id).amount, Decimal("13.33"))

    def test_checkout_requires_approval(self):
        lot = self.make_lot(total=1)
        booking = self.book(self.driver, self.car, lot)
        with self.assertRaises(InvalidStateTransition):
            self.lifecycle.checkout(booking.id)
        self.assertEqual(self.assertCounterConsistent(lot.id).available_spaces, 0)

    def test_checkout_before_entry_is_rejected(self):
        lot = self.make_lot(total=1)
        booking = self.approved_booking(lot, entry=T0 + timedelta(hours=1))
        with self.assertRaises(ValidationError):
            self.lifecycle.checkout(booking.id)
        self.assertEqual(self.lifecycle.get(booking.id).status, BookingStatus.APPROVED)

    def test_checkout_by_stranger_is_forbidden(self):
        lot = self.make_lot(total=1)
        booking = self.approved_booking(lot)
        stranger = self.make_user("stranger")
        self.now = T0 + timedelta(hours=1)
        with self.assertRaises(Forbidden):
            self.lifecycle.checkout(booking.id, stranger.id)

    def test_payment_requires_completed_booking(self):
        lot = self.make_lot(total=1)
        booking = self.approved_booking(lot)
        with self.assertRaises(InvalidStateTransition):
            self.lifecycle.pay(booking.id, PaymentMethod.CARD)

    def test_pay_once(self):
        lot = self.make_lot(total=1)
        booking = self.approved_booking(lot)
        self.now = T0 + timedelta(hours=1)
        self.lifecycle.checkout(booking.id)

        paid = self.lifecycle.pay(booking.id, "ONLINE", self.driver.id)
        self.assertEqual(paid.payment_status, PaymentStatus.PAID)
        self.assertEqual(paid.payment_method, PaymentMethod.ONLINE)

        with self.assertRaises(InvalidStateTransition):
            self.lifecycle.pay(booking.id, PaymentMethod.CASH)
        self.assertEqual(self.lifecycle.get(booking.id).payment_method, PaymentMethod.ONLINE)
