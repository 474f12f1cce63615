from parkhub.errors import Forbidden, InvalidStateTransition, NotFound, ValidationError
from parkhub.models import VehicleType

from tests.base import AppTestCase


class TestVehicleRegistry(AppTestCase):

    def setUp(self):
        super().setUp()
        self.driver = self.make_user()

    def test_register_normalises_plate(self):
        vehicle = self.vehicles.create(self.driver.id, " rab 123a ", VehicleType.MOTORCYCLE)
        self.assertEqual(vehicle.plate_number, "RAB 123A")
        self.assertEqual(vehicle.type, VehicleType.MOTORCYCLE)
        self.assertEqual(self.vehicles.list_for_owner(self.driver.id), [vehicle])

    def test_duplicate_plate_is_rejected(self):
        self.vehicles.create(self.driver.id, "RAB123A")
        with self.assertRaises(ValidationError):
            self.vehicles.create(self.make_user("other").id, "rab123a")

    def test_ownership(self):
        vehicle = self.make_vehicle(self.driver)
        with self.assertRaises(Forbidden):
            self.vehicles.get_owned(vehicle.id, self.make_user("other").id)
        with self.assertRaises(NotFound):
            self.vehicles.get_owned(404, self.driver.id)

    def test_update(self):
        vehicle = self.make_vehicle(self.driver)
        self.vehicles.update(vehicle.id, self.driver.id, plate_number="new1", type="BIKE")
        vehicle = self.vehicles.get_owned(vehicle.id, self.driver.id)
        self.assertEqual((vehicle.plate_number, vehicle.type), ("NEW1", VehicleType.BIKE))

    def test_delete_without_bookings(self):
        vehicle = self.make_vehicle(self.driver)
        self.vehicles.delete(vehicle.id, self.driver.id)
        self.assertEqual(self.vehicles.list_for_owner(self.driver.id), [])

    def test_delete_refused_with_booking_history(self):
        vehicle = self.make_vehicle(self.driver)
        self.book(self.driver, vehicle, self.make_lot())
        with self.assertRaises(InvalidStateTransition):
            self.vehicles.delete(vehicle.id, self.driver.id)
