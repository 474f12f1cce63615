from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Optional
from decimal import Decimal
import datetime

from flask import request

from .models import PaymentMethod, VehicleType
from .utils import to_utc


class RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class Credentials(RequestModel):
    username: str = Field(min_length=3, max_length=150)
    password: str = Field(min_length=6)


class BookingRequest(RequestModel):
    vehicle_id: int = Field(alias="vehicleId")
    parking_id: int = Field(alias="parkingId")
    entry_time: datetime.datetime = Field(alias="entryTime")
    checkout_time: datetime.datetime = Field(alias="checkoutTime")

    @model_validator(mode="after")
    def check_window(self):
        if to_utc(self.checkout_time) <= to_utc(self.entry_time):
            raise ValueError("checkoutTime must be after entryTime")
        return self


class PaymentRequest(RequestModel):
    payment_method: PaymentMethod = Field(alias="paymentMethod")


class ParkingLotRequest(RequestModel):
    name: str = Field(min_length=1, max_length=100)
    location: str = Field(min_length=1, max_length=200)
    total_spaces: int = Field(alias="totalSpaces", ge=1)
    charging_fee_per_hour: Decimal = Field(alias="chargingFeePerHour", ge=0)
    slot_type: VehicleType = Field(default=VehicleType.CAR, alias="slotType")


class ParkingLotUpdate(RequestModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    location: Optional[str] = Field(default=None, min_length=1, max_length=200)
    total_spaces: Optional[int] = Field(default=None, alias="totalSpaces", ge=1)
    charging_fee_per_hour: Optional[Decimal] = Field(default=None, alias="chargingFeePerHour", ge=0)


class VehicleRequest(RequestModel):
    plate_number: str = Field(alias="plateNumber", min_length=1, max_length=50)
    type: VehicleType = VehicleType.CAR


class VehicleUpdate(RequestModel):
    plate_number: Optional[str] = Field(default=None, alias="plateNumber", min_length=1, max_length=50)
    type: Optional[VehicleType] = None


class MaintenanceRequest(RequestModel):
    enabled: bool


def parse_body(model):
    """Validate the JSON body against ``model``; pydantic errors become 400s."""
    return model.model_validate(request.get_json(silent=True) or {})
