from luba.models.customer import CustomerAccount
from luba.models.driver import DriverProfile, DriverPresence
from luba.models.ride import RideRequest, CustomerRide
from luba.models.shift import DriverShift, ShiftReport, RolloverMarker
from luba.models.payment import Payment
from luba.models.feedback import Feedback

__all__ = [
    "CustomerAccount",
    "DriverProfile",
    "DriverPresence",
    "RideRequest",
    "CustomerRide",
    "DriverShift",
    "ShiftReport",
    "RolloverMarker",
    "Payment",
    "Feedback",
]
