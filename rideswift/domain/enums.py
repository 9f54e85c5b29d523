"""Domain enumerations."""

import enum


class RideStatus(str, enum.Enum):
    PENDING = "pending"
    SEARCHING = "searching"
    ACCEPTED = "accepted"
    DRIVER_ARRIVING = "driver_arriving"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# A rider may hold at most one ride in any of these at a time.
LIVE_STATUSES: frozenset[RideStatus] = frozenset(
    {
        RideStatus.PENDING,
        RideStatus.SEARCHING,
        RideStatus.ACCEPTED,
        RideStatus.DRIVER_ARRIVING,
        RideStatus.IN_PROGRESS,
    }
)

TERMINAL_STATUSES: frozenset[RideStatus] = frozenset(
    {RideStatus.COMPLETED, RideStatus.CANCELLED}
)


class DriverStatus(str, enum.Enum):
    OFFLINE = "offline"
    ONLINE = "online"
    BUSY = "busy"


class RideTier(str, enum.Enum):
    ECONOMY = "economy"
    PREMIUM = "premium"
    SUV = "suv"
    AUTO = "auto"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    WALLET = "wallet"

    @property
    def requires_preauth(self) -> bool:
        return self is not PaymentMethod.CASH


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class CancelledBy(str, enum.Enum):
    RIDER = "rider"
    DRIVER = "driver"


class NotificationType(str, enum.Enum):
    RIDE_REQUEST = "ride_request"
    RIDE_ASSIGNED = "ride_assigned"
    RIDE_ACCEPTED = "ride_accepted"
    DRIVER_ARRIVING = "driver_arriving"
    RIDE_STARTED = "ride_started"
    RIDE_COMPLETED = "ride_completed"
    RIDE_CANCELLED = "ride_cancelled"


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum *values* (lower-case) rather than member names."""
    return [member.value for member in enum_cls]
