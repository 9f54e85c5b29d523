"""
Rider / driver notifications.

``NotificationSink`` is the narrow outbound interface: ``notify(target,
event, payload)``, at-most-once, no delivery confirmation.  The Redis
implementation persists a copy in ``notifications`` and publishes the
event on the recipient's ``user:{id}`` channel, where the realtime
gateway picks it up.

``Notifier`` is what the services talk to.  Each method only queues a job
on the side-effect dispatcher, so no notification can block or fail a
ride transition.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rideswift.domain.enums import NotificationType
from rideswift.infrastructure.models import RideModel
from rideswift.infrastructure.repositories import NotificationRepository
from rideswift.workers.dispatcher import SideEffectDispatcher

logger = logging.getLogger(__name__)


def user_channel(user_id: int) -> str:
    return f"user:{user_id}"


class NotificationSink(ABC):
    @abstractmethod
    async def notify(
        self, target_id: int, event_type: NotificationType, payload: dict[str, Any]
    ) -> None: ...


class RedisNotificationSink(NotificationSink):
    def __init__(
        self,
        redis: aioredis.Redis,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self.redis = redis
        self.session_factory = session_factory

    async def notify(
        self, target_id: int, event_type: NotificationType, payload: dict[str, Any]
    ) -> None:
        async with self.session_factory() as session:
            await NotificationRepository(session).create(
                user_id=target_id,
                type=event_type.value,
                message=payload.get("message", ""),
                data=payload,
            )
            await session.commit()
        await self.redis.publish(
            user_channel(target_id),
            json.dumps({"type": event_type.value, **payload}),
        )


class Notifier:
    def __init__(self, sink: NotificationSink, dispatcher: SideEffectDispatcher):
        self.sink = sink
        self.dispatcher = dispatcher

    def send(
        self, target_id: int, event_type: NotificationType, message: str, **data: Any
    ) -> None:
        payload = {"message": message, **data}

        async def job() -> None:
            await self.sink.notify(target_id, event_type, payload)

        self.dispatcher.submit(f"notify {event_type.value} -> {target_id}", job)

    # ── Lifecycle events ──────────────────────────────────────────────

    def ride_assigned(self, driver_user_id: int, ride: RideModel) -> None:
        self.send(
            driver_user_id,
            NotificationType.RIDE_ASSIGNED,
            f"You have been assigned a new ride from {ride.pickup_address} "
            f"to {ride.dropoff_address}",
            ride_id=ride.id,
            pickup_address=ride.pickup_address,
            dropoff_address=ride.dropoff_address,
        )

    def ride_request(self, driver_user_ids: Iterable[int], ride: RideModel) -> None:
        notified = 0
        for user_id in driver_user_ids:
            self.send(
                user_id,
                NotificationType.RIDE_REQUEST,
                "New ride request nearby",
                ride_id=ride.id,
                ride_type=ride.ride_type.value,
                pickup={"lat": ride.pickup_lat, "lng": ride.pickup_lng},
            )
            notified += 1
        logger.info("Broadcast ride %s to %d nearby drivers", ride.id, notified)

    def ride_accepted(self, rider_id: int, ride_id: str) -> None:
        self.send(
            rider_id,
            NotificationType.RIDE_ACCEPTED,
            "Your driver has accepted the ride and is on the way!",
            ride_id=ride_id,
        )

    def driver_arriving(self, rider_id: int, ride_id: str) -> None:
        self.send(
            rider_id,
            NotificationType.DRIVER_ARRIVING,
            "Your driver is arriving at the pickup point",
            ride_id=ride_id,
        )

    def ride_started(self, rider_id: int, ride_id: str) -> None:
        self.send(
            rider_id, NotificationType.RIDE_STARTED, "Your ride has started", ride_id=ride_id
        )

    def ride_completed(self, rider_id: int, ride_id: str, fare: float) -> None:
        self.send(
            rider_id,
            NotificationType.RIDE_COMPLETED,
            f"Your ride is complete! Fare: ${fare:.2f}",
            ride_id=ride_id,
            fare=fare,
        )

    def ride_cancelled(self, driver_user_id: int, ride_id: str, reason: str | None) -> None:
        self.send(
            driver_user_id,
            NotificationType.RIDE_CANCELLED,
            "The rider cancelled this ride",
            ride_id=ride_id,
            reason=reason,
        )
