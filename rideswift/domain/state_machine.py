"""
Ride lifecycle state machine.

One exhaustive table maps each action to the actor allowed to perform
it, the statuses it may start from and the status it produces::

    pending ─┐
             ├─ accept ─> accepted ─ arrive ─> driver_arriving
    searching┘               │                      │
                             └──────── start ───────┴─> in_progress ─ complete ─> completed

    cancel: any non-terminal status ─> cancelled

The repositories turn ``TransitionRule.sources`` into the ``WHERE status
IN (...)`` guard of a single conditional UPDATE, so the table is the only
place legal transitions are spelled out.  ``decline`` is intentionally
absent: it never changes the ride.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from .enums import LIVE_STATUSES, PaymentMethod, RideStatus
from .errors import InvalidStateTransition


class RideAction(str, enum.Enum):
    ACCEPT = "accept"
    ARRIVE = "arrive"
    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"


class Actor(str, enum.Enum):
    RIDER = "rider"
    DRIVER = "driver"


@dataclass(frozen=True)
class TransitionRule:
    action: RideAction
    actor: Actor
    sources: frozenset[RideStatus]
    target: RideStatus


TRANSITION_TABLE: dict[RideAction, TransitionRule] = {
    RideAction.ACCEPT: TransitionRule(
        RideAction.ACCEPT,
        Actor.DRIVER,
        frozenset({RideStatus.PENDING, RideStatus.SEARCHING}),
        RideStatus.ACCEPTED,
    ),
    RideAction.ARRIVE: TransitionRule(
        RideAction.ARRIVE,
        Actor.DRIVER,
        frozenset({RideStatus.ACCEPTED}),
        RideStatus.DRIVER_ARRIVING,
    ),
    RideAction.START: TransitionRule(
        RideAction.START,
        Actor.DRIVER,
        frozenset({RideStatus.ACCEPTED, RideStatus.DRIVER_ARRIVING}),
        RideStatus.IN_PROGRESS,
    ),
    RideAction.COMPLETE: TransitionRule(
        RideAction.COMPLETE,
        Actor.DRIVER,
        frozenset({RideStatus.IN_PROGRESS}),
        RideStatus.COMPLETED,
    ),
    RideAction.CANCEL: TransitionRule(
        RideAction.CANCEL,
        Actor.RIDER,
        LIVE_STATUSES,
        RideStatus.CANCELLED,
    ),
}


def rule_for(action: RideAction) -> TransitionRule:
    return TRANSITION_TABLE[action]


def resolve_transition(action: RideAction, current: RideStatus) -> RideStatus:
    """Return the status *action* produces from *current*, else raise."""
    rule = TRANSITION_TABLE[action]
    if current not in rule.sources:
        raise InvalidStateTransition(
            f"Cannot {action.value} a ride in status {current.value}"
        )
    return rule.target


def allowed_targets(current: RideStatus) -> set[RideStatus]:
    return {
        rule.target for rule in TRANSITION_TABLE.values() if current in rule.sources
    }


def initial_status(payment_method: PaymentMethod, driver_assigned: bool) -> RideStatus:
    """Status a freshly booked ride is persisted with."""
    if driver_assigned:
        return RideStatus.ACCEPTED
    if payment_method.requires_preauth:
        return RideStatus.PENDING
    return RideStatus.SEARCHING
