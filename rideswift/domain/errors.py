"""
Error taxonomy.

Core-logic errors carry an HTTP-ish ``status_code`` so the API layer can
map them without a lookup table.  ``UpstreamUnavailable`` and
``DependencyFailure`` never reach a caller: the former is absorbed by the
fare fallback, the latter by the side-effect dispatcher.
"""

from __future__ import annotations


class RideSwiftError(Exception):
    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RideSwiftError):
    """Missing or malformed input.  Retrying will not help."""

    status_code = 400


class InvalidPromoCode(ValidationError):
    def __init__(self, code: str, reason: str):
        super().__init__(reason)
        self.code = code
        self.reason = reason


class NotFoundError(RideSwiftError):
    """Referenced entity is missing, or the caller is not a party to it."""

    status_code = 404


class InvalidStateTransition(RideSwiftError):
    """Raised when a ride status change violates the state machine."""

    status_code = 400

    def __init__(self, message: str = "Ride not found or not in the right state"):
        super().__init__(message)


class ConflictError(RideSwiftError):
    """A precondition stopped holding; try a different target."""

    status_code = 409


class UpstreamUnavailable(RideSwiftError):
    status_code = 503


class DependencyFailure(RideSwiftError):
    status_code = 502
