"""Exceptions raised by trip tracking services."""

from __future__ import annotations


class TripTrackingError(Exception):
    """Base class for all trip tracking errors."""


# Lifecycle misuse


class AlreadyTrackingError(TripTrackingError):
    """start() called while a session is already tracking."""

    def __init__(self, message: str = "A trip is already being tracked"):
        super().__init__(message)


class NotTrackingError(TripTrackingError):
    """stop() or discard() called with no active session."""

    def __init__(self, message: str = "No trip is being tracked"):
        super().__init__(message)


class RecoveryPendingError(TripTrackingError):
    """An unresolved snapshot from a previous run blocks new tracking."""

    def __init__(self, message: str = "An incomplete trip must be resumed, saved or discarded first"):
        super().__init__(message)


class ResumeNotAllowedError(TripTrackingError):
    """Only continuous-tracking snapshots can be resumed."""


# Location


class LocationUnavailableError(TripTrackingError):
    """No location could be determined (timeout, no fix, provider failure)."""

    def __init__(self, message: str = "Unable to determine your location."):
        super().__init__(message)


class LocationDeniedError(LocationUnavailableError):
    """The user or OS denied access to location."""

    def __init__(self, message: str = "Location access not authorized."):
        super().__init__(message)


# Routing


class RouteUnavailableError(TripTrackingError):
    """The routing provider could not produce a driving route."""

    def __init__(self, message: str = "Could not calculate a driving route."):
        super().__init__(message)


class GeocodingError(TripTrackingError):
    """An address could not be resolved to coordinates."""


# Storage


class PersistenceError(TripTrackingError):
    """Reading or writing durable trip state failed."""


class NoIncompleteTripError(TripTrackingError):
    """A recovery action was requested but no interrupted trip is stored."""

    def __init__(self, message: str = "No incomplete trip to recover"):
        super().__init__(message)
