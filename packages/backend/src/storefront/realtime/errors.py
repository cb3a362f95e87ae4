"""Realtime error types."""


class RealtimeError(Exception):
    """Base class for live-update failures."""


class RegistryClosedError(RealtimeError):
    """Raised by register() once the process is shutting down."""


class SubscriberClosedError(RealtimeError):
    """Raised when pushing to a subscriber whose transport is gone."""


class UpdateStoreError(RealtimeError):
    """The backing cache failed to read or write the last update."""
