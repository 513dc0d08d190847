"""Every error the session core can raise.

Misuse (AlreadyRunning, NotRunning) and permission errors reach the caller. The rest are logged and absorbed
somewhere inside the core and only surface here so the absorbing code has something specific to catch.
"""


class WearSyncError(Exception):
    pass


class AlreadyRunning(WearSyncError):
    def __init__(self, message="A session is already running"):
        super().__init__(message)


class NotRunning(WearSyncError):
    def __init__(self, message="No session is running"):
        super().__init__(message)


class PermissionRequired(WearSyncError):
    """Notification permission is not granted yet. ``status`` tells the UI whether to ask or to send the
    user to the system settings."""

    def __init__(self, status):
        self.status = status
        super().__init__(f"Notification permission required (current status: {getattr(status, 'value', status)})")


class PermissionDenied(WearSyncError):
    pass


class SchedulingFailed(WearSyncError):
    pass


class PersistenceFailure(WearSyncError):
    pass


class TransportUnavailable(WearSyncError):
    pass


class EnvelopeError(WearSyncError, ValueError):
    pass
