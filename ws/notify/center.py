from datetime import timedelta
from enum import Enum
from typing import Protocol
from PySide6.QtCore import QObject, QTimer, Signal
from ws.common.logger import log
from ws.core.errors import PermissionDenied, SchedulingFailed
from ws.util import now


class PermissionStatus(str, Enum):
    NOT_DETERMINED = "not_determined"
    DENIED = "denied"
    AUTHORIZED = "authorized"


# What the core needs from the OS notification system. cancel() must be a no-op for unknown ids.
class NotificationCenter(Protocol):

    def schedule(self, notification_id, fires_at, payload): ...

    def cancel(self, notification_id): ...

    def check_permission(self) -> PermissionStatus: ...

    # One-shot, user-interactive. callback receives the resulting PermissionStatus.
    def request_permission(self, callback): ...


# Local alerts delivered from inside the Qt event loop: one single-shot QTimer per notification id. Needs a running
# QCoreApplication for alerts to actually fire.
class QtNotificationCenter(QObject):

    alert_fired = Signal(str, object)  # notification id, payload

    def __init__(self, permission=PermissionStatus.NOT_DETERMINED, grant_on_request=True, clock=now, parent=None):
        super().__init__(parent)
        self._permission = PermissionStatus(permission)
        self._grant_on_request = grant_on_request
        self._clock = clock
        self._timers = {}   # id -> QTimer
        self._pending = {}  # id -> (fires_at, payload)

    def schedule(self, notification_id, fires_at, payload):
        if self._permission != PermissionStatus.AUTHORIZED:
            raise PermissionDenied(f"Cannot schedule '{notification_id}', notification permission is {self._permission.value}")
        delay_ms = int((fires_at - self._clock()).total_seconds() * 1000)
        if delay_ms < 0:
            raise SchedulingFailed(f"Cannot schedule '{notification_id}' in the past ({fires_at.isoformat()})")
        self.cancel(notification_id)

        timer = QTimer(self)
        timer.setSingleShot(True)
        timer.timeout.connect(lambda: self._fire(notification_id))
        timer.start(delay_ms)
        self._timers[notification_id] = timer
        self._pending[notification_id] = (fires_at, dict(payload))
        log.debug(f"Scheduled alert '{notification_id}' for {fires_at.isoformat()} (in {delay_ms} ms)")

    def cancel(self, notification_id):
        timer = self._timers.pop(notification_id, None)
        self._pending.pop(notification_id, None)
        if timer is not None:
            timer.stop()
            timer.deleteLater()
            log.debug(f"Cancelled alert '{notification_id}'")

    # id -> fire time of every alert still waiting.
    def pending(self):
        return {notification_id: fires_at for notification_id, (fires_at, _) in self._pending.items()}

    def check_permission(self):
        return self._permission

    def request_permission(self, callback):
        if self._permission == PermissionStatus.NOT_DETERMINED:
            self._permission = PermissionStatus.AUTHORIZED if self._grant_on_request else PermissionStatus.DENIED
            log.info(f"Notification permission is now {self._permission.value}")
        callback(self._permission)

    def set_permission(self, status):
        self._permission = PermissionStatus(status)

    def _fire(self, notification_id):
        timer = self._timers.pop(notification_id, None)
        if timer is not None:
            timer.deleteLater()
        fires_at, payload = self._pending.pop(notification_id, (None, {}))
        log.info(f"Alert '{notification_id}' fired: {payload.get('title', '')}")
        self.alert_fired.emit(notification_id, payload)
        # Daily reminders re-arm themselves for the same time tomorrow.
        if payload.get("repeats_daily") and fires_at is not None:
            try:
                self.schedule(notification_id, fires_at + timedelta(days=1), payload)
            except (PermissionDenied, SchedulingFailed):
                log.warning(f"Could not re-arm daily alert '{notification_id}'", exc_info=True)
