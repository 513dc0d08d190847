from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from ws.common.logger import log
from ws.core.clock import next_daily_occurrence
from ws.core.errors import PermissionDenied, PermissionRequired, SchedulingFailed
from ws.notify.center import NotificationCenter, PermissionStatus
from ws.util import format_hhmm, now


class NotificationKind(str, Enum):
    SESSION_END = "session_end"
    REMINDER_START = "reminder_start"

    # Stable per kind, so scheduling a kind again replaces the earlier alert instead of adding a second one.
    @property
    def id(self):
        return f"ws.{self.value}"


@dataclass(frozen=True)
class NotificationIntent:
    kind: NotificationKind
    fires_at: datetime
    payload: dict = field(default_factory=dict, compare=False)

    @property
    def id(self):
        return self.kind.id


class NotificationScheduler:
    """Derives which alerts should exist from the session and settings records, and makes the notification center
    match.

    Each kind is either absent or scheduled at one time. ``refresh`` is idempotent: an alert already scheduled at
    the right time is left alone, a moved one is cancelled and re-scheduled under the same id, and anything no
    longer wanted is cancelled. Delivery failures are logged and retried on the next refresh.
    """

    def __init__(self, center: NotificationCenter, clock=now):
        self._center = center
        self._clock = clock
        self._intents = {}

    def scheduled(self):
        return dict(self._intents)

    # Raises PermissionRequired unless notifications are authorized.
    def require_permission(self):
        status = PermissionStatus(self._center.check_permission())
        if status != PermissionStatus.AUTHORIZED:
            raise PermissionRequired(status)
        return status

    def desired(self, record, settings):
        current_time = self._clock()
        intents = {}
        if settings.notify_end and record.is_running:
            fires_at = record.estimated_end(settings.session_length)
            if fires_at > current_time:
                intents[NotificationKind.SESSION_END] = NotificationIntent(
                    NotificationKind.SESSION_END, fires_at,
                    {"title": "Session complete", "body": f"Your {settings.session_length}h session is over."},
                )
        if settings.reminder_start:
            fires_at = next_daily_occurrence(settings.reminder_time, current_time)
            intents[NotificationKind.REMINDER_START] = NotificationIntent(
                NotificationKind.REMINDER_START, fires_at,
                {"title": "Time to start your session",
                 "body": f"Daily reminder ({format_hhmm(settings.reminder_time)})",
                 "repeats_daily": True},
            )
        return intents

    def refresh(self, record, settings):
        try:
            self.require_permission()
        except PermissionRequired as e:
            if self._intents:
                log.warning(f"Notification permission is {e.status.value}, cancelling all scheduled alerts")
            for kind in list(self._intents):
                self._cancel(kind)
            return self.scheduled()

        desired = self.desired(record, settings)
        for kind in NotificationKind:
            wanted = desired.get(kind)
            existing = self._intents.get(kind)
            if wanted is None:
                if existing is not None:
                    self._cancel(kind)
            elif existing is None or existing.fires_at != wanted.fires_at:
                self._replace(wanted)
        return self.scheduled()

    # Cancel-then-schedule under the kind's id, as one step.
    def _replace(self, intent):
        self._center.cancel(intent.id)
        self._intents.pop(intent.kind, None)
        try:
            self._center.schedule(intent.id, intent.fires_at, intent.payload)
        except (PermissionDenied, SchedulingFailed):
            log.warning(f"Could not schedule '{intent.id}' for {intent.fires_at.isoformat()}", exc_info=True)
            return
        self._intents[intent.kind] = intent
        log.info(f"Scheduled '{intent.id}' for {intent.fires_at.isoformat()}")

    def _cancel(self, kind):
        self._center.cancel(kind.id)
        self._intents.pop(kind, None)
        log.info(f"Cancelled '{kind.id}'")
