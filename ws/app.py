from pathlib import Path
from ws.common.logger import log
from ws.core import config
from ws.core.errors import PermissionRequired
from ws.core.settings import SettingsStore
from ws.core.store import RecordStore
from ws.notify.center import PermissionStatus
from ws.notify.scheduler import NotificationScheduler
from ws.sync.coordinator import SyncCoordinator
from ws.util import now


# Everything one device runs, built once and handed out explicitly. This is what a UI layer talks to: it exposes
# start/stop, the settings toggles, and the two change signals (device.records.session_changed and
# device.settings.settings_changed).
class Device:

    def __init__(self, channel, notification_center, state_path=None, history_dir=None, clock=now):
        self.state_file = config.StateFile(state_path)
        self.device_id = self.state_file.device_id
        self.history_dir = Path(history_dir) if history_dir is not None else config.COMPLETED_DIR
        self._clock = clock

        self.channel = channel
        self.notification_center = notification_center
        self.settings = SettingsStore(self.state_file, clock=clock)
        self.records = RecordStore(self.state_file, clock=clock, length_source=self._session_length)
        self.scheduler = NotificationScheduler(notification_center, clock=clock)
        self.coordinator = SyncCoordinator(self.device_id, self.records, self.settings, channel, self.scheduler)

        self.records.session_changed.connect(self._archive_finished_session)
        self._closed = False

        # Alerts may be stale from a previous run (settings changed on the peer while we were off, etc).
        self.coordinator.refresh_notifications()
        log.info(f"Device '{self.device_id}' ready, session {'running' if self.records.current().is_running else 'idle'}")

    #region === Session ===

    def start(self):
        return self.records.start(self._session_length())

    def stop(self):
        return self.records.stop()

    def estimated_end(self):
        return self.records.estimated_end()

    def history(self, limit=None):
        return config.load_history(self.history_dir, limit)

    def _session_length(self):
        return self.settings.current().session_length

    #endregion === Session ===

    #region === Settings ===

    def set_session_length(self, hours):
        return self.settings.update(session_length=hours)

    def set_reminder_time(self, reminder_time):
        return self.settings.update(reminder_time=reminder_time)

    def set_notify_end(self, enabled):
        return self._set_notification_toggle("notify_end", enabled)

    def set_reminder_start(self, enabled):
        return self._set_notification_toggle("reminder_start", enabled)

    # Turning a notification on needs permission first. Without it the toggle is put back to off and
    # PermissionRequired goes up to the UI so it can prompt the user.
    def _set_notification_toggle(self, name, enabled):
        if enabled:
            try:
                self.scheduler.require_permission()
            except PermissionRequired:
                if getattr(self.settings.current(), name):
                    self.settings.update(**{name: False})
                log.info(f"Refused to enable '{name}', notification permission is missing")
                raise
        return self.settings.update(**{name: enabled})

    # Asks the user for notification permission. The answer may arrive any number of times; each authorized answer
    # just refreshes the scheduler, which is idempotent.
    def request_permission(self, callback=None):
        def _on_result(status):
            status = PermissionStatus(status)
            if status == PermissionStatus.AUTHORIZED:
                self.coordinator.refresh_notifications()
            if callback is not None:
                callback(status)
        self.notification_center.request_permission(_on_result)

    #endregion === Settings ===

    # Keeps a record of every session that ended, whichever device stopped it.
    def _archive_finished_session(self, change):
        if change.previous.is_running and not change.current.is_running:
            try:
                config.save_completed_session(change.previous, self._clock(), self.history_dir, self.device_id,
                                              duration_hours=self._session_length())
            except OSError:
                log.warning("Could not archive the completed session", exc_info=True)

    # Detaches the coordinator and the archive handler from the stores and the channel. Safe to call more than once.
    def close(self):
        if self._closed:
            return
        self._closed = True
        self.coordinator.close()
        self.records.session_changed.disconnect(self._archive_finished_session)
