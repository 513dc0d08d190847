from PySide6.QtCore import QObject, Signal
from ws.common.logger import log
from ws.core.clock import validate_duration
from ws.core.config import session_from_state, state_section
from ws.core.errors import AlreadyRunning, NotRunning, PersistenceFailure
from ws.core.records import Provenance, SessionChange, SessionRecord
from ws.util import now

# Smallest step a local origin timestamp is moved past the previous one.
ORIGIN_EPSILON = 0.001


# Next origin timestamp for a local write. Never at or before the provenance it replaces, even if the wall clock
# went backwards, so the peer can't discard it as stale.
def next_origin_timestamp(clock_now, previous: Provenance):
    return max(clock_now.timestamp(), previous.origin_timestamp + ORIGIN_EPSILON)


# Owns the live SessionRecord of this device. The only way to change it is start(), stop(), or apply_remote() (the
# latter only ever called by the SyncCoordinator after conflict resolution). Every change is persisted through the
# StateFile before session_changed is emitted.
class RecordStore(QObject):

    session_changed = Signal(object)  # SessionChange

    # length_source, when given, returns the session length currently in force. It overrides the duration stored
    # on the running record, which only reflects the length at start.
    def __init__(self, state_file, clock=now, length_source=None, parent=None):
        super().__init__(parent)
        self._state_file = state_file
        self._clock = clock
        self._length_source = length_source
        self.device_id = state_file.device_id
        self._record, self._provenance = session_from_state(state_file.snapshot())
        log.debug(f"RecordStore for device '{self.device_id}' loaded {self._record} ({self._provenance})")

    # Pure reads of in-memory state, never touch disk.
    def current(self) -> SessionRecord:
        return self._record
    def provenance(self) -> Provenance:
        return self._provenance

    def estimated_end(self, for_duration=None):
        if for_duration is None and self._length_source is not None:
            for_duration = self._length_source()
        return self._record.estimated_end(for_duration)

    def start(self, duration_hours=None):
        if self._record.is_running:
            raise AlreadyRunning()
        hours = self._record.duration_hours if duration_hours is None else validate_duration(duration_hours)
        started_at = self._clock()
        record = SessionRecord.running(started_at, hours)
        provenance = Provenance(next_origin_timestamp(started_at, self._provenance), self.device_id)
        self._commit(record, provenance, remote=False)
        log.info(f"Started session at {started_at.isoformat()} for {hours}h")
        return record

    def stop(self):
        if not self._record.is_running:
            raise NotRunning()
        stopped_at = self._clock()
        record = SessionRecord.idle(self._record.duration_hours)
        provenance = Provenance(next_origin_timestamp(stopped_at, self._provenance), self.device_id)
        self._commit(record, provenance, remote=False)
        log.info(f"Stopped session at {stopped_at.isoformat()}")
        return record

    # Overwrites local state with a record that already won conflict resolution. Returns whether the record value
    # actually changed; a re-delivered or value-identical record only refreshes the stored provenance and emits
    # nothing. PersistenceFailure propagates with memory untouched.
    def apply_remote(self, record: SessionRecord, origin_timestamp, origin_device_id) -> bool:
        provenance = Provenance(float(origin_timestamp), str(origin_device_id))
        if record == self._record:
            if provenance != self._provenance:
                self._state_file.commit("session", state_section(record, provenance))
                self._provenance = provenance
            return False
        self._commit(record, provenance, remote=True)
        log.info(f"Applied remote session from '{origin_device_id}': {record}")
        return True

    def _commit(self, record, provenance, remote):
        try:
            self._state_file.commit("session", state_section(record, provenance))
        except PersistenceFailure:
            log.error(f"Rejected session change to {record}, state could not be persisted", exc_info=True)
            raise
        previous = self._record
        self._record, self._provenance = record, provenance
        self.session_changed.emit(SessionChange(previous, record, remote))
