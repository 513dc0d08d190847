from dataclasses import fields
from PySide6.QtCore import QObject, Signal
from ws.common.logger import log
from ws.core.config import settings_from_state, state_section
from ws.core.errors import PersistenceFailure
from ws.core.records import Provenance, SettingsChange, SettingsRecord
from ws.core.store import next_origin_timestamp
from ws.util import now

_FIELD_NAMES = tuple(f.name for f in fields(SettingsRecord))


# Same contract as RecordStore, for the shared SettingsRecord: local updates are stamped with this device's
# provenance, remote records are only applied through apply_remote().
class SettingsStore(QObject):

    settings_changed = Signal(object)  # SettingsChange

    def __init__(self, state_file, clock=now, parent=None):
        super().__init__(parent)
        self._state_file = state_file
        self._clock = clock
        self.device_id = state_file.device_id
        self._record, self._provenance = settings_from_state(state_file.snapshot())

    def current(self) -> SettingsRecord:
        return self._record
    def provenance(self) -> Provenance:
        return self._provenance

    # Changes one or more settings fields. Raises ValueError for unknown fields or invalid values, and does nothing
    # at all (no write, no event) when the values are already set.
    def update(self, **changes):
        unknown = set(changes) - set(_FIELD_NAMES)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        record = self._record.with_changes(**changes)
        if record == self._record:
            return record
        provenance = Provenance(next_origin_timestamp(self._clock(), self._provenance), self.device_id)
        self._commit(record, provenance, remote=False)
        log.info(f"Updated settings: {', '.join(f'{k}={v}' for k, v in changes.items())}")
        return record

    def apply_remote(self, record: SettingsRecord, origin_timestamp, origin_device_id) -> bool:
        provenance = Provenance(float(origin_timestamp), str(origin_device_id))
        if record == self._record:
            if provenance != self._provenance:
                self._state_file.commit("settings", state_section(record, provenance))
                self._provenance = provenance
            return False
        self._commit(record, provenance, remote=True)
        log.info(f"Applied remote settings from '{origin_device_id}': {record}")
        return True

    def _commit(self, record, provenance, remote):
        try:
            self._state_file.commit("settings", state_section(record, provenance))
        except PersistenceFailure:
            log.error(f"Rejected settings change to {record}, state could not be persisted", exc_info=True)
            raise
        previous = self._record
        self._record, self._provenance = record, provenance
        changed = tuple(name for name in _FIELD_NAMES if getattr(previous, name) != getattr(record, name))
        self.settings_changed.emit(SettingsChange(previous, record, remote, changed))
