import math
from PySide6.QtCore import QObject
from ws.common.logger import log
from ws.core.errors import PersistenceFailure
from ws.core.records import Provenance, SessionRecord, SettingsRecord, SyncEnvelope


# Last-writer-wins decision for one inbound record. Newer origin timestamp wins; on an exact tie the lexically
# greater device id wins, so both devices settle on the same record whatever order messages arrive in. An inbound
# provenance equal to the local one is a re-delivery and is discarded.
def should_apply(local: Provenance, inbound: Provenance) -> bool:
    if inbound.origin_timestamp > local.origin_timestamp:
        return True
    if inbound.origin_timestamp < local.origin_timestamp:
        return False
    return inbound.origin_device_id > local.origin_device_id


class SyncCoordinator(QObject):
    """Keeps this device's records and its peer's converging, and keeps notifications in step with them.

    Holds no record state of its own. Local changes are sent to the peer fire-and-forget, inbound envelopes are
    reconciled against the owning store's provenance, and a reconnect re-sends the current records with their
    original provenance. Every committed change, local or remote, refreshes the notification scheduler.

    Stays connected to the stores and the channel until ``close()``.
    """

    def __init__(self, device_id, record_store, settings_store, channel, scheduler=None, parent=None):
        super().__init__(parent)
        self.device_id = device_id
        self._records = record_store
        self._settings = settings_store
        self._channel = channel
        self._scheduler = scheduler
        self._stores = {
            SessionRecord: record_store,
            SettingsRecord: settings_store,
        }

        record_store.session_changed.connect(self._on_session_changed)
        settings_store.settings_changed.connect(self._on_settings_changed)
        channel.envelope_received.connect(self.on_envelope_received)
        channel.reachability_changed.connect(self._on_reachability_changed)
        self._connected = True

    # Disconnects from the stores and the channel. Safe to call more than once.
    def close(self):
        if not self._connected:
            return
        self._connected = False
        self._records.session_changed.disconnect(self._on_session_changed)
        self._settings.settings_changed.disconnect(self._on_settings_changed)
        self._channel.envelope_received.disconnect(self.on_envelope_received)
        self._channel.reachability_changed.disconnect(self._on_reachability_changed)

    def on_envelope_received(self, envelope: SyncEnvelope):
        store = self._stores.get(type(envelope.record))
        if store is None:
            log.warning(f"Ignoring envelope carrying an unsupported record type {type(envelope.record).__name__}")
            return
        if not math.isfinite(envelope.origin_timestamp):
            log.warning(f"Ignoring {type(envelope.record).__name__} from '{envelope.origin_device_id}' "
                        f"with non-finite origin timestamp {envelope.origin_timestamp}")
            return
        local = store.provenance()
        if not should_apply(local, envelope.provenance):
            log.debug(f"Discarded {type(envelope.record).__name__} from '{envelope.origin_device_id}' "
                      f"at {envelope.origin_timestamp}, local is newer or equal ({local})")
            return
        try:
            store.apply_remote(envelope.record, envelope.origin_timestamp, envelope.origin_device_id)
        except PersistenceFailure:
            log.error(f"Could not persist {type(envelope.record).__name__} from '{envelope.origin_device_id}', "
                      f"keeping the local record until the next envelope", exc_info=True)

    # Pushes the current session and settings records to the peer, stamped with the provenance they were
    # committed under.
    def resend(self):
        self._channel.send(SyncEnvelope.wrap(self._records.current(), self._records.provenance()))
        self._channel.send(SyncEnvelope.wrap(self._settings.current(), self._settings.provenance()))

    def refresh_notifications(self):
        if self._scheduler is not None:
            self._scheduler.refresh(self._records.current(), self._settings.current())

    def _on_session_changed(self, change):
        if not change.remote:
            self._channel.send(SyncEnvelope.wrap(change.current, self._records.provenance()))
        self.refresh_notifications()

    def _on_settings_changed(self, change):
        if not change.remote:
            self._channel.send(SyncEnvelope.wrap(change.current, self._settings.provenance()))
        self.refresh_notifications()

    def _on_reachability_changed(self, reachable):
        if reachable:
            log.info("Peer became reachable, re-sending current records")
            self.resend()
