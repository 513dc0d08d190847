"""Tests for keeping two devices converged.

Covers: ws.sync.codec, ws.sync.channel, ws.sync.coordinator, plus two-device runs through ws.app.Device
"""

import itertools
import unittest
from datetime import timedelta
from unittest.mock import patch

from fakes import T0, ManualClock, TempDirMixin, at_epoch, seed_state


def _session(running_since=None, hours=8):
    from ws.core.records import SessionRecord
    if running_since is None:
        return SessionRecord.idle(hours)
    return SessionRecord.running(running_since, hours)


def _envelope(record, timestamp, device_id):
    from ws.core.records import SyncEnvelope
    return SyncEnvelope(record, float(timestamp), device_id)


# ──────────────────────────────────────────────────────────────────────────
# codec.py tests
# ──────────────────────────────────────────────────────────────────────────

class TestCodec(unittest.TestCase):

    def test_session_envelope_wire_shape(self):
        from ws.sync.codec import encode_envelope
        message = encode_envelope(_envelope(_session(T0, 8), 100, "phone"))
        self.assertEqual(message["schema_version"], 1)
        self.assertEqual(message["type"], "session")
        self.assertEqual(message["origin_device_id"], "phone")
        self.assertEqual(message["record"]["started_at"], T0.isoformat())

    def test_settings_envelope_survives_json(self):
        from datetime import time
        from ws.core.records import SettingsRecord
        from ws.sync.codec import dumps, loads
        envelope = _envelope(SettingsRecord(session_length=6, reminder_start=True, reminder_time=time(21, 15)),
                             42.5, "watch")
        self.assertEqual(loads(dumps(envelope)), envelope)

    def test_rejects_unknown_version_and_type(self):
        from ws.core.errors import EnvelopeError
        from ws.sync.codec import decode_envelope, encode_envelope
        message = encode_envelope(_envelope(_session(), 1, "a"))
        with self.assertRaises(EnvelopeError):
            decode_envelope({**message, "schema_version": 2})
        with self.assertRaises(EnvelopeError):
            decode_envelope({**message, "type": "theme"})
        with self.assertRaises(EnvelopeError):
            decode_envelope(["not", "a", "dict"])

    def test_rejects_malformed_record(self):
        from ws.core.errors import EnvelopeError
        from ws.sync.codec import decode_envelope, encode_envelope
        message = encode_envelope(_envelope(_session(), 1, "a"))
        message["record"] = {"is_running": True, "started_at": None}
        with self.assertRaises(EnvelopeError):
            decode_envelope(message)
        with self.assertRaises(EnvelopeError):
            decode_envelope({**encode_envelope(_envelope(_session(), 1, "a")), "origin_device_id": 7})

    def test_rejects_non_finite_timestamps(self):
        from ws.core.errors import EnvelopeError
        from ws.sync.codec import dumps, loads
        text = dumps(_envelope(_session(T0, 8), 100, "z"))
        for bad in ("NaN", "Infinity", "-Infinity"):
            with self.assertRaises(EnvelopeError):
                loads(text.replace("100.0", bad))

    def test_loads_rejects_garbage(self):
        from ws.core.errors import EnvelopeError
        from ws.sync.codec import loads
        with self.assertRaises(EnvelopeError):
            loads("{nope")


# ──────────────────────────────────────────────────────────────────────────
# channel.py tests
# ──────────────────────────────────────────────────────────────────────────

class TestLoopbackChannel(unittest.TestCase):

    def setUp(self):
        from ws.sync.channel import LoopbackChannel
        self.phone = LoopbackChannel("phone")
        self.watch = LoopbackChannel("watch")
        self.received = []
        self.watch.envelope_received.connect(lambda envelope: self.received.append(envelope))

    def test_send_delivers_when_reachable(self):
        from ws.sync.channel import LoopbackChannel
        LoopbackChannel.pair(self.phone, self.watch)
        envelope = _envelope(_session(T0), 1, "phone")
        self.phone.send(envelope)
        self.assertEqual(self.received, [envelope])

    def test_send_while_unreachable_queues_and_never_raises(self):
        envelope = _envelope(_session(T0), 1, "phone")
        self.phone.send(envelope)  # not paired at all
        self.assertEqual(self.phone.queued, 1)
        self.assertEqual(self.received, [])

    def test_queued_messages_flush_in_order_on_reconnect(self):
        from ws.sync.channel import LoopbackChannel
        LoopbackChannel.pair(self.phone, self.watch, reachable=False)
        sent = [_envelope(_session(), ts, "phone") for ts in (1, 2, 3)]
        for envelope in sent:
            self.phone.send(envelope)
        self.phone.set_reachable(True)
        self.assertEqual(self.received, sent)
        self.assertEqual(self.phone.queued, 0)

    def test_outbox_drops_oldest_when_full(self):
        from ws.sync.channel import LoopbackChannel
        phone = LoopbackChannel("phone", max_queued=2)
        LoopbackChannel.pair(phone, self.watch, reachable=False)
        for ts in (1, 2, 3):
            phone.send(_envelope(_session(), ts, "phone"))
        phone.set_reachable(True)
        self.assertEqual([e.origin_timestamp for e in self.received], [2.0, 3.0])

    def test_reachability_events_only_on_flips(self):
        from ws.sync.channel import LoopbackChannel
        flips = []
        self.watch.reachability_changed.connect(lambda reachable: flips.append(reachable))
        LoopbackChannel.pair(self.phone, self.watch, reachable=False)
        self.phone.set_reachable(True)
        self.phone.set_reachable(True)
        self.watch.set_reachable(False)
        self.assertEqual(flips, [True, False])
        self.assertFalse(self.phone.is_reachable())

    def test_undecodable_inbound_message_is_dropped(self):
        self.watch.receive("{garbage")
        self.watch.receive('{"schema_version": 1, "type": "session"}')
        self.assertEqual(self.received, [])


# ──────────────────────────────────────────────────────────────────────────
# coordinator.py tests
# ──────────────────────────────────────────────────────────────────────────

class TestShouldApply(unittest.TestCase):

    def test_newer_wins_older_loses(self):
        from ws.core.records import Provenance
        from ws.sync.coordinator import should_apply
        self.assertTrue(should_apply(Provenance(100, "B"), Provenance(101, "A")))
        self.assertFalse(should_apply(Provenance(100, "A"), Provenance(99, "B")))

    def test_tie_broken_by_device_id(self):
        from ws.core.records import Provenance
        from ws.sync.coordinator import should_apply
        self.assertTrue(should_apply(Provenance(100, "A"), Provenance(100, "B")))
        self.assertFalse(should_apply(Provenance(100, "B"), Provenance(100, "A")))

    def test_identical_provenance_is_a_redelivery(self):
        from ws.core.records import Provenance
        from ws.sync.coordinator import should_apply
        self.assertFalse(should_apply(Provenance(100, "A"), Provenance(100, "A")))


class TestSyncCoordinator(TempDirMixin, unittest.TestCase):

    def setUp(self):
        self.tmpdir = self.make_tmpdir()
        self.counter = itertools.count()

    # Stores + coordinator for one device, wired to an unpaired channel.
    def _device_parts(self, device_id="local"):
        from ws.core.config import StateFile
        from ws.core.settings import SettingsStore
        from ws.core.store import RecordStore
        from ws.sync.channel import LoopbackChannel
        from ws.sync.coordinator import SyncCoordinator
        state_file = StateFile(seed_state(self.tmpdir / f"{device_id}-{next(self.counter)}.json", device_id))
        records = RecordStore(state_file, clock=ManualClock())
        settings = SettingsStore(state_file, clock=ManualClock())
        channel = LoopbackChannel(device_id)
        coordinator = SyncCoordinator(device_id, records, settings, channel)
        self.addCleanup(coordinator.close)
        return records, settings, channel, coordinator

    def test_newer_envelope_is_applied(self):
        records, _, _, coordinator = self._device_parts()
        coordinator.on_envelope_received(_envelope(_session(T0, 9), 100, "peer"))
        self.assertEqual(records.current(), _session(T0, 9))

    def test_older_envelope_is_discarded(self):
        records, _, _, coordinator = self._device_parts()
        coordinator.on_envelope_received(_envelope(_session(T0, 9), 100, "peer"))
        coordinator.on_envelope_received(_envelope(_session(), 50, "peer"))
        self.assertTrue(records.current().is_running)

    def test_settings_envelopes_go_to_settings_store(self):
        from ws.core.records import SettingsRecord
        records, settings, _, coordinator = self._device_parts()
        coordinator.on_envelope_received(_envelope(SettingsRecord(session_length=4), 100, "peer"))
        self.assertEqual(settings.current().session_length, 4)
        self.assertFalse(records.current().is_running)

    def test_same_envelope_twice_emits_once(self):
        records, _, channel, coordinator = self._device_parts()
        events = []
        records.session_changed.connect(lambda change: events.append(change))
        envelope = _envelope(_session(T0, 9), 100, "peer")
        coordinator.on_envelope_received(envelope)
        coordinator.on_envelope_received(envelope)
        # Same again through the wire.
        from ws.sync.codec import dumps
        channel.receive(dumps(envelope))
        self.assertEqual(len(events), 1)

    def test_resolution_is_commutative(self):
        """Any two envelopes, applied in either order, leave the same record behind."""
        envelopes = [
            _envelope(_session(T0, 8), 100, "A"),
            _envelope(_session(), 200, "B"),
            _envelope(_session(T0 + timedelta(hours=1), 10), 100, "B"),
            _envelope(_session(T0, 5), 150, "A"),
            _envelope(_session(), 100, "C"),
        ]
        for first, second in itertools.combinations(envelopes, 2):
            outcomes = []
            for order in ((first, second), (second, first)):
                records, _, _, coordinator = self._device_parts()
                for envelope in order:
                    coordinator.on_envelope_received(envelope)
                outcomes.append((records.current(), records.provenance()))
            self.assertEqual(outcomes[0], outcomes[1], f"{first} / {second}")

    def test_local_change_is_sent_with_store_provenance(self):
        records, _, channel, _ = self._device_parts("phone")
        sent = []
        with patch.object(channel, "send", side_effect=sent.append):
            records.start(8)
        self.assertEqual(len(sent), 1)
        self.assertEqual(sent[0].record, records.current())
        self.assertEqual(sent[0].provenance, records.provenance())

    def test_remote_change_is_not_echoed_back(self):
        records, _, channel, coordinator = self._device_parts("phone")
        sent = []
        with patch.object(channel, "send", side_effect=sent.append):
            coordinator.on_envelope_received(_envelope(_session(T0, 9), 100, "watch"))
        self.assertEqual(sent, [])

    def test_non_finite_timestamps_never_win(self):
        for bad in (float("nan"), float("inf")):
            records, _, _, coordinator = self._device_parts()
            coordinator.on_envelope_received(_envelope(_session(T0, 9), bad, "z"))
            self.assertFalse(records.current().is_running)
            self.assertEqual(records.provenance().origin_timestamp, 0.0)

            coordinator.on_envelope_received(_envelope(_session(T0, 9), 1e12, "a"))
            coordinator.on_envelope_received(_envelope(_session(), 1e12 + 1, "a"))
            self.assertFalse(records.current().is_running)
            self.assertEqual(records.provenance().origin_timestamp, 1e12 + 1)

    def test_non_finite_timestamp_dropped_on_the_wire(self):
        from ws.sync.codec import dumps
        records, _, channel, _ = self._device_parts()
        channel.receive(dumps(_envelope(_session(T0, 9), 100, "z")).replace("100.0", "NaN"))
        self.assertFalse(records.current().is_running)

    def test_persistence_failure_leaves_record_for_retry(self):
        from ws.core.errors import PersistenceFailure
        records, _, _, coordinator = self._device_parts()
        envelope = _envelope(_session(T0, 9), 100, "peer")
        with patch("ws.core.config.save_state", side_effect=PersistenceFailure("disk full")):
            coordinator.on_envelope_received(envelope)  # logged, not raised
        self.assertFalse(records.current().is_running)
        self.assertEqual(records.provenance().origin_timestamp, 0.0)
        coordinator.on_envelope_received(envelope)
        self.assertEqual(records.current(), _session(T0, 9))


# ──────────────────────────────────────────────────────────────────────────
# Two devices
# ──────────────────────────────────────────────────────────────────────────

class TestTwoDevices(TempDirMixin, unittest.TestCase):

    def setUp(self):
        from ws.sync.channel import LoopbackChannel
        self.tmpdir = self.make_tmpdir()
        self.phone_channel = LoopbackChannel("phone")
        self.watch_channel = LoopbackChannel("watch")
        LoopbackChannel.pair(self.phone_channel, self.watch_channel)

    def _devices(self, phone_id, watch_id, phone_clock, watch_clock):
        phone = self.make_device(self.tmpdir, phone_id, phone_clock, channel=self.phone_channel)
        watch = self.make_device(self.tmpdir, watch_id, watch_clock, channel=self.watch_channel)
        return phone, watch

    def test_start_on_phone_shows_on_watch(self):
        phone, watch = self._devices("phone", "watch", ManualClock(), ManualClock())
        phone.start()
        self.assertEqual(watch.records.current(), phone.records.current())
        self.assertEqual(watch.records.provenance(), phone.records.provenance())

    def test_stop_on_watch_stops_phone(self):
        clock = ManualClock()
        phone, watch = self._devices("phone", "watch", clock, clock)
        phone.start()
        clock.advance(hours=2)
        watch.stop()
        self.assertFalse(phone.records.current().is_running)

    def test_settings_propagate(self):
        phone, watch = self._devices("phone", "watch", ManualClock(), ManualClock())
        watch.set_session_length(11)
        self.assertEqual(phone.settings.current().session_length, 11)

    def test_equal_timestamps_resolve_to_greater_device_id(self):
        """A and B both write at t=100 while apart: B's record wins on both after the exchange."""
        clock = ManualClock(at_epoch(100))
        self.phone_channel.set_reachable(False)
        a, b = self._devices("A", "B", clock, clock)
        a.records.start(8)
        b.records.start(10)
        self.assertEqual(a.records.provenance().origin_timestamp, 100.0)
        self.assertEqual(b.records.provenance().origin_timestamp, 100.0)

        self.phone_channel.set_reachable(True)
        self.assertEqual(a.records.current().duration_hours, 10)
        self.assertEqual(b.records.current().duration_hours, 10)
        self.assertEqual(a.records.current(), b.records.current())

    def test_reconnect_resends_current_record(self):
        clock = ManualClock()
        phone, watch = self._devices("phone", "watch", clock, clock)
        self.phone_channel.set_reachable(False)
        phone.start()
        with patch.object(self.phone_channel, "send", wraps=self.phone_channel.send) as spy:
            self.phone_channel.set_reachable(True)
        sent = [c.args[0] for c in spy.call_args_list]
        self.assertIn(phone.records.current(), [e.record for e in sent])
        self.assertIn(phone.records.provenance(), [e.provenance for e in sent])
        self.assertEqual(watch.records.current(), phone.records.current())

    def test_converges_after_partition_with_edits_on_both_sides(self):
        phone_clock, watch_clock = ManualClock(), ManualClock()
        phone, watch = self._devices("phone", "watch", phone_clock, watch_clock)
        phone.start()
        self.phone_channel.set_reachable(False)

        watch_clock.advance(hours=1)
        watch.stop()
        phone_clock.advance(hours=2)
        phone.set_session_length(9)

        self.phone_channel.set_reachable(True)
        self.assertEqual(phone.records.current(), watch.records.current())
        self.assertFalse(phone.records.current().is_running)
        self.assertEqual(watch.settings.current().session_length, 9)

    def test_remote_stop_is_archived_on_both_devices(self):
        clock = ManualClock()
        phone, watch = self._devices("phone", "watch", clock, clock)
        phone.start()
        clock.advance(hours=3)
        watch.stop()
        self.assertEqual(len(phone.history()), 1)
        self.assertEqual(len(watch.history()), 1)
        self.assertEqual(phone.history()[0]["worn_seconds"], 3 * 3600)


if __name__ == "__main__":
    unittest.main()
