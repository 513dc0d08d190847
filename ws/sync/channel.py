from collections import deque
from PySide6.QtCore import QObject, Signal
from ws.common.logger import log
from ws.core.errors import EnvelopeError, TransportUnavailable
from ws.sync import codec


# Device-to-device transport as the rest of the core sees it. send() is best-effort and never raises; whether the
# peer can currently be reached is only ever reported through reachability_changed.
class SyncChannel(QObject):

    envelope_received = Signal(object)   # SyncEnvelope, in arrival order
    reachability_changed = Signal(bool)  # only emitted on an actual flip

    def send(self, envelope):
        raise NotImplementedError

    def is_reachable(self) -> bool:
        raise NotImplementedError


# In-process transport linking two endpoints, standing in for the watch connectivity link. Messages go over the
# "wire" as JSON text through the codec. While unreachable, outgoing messages are kept in a bounded outbox and
# delivered in order on reconnect (store-and-forward), oldest first to be dropped when it overflows.
class LoopbackChannel(SyncChannel):

    def __init__(self, name="loopback", max_queued=64, parent=None):
        super().__init__(parent)
        self.name = name
        self._peer = None
        self._reachable = False
        self._outbox = deque()
        self._max_queued = max_queued

    @staticmethod
    def pair(first, second, reachable=True):
        first._peer, second._peer = second, first
        if reachable:
            first.set_reachable(True)
        return first, second

    def is_reachable(self):
        return self._reachable and self._peer is not None

    @property
    def queued(self):
        return len(self._outbox)

    def send(self, envelope):
        try:
            text = codec.dumps(envelope)
        except EnvelopeError:
            log.error(f"[{self.name}] Dropped an envelope that could not be encoded", exc_info=True)
            return
        try:
            self._transmit(text)
        except TransportUnavailable:
            if len(self._outbox) >= self._max_queued:
                self._outbox.popleft()
                log.warning(f"[{self.name}] Outbox full ({self._max_queued}), dropped the oldest queued envelope")
            self._outbox.append(text)
            log.debug(f"[{self.name}] Peer unreachable, queued envelope ({len(self._outbox)} waiting)")

    # Flips the link for both ends. Going reachable first delivers everything queued on either side, then announces
    # the new reachability so subscribers can re-send.
    def set_reachable(self, reachable):
        ends = [self] if self._peer is None else [self, self._peer]
        if all(end._reachable == reachable for end in ends):
            return
        for end in ends:
            end._reachable = reachable
        if reachable:
            for end in ends:
                end._flush()
        log.info(f"[{self.name}] Link is now {'reachable' if reachable else 'unreachable'}")
        for end in ends:
            end.reachability_changed.emit(reachable)

    # Entry point for raw inbound messages. Anything that doesn't decode is logged and dropped.
    def receive(self, text):
        try:
            envelope = codec.loads(text)
        except EnvelopeError:
            log.warning(f"[{self.name}] Dropped an inbound message that could not be decoded", exc_info=True)
            return
        self.envelope_received.emit(envelope)

    def _transmit(self, text):
        if not self.is_reachable():
            raise TransportUnavailable(f"[{self.name}] peer is not reachable")
        self._peer.receive(text)

    def _flush(self):
        while self._outbox and self.is_reachable():
            self._transmit(self._outbox.popleft())
