from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, time
from ws.core.clock import session_end, validate_duration
from ws.util import format_hhmm, parse_hhmm

DEFAULT_SESSION_LENGTH = 15
DEFAULT_REMINDER_TIME = time(8, 0)


# The authoritative running/idle value for one device. Frozen so that every change produces a new record and two
# records can be compared with ==.
@dataclass(frozen=True)
class SessionRecord:
    is_running: bool = False
    started_at: datetime | None = None
    duration_hours: int = DEFAULT_SESSION_LENGTH

    def __post_init__(self):
        if not isinstance(self.is_running, bool):
            raise ValueError(f"is_running must be a bool, got {self.is_running!r}")
        if self.is_running != (self.started_at is not None):
            raise ValueError("A session record has a start time if and only if it is running")
        if self.started_at is not None and self.started_at.tzinfo is None:
            raise ValueError("started_at must be timezone-aware")
        validate_duration(self.duration_hours)

    @staticmethod
    def idle(duration_hours=DEFAULT_SESSION_LENGTH):
        return SessionRecord(False, None, duration_hours)

    @staticmethod
    def running(started_at, duration_hours):
        return SessionRecord(True, started_at, duration_hours)

    # None while idle. for_duration overrides the duration that was configured at start.
    def estimated_end(self, for_duration=None):
        if not self.is_running:
            return None
        hours = self.duration_hours if for_duration is None else validate_duration(for_duration)
        return session_end(self.started_at, hours)

    def to_dict(self):
        return {
            "is_running": self.is_running,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "duration_hours": self.duration_hours,
        }

    @staticmethod
    def from_dict(data):
        started_at = data.get("started_at")
        return SessionRecord(
            is_running=data["is_running"],
            started_at=datetime.fromisoformat(started_at) if started_at else None,
            duration_hours=data.get("duration_hours", DEFAULT_SESSION_LENGTH),
        )


# User settings that are shared by value between the paired devices.
@dataclass(frozen=True)
class SettingsRecord:
    session_length: int = DEFAULT_SESSION_LENGTH
    notify_end: bool = False
    reminder_start: bool = False
    reminder_time: time = DEFAULT_REMINDER_TIME

    def __post_init__(self):
        validate_duration(self.session_length)
        for name in ("notify_end", "reminder_start"):
            if not isinstance(getattr(self, name), bool):
                raise ValueError(f"{name} must be a bool, got {getattr(self, name)!r}")
        if not isinstance(self.reminder_time, time):
            raise ValueError(f"reminder_time must be a datetime.time, got {self.reminder_time!r}")

    def with_changes(self, **changes):
        return replace(self, **changes)

    def to_dict(self):
        return {
            "session_length": self.session_length,
            "notify_end": self.notify_end,
            "reminder_start": self.reminder_start,
            "reminder_time": format_hhmm(self.reminder_time),
        }

    @staticmethod
    def from_dict(data):
        return SettingsRecord(
            session_length=data.get("session_length", DEFAULT_SESSION_LENGTH),
            notify_end=data.get("notify_end", False),
            reminder_start=data.get("reminder_start", False),
            reminder_time=parse_hhmm(data.get("reminder_time", format_hhmm(DEFAULT_REMINDER_TIME))),
        )


# Who produced a record and when. Ordered by (timestamp, device id), which is exactly the last-writer-wins order.
@dataclass(frozen=True, order=True)
class Provenance:
    origin_timestamp: float = 0.0
    origin_device_id: str = ""

    # NaN compares as neither older nor newer than anything, and inf would win forever.
    def __post_init__(self):
        if not math.isfinite(self.origin_timestamp):
            raise ValueError(f"origin_timestamp must be finite, got {self.origin_timestamp!r}")

    def to_dict(self):
        return {"origin_timestamp": self.origin_timestamp, "origin_device_id": self.origin_device_id}

    @staticmethod
    def from_dict(data):
        return Provenance(float(data.get("origin_timestamp", 0.0)), str(data.get("origin_device_id", "")))


# One transport message: a session or settings record plus where and when it was produced.
@dataclass(frozen=True)
class SyncEnvelope:
    record: SessionRecord | SettingsRecord
    origin_timestamp: float
    origin_device_id: str

    @property
    def provenance(self):
        return Provenance(self.origin_timestamp, self.origin_device_id)

    @staticmethod
    def wrap(record, provenance):
        return SyncEnvelope(record, provenance.origin_timestamp, provenance.origin_device_id)


# Payload of the stores' change signals.
@dataclass(frozen=True)
class SessionChange:
    previous: SessionRecord
    current: SessionRecord
    remote: bool = False


@dataclass(frozen=True)
class SettingsChange:
    previous: SettingsRecord
    current: SettingsRecord
    remote: bool = False
    changed_fields: tuple = field(default=())
