import copy
import json
import os
import uuid
from datetime import datetime
from pathlib import Path
from ws.common.logger import log
from ws.common.setup import PATHS
from ws.core.errors import PersistenceFailure
from ws.core.records import Provenance, SessionRecord, SettingsRecord
from ws.util import now_iso


_SCHEMA_VERSION = 1

#region === Helpers and Paths ===

STATE_PATH = PATHS.state_file
COMPLETED_DIR = PATHS.sessions

# Default values just for the settings section of the state dict.
_SETTINGS_DEFAULTS = SettingsRecord().to_dict()
_SESSION_DEFAULTS = SessionRecord.idle().to_dict()
_PROVENANCE_DEFAULTS = Provenance().to_dict()

def new_device_id():
    return uuid.uuid4().hex

# Helper to return a truly fresh, default state.
def build_default_state(device_id=None):
    return {
        "meta": {
            "schema_version": _SCHEMA_VERSION,
            "saved_at": now_iso(),
            "device_id": device_id or new_device_id(),
        },
        "session": {**_SESSION_DEFAULTS, **_PROVENANCE_DEFAULTS},
        "settings": {**_SETTINGS_DEFAULTS, **_PROVENANCE_DEFAULTS},
    }

# Splits a persisted section back into its record and provenance.
def session_from_state(state):
    section = state["session"]
    return SessionRecord.from_dict(section), Provenance.from_dict(section)
def settings_from_state(state):
    section = state["settings"]
    return SettingsRecord.from_dict(section), Provenance.from_dict(section)

# And the other way around.
def state_section(record, provenance):
    return {**record.to_dict(), **provenance.to_dict()}

#endregion === Helpers and Paths ===

#region === Saving and Loading State ===

# Loads the device's state record from path, validating each section and falling back to defaults for anything
# missing or malformed. A brand new state is written straight away so the generated device id stays stable.
def load_state(path=None):
    path = Path(path or STATE_PATH)
    try:
        if not path.exists():
            state = build_default_state()
            log.info(f"No existing state found at '{path}', created fresh state for device '{state['meta']['device_id']}'.")
            try:
                save_state(state, path)
            except PersistenceFailure:
                log.warning(f"Could not write fresh state to '{path}', continuing in memory only.", exc_info=True)
            return state

        with open(path, "r", encoding="utf-8") as f:
            state = json.load(f)
        if not isinstance(state, dict):
            raise TypeError(f"Expected a JSON object at the top of '{path}'")
        defaulted_values = set()

        # Validate the meta dict
        if "meta" not in state or not isinstance(state["meta"], dict):
            defaulted_values.add("meta")
            state["meta"] = {}
        if "schema_version" not in state["meta"] or not isinstance(state["meta"]["schema_version"], int):
            defaulted_values.add("meta.schema_version")
            state["meta"]["schema_version"] = _SCHEMA_VERSION
        if not isinstance(state["meta"].get("device_id"), str) or not state["meta"]["device_id"]:
            defaulted_values.add("meta.device_id")
            state["meta"]["device_id"] = new_device_id()

        # Validate the session dict. A half-valid session is worse than none, so it's all or nothing.
        try:
            record, provenance = session_from_state(state)
            state["session"] = state_section(record, provenance)
        except (KeyError, TypeError, ValueError, AttributeError):
            defaulted_values.add("session")
            state["session"] = {**_SESSION_DEFAULTS, **_PROVENANCE_DEFAULTS}

        # Validate the settings dict, fill in any necessary defaults key by key
        if "settings" not in state or not isinstance(state["settings"], dict):
            defaulted_values.add("settings")
            state["settings"] = {**_SETTINGS_DEFAULTS, **_PROVENANCE_DEFAULTS}
        else:
            for key, default in {**_SETTINGS_DEFAULTS, **_PROVENANCE_DEFAULTS}.items():
                if key not in state["settings"]:
                    defaulted_values.add(f"settings.{key}")
                    state["settings"][key] = default
            try:
                record, provenance = settings_from_state(state)
                state["settings"] = state_section(record, provenance)
            except (TypeError, ValueError):
                defaulted_values.add("settings")
                state["settings"] = {**_SETTINGS_DEFAULTS, **_PROVENANCE_DEFAULTS}

        # Log results
        if defaulted_values:
            log.warning(f"Loaded state from '{path}', but with missing values that were defaulted: {', '.join(sorted(defaulted_values))}")
        else:
            log.info(f"Successfully loaded state from '{path}'.")
        return state
    # Fall back to a fresh state dict in case of error, but warn in log
    except (json.JSONDecodeError, OSError, TypeError):
        log.warning(f"Ran into an error while trying to load '{path}', falling back to a fresh state dict.", exc_info=True)
        return build_default_state()

# Write the given state to disk as a whole-record replace: the new content goes to a temp file which is then
# renamed over the old one, so a crash leaves either the old or the new state, never half of one.
def save_state(state, path=None):
    path = Path(path or STATE_PATH)
    state["meta"]["saved_at"] = now_iso()
    temp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(state, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except (OSError, TypeError, ValueError) as e:
        try: temp_path.unlink(missing_ok=True)
        except OSError: pass
        raise PersistenceFailure(f"Could not write state to '{path}': {e}") from e
    log.debug(f"Successfully saved state to '{path}'")


# Owns the last committed state dict for one device. Both stores write their section through here so the file on
# disk is always one consistent record.
class StateFile:

    def __init__(self, path=None):
        self.path = Path(path or STATE_PATH)
        self._state = load_state(self.path)

    @property
    def device_id(self):
        return self._state["meta"]["device_id"]

    # A deep copy, so nobody can edit committed state behind our back.
    def snapshot(self):
        return copy.deepcopy(self._state)

    # Replaces one section and persists the whole record. The in-memory copy only changes once the write
    # succeeded; on failure PersistenceFailure propagates and the last good state stays in place.
    def commit(self, section, data):
        candidate = self.snapshot()
        candidate[section] = dict(data)
        save_state(candidate, self.path)
        self._state = candidate

#endregion === Saving and Loading State ===

#region === Completed Sessions ===

# Saves a finished session in the sessions folder. duration_hours is the length in force when it ended, which
# may differ from the one it was started with. Returns the path it was written to.
def save_completed_session(record, ended_at, directory=None, device_id=None, duration_hours=None):
    directory = Path(directory or COMPLETED_DIR)
    directory.mkdir(parents=True, exist_ok=True)
    completed = {
        "meta": {"schema_version": _SCHEMA_VERSION, "saved_at": now_iso(), "device_id": device_id},
        "session": {
            "started_at": record.started_at.isoformat(),
            "ended_at": ended_at.isoformat(),
            "duration_hours": record.duration_hours if duration_hours is None else duration_hours,
            "worn_seconds": max(0.0, (ended_at - record.started_at).total_seconds()),
        },
    }
    ts = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    final_path = directory / f"session_{ts}.json"
    with open(final_path, "w", encoding="utf-8") as f:
        json.dump(completed, f, indent=2)
    log.info(f"Saved completed session to '{final_path}'")
    return final_path

# Lists completed sessions, newest first. Files that can't be read are skipped with a warning.
def load_history(directory=None, limit=None):
    directory = Path(directory or COMPLETED_DIR)
    if not directory.is_dir():
        return []
    entries = []
    for path in sorted(directory.glob("session_*.json"), reverse=True):
        try:
            with open(path, "r", encoding="utf-8") as f:
                entries.append(json.load(f)["session"])
        except (OSError, json.JSONDecodeError, KeyError, TypeError):
            log.warning(f"Skipping unreadable completed session '{path}'", exc_info=True)
            continue
        if limit is not None and len(entries) >= limit:
            break
    return entries

#endregion === Completed Sessions ===
