import os
from pathlib import Path
from dataclasses import dataclass

# Lil helper function to create missing directories if missing, and optionally error out when a path
# doesn't exist.
def ensure_directory(path: Path,must_exist=False):
    if must_exist:
        if not path.exists():
            raise FileNotFoundError(f"Required directory is missing: {path}")
        if not path.is_dir():
            raise NotADirectoryError(f"Expected a directory, got a file: {path}")
    else:
        path.mkdir(parents=True,exist_ok=True)
    return path

# Works out which folder holds all per-device data. WEARSYNC_HOME wins, then APPDATA (Windows), then the
# user's home directory.
def resolve_data_root() -> Path:
    override = os.getenv("WEARSYNC_HOME")
    if override:
        return Path(override)
    appdata = os.getenv("APPDATA")
    if appdata:
        return Path(appdata) / "WearSync"
    return Path.home() / ".wearsync"

# Dataclass for accessing paths across program.
@dataclass(frozen=False)
class ProjectPaths:

    data: Path
    logs: Path
    current: Path
    sessions: Path

    @staticmethod
    def build(data_root: Path | None = None):
        data = ensure_directory(Path(data_root) if data_root is not None else resolve_data_root())

        # Folders within the data folder
        logs = ensure_directory(data / "logs")
        current = ensure_directory(data / "current")
        sessions = ensure_directory(data / "sessions")

        return ProjectPaths(
            data = data,
            logs = logs,
            current = current,
            sessions = sessions
        )

    # Where the single per-device state record lives.
    @property
    def state_file(self) -> Path:
        return self.current / "state.json"

PATHS = ProjectPaths.build()
