import threading
from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, List, Optional


# --- Data Structure ---
@dataclass
class Status:
    isPlaying: bool = True
    isMuted: bool = True
    currentVideo: Optional[str] = None
    currentTime: float = 0  # seconds
    duration: float = 0  # seconds
    volume: float = 0  # 0 to 100
    loop: bool = True


STATUS_FIELDS = tuple(f.name for f in fields(Status))


class StatusStore:
    """The single authoritative playback status.

    Every write goes through merge(), which compares and assigns the whole
    partial update under one lock, so concurrent POSTs never lose updates.
    """

    def __init__(self, initial: Optional[Status] = None):
        self._lock = threading.RLock()
        self._status = initial if initial is not None else Status()

    def merge(self, partial: Dict[str, Any]) -> bool:
        changed = False
        with self._lock:
            for key, value in partial.items():
                if key not in STATUS_FIELDS:
                    continue
                current = getattr(self._status, key)
                # 1 and True compare equal but are different wire values
                if current != value or isinstance(current, bool) != isinstance(value, bool):
                    setattr(self._status, key, value)
                    changed = True
        return changed

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return asdict(self._status)

    def get(self, key: str) -> Any:
        with self._lock:
            return getattr(self._status, key)


class PlaylistCursor:
    def __init__(self, files: Optional[List[str]] = None):
        self._lock = threading.RLock()
        self._files: List[str] = list(files or [])
        self._index = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._files)

    @property
    def files(self) -> List[str]:
        with self._lock:
            return list(self._files)

    @property
    def index(self) -> int:
        with self._lock:
            return self._index

    def replace_list(self, files: List[str]) -> None:
        # Stale entries are replaced wholesale, never merged.
        with self._lock:
            self._files = list(files)
            self._index = 0

    def seek(self, file: str) -> bool:
        """Moves the index onto `file` if it is in the playlist."""
        with self._lock:
            if file not in self._files:
                return False
            self._index = self._files.index(file)
            return True

    def current(self) -> Optional[str]:
        with self._lock:
            if not self._files:
                return None
            return self._files[self._index]

    def _step(self, delta: int) -> Optional[str]:
        with self._lock:
            if not self._files:
                return None
            length = len(self._files)
            self._index = (self._index + delta + length) % length
            return self._files[self._index]

    def next(self) -> Optional[str]:
        return self._step(1)

    def prev(self) -> Optional[str]:
        return self._step(-1)
