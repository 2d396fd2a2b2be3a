"""Capped, most-recent-first logs of transport errors, commands and file
transfers."""

import time
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Generic, Optional, TypeVar

from cloudbox.protocols import FileTransfer

T = TypeVar("T")


@dataclass(frozen=True)
class ErrorLogEntry:
    """A transport fault reported asynchronously."""

    kind: str
    description: str
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class CommandLogEntry:
    """A command that went through the multiplexer."""

    user_id: Optional[int]
    app_id: int
    command: int
    is_output: bool
    timestamp: float = field(default_factory=time.time)

    @property
    def is_input(self) -> bool:
        return not self.is_output


@dataclass
class TransferLogEntry:
    """A file transfer, updated in place while it is in progress."""

    is_upload: bool
    hash: int
    part: int
    total: int
    name: Optional[str] = None
    length: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def completed(self) -> bool:
        return self.part == self.total

    @property
    def label(self) -> str:
        return "Upload" if self.is_upload else "Download"


class _RingLog(Generic[T]):
    """Thread-safe ring buffer. Newest entry first, oldest evicted."""

    def __init__(self, max_entries: int):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._entries: deque[T] = deque(maxlen=max_entries)
        self._lock = Lock()
        self.observer: Optional[Callable[[T], None]] = None

    @property
    def max_entries(self) -> int:
        return self._entries.maxlen or 0

    def _push(self, entry: T) -> T:
        with self._lock:
            # appendleft on a full deque drops from the right (oldest)
            self._entries.appendleft(entry)
        if self.observer is not None:
            self.observer(entry)
        return entry

    def entries(self) -> list[T]:
        """Snapshot of entries, most recent first."""
        with self._lock:
            return list(self._entries)

    def latest(self) -> Optional[T]:
        with self._lock:
            return self._entries[0] if self._entries else None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ErrorLog(_RingLog[ErrorLogEntry]):
    """Transport error log (default bound: 10)."""

    def __init__(self, max_entries: int = 10):
        super().__init__(max_entries)

    def add(self, kind: str, description: str) -> ErrorLogEntry:
        """Record a transport fault and notify the observer."""
        return self._push(ErrorLogEntry(kind=kind, description=description))


class CommandLog(_RingLog[CommandLogEntry]):
    """Log of multiplexed commands (default bound: 16)."""

    def __init__(self, max_entries: int = 16):
        super().__init__(max_entries)

    def add(
        self,
        user_id: Optional[int],
        app_id: int,
        command: int,
        is_output: bool,
    ) -> CommandLogEntry:
        """Record a command and notify the observer."""
        return self._push(
            CommandLogEntry(
                user_id=user_id,
                app_id=app_id,
                command=command,
                is_output=is_output,
            )
        )


class TransferLog(_RingLog[TransferLogEntry]):
    """Log of file transfers (default bound: 128).

    A report for a file that already has an unfinished entry updates that
    entry instead of adding a new one.
    """

    def __init__(self, max_entries: int = 128):
        super().__init__(max_entries)

    def update(self, transfer: FileTransfer) -> TransferLogEntry:
        """Record transfer progress and notify the observer."""
        with self._lock:
            entry = next(
                (
                    e
                    for e in self._entries
                    if e.hash == transfer.hash and not e.completed
                ),
                None,
            )
            if entry is not None:
                entry.part = transfer.part
                entry.total = transfer.total
                if transfer.name is not None:
                    entry.name = transfer.name
                if transfer.length is not None:
                    entry.length = transfer.length
                entry.timestamp = time.time()
            else:
                entry = TransferLogEntry(
                    is_upload=transfer.is_upload,
                    hash=transfer.hash,
                    part=transfer.part,
                    total=transfer.total,
                    name=transfer.name,
                    length=transfer.length,
                )
                self._entries.appendleft(entry)
        if self.observer is not None:
            self.observer(entry)
        return entry

    def in_progress(self) -> list[TransferLogEntry]:
        """Unfinished transfers, most recent first."""
        return [e for e in self.entries() if not e.completed]
