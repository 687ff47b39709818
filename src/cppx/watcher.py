"""Polling directory watcher that keeps the source-file list in sync."""

import os
import signal
import threading
from pathlib import Path
from typing import Callable, Optional, TypeAlias

from cppx.config import (
    SECTION_SOURCE,
    SRC_FILES_KEY,
    ProjectConfig,
    ProjectStore,
)
from cppx.errors import CppxError
from cppx.output import error, info, warn

DEFAULT_POLL_INTERVAL = 1.0

Snapshot: TypeAlias = dict[str, float]
ChangeCallback: TypeAlias = Callable[[str, bool], None]


def take_snapshot(directory: Path) -> Snapshot:
    """Map each regular file directly inside directory to its mtime.

    Failing to list the directory itself raises OSError; an entry that cannot
    be inspected is logged and left out.
    """
    snapshot: Snapshot = {}
    with os.scandir(directory) as entries:
        for entry in entries:
            try:
                if entry.is_file(follow_symlinks=False):
                    snapshot[entry.name] = entry.stat(follow_symlinks=False).st_mtime
            except OSError as exc:
                warn(f"skipping {entry.path}: {exc}")
    return snapshot


def diff_snapshots(old: Snapshot, new: Snapshot) -> tuple[list[str], list[str]]:
    """Return (created, removed) file names between two snapshots."""
    created = sorted(new.keys() - old.keys())
    removed = sorted(old.keys() - new.keys())
    return created, removed


class DirectoryWatcher:
    """Polls one directory and reports created and removed files.

    The loop checks ``stop_event`` once per iteration, so a stop request lets
    the tick in progress finish before the loop exits.
    """

    def __init__(
        self,
        directory: Path,
        callback: ChangeCallback,
        interval: float = DEFAULT_POLL_INTERVAL,
        stop_event: Optional[threading.Event] = None,
    ):
        self._directory = Path(directory)
        self._callback = callback
        self._interval = interval
        self._stop_event = stop_event if stop_event is not None else threading.Event()
        self._snapshot = take_snapshot(self._directory)
        self._thread: Optional[threading.Thread] = None

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    @property
    def snapshot(self) -> Snapshot:
        return dict(self._snapshot)

    def poll(self) -> bool:
        """Take a new snapshot and fire callbacks; False when the tick was skipped."""
        try:
            current = take_snapshot(self._directory)
        except OSError as exc:
            error(f"watcher filesystem error: {exc}")
            return False
        created, removed = diff_snapshots(self._snapshot, current)
        for name in created:
            self._callback(name, True)
        for name in removed:
            self._callback(name, False)
        self._snapshot = current
        return True

    def tick(self) -> bool:
        """Wait one poll interval, then poll unless a stop was requested meanwhile."""
        if self._stop_event.wait(self._interval):
            return False
        return self.poll()

    def run(self) -> None:
        while not self._stop_event.is_set():
            self.tick()

    def start(self) -> threading.Thread:
        """Run the polling loop on a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._thread = threading.Thread(
            target=self.run, name=f"cppx-watch-{self._directory.name}"
        )
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        self._stop_event.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)


def install_interrupt_handler(stop_event: threading.Event) -> None:
    """Make SIGINT request a stop instead of raising KeyboardInterrupt."""

    def handle(signum, frame):
        info("stop requested; finishing current poll")
        stop_event.set()

    signal.signal(signal.SIGINT, handle)


class SourceSync:
    """Watcher callback that mirrors file changes into ``source.src files``."""

    def __init__(self, store: ProjectStore, project: ProjectConfig, watch_dir: Path):
        self._store = store
        self._project = project
        self._watch_dir = Path(watch_dir)

    def entry_for(self, name: str) -> str:
        """Project-root-relative entry for a file in the watched directory."""
        path = self._watch_dir / name
        try:
            return path.relative_to(self._project.path).as_posix()
        except ValueError:
            return path.as_posix()

    def __call__(self, name: str, created: bool) -> None:
        entry = self.entry_for(name)
        try:
            if created:
                info(f"file added: {name}")
                ignored = self._store.load()["ignored_files"]
                if name in ignored or entry in ignored:
                    warn(f"ignoring file: {name}")
                    return
                self._store.add_values(SECTION_SOURCE, SRC_FILES_KEY, [entry], "source file")
            else:
                info(f"file removed: {name}")
                self._store.remove_values(
                    SECTION_SOURCE, SRC_FILES_KEY, [entry], "source file"
                )
        except CppxError as exc:
            error(f"failed to update configuration for {name}: {exc}")
            return
        info(f"configuration updated: {self._store.project.document_path}")
