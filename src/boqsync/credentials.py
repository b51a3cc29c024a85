"""Credential availability detection using watchdog."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)


def read_token(token_file: Path) -> str | None:
    """Return the stored token, or None if the file is missing or blank."""
    try:
        token = token_file.read_text(encoding="utf-8").strip()
    except (FileNotFoundError, IsADirectoryError):
        return None
    except OSError as e:
        logger.warning("Cannot read credential file %s: %s", token_file, e)
        return None
    return token or None


class CredentialWatcher:
    """Watches the token file an external login flow writes.

    ``has_credential`` is the synchronous "is a credential present now" check.
    Once started, creation, modification, replacement or removal of the token
    file invokes the callback with the new presence state. The callback runs
    on the watchdog observer thread.
    """

    def __init__(self, token_file: Path):
        self.token_file = token_file
        self.callback: Callable[[bool], None] | None = None
        self.observer: BaseObserver | None = None
        self.is_watching = False

    def has_credential(self) -> bool:
        return self.current_token() is not None

    def current_token(self) -> str | None:
        return read_token(self.token_file)

    def start(self, callback: Callable[[bool], None]) -> None:
        """Start watching for credential changes."""
        if self.is_watching:
            logger.warning("Already watching %s", self.token_file)
            return

        self.callback = callback
        watch_dir = self.token_file.parent
        watch_dir.mkdir(parents=True, exist_ok=True)

        logger.info("Watching for credentials at %s", self.token_file)
        event_handler = CredentialEventHandler(self.token_file, self._on_change)
        self.observer = Observer()
        self.observer.schedule(event_handler, str(watch_dir), recursive=False)
        self.observer.start()
        self.is_watching = True

    def stop(self) -> None:
        """Stop watching for credential changes."""
        if self.observer:
            self.observer.stop()
            self.observer.join()
            self.observer = None
            self.is_watching = False
            logger.info("Stopped credential watcher")

    def _on_change(self, present: bool) -> None:
        logger.info("Credential %s", "available" if present else "removed")
        if self.callback:
            self.callback(present)


class CredentialEventHandler(FileSystemEventHandler):
    """File system event handler for the token file."""

    def __init__(self, token_file: Path, callback: Callable[[bool], None]):
        self.token_file = token_file
        self.callback = callback
        self.last_state: bool | None = None

    def _matches(self, path: Any) -> bool:
        if isinstance(path, bytes):
            path = path.decode()
        return Path(path) == self.token_file

    def _report(self) -> None:
        present = read_token(self.token_file) is not None
        # Repeated "absent" events collapse into one report
        if present or self.last_state is not False:
            self.last_state = present
            self.callback(present)

    def on_created(self, event: Any) -> None:
        if self._matches(event.src_path):
            self._report()

    def on_modified(self, event: Any) -> None:
        if self._matches(event.src_path):
            self._report()

    def on_deleted(self, event: Any) -> None:
        if self._matches(event.src_path):
            self._report()

    def on_moved(self, event: Any) -> None:
        if self._matches(event.dest_path) or self._matches(event.src_path):
            self._report()
