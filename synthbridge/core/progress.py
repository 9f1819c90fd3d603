"""
Progress relay: polls a per-invocation scratch file written by the worker and
forwards each new ProgressUpdate to the caller's sink.

Lifecycle is scoped: ``with ProgressRelay(...)`` guarantees the polling thread
is stopped and the scratch file removed on every exit path.
"""

from __future__ import annotations

import json
import os
import threading
import time
import uuid
import logging
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from .models import ProgressUpdate

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressUpdate], None]


def new_token() -> str:
    """Collision-resistant invocation token: start time, pid and random suffix."""
    return f"{int(time.time() * 1000)}-{os.getpid()}-{uuid.uuid4().hex[:8]}"


def channel_path(scratch_dir: Path, token: Optional[str] = None) -> Path:
    return Path(scratch_dir) / f"progress_{token or new_token()}.json"


class ProgressRelay:
    def __init__(self, path: Path, sink: ProgressSink, interval: float = 1.0):
        self.path = Path(path)
        self.sink = sink
        self.interval = float(interval)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last: Optional[ProgressUpdate] = None
        self._lock = threading.Lock()

    def __enter__(self) -> "ProgressRelay":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def start(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._thread = threading.Thread(target=self._loop, name=f"progress-{self.path.stem}", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop polling, deliver a last observed update, delete the scratch file."""
        self._stop.set()
        try:
            if self._thread is not None:
                self._thread.join(timeout=max(2.0, self.interval * 2))
                if self._thread.is_alive():
                    logger.warning(f"progress relay thread for {self.path.name} did not exit in time")
            self.poll_once()
        finally:
            self._remove_files()

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self.poll_once()

    def read(self) -> Optional[ProgressUpdate]:
        """Parse the scratch file; None when missing, mid-write or malformed."""
        try:
            raw = self.path.read_text(encoding="utf-8")
            return ProgressUpdate.model_validate(json.loads(raw))
        except (OSError, ValueError, ValidationError):
            return None

    def poll_once(self) -> Optional[ProgressUpdate]:
        update = self.read()
        if update is None:
            return None
        with self._lock:
            if update == self._last:
                return None
            self._last = update
            try:
                self.sink(update)
            except Exception:
                logger.exception(f"progress sink failed for {self.path.name}")
        return update

    def _remove_files(self) -> None:
        for p in (self.path, self.path.with_name(self.path.name + ".tmp")):
            try:
                p.unlink(missing_ok=True)
            except OSError as ex:
                logger.debug(f"could not remove progress file {p}: {ex}")
