"""Reader/writer lock guarding the pairing of the vector index and catalogue."""

import contextlib
import threading
from typing import Generator


class ReaderWriterLock:
    """
    Reader-Writer lock for true concurrent reads.

    Allows multiple concurrent readers but only one writer at a time.
    Writers have exclusive access (no readers or other writers). A writer
    waiting at the entry gate holds it, so readers arriving after it queue
    behind it instead of starving it.

    Not reentrant: a thread holding the write side must not ask for either
    side again.
    """

    def __init__(self) -> None:
        self._entry_gate = threading.Lock()
        self._readers = 0
        self._read_counter_lock = threading.Lock()
        self._resource_lock = threading.Lock()

    def acquire_read(self) -> None:
        """Acquire read lock - multiple readers allowed."""
        with self._entry_gate:
            with self._read_counter_lock:
                self._readers += 1
                if self._readers == 1:
                    # First reader locks out writers
                    self._resource_lock.acquire()

    def release_read(self) -> None:
        """Release read lock."""
        with self._read_counter_lock:
            self._readers -= 1
            if self._readers == 0:
                # Last reader lets writers in
                self._resource_lock.release()

    def acquire_write(self) -> None:
        """Acquire write lock - exclusive access."""
        self._entry_gate.acquire()
        try:
            self._resource_lock.acquire()
        except BaseException:
            self._entry_gate.release()
            raise

    def release_write(self) -> None:
        """Release write lock."""
        self._resource_lock.release()
        self._entry_gate.release()

    @property
    def active_readers(self) -> int:
        with self._read_counter_lock:
            return self._readers

    @contextlib.contextmanager
    def read_locked(self) -> Generator[None, None, None]:
        """Hold the shared side for the duration of the ``with`` block."""
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextlib.contextmanager
    def write_locked(self) -> Generator[None, None, None]:
        """Hold the exclusive side for the duration of the ``with`` block."""
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()
