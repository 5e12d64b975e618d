import threading
from contextlib import contextmanager


class ReadWriteLock:
    """Shared/exclusive lock on top of a single condition variable.

    Any number of readers may hold the lock together; a writer holds it
    alone. With ``fair`` set, readers arriving while a writer is waiting
    queue behind that writer, so a steady stream of readers cannot starve
    writers. The lock is not reentrant.
    """

    def __init__(self, fair=True):
        self._cond = threading.Condition()
        self._fair = fair
        self._active_readers = 0
        self._writer_active = False
        self._waiting_writers = 0

    def acquire_read(self):
        with self._cond:
            while self._writer_active or (self._fair and self._waiting_writers > 0):
                self._cond.wait()
            self._active_readers += 1

    def release_read(self):
        with self._cond:
            if self._active_readers <= 0:
                raise RuntimeError("release_read called without a held read lock")
            self._active_readers -= 1
            if self._active_readers == 0:
                self._cond.notify_all()

    def acquire_write(self):
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer_active or self._active_readers > 0:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer_active = True

    def release_write(self):
        with self._cond:
            if not self._writer_active:
                raise RuntimeError("release_write called without a held write lock")
            self._writer_active = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self):
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self):
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()

    @property
    def active_readers(self):
        return self._active_readers

    @property
    def waiting_writers(self):
        return self._waiting_writers

    @property
    def writer_active(self):
        return self._writer_active
