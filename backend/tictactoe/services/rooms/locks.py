import threading
import weakref
from contextlib import contextmanager

# A room's lock lives only while some caller holds or waits on it
_room_locks: 'weakref.WeakValueDictionary[str, threading.RLock]' = weakref.WeakValueDictionary()
_registry_lock = threading.Lock()


def _lock_for(code: str) -> threading.RLock:
    with _registry_lock:
        lock = _room_locks.get(code)
        if lock is None:
            lock = threading.RLock()
            _room_locks[code] = lock
        return lock


@contextmanager
def room_lock(code: str):
    """Serialize every state change of a single room within this process."""
    lock = _lock_for(code)
    with lock:
        yield
