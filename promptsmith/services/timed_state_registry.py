import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator

TimedStateMap = Dict[str, Dict[str, Any]]


class TimedStateRegistry:
    """
    In-memory holder of timed-effect state, one map and one lock per
    conversation. The map is only handed out inside `session()`, which holds
    the conversation's lock, so builds of one conversation run one at a time;
    different conversations do not block each other.
    """

    def __init__(self):
        self._states: Dict[str, TimedStateMap] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, conversation_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(conversation_id)
            if lock is None:
                lock = self._locks[conversation_id] = threading.Lock()
                self._states[conversation_id] = {}
            return lock

    def _acquire(self, conversation_id: str) -> threading.Lock:
        # a conversation discarded while we waited gets a fresh lock and map
        while True:
            lock = self._lock_for(conversation_id)
            lock.acquire()
            with self._guard:
                if self._locks.get(conversation_id) is lock:
                    return lock
            lock.release()

    @contextmanager
    def session(self, conversation_id: str) -> Iterator[TimedStateMap]:
        lock = self._acquire(conversation_id)
        try:
            yield self._states[conversation_id]
        finally:
            lock.release()

    def discard(self, conversation_id: str) -> None:
        """Forgets a conversation, waiting for a running session to finish."""
        with self._guard:
            if conversation_id not in self._locks:
                return
        lock = self._acquire(conversation_id)
        try:
            with self._guard:
                del self._states[conversation_id]
                del self._locks[conversation_id]
        finally:
            lock.release()

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._states

    def __len__(self) -> int:
        return len(self._states)
