# matrix/session.py
import threading
from typing import Optional

from matrix.entities import Member


class SessionManager:
    """
    Holds the single "current member" pointer.

    The in-process pointer keeps the full record; the durable copy lives in
    the local cache (size-bounded) so the session survives a restart.
    """

    def __init__(self, cache):
        self.cache = cache
        self._lock = threading.Lock()
        self._current: Optional[Member] = None
        self._loaded = False

    def current(self) -> Optional[Member]:
        with self._lock:
            if not self._loaded:
                self._current = self.cache.load_current_member()
                self._loaded = True
            return self._current

    def set_current(self, member: Member) -> None:
        with self._lock:
            self.cache.save_current_member(member)
            self._current = member
            self._loaded = True

    def clear(self) -> None:
        with self._lock:
            self.cache.clear_current_member()
            self._current = None
            self._loaded = True

    def refresh(self, member: Member) -> bool:
        """Replace the pointer with `member` only when it is the current member."""
        current = self.current()
        if current is None or current.id != member.id:
            return False
        self.set_current(member)
        return True
