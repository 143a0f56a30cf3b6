"""Cancellation signal and progress callback types shared by transfers and batches."""
from __future__ import annotations

from typing import Any, Callable, Dict, List

# (percent 0-100, {"id": ..., "total": ...})
ProgressHook = Callable[[float, Dict[str, Any]], None]

# cumulative bytes transferred for one upload or download
ByteProgressHook = Callable[[int], None]


class CancelHook:
    """Cooperative cancellation signal.

    Work checks ``cancelled`` at its own safe points; nothing in flight is
    interrupted. Listeners registered with ``add_listener`` are notified once,
    when ``cancel`` is first called.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._listeners: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        for listener in list(self._listeners):
            listener()

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
