"""Cooperative cancellation for in-progress installations.

Cancellation means "stop proceeding": it is observed between stages and
between resolver steps, and never undoes a step that has committed.
"""

from __future__ import annotations

import threading


class CancellationToken:
    """Thread-safe flag shared between the caller and the installer."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason
