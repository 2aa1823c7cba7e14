"""Cooperative cancellation token passed explicitly through resolver calls."""
from __future__ import annotations

import threading
from typing import Optional

from common.errors import ResolutionCancelled


class CancellationToken:
    """Thread-safe flag checked before each repository request.

    Setting the flag never interrupts a request already in flight; it stops
    new ones from being issued.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        """True once cancel() has been called."""
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise ResolutionCancelled if cancellation was requested."""
        if self._event.is_set():
            raise ResolutionCancelled("Resolution was cancelled")


def check_cancelled(token: Optional[CancellationToken]) -> None:
    """Raise ResolutionCancelled when a token is given and has been cancelled."""
    if token is not None:
        token.raise_if_cancelled()
