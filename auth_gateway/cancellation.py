"""
Cooperative cancellation for backend invocations.

The engine never interrupts a running backend step. Instead each dispatched
invocation runs with a token that the engine sets once the caller has been
given an answer (failure, deadline or interrupt). Backends with several
sequential steps check the token between steps so abandoned work stops early.
"""

import threading
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Optional


class OperationCancelled(Exception):
    """Raised inside a backend invocation that stopped because its token was set."""
    pass


class CancellationToken:
    """Thread-safe one-way flag shared by all invocations of one operation."""

    def __init__(self):
        self._event = threading.Event()
        self.reason = None

    def cancel(self, reason: str = "cancelled"):
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise OperationCancelled(self.reason)


_current_token: ContextVar[Optional[CancellationToken]] = ContextVar('cancellation_token', default=None)


def current_token() -> Optional[CancellationToken]:
    """Token of the invocation running in this thread, if any."""
    return _current_token.get()


def check_cancelled():
    """Raise OperationCancelled if the current invocation has been cancelled."""
    token = _current_token.get()
    if token is not None:
        token.raise_if_cancelled()


@contextmanager
def bind_token(token: CancellationToken):
    """Make ``token`` the current token for the duration of the block."""
    reset = _current_token.set(token)
    try:
        yield token
    finally:
        _current_token.reset(reset)
