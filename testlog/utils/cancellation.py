import threading


class OperationCancelled(Exception):
    """Raised inside background work after its token was cancelled."""


class CancellationToken:
    """Caller-driven cancellation flag shared with worker threads."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled()
