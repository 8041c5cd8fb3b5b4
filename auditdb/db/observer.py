"""
Commit Observers

An observer is notified exactly once after each successful commit. It is the
only outward event surface of the session layer: cache invalidation, event
publication and similar side effects hang off it.

Observers are shared by every session a factory mints and may be invoked
concurrently from sessions running in parallel tasks.
"""

from typing import Callable, Protocol, runtime_checkable


@runtime_checkable
class CommitObserver(Protocol):
    """Notification sink for durable commits."""

    def on_saved(self) -> None: ...


class NullObserver:
    """Observer that ignores notifications."""

    def on_saved(self) -> None:
        return None


class CallbackObserver:
    """Adapts a zero-argument callable to the observer protocol."""

    def __init__(self, callback: Callable[[], None]) -> None:
        self.callback = callback

    def on_saved(self) -> None:
        self.callback()


def as_observer(observer: CommitObserver | Callable[[], None] | None) -> CommitObserver:
    """Normalize an observer object, a bare callable, or ``None``."""
    if observer is None:
        return NullObserver()
    if isinstance(observer, CommitObserver):
        return observer
    if callable(observer):
        return CallbackObserver(observer)
    raise TypeError(
        f"Observer must define on_saved() or be callable, got {type(observer).__name__}"
    )
