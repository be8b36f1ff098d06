"""Observable values the UI shell binds to."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Generic, TypeVar

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class Signal(Generic[T]):
    """A value that notifies subscribers whenever it changes."""

    def __init__(self, name: str, initial: T) -> None:
        self.name = name
        self._value = initial
        self._observers: list[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        return self._value

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register *callback*; returns a function that unregisters it."""
        self._observers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return _unsubscribe

    def set(self, value: T) -> bool:
        """Update the value. Returns ``True`` if observers were notified."""
        if value == self._value:
            return False
        self._value = value
        self._notify(value)
        return True

    def _notify(self, value: T) -> None:
        for callback in list(self._observers):
            try:
                callback(value)
            except Exception:
                _logger.debug("Observer of %s failed", self.name, exc_info=True)


class OnceSignal(Signal[T | None]):
    """A signal that can be set exactly once."""

    def __init__(self, name: str) -> None:
        super().__init__(name, None)
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    def set(self, value: T | None) -> bool:
        if self._fired:
            _logger.debug("Ignoring second emission of %s", self.name)
            return False
        self._fired = True
        self._value = value
        self._notify(value)
        return True


class UiSignals:
    """The four signals exposed to the UI shell."""

    def __init__(self) -> None:
        self.show_permission_prompt: Signal[bool] = Signal("show_permission_prompt", False)
        self.show_offline_overlay: Signal[bool] = Signal("show_offline_overlay", False)
        self.navigate_to_native_content: OnceSignal[bool] = OnceSignal("navigate_to_native_content")
        self.navigate_to_destination: OnceSignal[str] = OnceSignal("navigate_to_destination")

    @property
    def navigated(self) -> bool:
        return self.navigate_to_native_content.fired or self.navigate_to_destination.fired
