"""
Simple event system for transfer and exchange callbacks.
"""

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class EventHandler:
    """Simple event handler that manages callbacks."""

    def __init__(self, name: str = "event"):
        self.name = name
        self._callbacks: list[Callable] = []

    def __len__(self) -> int:
        return len(self._callbacks)

    def add_listener(self, callback: Callable) -> Callable[[], None]:
        """Add a callback listener. Returns unsubscribe function."""
        self._callbacks.append(callback)

        def unsubscribe():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def remove_listener(self, callback: Callable) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def invoke(self, *args: Any, **kwargs: Any) -> None:
        """Invoke all registered callbacks.

        A failing callback is logged and does not stop the remaining ones.
        """
        for callback in self._callbacks[:]:  # Copy to allow unsubscribe from callbacks
            try:
                callback(*args, **kwargs)
            except Exception:
                logger.exception(f"Listener {callback!r} of {self.name!r} failed")

    def clear(self) -> None:
        self._callbacks.clear()
