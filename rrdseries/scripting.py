"""Registry of collection handlers that partitions refer to by name."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from .errors import ScriptError

Handler = Callable[[Any], None]


class ScriptRegistry:
    """Maps script names to the Python callables that implement them.

    A partition stores the name of its collection script; on every insert the
    registered handler is called with the partition's context object.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}
        self._lock = threading.Lock()

    def register(self, name: str, handler: Handler) -> None:
        """Register ``handler`` under ``name``, replacing any earlier one."""
        if not isinstance(name, str) or not name:
            raise TypeError("script name must be a non-empty string")
        if not callable(handler):
            raise TypeError(f"handler for {name!r} is not callable")
        with self._lock:
            self._handlers[name] = handler

    def resolve(self, name: str) -> Handler:
        """Return the handler registered under ``name``."""
        with self._lock:
            try:
                return self._handlers[name]
            except KeyError:
                raise ScriptError(f"No script registered under {name!r}.") from None

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._handlers