"""Change listeners for store read models."""

from __future__ import annotations

import logging
from typing import Callable

LOGGER = logging.getLogger(__name__)

Listener = Callable[[], None]


class ListenerSet:
    """Callbacks invoked after a store mutation.

    A failing listener is logged and does not stop the others or undo the
    mutation that triggered it.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def add(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                LOGGER.exception("Store listener failed")
