"""Message counters shared by the world runtime and the metrics sampler."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MessageInfo:
    """Describes one message crossing the wire."""

    message_type: str
    size: int


class NetworkDiagnostics:
    """Monotonic inbound/outbound message totals.

    Totals only ever increase.  Readers compute rates by differencing
    two reads; nothing resets the counters.  Increments are guarded by a
    lock so transports may report from helper threads.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._inbound_total = 0
        self._outbound_total = 0
        self._inbound_listeners: list[Callable[[MessageInfo], None]] = []
        self._outbound_listeners: list[Callable[[MessageInfo], None]] = []

    @property
    def inbound_total(self) -> int:
        """Number of messages received since startup."""
        return self._inbound_total

    @property
    def outbound_total(self) -> int:
        """Number of messages sent since startup."""
        return self._outbound_total

    def record_inbound(self, info: MessageInfo) -> None:
        with self._lock:
            self._inbound_total += 1
        self._notify(self._inbound_listeners, info)

    def record_outbound(self, info: MessageInfo) -> None:
        with self._lock:
            self._outbound_total += 1
        self._notify(self._outbound_listeners, info)

    def add_inbound_listener(self, callback: Callable[[MessageInfo], None]) -> None:
        """Register *callback* to be called for every received message."""
        self._inbound_listeners.append(callback)

    def add_outbound_listener(self, callback: Callable[[MessageInfo], None]) -> None:
        """Register *callback* to be called for every sent message."""
        self._outbound_listeners.append(callback)

    @staticmethod
    def _notify(listeners: list[Callable[[MessageInfo], None]], info: MessageInfo) -> None:
        for listener in listeners:
            try:
                listener(info)
            except Exception:
                logger.debug("Error in diagnostics listener", exc_info=True)
