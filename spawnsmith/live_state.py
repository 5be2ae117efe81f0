"""
Live state fan-out for spawn sessions.

A session owns one :class:`LiveStateChannel`. Publishing never blocks the
session: in-process subscribers are called inline (their errors are logged and
ignored), and an optional :class:`LiveStateHub` actor receives a fire-and-forget
copy for observers in other processes. Observers that join late get the latest
snapshot, not a replay.
"""

from __future__ import annotations

import copy
import itertools
import logging
import threading
from typing import Any, Callable, Dict, Optional

import ray

logger = logging.getLogger(__name__)

Snapshot = Dict[str, Any]
Subscriber = Callable[[Snapshot], None]


class LiveStateChannel:
    def __init__(self, session_id: str, forward: Any = None) -> None:
        self.session_id = session_id
        self.forward = forward
        self._subscribers: Dict[int, Subscriber] = {}
        self._ids = itertools.count(1)
        self._latest: Optional[Snapshot] = None
        self._version = 0
        self._cond = threading.Condition()

    @property
    def version(self) -> int:
        return self._version

    def latest(self) -> Optional[Snapshot]:
        with self._cond:
            return copy.deepcopy(self._latest)

    def publish(self, snapshot: Snapshot) -> int:
        with self._cond:
            self._version += 1
            self._latest = copy.deepcopy(snapshot)
            version = self._version
            subscribers = list(self._subscribers.values())
            self._cond.notify_all()

        for callback in subscribers:
            try:
                callback(copy.deepcopy(snapshot))
            except Exception:
                logger.warning(f"Live state subscriber failed for session {self.session_id}", exc_info=True)

        if self.forward is not None:
            self.forward.publish.remote(self.session_id, snapshot)
        return version

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; it immediately receives the current snapshot, if any."""
        with self._cond:
            token = next(self._ids)
            self._subscribers[token] = callback
            current = copy.deepcopy(self._latest)
        if current is not None:
            callback(current)

        def unsubscribe() -> None:
            with self._cond:
                self._subscribers.pop(token, None)

        return unsubscribe

    def wait_for_update(self, after_version: int, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Block until a snapshot newer than ``after_version`` exists.

        Returns ``{"version", "snapshot"}`` or None on timeout. Intermediate
        snapshots may be skipped; only the latest is returned.
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._version > after_version, timeout=timeout):
                return None
            return {"version": self._version, "snapshot": copy.deepcopy(self._latest)}


@ray.remote
class LiveStateHub:
    """Collects snapshots from every session for out-of-process observers.

    Create with ``max_concurrency`` > 1 so blocking waits do not stall publishes.
    """

    def __init__(self):
        self._channels: Dict[str, LiveStateChannel] = {}
        self._lock = threading.Lock()

    def _channel(self, session_id: str) -> LiveStateChannel:
        with self._lock:
            channel = self._channels.get(session_id)
            if channel is None:
                channel = LiveStateChannel(session_id)
                self._channels[session_id] = channel
            return channel

    def publish(self, session_id: str, snapshot: Snapshot) -> int:
        return self._channel(session_id).publish(snapshot)

    def latest(self, session_id: str) -> Optional[Snapshot]:
        return self._channel(session_id).latest()

    def wait_for_update(self, session_id: str, after_version: int = 0, timeout: float = 30.0) -> Optional[Dict[str, Any]]:
        return self._channel(session_id).wait_for_update(after_version, timeout=timeout)

    def drop(self, session_id: str) -> None:
        with self._lock:
            self._channels.pop(session_id, None)
