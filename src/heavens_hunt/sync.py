from __future__ import annotations

"""In-process push channel carrying typed row-change events per topic."""

import itertools
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any


OP_INSERT = "INSERT"
OP_UPDATE = "UPDATE"
OP_DELETE = "DELETE"
VALID_OPERATIONS = {OP_INSERT, OP_UPDATE, OP_DELETE}

ORIGIN_LOCAL = "local"
ORIGIN_REMOTE = "remote"

TABLE_TEAMS = "teams"
TABLE_REQUESTS = "verification_requests"
TABLE_CONFIG = "game_config"

CONFIG_TOPIC = "game_config"
ADMIN_REQUESTS_TOPIC = "admin_requests"
ADMIN_TEAMS_TOPIC = "admin_teams"

_TOPIC_UNSAFE = re.compile(r"[^a-zA-Z0-9]")


def team_topic(team_name: str) -> str:
    """Per-team topic; anything outside [a-zA-Z0-9] becomes `_`."""

    return f"team_sync_{_TOPIC_UNSAFE.sub('_', team_name)}"


@dataclass(frozen=True)
class ChangeEvent:
    topic: str
    table: str
    operation: str
    record: dict[str, Any]
    origin: str = ORIGIN_REMOTE
    seq: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic": self.topic,
            "table": self.table,
            "operation": self.operation,
            "record": dict(self.record),
            "origin": self.origin,
            "seq": self.seq,
        }


Handler = Callable[[ChangeEvent], None]
ErrorHook = Callable[[ChangeEvent, Exception], None]


@dataclass
class Subscription:
    channel: "SyncChannel"
    topic: str
    handler: Handler
    active: bool = True

    def unsubscribe(self) -> None:
        self.channel.unsubscribe(self)


@dataclass
class SyncChannel:
    """Synchronous fan-out bus.

    Delivery order per topic follows subscription order. A failing handler
    is reported through `on_error` and does not stop delivery to the rest.
    """

    on_error: ErrorHook | None = None
    _subscriptions: dict[str, list[Subscription]] = field(default_factory=dict)
    _seq: itertools.count = field(default_factory=lambda: itertools.count(1))
    _lock: threading.RLock = field(default_factory=threading.RLock)

    def subscribe(self, topic: str, handler: Handler) -> Subscription:
        subscription = Subscription(channel=self, topic=topic, handler=handler)
        with self._lock:
            self._subscriptions.setdefault(topic, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscriptions.get(subscription.topic, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.topic, None)
        subscription.active = False

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(topic, []))

    def publish(
        self,
        topic: str,
        *,
        table: str,
        operation: str,
        record: dict[str, Any],
        origin: str = ORIGIN_REMOTE,
    ) -> ChangeEvent:
        if operation not in VALID_OPERATIONS:
            raise ValueError(f"Unknown operation: {operation}")
        with self._lock:
            event = ChangeEvent(
                topic=topic,
                table=table,
                operation=operation,
                record=dict(record),
                origin=origin,
                seq=next(self._seq),
            )
            subscribers = list(self._subscriptions.get(topic, []))
        for subscription in subscribers:
            if not subscription.active:
                continue
            try:
                subscription.handler(event)
            except Exception as exc:  # noqa: BLE001
                if self.on_error is not None:
                    self.on_error(event, exc)
        return event
