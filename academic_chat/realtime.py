"""
Realtime change feed.

Every document create/update/delete in the store is published as a
`RealtimeEvent` on the collection channel
`databases.{database_id}.collections.{collection}.documents` (and on the
per-document channel). Subscribers register a callback for one or more
channels and get back an unsubscribe callable.

Supports an in-process hub for tests/local runs and a Redis pub/sub backed
hub so several API processes share one feed.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Protocol

import redis
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)

ACTIONS = ("create", "update", "delete")

EventCallback = Callable[["RealtimeEvent"], None]
Unsubscribe = Callable[[], None]


def collection_channel(database_id: str, collection: str) -> str:
    return f"databases.{database_id}.collections.{collection}.documents"


def document_channel(database_id: str, collection: str, document_id: str) -> str:
    return f"{collection_channel(database_id, collection)}.{document_id}"


@dataclass
class RealtimeEvent:
    events: list[str]
    channels: list[str]
    payload: dict
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def action(self) -> str | None:
        for event in self.events:
            suffix = event.rsplit(".", 1)[-1]
            if suffix in ACTIONS:
                return suffix
        return None

    def as_dict(self) -> dict:
        return {
            "events": list(self.events),
            "channels": list(self.channels),
            "payload": self.payload,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RealtimeEvent":
        return cls(
            events=list(data.get("events") or []),
            channels=list(data.get("channels") or []),
            payload=dict(data.get("payload") or {}),
            timestamp=data.get("timestamp") or datetime.now(timezone.utc).isoformat(),
        )


def document_event(
    database_id: str, collection: str, action: str, document: dict
) -> RealtimeEvent:
    """Build the event published for a document change."""
    if action not in ACTIONS:
        raise ValueError(f"Unknown realtime action: {action}")
    document_id = document["$id"]
    concrete = f"{document_channel(database_id, collection, document_id)}.{action}"
    return RealtimeEvent(
        events=[
            concrete,
            f"{collection_channel(database_id, collection)}.*.{action}",
            f"databases.*.collections.*.documents.*.{action}",
            "databases.*.collections.*.documents.*",
        ],
        channels=[
            collection_channel(database_id, collection),
            document_channel(database_id, collection, document_id),
        ],
        payload=document,
    )


class RealtimeHub(Protocol):
    """Subscribe/publish surface used by the store and the websocket route."""

    def subscribe(
        self, channels: Iterable[str], callback: EventCallback
    ) -> Unsubscribe:
        ...

    def publish(self, event: RealtimeEvent) -> None:
        ...


class InMemoryRealtimeHub:
    """In-process fan-out of events to subscribed callbacks."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: dict[str, tuple[frozenset[str], EventCallback]] = {}

    def subscribe(
        self, channels: Iterable[str], callback: EventCallback
    ) -> Unsubscribe:
        subscription_id = uuid.uuid4().hex
        with self._lock:
            self._subscriptions[subscription_id] = (frozenset(channels), callback)

        def unsubscribe() -> None:
            with self._lock:
                self._subscriptions.pop(subscription_id, None)

        return unsubscribe

    def publish(self, event: RealtimeEvent) -> None:
        with self._lock:
            targets = list(self._subscriptions.values())
        event_channels = set(event.channels)
        for channels, callback in targets:
            if channels.isdisjoint(event_channels):
                continue
            try:
                callback(event)
            except Exception:
                logger.exception("Realtime subscriber failed for %s", event.events[:1])

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def reset(self) -> None:
        """Drop all subscriptions (useful in tests)."""
        with self._lock:
            self._subscriptions.clear()


class RedisRealtimeHub:
    """
    Redis pub/sub backed hub. Events are published as JSON on one Redis
    channel and delivered to the subscribers registered in this process.
    """

    def __init__(self, url: str, channel_prefix: str = "academic_chat:realtime:"):
        self.url = url
        self.redis_channel = f"{channel_prefix}events"
        self.client = redis.Redis.from_url(url)
        self._local = InMemoryRealtimeHub()
        self._listener_lock = threading.Lock()
        self._pubsub = None
        self._thread = None

    def _ensure_listener(self) -> None:
        with self._listener_lock:
            if self._thread is not None:
                return
            self._pubsub = self.client.pubsub(ignore_subscribe_messages=True)
            self._pubsub.subscribe(**{self.redis_channel: self._handle_message})
            self._thread = self._pubsub.run_in_thread(
                sleep_time=1.0,
                daemon=True,
                exception_handler=self._handle_listener_error,
            )

    def _handle_message(self, message: dict) -> None:
        data = message.get("data")
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            event = RealtimeEvent.from_dict(json.loads(data))
        except (TypeError, ValueError):
            logger.warning("Dropping malformed realtime message: %r", data)
            return
        self._local.publish(event)

    def _handle_listener_error(self, exc, pubsub, thread) -> None:
        logger.warning("Realtime listener error: %s", exc)
        # pubsub reconnects on the next read.
        time.sleep(1.0)

    def subscribe(
        self, channels: Iterable[str], callback: EventCallback
    ) -> Unsubscribe:
        self._ensure_listener()
        return self._local.subscribe(channels, callback)

    def publish(self, event: RealtimeEvent) -> None:
        body = json.dumps(event.as_dict(), default=str)
        try:
            self.client.publish(self.redis_channel, body)
        except redis_exceptions.ConnectionError:
            # Reconnect and retry once.
            logger.warning("Redis publish failed, reconnecting")
            self.client = redis.Redis.from_url(self.url)
            self.client.publish(self.redis_channel, body)

    def close(self) -> None:
        with self._listener_lock:
            if self._thread is not None:
                self._thread.stop()
                self._thread = None
            if self._pubsub is not None:
                self._pubsub.close()
                self._pubsub = None
