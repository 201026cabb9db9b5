import logging
import threading
from typing import Any, Protocol
from uuid import uuid4

from starlette.websockets import WebSocket

from app.core.errors import ValidationError
from app.core.metrics import increment_counter, set_gauge
from app.realtime.events import (
    EVENT_POST_CLOSED,
    EVENT_POST_NEW,
    EVENT_POST_REOPENED,
    EVENT_REPLY_NEW,
    GROUP_CATEGORY,
    GROUP_POST,
    build_message,
)

logger = logging.getLogger(__name__)

MAX_CATEGORY_KEY_LENGTH = 100
MAX_THREAD_ID_LENGTH = 50


class Connection(Protocol):
    connection_id: str

    async def send_json(self, message: dict[str, Any]) -> None: ...


class WebSocketConnection:
    def __init__(self, websocket: WebSocket) -> None:
        self.connection_id = uuid4().hex
        self._websocket = websocket

    async def send_json(self, message: dict[str, Any]) -> None:
        await self._websocket.send_json(message)


def validate_category_key(value: Any) -> str:
    if not isinstance(value, str) or not value or len(value) >= MAX_CATEGORY_KEY_LENGTH:
        raise ValidationError("Invalid category key")
    return value


def validate_thread_id(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValidationError("Invalid thread id")
    text = str(value).strip()
    if not text or len(text) >= MAX_THREAD_ID_LENGTH or not text.isdigit():
        raise ValidationError("Invalid thread id")
    return text


def group_key(kind: str, key: Any) -> str:
    if kind == GROUP_CATEGORY:
        return f"{GROUP_CATEGORY}:{validate_category_key(key)}"
    if kind == GROUP_POST:
        return f"{GROUP_POST}:{validate_thread_id(key)}"
    raise ValidationError(f"Unknown group kind: {kind}")


class RealtimeHub:
    """Subscriber groups keyed by ``category:<key>`` and ``post:<id>``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._groups: dict[str, dict[str, Connection]] = {}
        self._memberships: dict[str, set[str]] = {}

    def join(self, connection: Connection, kind: str, key: Any) -> bool:
        try:
            group = group_key(kind, key)
        except ValidationError:
            logger.debug("realtime_join_ignored connection_id=%s kind=%s", connection.connection_id, kind)
            return False
        with self._lock:
            self._groups.setdefault(group, {})[connection.connection_id] = connection
            self._memberships.setdefault(connection.connection_id, set()).add(group)
            set_gauge("realtime_subscribers", len(self._memberships))
        return True

    def leave(self, connection: Connection, kind: str, key: Any) -> bool:
        try:
            group = group_key(kind, key)
        except ValidationError:
            return False
        with self._lock:
            return self._remove(connection.connection_id, group)

    def disconnect(self, connection: Connection) -> None:
        with self._lock:
            self._drop(connection.connection_id)

    def members(self, kind: str, key: Any) -> list[str]:
        group = group_key(kind, key)
        with self._lock:
            return sorted(self._groups.get(group, {}))

    def _remove(self, connection_id: str, group: str) -> bool:
        members = self._groups.get(group)
        if not members or connection_id not in members:
            return False
        members.pop(connection_id, None)
        if not members:
            self._groups.pop(group, None)
        joined = self._memberships.get(connection_id)
        if joined is not None:
            joined.discard(group)
            if not joined:
                self._memberships.pop(connection_id, None)
        set_gauge("realtime_subscribers", len(self._memberships))
        return True

    def _drop(self, connection_id: str) -> None:
        for group in list(self._memberships.get(connection_id, ())):
            self._remove(connection_id, group)

    async def publish(self, groups: list[str], event: str, data: dict) -> int:
        with self._lock:
            targets: dict[str, Connection] = {}
            for group in groups:
                targets.update(self._groups.get(group, {}))
        message = build_message(event, data)

        delivered = 0
        failures: list[str] = []
        for connection_id, connection in targets.items():
            try:
                await connection.send_json(message)
                delivered += 1
            except Exception as exc:
                logger.info("realtime_send_failed connection_id=%s error=%s", connection_id, exc.__class__.__name__)
                failures.append(connection_id)

        if failures:
            increment_counter("realtime_delivery_failures_total", value=len(failures))
            with self._lock:
                for connection_id in failures:
                    self._drop(connection_id)
        increment_counter("realtime_publish_total", event=event)
        logger.debug("realtime_publish event=%s groups=%s delivered=%s", event, ",".join(groups), delivered)
        return delivered

    async def publish_new_post(self, category_key: str, summary: dict) -> int:
        return await self.publish([group_key(GROUP_CATEGORY, category_key)], EVENT_POST_NEW, summary)

    async def publish_new_reply(self, thread_id: int | str, summary: dict) -> int:
        return await self.publish([group_key(GROUP_POST, thread_id)], EVENT_REPLY_NEW, summary)

    def _thread_groups(self, thread_id: int | str, category_key: str | None) -> list[str]:
        groups = [group_key(GROUP_POST, thread_id)]
        if category_key:
            groups.append(group_key(GROUP_CATEGORY, category_key))
        return groups

    async def publish_closed(self, thread_id: int | str, category_key: str | None = None) -> int:
        data = {"post_id": int(validate_thread_id(thread_id))}
        return await self.publish(self._thread_groups(thread_id, category_key), EVENT_POST_CLOSED, data)

    async def publish_reopened(self, thread_id: int | str, category_key: str | None = None) -> int:
        data = {"post_id": int(validate_thread_id(thread_id))}
        return await self.publish(self._thread_groups(thread_id, category_key), EVENT_POST_REOPENED, data)
