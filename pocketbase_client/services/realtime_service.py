from __future__ import annotations

import json
import logging
import random
import threading
from typing import Any, Callable
from urllib.parse import quote

import requests

from pocketbase_client.auth import AuthStore
from pocketbase_client.config import ClientSettings
from pocketbase_client.http import ClientResponseError, HttpClient, ResultKind
from pocketbase_client.models import QueryOptions, RealtimeEvent
from pocketbase_client.sse import PB_CONNECT, RealtimeConnectionError, SSEClient

logger = logging.getLogger(__name__)

REALTIME_PATH = "/api/realtime"
SUBMIT_RETRIES = 3

RealtimeCallback = Callable[[RealtimeEvent], None]
UnsubscribeFunc = Callable[[], None]


def build_subscription_key(topic: str, options: QueryOptions | None = None) -> str:
    if options is None:
        return topic

    serialized: dict[str, Any] = {}
    query = {
        key: value
        for key, value in options.to_query().items()
        if key in ("filter", "expand", "fields") or key in options.query
    }
    if query:
        serialized["query"] = query
    if options.headers:
        serialized["headers"] = dict(options.headers)

    if not serialized:
        return topic

    encoded = quote(json.dumps(serialized, separators=(",", ":")), safe="")
    separator = "&" if "?" in topic else "?"
    return f"{topic}{separator}options={encoded}"


class RealtimeService:
    """Multiplexes topic subscriptions over a single SSE connection.

    The connection opens with the first subscription and closes when the
    last listener goes away. A dropped connection is re-established with
    exponential backoff and every active topic is submitted again once the
    server sends a new ``PB_CONNECT``.
    """

    def __init__(self, settings: ClientSettings, http_client: HttpClient, auth_store: AuthStore):
        self._settings = settings
        self._http_client = http_client
        self._auth_store = auth_store

        self._lock = threading.RLock()
        self._subscriptions: dict[str, list[RealtimeCallback]] = {}
        self._last_sent_subscriptions: list[str] = []
        self._client_id = ""
        self._sse: SSEClient | None = None
        self._ready = threading.Event()
        # set on PB_CONNECT or once reconnecting is given up
        self._settled = threading.Event()
        self._connect_error: BaseException | None = None
        self._reconnect_timer: threading.Timer | None = None
        self._reconnect_attempts = 0
        self._generation = 0

        self._disconnect_callbacks: list[Callable[[list[str]], None]] = []
        self._error_callbacks: list[Callable[[BaseException], None]] = []

    @property
    def is_connected(self) -> bool:
        return self._ready.is_set()

    @property
    def client_id(self) -> str:
        with self._lock:
            return self._client_id

    @property
    def subscription_keys(self) -> list[str]:
        with self._lock:
            return self._non_empty_keys()

    def on_disconnect(self, callback: Callable[[list[str]], None]) -> None:
        self._disconnect_callbacks.append(callback)

    def on_error(self, callback: Callable[[BaseException], None]) -> None:
        self._error_callbacks.append(callback)

    def subscribe(
        self,
        topic: str,
        callback: RealtimeCallback,
        options: QueryOptions | None = None,
    ) -> UnsubscribeFunc:
        if not topic:
            raise ValueError("topic must be set")

        key = build_subscription_key(topic, options)
        with self._lock:
            listeners = self._subscriptions.setdefault(key, [])
            listeners.append(callback)
            is_first_listener = len(listeners) == 1
            connected = self._ready.is_set()

        if not connected:
            try:
                self._connect()
            except RealtimeConnectionError:
                self._discard_callback(key, callback)
                raise
        elif is_first_listener:
            self._submit_subscriptions()

        def unsubscribe() -> None:
            self._unsubscribe_by_topic_and_callback(topic, callback)

        return unsubscribe

    def unsubscribe(self, topic: str | None = None) -> None:
        with self._lock:
            if topic is None:
                self._subscriptions.clear()
            else:
                for key in self._keys_by_topic(topic):
                    del self._subscriptions[key]
            has_listeners = self._has_listeners()

        if has_listeners:
            self._submit_subscriptions()
        else:
            self.disconnect()

    def unsubscribe_by_prefix(self, *key_prefixes: str) -> None:
        """Remove every key starting with any of ``key_prefixes``.

        Keys are matched with a trailing ``?`` so ``"posts?"`` selects the
        ``posts`` topic with or without options.
        """
        prefixes = tuple(key_prefixes)
        with self._lock:
            keys = [key for key in self._subscriptions if f"{key}?".startswith(prefixes)]
            for key in keys:
                del self._subscriptions[key]
            has_listeners = self._has_listeners()

        if not keys:
            return

        if has_listeners:
            self._submit_subscriptions()
        else:
            self.disconnect()

    def disconnect(self) -> None:
        with self._lock:
            was_connected = bool(self._client_id)
            keys = list(self._subscriptions)
            self._stop_connection()
            self._reconnect_attempts = 0

        if was_connected:
            logger.info("Realtime disconnected")
            self._notify_disconnect(keys)

    def close(self) -> None:
        with self._lock:
            self._subscriptions.clear()
        self.disconnect()

    def _connect(self) -> None:
        with self._lock:
            if self._reconnect_attempts > 0:
                # the pending reconnect submits every key on PB_CONNECT
                return
            if self._sse is None:
                self._connect_error = None
                self._settled.clear()
                self._init_connect()

        if not self._settled.wait(self._settings.connect_timeout_seconds):
            raise RealtimeConnectionError("Realtime connect took too long")

        error = self._connect_error
        if error is not None:
            raise RealtimeConnectionError(f"Realtime connection failed: {error}") from error

        if self._has_unsent_subscriptions():
            self._submit_subscriptions()

    def _init_connect(self) -> None:
        self._stop_connection()

        sse: SSEClient | None = None

        def on_message(event_name: str, data: str) -> None:
            self._on_message(sse, event_name, data)

        def on_error(error: BaseException) -> None:
            self._on_connect_error(sse, error)

        sse = SSEClient(
            self._http_client.session,
            self._http_client.build_url(REALTIME_PATH),
            token=self._auth_store.token,
            connect_timeout=self._settings.connect_timeout_seconds,
            on_message=on_message,
            on_error=on_error,
        )
        self._sse = sse
        logger.debug("Opening realtime connection to %s", sse.url)
        sse.connect()

    def _stop_connection(self) -> None:
        self._generation += 1
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None
        if self._sse is not None:
            self._sse.close()
            self._sse = None
        self._client_id = ""
        self._ready.clear()

    def _on_message(self, sse: SSEClient | None, event_name: str, data: str) -> None:
        if sse is not self._sse:
            return

        if event_name == PB_CONNECT:
            self._handle_connect(sse, data)
        else:
            self._handle_message(event_name, data)

    def _handle_connect(self, sse: SSEClient, data: str) -> None:
        client_id = _parse_client_id(data)
        with self._lock:
            if sse is not self._sse:
                return
            self._client_id = client_id

        try:
            self._submit_subscriptions()
            retries = SUBMIT_RETRIES
            while self._has_unsent_subscriptions() and retries > 0:
                retries -= 1
                self._submit_subscriptions()
        except (ClientResponseError, requests.RequestException) as exc:
            with self._lock:
                if sse is self._sse:
                    self._client_id = ""
            self._on_connect_error(sse, exc)
            return

        with self._lock:
            if sse is not self._sse:
                return
            self._reconnect_attempts = 0
            self._connect_error = None
            self._ready.set()
            self._settled.set()
        logger.info("Realtime connected with client id %s", client_id)

    def _handle_message(self, event_name: str, data: str) -> None:
        with self._lock:
            listeners = list(self._subscriptions.get(event_name, ()))
        if not listeners:
            return

        try:
            event = RealtimeEvent.from_payload(event_name, json.loads(data))
        except ValueError:
            logger.exception("Could not decode realtime event %r", event_name)
            return

        for callback in listeners:
            try:
                callback(event)
            except Exception:
                logger.exception("Realtime callback for %r failed", event_name)

    def _on_connect_error(self, sse: SSEClient | None, error: BaseException) -> None:
        delay = 0.0
        with self._lock:
            if sse is not self._sse:
                return

            was_connected = bool(self._client_id)
            keys = list(self._subscriptions)
            max_attempts = self._settings.realtime_max_reconnect_attempts
            can_retry = self._has_listeners() and (
                max_attempts == 0 or self._reconnect_attempts < max_attempts
            )

            self._stop_connection()
            if can_retry:
                delay = self._next_reconnect_delay()
                self._reconnect_attempts += 1
                attempt = self._reconnect_attempts
                generation = self._generation
                timer = threading.Timer(delay, self._reconnect, args=(generation,))
                timer.daemon = True
                self._reconnect_timer = timer
                timer.start()
            else:
                # wake subscribers blocked in _connect with the real cause
                self._reconnect_attempts = 0
                self._connect_error = error
                self._settled.set()

        if was_connected:
            self._notify_disconnect(keys)

        if can_retry:
            logger.warning(
                "Realtime connection error (%s); reconnect attempt %s in %.2fs",
                error,
                attempt,
                delay,
            )
            return

        logger.error("Realtime connection failed: %s", error)
        for callback in list(self._error_callbacks):
            callback(error)

    def _reconnect(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._reconnect_timer = None
            if not self._has_listeners():
                return
            self._init_connect()

    def _next_reconnect_delay(self) -> float:
        base = self._settings.realtime_reconnect_base_ms / 1000.0
        cap = self._settings.realtime_reconnect_max_ms / 1000.0
        delay = min(base * (2 ** self._reconnect_attempts), cap)
        return delay + random.uniform(0, delay * 0.1)

    def _submit_subscriptions(self) -> None:
        with self._lock:
            client_id = self._client_id
            if not client_id:
                return
            keys = self._non_empty_keys()
            self._last_sent_subscriptions = list(keys)

        self._http_client.send(
            REALTIME_PATH,
            method="POST",
            body={"clientId": client_id, "subscriptions": keys},
            result=ResultKind.NONE,
        )

    def _unsubscribe_by_topic_and_callback(self, topic: str, callback: RealtimeCallback) -> None:
        needs_submit = False
        with self._lock:
            for key in self._keys_by_topic(topic):
                listeners = self._subscriptions[key]
                if callback in listeners:
                    listeners.remove(callback)
                if not listeners:
                    del self._subscriptions[key]
                    needs_submit = True
            has_listeners = self._has_listeners()

        if not has_listeners:
            self.disconnect()
        elif needs_submit:
            self._submit_subscriptions()

    def _discard_callback(self, key: str, callback: RealtimeCallback) -> None:
        with self._lock:
            listeners = self._subscriptions.get(key, [])
            if callback in listeners:
                listeners.remove(callback)
            if not listeners:
                self._subscriptions.pop(key, None)
            has_listeners = self._has_listeners()

        if not has_listeners:
            self.disconnect()

    def _notify_disconnect(self, keys: list[str]) -> None:
        for callback in list(self._disconnect_callbacks):
            try:
                callback(keys)
            except Exception:
                logger.exception("Realtime disconnect callback failed")

    def _keys_by_topic(self, topic: str) -> list[str]:
        prefix = topic if "?" in topic else f"{topic}?"
        return [key for key in self._subscriptions if f"{key}?".startswith(prefix)]

    def _non_empty_keys(self) -> list[str]:
        return [key for key, listeners in self._subscriptions.items() if listeners]

    def _has_listeners(self) -> bool:
        return any(self._subscriptions.values())

    def _has_unsent_subscriptions(self) -> bool:
        with self._lock:
            return set(self._non_empty_keys()) != set(self._last_sent_subscriptions)


def _parse_client_id(data: str) -> str:
    try:
        payload = json.loads(data)
    except ValueError:
        return data.strip()

    if isinstance(payload, dict) and payload.get("clientId"):
        return str(payload["clientId"])
    return data.strip()
