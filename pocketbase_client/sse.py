from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
from typing import Callable, Iterable, Iterator

import requests

logger = logging.getLogger(__name__)

PB_CONNECT = "PB_CONNECT"


class RealtimeConnectionError(RuntimeError):
    pass


@dataclass
class SSEEvent:
    event: str | None = None
    data: str | None = None
    id: str | None = None
    retry: int | None = None

    @property
    def has_data(self) -> bool:
        return self.data is not None or self.id is not None


def iter_sse_events(lines: Iterable[str | bytes | None]) -> Iterator[SSEEvent]:
    """Turn a stream of text lines into SSE events.

    An event is emitted on each blank line once it carries ``data`` or
    ``id``. The generator stops when the line source is exhausted or fails
    with a transport error; an unterminated trailing event is dropped.
    """
    current = SSEEvent()
    iterator = iter(lines)

    while True:
        try:
            raw_line = next(iterator)
        except StopIteration:
            return
        except (requests.RequestException, OSError) as exc:
            logger.debug("SSE stream ended with a read error: %s", exc)
            return

        if isinstance(raw_line, bytes):
            raw_line = raw_line.decode("utf-8", errors="replace")
        line = (raw_line or "").rstrip("\r")

        if not line:
            if current.has_data:
                yield current
            current = SSEEvent()
            continue

        if line.startswith(":"):
            continue

        if line.startswith("event:"):
            current.event = line[6:].strip()
        elif line.startswith("data:"):
            data = line[5:].lstrip()
            current.data = data if current.data is None else f"{current.data}\n{data}"
        elif line.startswith("id:"):
            current.id = line[3:].strip()
        elif line.startswith("retry:"):
            try:
                current.retry = int(line[6:].strip())
            except ValueError:
                pass


class SSEClient:
    """Reads one ``text/event-stream`` response on a background thread.

    Named events are passed to ``on_message(event, data)``; events carrying
    only an id are passed as ``on_message(PB_CONNECT, id)``. Failures and a
    server-side end of stream go to ``on_error``. Nothing is reported once
    ``close()`` has been called.
    """

    def __init__(
        self,
        session: requests.Session,
        url: str,
        token: str = "",
        connect_timeout: float = 15.0,
        on_message: Callable[[str, str], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ):
        self._session = session
        self._url = url
        self._token = token
        self._connect_timeout = connect_timeout
        self._on_message = on_message
        self._on_error = on_error
        self._stopped = threading.Event()
        self._response: requests.Response | None = None
        self._thread: threading.Thread | None = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def closed(self) -> bool:
        return self._stopped.is_set()

    def connect(self) -> None:
        if self._thread is not None:
            raise RuntimeError("SSEClient.connect() can only be called once")

        self._thread = threading.Thread(target=self._run, name="pocketbase-sse", daemon=True)
        self._thread.start()

    def close(self) -> None:
        self._stopped.set()
        response = self._response
        if response is not None:
            response.close()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def _run(self) -> None:
        headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
        }
        if self._token:
            headers["Authorization"] = self._token

        try:
            response = self._session.get(
                self._url,
                headers=headers,
                stream=True,
                timeout=(self._connect_timeout, None),
            )
        except Exception as exc:
            self._report(exc)
            return

        self._response = response
        try:
            if self._stopped.is_set():
                return

            if response.status_code != 200:
                self._report(
                    RealtimeConnectionError(
                        f"Realtime connection failed: HTTP {response.status_code} ({self._url})"
                    )
                )
                return

            response.encoding = "utf-8"
            lines = response.iter_lines(chunk_size=None, decode_unicode=True)
            for event in iter_sse_events(lines):
                if self._stopped.is_set():
                    return
                self._dispatch(event)
        except Exception as exc:
            self._report(exc)
            return
        finally:
            response.close()

        self._report(RealtimeConnectionError(f"Realtime stream closed by the server ({self._url})"))

    def _dispatch(self, event: SSEEvent) -> None:
        if self._on_message is None:
            return

        if event.event is not None and event.data is not None:
            self._on_message(event.event, event.data)
        elif event.id is not None:
            self._on_message(PB_CONNECT, event.id)

    def _report(self, error: BaseException) -> None:
        if self._stopped.is_set():
            logger.debug("SSE reader stopped: %s", error)
            return
        if self._on_error is not None:
            self._on_error(error)
        else:
            logger.warning("SSE connection error: %s", error)
