from __future__ import annotations

from typing import Any, Callable, Mapping

import requests

from pocketbase_client.auth import AuthStore, FileTokenStorage, PersistentAuthStore
from pocketbase_client.cache import MemoryCache
from pocketbase_client.config import ClientSettings
from pocketbase_client.http import AfterSendHook, BeforeSendHook, HttpClient, ResultKind
from pocketbase_client.logging_utils import configure_logging
from pocketbase_client.services import RealtimeService, RecordService


class PocketBase:
    """Client for one PocketBase instance.

    Example::

        pb = PocketBase("https://example.pockethost.io")
        pb.collection("users").auth_with_password("user@example.com", "secret")
        page = pb.collection("t_message").get_list()
        unsubscribe = pb.collection("t_message").subscribe(print)
    """

    def __init__(
        self,
        base_url: str | None = None,
        auth_store: AuthStore | None = None,
        settings: ClientSettings | None = None,
        session: requests.Session | None = None,
    ):
        if settings is None:
            if not base_url:
                raise ValueError("Either base_url or settings is required")
            settings = ClientSettings.defaults(base_url)

        self._settings = settings
        self.auth_store = auth_store or AuthStore()
        self.http = HttpClient(settings, self.auth_store, session=session)
        self.realtime = RealtimeService(settings, self.http, self.auth_store)
        self.cache: MemoryCache[str, Any] = MemoryCache(settings.cache_max_size, settings.cache_ttl_seconds)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def base_url(self) -> str:
        return self._settings.base_url

    def collection(self, collection_id_or_name: str) -> RecordService:
        return RecordService(self.http, self.realtime, self.auth_store, collection_id_or_name)

    def build_url(self, path: str) -> str:
        return self.http.build_url(path)

    def add_before_send(self, hook: BeforeSendHook) -> None:
        self.http.add_before_send(hook)

    def add_after_send(self, hook: AfterSendHook) -> None:
        self.http.add_after_send(hook)

    def send(
        self,
        path: str,
        method: str = "GET",
        query: Mapping[str, Any] | None = None,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        result: ResultKind = ResultKind.JSON,
        decoder: Callable[[Any], Any] | None = None,
    ) -> Any:
        return self.http.send(
            path,
            method=method,
            query=query,
            body=body,
            headers=headers,
            result=result,
            decoder=decoder,
        )

    def close(self) -> None:
        self.realtime.close()
        self.cache.clear()
        self.http.close()

    def __enter__(self) -> "PocketBase":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def build_client() -> PocketBase:
    settings = ClientSettings.from_env()
    configure_logging(settings.log_level)
    auth_store = PersistentAuthStore(FileTokenStorage(settings.token_cache_path))
    return PocketBase(settings=settings, auth_store=auth_store)
