from __future__ import annotations

from dataclasses import replace
from typing import Any

from pocketbase_client.auth import AuthStore
from pocketbase_client.http import ClientResponseError, HttpClient, ResultKind
from pocketbase_client.models import AuthResponse, ErrorResponse, ListResult, QueryOptions
from pocketbase_client.services.realtime_service import (
    RealtimeCallback,
    RealtimeService,
    UnsubscribeFunc,
)


class RecordService:
    def __init__(
        self,
        http_client: HttpClient,
        realtime: RealtimeService,
        auth_store: AuthStore,
        collection: str,
    ):
        if not collection.strip():
            raise ValueError("Collection id or name is required")

        self._http_client = http_client
        self._realtime = realtime
        self._auth_store = auth_store
        self._collection = collection.strip()

    @property
    def collection(self) -> str:
        return self._collection

    @property
    def base_path(self) -> str:
        return f"/api/collections/{self._collection}/records"

    def get_list(
        self,
        page: int = 1,
        per_page: int = 30,
        options: QueryOptions | None = None,
    ) -> ListResult:
        options = replace(options or QueryOptions(), page=page, per_page=per_page)
        return self._http_client.send(
            self.base_path,
            method="GET",
            query=options.to_query(),
            headers=options.headers,
            result=ResultKind.MODEL,
            decoder=ListResult.from_dict,
        )

    def get_full_list(self, batch: int = 500, options: QueryOptions | None = None) -> list[dict[str, Any]]:
        if batch <= 0:
            raise ValueError("batch must be greater than 0")

        records: list[dict[str, Any]] = []
        page = 1
        while True:
            result = self.get_list(page=page, per_page=batch, options=options)
            records.extend(result.items)
            if not result.items or result.page >= result.total_pages:
                break
            page += 1
        return records

    def get_first_list_item(self, filter: str, options: QueryOptions | None = None) -> dict[str, Any]:
        options = replace(options or QueryOptions(), filter=filter, skip_total=True)
        result = self.get_list(page=1, per_page=1, options=options)
        if not result.items:
            raise ClientResponseError(
                url=self._http_client.build_url(self.base_path),
                status_code=404,
                response=ErrorResponse(
                    code=404,
                    message="The requested resource wasn't found.",
                ),
            )
        return result.items[0]

    def get_one(self, record_id: str, options: QueryOptions | None = None) -> dict[str, Any]:
        options = options or QueryOptions()
        return self._http_client.send(
            self._record_path(record_id),
            method="GET",
            query=options.to_query(),
            headers=options.headers,
        )

    def create(self, body: dict[str, Any], options: QueryOptions | None = None) -> dict[str, Any]:
        options = options or QueryOptions()
        return self._http_client.send(
            self.base_path,
            method="POST",
            query=options.to_query(),
            body=body,
            headers=options.headers,
        )

    def update(
        self,
        record_id: str,
        body: dict[str, Any],
        options: QueryOptions | None = None,
    ) -> dict[str, Any]:
        options = options or QueryOptions()
        updated = self._http_client.send(
            self._record_path(record_id),
            method="PATCH",
            query=options.to_query(),
            body=body,
            headers=options.headers,
        )

        if self._is_auth_record(updated.get("id")):
            current = self._auth_store.record or {}
            self._auth_store.save(self._auth_store.token, {**current, **updated})
        return updated

    def delete(self, record_id: str, options: QueryOptions | None = None) -> bool:
        options = options or QueryOptions()
        self._http_client.send(
            self._record_path(record_id),
            method="DELETE",
            query=options.to_query(),
            headers=options.headers,
            result=ResultKind.NONE,
        )

        if self._is_auth_record(record_id):
            self._auth_store.clear()
        return True

    def auth_with_password(
        self,
        identity: str,
        password: str,
        options: QueryOptions | None = None,
    ) -> AuthResponse:
        options = options or QueryOptions()
        auth = self._http_client.send(
            f"/api/collections/{self._collection}/auth-with-password",
            method="POST",
            query=options.to_query(),
            body={"identity": identity, "password": password},
            headers=options.headers,
            result=ResultKind.MODEL,
            decoder=AuthResponse.from_dict,
        )
        self._auth_store.save(auth.token, auth.record)
        return auth

    def auth_refresh(self, options: QueryOptions | None = None) -> AuthResponse:
        options = options or QueryOptions()
        auth = self._http_client.send(
            f"/api/collections/{self._collection}/auth-refresh",
            method="POST",
            query=options.to_query(),
            headers=options.headers,
            result=ResultKind.MODEL,
            decoder=AuthResponse.from_dict,
        )
        self._auth_store.save(auth.token, auth.record)
        return auth

    def request_password_reset(self, email: str) -> bool:
        self._post_action("request-password-reset", {"email": email})
        return True

    def confirm_password_reset(self, token: str, password: str, password_confirm: str) -> bool:
        self._post_action(
            "confirm-password-reset",
            {
                "token": token,
                "password": password,
                "passwordConfirm": password_confirm,
            },
        )
        return True

    def request_verification(self, email: str) -> bool:
        self._post_action("request-verification", {"email": email})
        return True

    def confirm_verification(self, token: str) -> bool:
        self._post_action("confirm-verification", {"token": token})
        return True

    def subscribe(
        self,
        callback: RealtimeCallback,
        record_id: str = "*",
        options: QueryOptions | None = None,
    ) -> UnsubscribeFunc:
        return self._realtime.subscribe(self._topic(record_id), callback, options)

    def unsubscribe(self, record_id: str | None = None) -> None:
        if record_id is None:
            # the collection topic and every record topic, not sibling collections
            self._realtime.unsubscribe_by_prefix(f"{self._collection}?", f"{self._collection}/")
            return
        self._realtime.unsubscribe(self._topic(record_id))

    def _topic(self, record_id: str) -> str:
        if record_id == "*":
            return self._collection
        return f"{self._collection}/{record_id}"

    def _is_auth_record(self, record_id: Any) -> bool:
        current = self._auth_store.record
        if not current or not record_id or current.get("id") != record_id:
            return False
        return self._collection in (current.get("collectionId"), current.get("collectionName"))

    def _record_path(self, record_id: str) -> str:
        if not record_id.strip():
            raise ValueError("Record id is required")
        return f"{self.base_path}/{record_id.strip()}"

    def _post_action(self, action: str, body: dict[str, Any]) -> None:
        self._http_client.send(
            f"/api/collections/{self._collection}/{action}",
            method="POST",
            body=body,
            result=ResultKind.NONE,
        )
