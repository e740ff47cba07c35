from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class ErrorResponse:
    code: int = 0
    message: str = ""
    data: dict[str, Any] | None = None

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "ErrorResponse":
        data = payload.get("data")
        return ErrorResponse(
            code=int(payload.get("code") or 0),
            message=str(payload.get("message") or ""),
            data=data if isinstance(data, dict) else None,
        )


@dataclass(frozen=True)
class ListResult:
    page: int
    per_page: int
    total_items: int
    total_pages: int
    items: list[dict[str, Any]]

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "ListResult":
        items = payload.get("items")
        return ListResult(
            page=int(payload.get("page", 1)),
            per_page=int(payload.get("perPage", 0)),
            total_items=int(payload.get("totalItems", 0)),
            total_pages=int(payload.get("totalPages", 0)),
            items=list(items) if isinstance(items, list) else [],
        )


@dataclass(frozen=True)
class AuthResponse:
    token: str
    record: dict[str, Any]
    meta: dict[str, Any] | None = None

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "AuthResponse":
        token = str(payload.get("token", "")).strip()
        record = payload.get("record")
        if not token or not isinstance(record, dict):
            raise ValueError("Auth response must contain a token and a record")

        meta = payload.get("meta")
        return AuthResponse(
            token=token,
            record=record,
            meta=meta if isinstance(meta, dict) else None,
        )


@dataclass(frozen=True)
class QueryOptions:
    filter: str | None = None
    sort: str | None = None
    expand: str | None = None
    fields: str | None = None
    page: int | None = None
    per_page: int | None = None
    skip_total: bool | None = None
    query: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)

    def to_query(self) -> dict[str, Any]:
        params: dict[str, Any] = dict(self.query)
        if self.filter is not None:
            params["filter"] = self.filter
        if self.sort is not None:
            params["sort"] = self.sort
        if self.expand is not None:
            params["expand"] = self.expand
        if self.fields is not None:
            params["fields"] = self.fields
        if self.page is not None:
            params["page"] = self.page
        if self.per_page is not None:
            params["perPage"] = self.per_page
        if self.skip_total:
            params["skipTotal"] = 1
        return params


class RealtimeAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class RealtimeEvent:
    action: RealtimeAction
    record: dict[str, Any]

    @staticmethod
    def from_payload(topic: str, payload: Any) -> "RealtimeEvent":
        """Decode an SSE data payload delivered under ``topic``.

        PocketBase wraps records as ``{"action": ..., "record": {...}}``. A
        payload without that envelope is treated as the record itself and
        the action is taken from the topic name.
        """
        if not isinstance(payload, dict):
            raise ValueError(f"Realtime payload for {topic!r} is not a JSON object")

        if "action" in payload:
            action = RealtimeAction(str(payload["action"]))
            record = payload.get("record")
            if not isinstance(record, dict):
                raise ValueError(f"Realtime payload for {topic!r} has no record")
            return RealtimeEvent(action=action, record=record)

        return RealtimeEvent(action=RealtimeAction(topic), record=payload)
