from __future__ import annotations

from contextvars import ContextVar

import structlog

actor_id_ctx: ContextVar[str | None] = ContextVar("actor_id", default=None)
actor_kind_ctx: ContextVar[str | None] = ContextVar("actor_kind", default=None)
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


def set_request_context(actor_id: str | None, actor_kind: str | None) -> None:
    actor_id_ctx.set(actor_id)
    actor_kind_ctx.set(actor_kind)
    structlog.contextvars.bind_contextvars(actor_id=actor_id, actor_kind=actor_kind)


def set_request_id(request_id: str | None) -> None:
    request_id_ctx.set(request_id)
    structlog.contextvars.bind_contextvars(request_id=request_id)


def get_actor_id() -> str | None:
    return actor_id_ctx.get()


def get_actor_kind() -> str | None:
    return actor_kind_ctx.get()


def get_request_id() -> str | None:
    return request_id_ctx.get()
