"""Request-scoped helpers shared by the API routers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from eatlock.containers import AppContainer


def get_container(request: Request) -> AppContainer:
    """Return the dependency container attached to the app."""
    return request.app.state.container


async def require_user(request: Request) -> str:
    """Authenticate the bearer credential and return the user id."""
    container = get_container(request)
    return await container.auth_gate.authenticate(request.headers.get("authorization"))


def client_ip(request: Request) -> str:
    """Best-effort client address used for per-IP limits."""
    forwarded = request.headers.get("cf-connecting-ip") or request.headers.get(
        "x-forwarded-for"
    )
    if forwarded:
        return forwarded.split(",", maxsplit=1)[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
