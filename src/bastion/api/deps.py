"""FastAPI dependencies for the defence endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from bastion.api.ratelimit import SlidingWindowRateLimiter
from bastion.core.calls import DefenceCallManager


def get_manager(request: Request) -> DefenceCallManager:
    """The call manager from app state; 503 until the chat gateway is up."""
    manager = getattr(request.app.state, "defence_manager", None)
    if manager is None:
        raise HTTPException(
            status_code=503,
            detail="Defence calls are unavailable: the chat gateway is not connected.",
        )
    return manager


def enforce_rate_limit(request: Request) -> None:
    limiter: SlidingWindowRateLimiter = request.app.state.rate_limiter
    client = request.client.host if request.client else "unknown"
    if not limiter.hit(client):
        raise HTTPException(
            status_code=429,
            detail="⏳ Too many requests. Please wait a minute before trying again.",
        )


ManagerDep = Annotated[DefenceCallManager, Depends(get_manager)]
