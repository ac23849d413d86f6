"""FastAPI dependencies: the service graph and the caller identity."""

from fastapi import Header, Request

from src.container import Services


def get_services(request: Request) -> Services:
    """Services built at startup and stored on ``app.state``."""
    return request.app.state.services


def get_caller_id(x_user_id: str = Header(..., alias="X-User-Id")) -> str:  # noqa: B008
    """Caller identity, verified upstream by the gateway."""
    return x_user_id
