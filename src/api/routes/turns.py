"""Turn lifecycle endpoints."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from src.api.dependencies import get_caller_id, get_services
from src.container import Services
from src.domains.turns.models import Turn, TurnStatistics

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1", tags=["turns"])


# --- Request Models ---


class CompleteTurnRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=1000)
    metadata: dict[str, Any] | None = None


class SkipTurnRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class ForceEndTurnRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


# --- Endpoints ---


@router.post("/groups/{group_id}/turns", status_code=201)
def start_turn(
    group_id: str,
    caller_id: str = Depends(get_caller_id),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> Turn:
    """Start a turn for the caller in the group."""
    return services.lifecycle.start_turn(group_id, caller_id)


@router.post("/turns/{turn_id}/complete")
def complete_turn(
    turn_id: str,
    request: CompleteTurnRequest | None = None,
    caller_id: str = Depends(get_caller_id),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> Turn:
    request = request or CompleteTurnRequest()
    return services.lifecycle.complete_turn(
        turn_id, caller_id, notes=request.notes, metadata=request.metadata
    )


@router.post("/turns/{turn_id}/skip")
def skip_turn(
    turn_id: str,
    request: SkipTurnRequest | None = None,
    caller_id: str = Depends(get_caller_id),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> Turn:
    reason = request.reason if request else None
    return services.lifecycle.skip_turn(turn_id, caller_id, reason=reason)


@router.post("/turns/{turn_id}/force-end")
def force_end_turn(
    turn_id: str,
    request: ForceEndTurnRequest | None = None,
    caller_id: str = Depends(get_caller_id),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> Turn:
    """End another member's active turn (group admins and the creator)."""
    reason = request.reason if request else None
    return services.lifecycle.force_end_turn(turn_id, caller_id, reason=reason)


@router.get("/turns/{turn_id}")
def get_turn(turn_id: str, services: Services = Depends(get_services)) -> Turn:  # noqa: B008
    return services.repository.get_turn(turn_id)


@router.get("/groups/{group_id}/turns/active")
def get_active_turn(
    group_id: str,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    services.repository.get_group(group_id)
    turn = services.lifecycle.get_active_turn(group_id)
    return {"group_id": group_id, "active_turn": turn.model_dump(mode="json") if turn else None}


@router.get("/groups/{group_id}/turns/history")
def get_group_history(
    group_id: str,
    limit: int = Query(default=50, ge=1, le=100),
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    services.repository.get_group(group_id)
    turns = services.lifecycle.get_group_history(group_id, limit=limit)
    return {
        "group_id": group_id,
        "turns": [t.model_dump(mode="json") for t in turns],
        "count": len(turns),
    }


@router.get("/groups/{group_id}/turns/statistics")
def get_group_statistics(
    group_id: str,
    services: Services = Depends(get_services),  # noqa: B008
) -> TurnStatistics:
    services.repository.get_group(group_id)
    return services.lifecycle.get_group_statistics(group_id)


@router.get("/groups/{group_id}/next-user")
def get_next_user(
    group_id: str,
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    """Who the group's strategy would pick right now."""
    group = services.repository.get_group(group_id)
    member = services.lifecycle.get_next_user(group)
    return {
        "group_id": group_id,
        "strategy": group.preferred_strategy or services.coordinator.default_strategy,
        "next_user": member.model_dump(mode="json") if member else None,
    }


@router.get("/users/{user_id}/turns")
def get_user_history(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=100),
    services: Services = Depends(get_services),  # noqa: B008
) -> dict:
    turns = services.lifecycle.get_user_history(user_id, limit=limit)
    return {
        "user_id": user_id,
        "turns": [t.model_dump(mode="json") for t in turns],
        "statistics": services.lifecycle.get_user_statistics(user_id).model_dump(mode="json"),
    }


@router.get("/strategies")
def list_strategies(services: Services = Depends(get_services)) -> dict:  # noqa: B008
    return {
        "default": services.coordinator.default_strategy,
        "strategies": services.coordinator.available_strategies(),
    }
