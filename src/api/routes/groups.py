"""Group and membership endpoints."""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from src.api.dependencies import get_caller_id, get_services
from src.container import Services
from src.domains.turns.models import Group, MemberRole

router = APIRouter(prefix="/api/v1/groups", tags=["groups"])


class CreateGroupRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    settings: dict[str, Any] = Field(default_factory=dict)
    creator_name: str | None = None


class JoinGroupRequest(BaseModel):
    name: str | None = None


class UpdateMemberRoleRequest(BaseModel):
    role: MemberRole


class UpdateSettingsRequest(BaseModel):
    settings: dict[str, Any]


@router.post("", status_code=201)
def create_group(
    request: CreateGroupRequest,
    caller_id: str = Depends(get_caller_id),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> Group:
    return services.membership.create_group(
        caller_id, request.name, request.settings, creator_name=request.creator_name
    )


@router.get("/{group_id}")
def get_group(group_id: str, services: Services = Depends(get_services)) -> Group:  # noqa: B008
    return services.repository.get_group(group_id)


@router.post("/{group_id}/members")
def join_group(
    group_id: str,
    request: JoinGroupRequest | None = None,
    caller_id: str = Depends(get_caller_id),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> Group:
    name = request.name if request else None
    return services.membership.join_group(group_id, caller_id, name=name)


@router.delete("/{group_id}/members/me")
def leave_group(
    group_id: str,
    caller_id: str = Depends(get_caller_id),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> Group:
    return services.membership.leave_group(group_id, caller_id)


@router.delete("/{group_id}/members/{user_id}")
def remove_member(
    group_id: str,
    user_id: str,
    caller_id: str = Depends(get_caller_id),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> Group:
    return services.membership.remove_member(group_id, caller_id, user_id)


@router.patch("/{group_id}/members/{user_id}/role")
def update_member_role(
    group_id: str,
    user_id: str,
    request: UpdateMemberRoleRequest,
    caller_id: str = Depends(get_caller_id),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> Group:
    return services.membership.update_member_role(group_id, caller_id, user_id, request.role)


@router.patch("/{group_id}/settings")
def update_settings(
    group_id: str,
    request: UpdateSettingsRequest,
    caller_id: str = Depends(get_caller_id),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> Group:
    return services.membership.update_settings(group_id, caller_id, request.settings)


@router.post("/{group_id}/archive")
def archive_group(
    group_id: str,
    caller_id: str = Depends(get_caller_id),  # noqa: B008
    services: Services = Depends(get_services),  # noqa: B008
) -> Group:
    return services.membership.archive_group(group_id, caller_id)
