"""Group membership operations that shape turn order."""

import uuid
from collections.abc import Mapping
from typing import Any

import structlog

from .coordinator import TurnAssignmentCoordinator
from .errors import (
    AlreadyAMember,
    GroupNotActive,
    InvalidConfiguration,
    NotAMember,
    NotAuthorized,
)
from .models import Group, GroupStatus, MemberRole, Membership, utcnow
from .repository import TurnRepository

logger = structlog.get_logger()


class MembershipService:
    """Creates groups and maintains their member lists.

    Turn order is 1-based and compacted to ``1..n`` whenever a member leaves
    or is removed, so round-robin rotation never sees gaps.
    """

    def __init__(
        self, repository: TurnRepository, coordinator: TurnAssignmentCoordinator
    ) -> None:
        self._repository = repository
        self._coordinator = coordinator

    def create_group(
        self,
        creator_id: str,
        name: str,
        settings: Mapping[str, Any] | None = None,
        creator_name: str | None = None,
    ) -> Group:
        """Create an active group with its creator as the first admin."""
        group_settings = self._validate_settings(dict(settings or {}))
        now = utcnow()
        group = Group(
            id=str(uuid.uuid4()),
            name=name,
            creator_id=creator_id,
            status=GroupStatus.ACTIVE,
            settings=group_settings,
            members=[
                Membership(
                    user_id=creator_id,
                    name=creator_name,
                    role=MemberRole.ADMIN,
                    turn_order=1,
                    joined_at=now,
                )
            ],
            created_at=now,
        )
        self._repository.save_group(group)
        logger.info("group_created", group_id=group.id, creator_id=creator_id)
        return group

    def join_group(self, group_id: str, user_id: str, name: str | None = None) -> Group:
        group = self._repository.get_group(group_id)
        if group.status != GroupStatus.ACTIVE:
            raise GroupNotActive()

        existing = group.membership(user_id)
        if existing is not None and existing.is_active:
            raise AlreadyAMember()

        next_order = max((m.turn_order for m in group.active_members()), default=0) + 1
        members = [m for m in group.members if m.user_id != user_id]
        members.append(
            Membership(user_id=user_id, name=name, turn_order=next_order, joined_at=utcnow())
        )

        updated = self._repository.update_group(group_id, {"members": members})
        logger.info("member_joined", group_id=group_id, user_id=user_id, turn_order=next_order)
        return updated

    def leave_group(self, group_id: str, user_id: str) -> Group:
        group = self._repository.get_group(group_id)
        if not group.is_member(user_id):
            raise NotAMember()
        if group.creator_id == user_id:
            raise NotAuthorized("Group creator cannot leave the group")

        updated = self._deactivate(group, user_id)
        logger.info("member_left", group_id=group_id, user_id=user_id)
        return updated

    def remove_member(self, group_id: str, admin_id: str, user_id: str) -> Group:
        group = self._repository.get_group(group_id)
        if not group.can_manage(admin_id):
            raise NotAuthorized("Not authorized to remove members")
        if not group.is_member(user_id):
            raise NotAMember()
        if group.creator_id == user_id:
            raise NotAuthorized("Group creator cannot be removed")

        updated = self._deactivate(group, user_id)
        logger.info("member_removed", group_id=group_id, user_id=user_id, admin_id=admin_id)
        return updated

    def update_member_role(
        self, group_id: str, admin_id: str, user_id: str, role: MemberRole | str
    ) -> Group:
        group = self._repository.get_group(group_id)
        if not group.can_manage(admin_id):
            raise NotAuthorized("Not authorized to change member roles")
        if not group.is_member(user_id):
            raise NotAMember()
        try:
            new_role = MemberRole(role)
        except ValueError:
            raise InvalidConfiguration(f"Unknown member role '{role}'") from None

        members = [
            m.model_copy(update={"role": new_role}) if m.user_id == user_id else m
            for m in group.members
        ]
        updated = self._repository.update_group(group_id, {"members": members})
        logger.info("member_role_updated", group_id=group_id, user_id=user_id, role=new_role)
        return updated

    def reorder_members(self, group_id: str) -> Group:
        """Compact active members' turn order to 1..n, keeping relative order."""
        group = self._repository.get_group(group_id)
        return self._repository.update_group(group_id, {"members": _compacted(group.members)})

    def update_settings(
        self, group_id: str, admin_id: str, changes: Mapping[str, Any]
    ) -> Group:
        """Merge ``changes`` into the group settings.

        ``turn_strategy`` must name a registered strategy and
        ``strategy_config`` must be valid for the resulting strategy.
        """
        group = self._repository.get_group(group_id)
        if not group.can_manage(admin_id):
            raise NotAuthorized("Not authorized to update group settings")

        merged = self._validate_settings({**group.settings, **changes})
        updated = self._repository.update_group(group_id, {"settings": merged})
        logger.info(
            "group_settings_updated",
            group_id=group_id,
            keys=sorted(changes),
            turn_strategy=merged.get("turn_strategy"),
        )
        return updated

    def archive_group(self, group_id: str, user_id: str) -> Group:
        group = self._repository.get_group(group_id)
        if group.creator_id != user_id:
            raise NotAuthorized("Only the group creator can archive the group")

        updated = self._repository.update_group(group_id, {"status": GroupStatus.ARCHIVED})
        logger.info("group_archived", group_id=group_id)
        return updated

    def _deactivate(self, group: Group, user_id: str) -> Group:
        members = [
            m.model_copy(update={"is_active": False}) if m.user_id == user_id else m
            for m in group.members
        ]
        changes: dict[str, Any] = {"members": _compacted(members)}
        if group.current_user_id == user_id:
            changes["current_user_id"] = None
        return self._repository.update_group(group.id, changes)

    def _validate_settings(self, settings: dict[str, Any]) -> dict[str, Any]:
        name = settings.get("turn_strategy")
        if name is None:
            if settings.get("strategy_config"):
                name = self._coordinator.default_strategy
            else:
                return settings

        strategy = self._coordinator.get_strategy(name)
        config = settings.get("strategy_config") or {}
        if not isinstance(config, Mapping):
            raise InvalidConfiguration("'strategy_config' must be a mapping")
        strategy.resolve_configuration(config)
        return settings


def _compacted(members: list[Membership]) -> list[Membership]:
    order = {
        m.user_id: position
        for position, m in enumerate(
            sorted(
                (m for m in members if m.is_active),
                key=lambda m: (m.turn_order, m.user_id),
            ),
            start=1,
        )
    }
    return [
        m.model_copy(update={"turn_order": order[m.user_id]}) if m.user_id in order else m
        for m in members
    ]
