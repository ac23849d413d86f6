"""Pydantic models for groups, memberships and turns."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

# --- Enums ---


class GroupStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class MemberRole(StrEnum):
    ADMIN = "admin"
    MEMBER = "member"


class TurnStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    EXPIRED = "expired"


# No transition leaves one of these.
TERMINAL_STATUSES = frozenset({TurnStatus.COMPLETED, TurnStatus.SKIPPED, TurnStatus.EXPIRED})

# Statuses that count as a member's turn history for assignment and analytics.
HISTORY_STATUSES = frozenset({TurnStatus.COMPLETED, TurnStatus.SKIPPED})


def utcnow() -> datetime:
    return datetime.now(UTC)


# --- Group & membership ---


class Membership(BaseModel):
    user_id: str
    name: str | None = None
    role: MemberRole = MemberRole.MEMBER
    is_active: bool = True
    turn_order: int = 0
    joined_at: datetime = Field(default_factory=utcnow)


class TurnSummary(BaseModel):
    """Compact turn entry kept in a group's bounded turn history."""

    turn_id: str
    user_id: str
    started_at: datetime
    ended_at: datetime | None = None
    status: TurnStatus
    duration_seconds: int | None = None


class Group(BaseModel):
    id: str
    name: str = ""
    creator_id: str | None = None
    status: GroupStatus = GroupStatus.ACTIVE
    members: list[Membership] = Field(default_factory=list)
    settings: dict[str, Any] = Field(default_factory=dict)
    # Advisory: who should act next. Recomputed after every terminal transition.
    current_user_id: str | None = None
    last_turn_at: datetime | None = None
    turn_history: list[TurnSummary] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    def active_members(self) -> list[Membership]:
        """Active memberships in turn order, ties broken by user id."""
        return sorted(
            (m for m in self.members if m.is_active),
            key=lambda m: (m.turn_order, m.user_id),
        )

    def membership(self, user_id: str) -> Membership | None:
        for member in self.members:
            if member.user_id == user_id:
                return member
        return None

    def is_member(self, user_id: str) -> bool:
        member = self.membership(user_id)
        return member is not None and member.is_active

    def is_admin(self, user_id: str) -> bool:
        member = self.membership(user_id)
        return member is not None and member.is_active and member.role == MemberRole.ADMIN

    def can_manage(self, user_id: str) -> bool:
        return self.is_admin(user_id) or (
            self.creator_id is not None and self.creator_id == user_id
        )

    @property
    def max_turn_order(self) -> int:
        return max((m.turn_order for m in self.members), default=0)

    @property
    def preferred_strategy(self) -> str | None:
        return self.settings.get("turn_strategy")

    @property
    def strategy_config(self) -> dict[str, Any]:
        return dict(self.settings.get("strategy_config") or {})


# --- Turns ---


class Turn(BaseModel):
    id: str
    group_id: str
    user_id: str
    status: TurnStatus = TurnStatus.ACTIVE
    started_at: datetime
    ended_at: datetime | None = None
    duration_seconds: int | None = None
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == TurnStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def elapsed_seconds(self) -> float | None:
        """Wall-clock length of a finished turn, None while it is still open."""
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def summary(self) -> TurnSummary:
        return TurnSummary(
            turn_id=self.id,
            user_id=self.user_id,
            started_at=self.started_at,
            ended_at=self.ended_at,
            status=self.status,
            duration_seconds=self.duration_seconds,
        )


# --- Statistics ---


class TurnStatistics(BaseModel):
    total_turns: int = 0
    completed_turns: int = 0
    active_turns: int = 0
    skipped_turns: int = 0
    expired_turns: int = 0
    average_duration: float = 0.0
    last_turn_at: datetime | None = None
