"""Shared test fixtures for turnkeeper tests."""

import os
import uuid
from datetime import UTC, datetime, timedelta

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ANALYTICS_CACHE_BACKEND", "memory")
os.environ.setdefault("EXPIRY_SWEEP_ENABLED", "false")

from src.domains.turns.coordinator import TurnAssignmentCoordinator  # noqa: E402
from src.domains.turns.lifecycle import TurnLifecycleManager  # noqa: E402
from src.domains.turns.membership import MembershipService  # noqa: E402
from src.domains.turns.models import (  # noqa: E402
    Group,
    GroupStatus,
    MemberRole,
    Membership,
    Turn,
    TurnStatus,
)
from src.domains.turns.repository import InMemoryTurnRepository  # noqa: E402

# Wednesday, so a week back and forward stays readable
NOW = datetime(2026, 3, 18, 12, 0, tzinfo=UTC)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_group(
    member_ids: list[str],
    group_id: str = "group-1",
    strategy: str | None = "round_robin",
    strategy_config: dict | None = None,
    creator_id: str | None = None,
    status: GroupStatus = GroupStatus.ACTIVE,
    joined_at: datetime = NOW - timedelta(weeks=20),
) -> Group:
    """Group whose members take turns in list order (turn_order 1..n)."""
    settings: dict = {}
    if strategy is not None:
        settings["turn_strategy"] = strategy
    if strategy_config is not None:
        settings["strategy_config"] = strategy_config
    creator = creator_id or (member_ids[0] if member_ids else None)
    return Group(
        id=group_id,
        name=f"Group {group_id}",
        creator_id=creator,
        status=status,
        settings=settings,
        members=[
            Membership(
                user_id=user_id,
                name=user_id.title(),
                role=MemberRole.ADMIN if user_id == creator else MemberRole.MEMBER,
                turn_order=position,
                joined_at=joined_at,
            )
            for position, user_id in enumerate(member_ids, start=1)
        ],
        created_at=joined_at,
    )


def make_turn(
    user_id: str,
    started_at: datetime,
    status: TurnStatus = TurnStatus.COMPLETED,
    duration_seconds: int | None = 60,
    group_id: str = "group-1",
) -> Turn:
    ended_at = None
    if status != TurnStatus.ACTIVE and duration_seconds is not None:
        ended_at = started_at + timedelta(seconds=duration_seconds)
    return Turn(
        id=str(uuid.uuid4()),
        group_id=group_id,
        user_id=user_id,
        status=status,
        started_at=started_at,
        ended_at=ended_at,
        duration_seconds=duration_seconds if ended_at else None,
        created_at=started_at,
        updated_at=ended_at or started_at,
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def repository() -> InMemoryTurnRepository:
    return InMemoryTurnRepository()


@pytest.fixture
def coordinator(repository) -> TurnAssignmentCoordinator:
    return TurnAssignmentCoordinator(repository)


@pytest.fixture
def lifecycle(repository, coordinator, clock) -> TurnLifecycleManager:
    return TurnLifecycleManager(repository, coordinator, clock=clock)


@pytest.fixture
def membership(repository, coordinator) -> MembershipService:
    return MembershipService(repository, coordinator)


@pytest.fixture
def group(repository) -> Group:
    """Three-member round-robin group: alice (admin, creator), bob, carol."""
    return repository.save_group(make_group(["alice", "bob", "carol"]))
