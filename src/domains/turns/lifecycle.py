"""Turn lifecycle state machine.

    active --complete--> completed
    active --skip------> skipped
    active --force-end-> expired
    active --sweep-----> expired

Turns are created ``active`` and never leave a terminal state. Every terminal
transition appends a summary to the group's bounded history and recomputes
the group's advisory next user through the assignment coordinator.
"""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from .config import LifecycleConfig, default_config
from .coordinator import TurnAssignmentCoordinator
from .errors import (
    GroupNotActive,
    NotAMember,
    NotAuthorized,
    NotTurnOwner,
    NotYourTurn,
    TurnAlreadyActive,
    TurnNotActive,
)
from .models import (
    Group,
    GroupStatus,
    Membership,
    Turn,
    TurnStatistics,
    TurnStatus,
)
from .repository import TurnRepository

logger = structlog.get_logger()


def _default_clock() -> datetime:
    return datetime.now(UTC)


class TurnLifecycleManager:
    """Enforces turn transitions and their group-level side effects."""

    def __init__(
        self,
        repository: TurnRepository,
        coordinator: TurnAssignmentCoordinator,
        config: LifecycleConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._coordinator = coordinator
        self._config = config or default_config
        self._clock = clock or _default_clock

    # --- Transitions ---

    def start_turn(self, group: Group | str, user_id: str) -> Turn:
        """Open a new active turn for ``user_id``.

        Raises:
            NotAMember: user is not an active member of the group.
            GroupNotActive: group status is not ``active``.
            TurnAlreadyActive: the group already has an active turn, including
                when a concurrent start won the race.
            NotYourTurn: the assignment strategy names another member.
        """
        group = self._load_group(group)
        now = self._clock()

        if not group.is_member(user_id):
            raise NotAMember()
        if group.status != GroupStatus.ACTIVE:
            raise GroupNotActive()
        if self._repository.find_active_turn(group.id) is not None:
            raise TurnAlreadyActive()

        # A null next user means anyone may start.
        turns = self._repository.list_group_turns(group.id)
        next_member = self._coordinator.get_next_user(group, turns, now=now)
        if next_member is not None and next_member.user_id != user_id:
            raise NotYourTurn()

        turn = self._repository.create_active_turn(
            Turn(
                id=str(uuid.uuid4()),
                group_id=group.id,
                user_id=user_id,
                status=TurnStatus.ACTIVE,
                started_at=now,
                created_at=now,
                updated_at=now,
            )
        )
        self._repository.update_group(
            group.id, {"current_user_id": user_id, "last_turn_at": now}
        )

        logger.info("turn_started", turn_id=turn.id, group_id=group.id, user_id=user_id)
        return turn

    def complete_turn(
        self,
        turn: Turn | str,
        user_id: str,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Turn:
        """Complete the caller's own active turn.

        Raises:
            NotTurnOwner: the turn belongs to someone else.
            TurnNotActive: the turn already ended.
        """
        current = self._load_turn(turn)
        if current.user_id != user_id:
            raise NotTurnOwner()
        self._require_active(current)

        changes: dict[str, Any] = {}
        if notes is not None:
            changes["notes"] = notes
        if metadata:
            changes["metadata"] = {**current.metadata, **metadata}

        finished = self._finish(current, TurnStatus.COMPLETED, changes)
        logger.info(
            "turn_completed",
            turn_id=finished.id,
            group_id=finished.group_id,
            user_id=user_id,
            duration_seconds=finished.duration_seconds,
        )
        return finished

    def skip_turn(self, turn: Turn | str, user_id: str, reason: str | None = None) -> Turn:
        """Skip the caller's own active turn, keeping ``reason`` in the notes."""
        current = self._load_turn(turn)
        if current.user_id != user_id:
            raise NotTurnOwner()
        self._require_active(current)

        changes: dict[str, Any] = {"notes": reason}
        if reason:
            changes["metadata"] = {**current.metadata, "skip_reason": reason}

        finished = self._finish(current, TurnStatus.SKIPPED, changes)
        logger.info(
            "turn_skipped",
            turn_id=finished.id,
            group_id=finished.group_id,
            user_id=user_id,
            reason=reason,
        )
        return finished

    def force_end_turn(
        self, turn: Turn | str, admin_id: str, reason: str | None = None
    ) -> Turn:
        """End any active turn in the group as an admin or the group creator.

        Raises:
            NotAuthorized: caller is neither a group admin nor its creator.
            TurnNotActive: the turn already ended.
        """
        current = self._load_turn(turn)
        group = self._repository.get_group(current.group_id)
        if not group.can_manage(admin_id):
            raise NotAuthorized("Not authorized to force end turns")
        self._require_active(current)

        changes = {
            "notes": reason,
            "metadata": {
                **current.metadata,
                "force_ended_by": admin_id,
                "original_user_id": current.user_id,
            },
        }
        finished = self._finish(current, TurnStatus.EXPIRED, changes)
        logger.info(
            "turn_force_ended",
            turn_id=finished.id,
            group_id=finished.group_id,
            admin_id=admin_id,
            original_user_id=finished.user_id,
            reason=reason,
        )
        return finished

    def expire_old_turns(self) -> int:
        """Expire every active turn older than the configured window.

        Safe to run concurrently with live requests: a turn that ends between
        the query and its transition is left alone and not counted. Running
        the sweep again without new stale turns expires nothing.
        """
        now = self._clock()
        cutoff = now - timedelta(hours=self._config.expiry_hours)
        count = 0

        for stale in self._repository.find_stale_turns(cutoff):
            changes = {
                "notes": self._config.auto_expire_note,
                "metadata": {**stale.metadata, "auto_expired": True},
            }
            try:
                finished = self._finish(stale, TurnStatus.EXPIRED, changes, now=now)
            except TurnNotActive:
                logger.debug("stale_turn_already_ended", turn_id=stale.id)
                continue
            count += 1
            logger.info(
                "turn_auto_expired",
                turn_id=finished.id,
                group_id=finished.group_id,
                user_id=finished.user_id,
            )

        logger.info("expired_turns_swept", expired_count=count, cutoff=cutoff.isoformat())
        return count

    # --- Queries ---

    def get_active_turn(self, group_id: str) -> Turn | None:
        return self._repository.find_active_turn(group_id)

    def get_next_user(self, group: Group | str) -> Membership | None:
        group = self._load_group(group)
        return self._coordinator.get_next_user(group, now=self._clock())

    def get_group_history(self, group_id: str, limit: int = 50) -> list[Turn]:
        turns = self._repository.list_group_turns(group_id)
        return sorted(turns, key=lambda t: t.started_at, reverse=True)[:limit]

    def get_user_history(self, user_id: str, limit: int = 50) -> list[Turn]:
        turns = self._repository.list_user_turns(user_id)
        return sorted(turns, key=lambda t: t.started_at, reverse=True)[:limit]

    def get_group_statistics(self, group_id: str) -> TurnStatistics:
        return _statistics(self._repository.list_group_turns(group_id))

    def get_user_statistics(self, user_id: str) -> TurnStatistics:
        return _statistics(self._repository.list_user_turns(user_id))

    # --- Internals ---

    def _load_group(self, group: Group | str) -> Group:
        group_id = group if isinstance(group, str) else group.id
        return self._repository.get_group(group_id)

    def _load_turn(self, turn: Turn | str) -> Turn:
        turn_id = turn if isinstance(turn, str) else turn.id
        return self._repository.get_turn(turn_id)

    @staticmethod
    def _require_active(turn: Turn) -> None:
        if turn.status != TurnStatus.ACTIVE:
            raise TurnNotActive()

    def _finish(
        self,
        turn: Turn,
        status: TurnStatus,
        changes: dict[str, Any],
        now: datetime | None = None,
    ) -> Turn:
        """Apply a terminal transition, then the group side effects."""
        now = now or self._clock()
        duration = max(0, int((now - turn.started_at).total_seconds()))

        finished = self._repository.transition_turn(
            turn.id,
            {
                **changes,
                "status": status,
                "ended_at": now,
                "duration_seconds": duration,
                "updated_at": now,
            },
        )
        self._advance_group(finished, now)
        return finished

    def _advance_group(self, finished: Turn, now: datetime) -> None:
        group = self._repository.get_group(finished.group_id)
        turns = self._repository.list_group_turns(group.id)
        next_member = self._coordinator.get_next_user(group, turns, now=now)

        self._repository.append_history(
            group.id,
            finished.summary(),
            capacity=self._config.history_limit,
            current_user_id=next_member.user_id if next_member else None,
        )


def _statistics(turns: list[Turn]) -> TurnStatistics:
    completed = [t for t in turns if t.status == TurnStatus.COMPLETED]
    durations = [t.duration_seconds for t in completed if t.duration_seconds is not None]
    return TurnStatistics(
        total_turns=len(turns),
        completed_turns=len(completed),
        active_turns=sum(1 for t in turns if t.status == TurnStatus.ACTIVE),
        skipped_turns=sum(1 for t in turns if t.status == TurnStatus.SKIPPED),
        expired_turns=sum(1 for t in turns if t.status == TurnStatus.EXPIRED),
        average_duration=round(sum(durations) / len(durations), 2) if durations else 0.0,
        last_turn_at=max((t.started_at for t in turns), default=None),
    )
