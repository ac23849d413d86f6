"""SQL-backed ``TurnRepository``.

The one-active-turn-per-group invariant lives in the schema as a partial
unique index, so two concurrent ``create_active_turn`` calls cannot both
commit. Turn transitions are a single conditional ``UPDATE`` guarded by
``status = 'active'``.
"""

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import Select, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from src.db.database import session_scope
from src.db.models import GroupRecord, MembershipRecord, TurnRecord
from src.domains.turns.errors import (
    GroupNotFound,
    TurnAlreadyActive,
    TurnNotActive,
    TurnNotFound,
)
from src.domains.turns.history import TurnHistory
from src.domains.turns.models import (
    Group,
    GroupStatus,
    MemberRole,
    Membership,
    Turn,
    TurnStatus,
    TurnSummary,
    utcnow,
)

logger = structlog.get_logger()

# Turn fields whose model name differs from the mapped attribute
_TURN_COLUMNS = {
    "status": TurnRecord.status,
    "ended_at": TurnRecord.ended_at,
    "duration_seconds": TurnRecord.duration_seconds,
    "notes": TurnRecord.notes,
    "metadata": TurnRecord.turn_metadata,
    "updated_at": TurnRecord.updated_at,
    "started_at": TurnRecord.started_at,
}


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; every stored timestamp is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _to_turn(record: TurnRecord) -> Turn:
    return Turn(
        id=record.id,
        group_id=record.group_id,
        user_id=record.user_id,
        status=TurnStatus(record.status),
        started_at=_aware(record.started_at),
        ended_at=_aware(record.ended_at),
        duration_seconds=record.duration_seconds,
        notes=record.notes,
        metadata=dict(record.turn_metadata or {}),
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
    )


def _to_membership(record: MembershipRecord) -> Membership:
    return Membership(
        user_id=record.user_id,
        name=record.name,
        role=MemberRole(record.role),
        is_active=record.is_active,
        turn_order=record.turn_order,
        joined_at=_aware(record.joined_at),
    )


def _to_group(record: GroupRecord) -> Group:
    return Group(
        id=record.id,
        name=record.name,
        creator_id=record.creator_id,
        status=GroupStatus(record.status),
        members=[_to_membership(m) for m in record.members],
        settings=dict(record.settings or {}),
        current_user_id=record.current_user_id,
        last_turn_at=_aware(record.last_turn_at),
        turn_history=[TurnSummary.model_validate(e) for e in record.turn_history or []],
        created_at=_aware(record.created_at),
    )


def _sync_members(record: GroupRecord, members: list[Membership]) -> None:
    """Update membership rows in place so existing primary keys are reused."""
    existing = {m.user_id: m for m in record.members}
    synced = []
    for member in members:
        row = existing.get(member.user_id)
        if row is None:
            row = MembershipRecord(group_id=record.id, user_id=member.user_id)
        row.name = member.name
        row.role = str(member.role)
        row.is_active = member.is_active
        row.turn_order = member.turn_order
        row.joined_at = member.joined_at
        synced.append(row)
    record.members = synced


def _json_value(value: Any) -> Any:
    if isinstance(value, list):
        return [v.model_dump(mode="json") if hasattr(v, "model_dump") else v for v in value]
    return value


def _apply_group_changes(record: GroupRecord, changes: dict[str, Any]) -> None:
    for field, value in changes.items():
        if field == "members":
            _sync_members(record, value)
        elif field == "turn_history":
            record.turn_history = _json_value(value)
        elif field == "status":
            record.status = str(value)
        elif field in {"name", "creator_id", "settings", "current_user_id", "last_turn_at"}:
            setattr(record, field, value)
        else:
            raise ValueError(f"Unknown group field '{field}'")


def _filtered(
    query: Select,
    statuses: Iterable[TurnStatus] | None,
    start: datetime | None,
    end: datetime | None,
) -> Select:
    if statuses is not None:
        query = query.where(TurnRecord.status.in_([str(s) for s in statuses]))
    if start is not None:
        query = query.where(TurnRecord.started_at >= start)
    if end is not None:
        query = query.where(TurnRecord.started_at <= end)
    return query.order_by(TurnRecord.started_at, TurnRecord.id)


class SqlTurnRepository:
    """``TurnRepository`` over a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    # --- Groups ---

    def get_group(self, group_id: str) -> Group:
        with session_scope(self._session_factory) as session:
            record = session.get(GroupRecord, group_id)
            if record is None:
                raise GroupNotFound(group_id)
            return _to_group(record)

    def save_group(self, group: Group) -> Group:
        with session_scope(self._session_factory) as session:
            record = session.get(GroupRecord, group.id)
            if record is None:
                record = GroupRecord(id=group.id, created_at=group.created_at)
                session.add(record)
            _apply_group_changes(
                record,
                {
                    "name": group.name,
                    "creator_id": group.creator_id,
                    "status": group.status,
                    "settings": dict(group.settings),
                    "current_user_id": group.current_user_id,
                    "last_turn_at": group.last_turn_at,
                    "turn_history": group.turn_history,
                    "members": group.members,
                },
            )
        return group

    def update_group(self, group_id: str, changes: dict[str, Any]) -> Group:
        with session_scope(self._session_factory) as session:
            record = session.get(GroupRecord, group_id, with_for_update=True)
            if record is None:
                raise GroupNotFound(group_id)
            _apply_group_changes(record, changes)
            session.flush()
            return _to_group(record)

    def append_history(
        self, group_id: str, entry: TurnSummary, capacity: int, current_user_id: str | None
    ) -> Group:
        """Append ``entry`` to the group history while holding the group row lock."""
        with session_scope(self._session_factory) as session:
            record = session.get(GroupRecord, group_id, with_for_update=True)
            if record is None:
                raise GroupNotFound(group_id)
            history = TurnHistory(
                (TurnSummary.model_validate(e) for e in record.turn_history or []),
                capacity=capacity,
            )
            history.append(entry)
            record.turn_history = _json_value(history.entries())
            record.current_user_id = current_user_id
            session.flush()
            return _to_group(record)

    # --- Turns ---

    def get_turn(self, turn_id: str) -> Turn:
        with session_scope(self._session_factory) as session:
            record = session.get(TurnRecord, turn_id)
            if record is None:
                raise TurnNotFound(turn_id)
            return _to_turn(record)

    def find_active_turn(self, group_id: str) -> Turn | None:
        with session_scope(self._session_factory) as session:
            record = session.scalars(
                select(TurnRecord).where(
                    TurnRecord.group_id == group_id,
                    TurnRecord.status == TurnStatus.ACTIVE.value,
                )
            ).first()
            return _to_turn(record) if record is not None else None

    def create_active_turn(self, turn: Turn) -> Turn:
        """Insert ``turn`` as active; the unique index rejects a second one."""
        try:
            with session_scope(self._session_factory) as session:
                if session.get(GroupRecord, turn.group_id) is None:
                    raise GroupNotFound(turn.group_id)
                record = TurnRecord(
                    id=turn.id,
                    group_id=turn.group_id,
                    user_id=turn.user_id,
                    status=TurnStatus.ACTIVE.value,
                    started_at=turn.started_at,
                    ended_at=None,
                    duration_seconds=None,
                    notes=turn.notes,
                    turn_metadata=dict(turn.metadata),
                    created_at=turn.created_at,
                    updated_at=turn.updated_at,
                )
                session.add(record)
                session.flush()
                return _to_turn(record)
        except IntegrityError:
            logger.info("active_turn_insert_rejected", group_id=turn.group_id, user_id=turn.user_id)
            raise TurnAlreadyActive() from None

    def transition_turn(self, turn_id: str, changes: dict[str, Any]) -> Turn:
        values = {"updated_at": utcnow(), **changes}
        unknown = set(values) - set(_TURN_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown turn field(s): {', '.join(sorted(unknown))}")

        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(TurnRecord)
                .where(TurnRecord.id == turn_id, TurnRecord.status == TurnStatus.ACTIVE.value)
                .values(
                    {
                        _TURN_COLUMNS[k]: str(v) if k == "status" else v
                        for k, v in values.items()
                    }
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                if session.get(TurnRecord, turn_id) is None:
                    raise TurnNotFound(turn_id)
                raise TurnNotActive()

            record = session.get(TurnRecord, turn_id, populate_existing=True)
            return _to_turn(record)

    def list_group_turns(
        self,
        group_id: str,
        statuses: Iterable[TurnStatus] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Turn]:
        query = _filtered(
            select(TurnRecord).where(TurnRecord.group_id == group_id), statuses, start, end
        )
        with session_scope(self._session_factory) as session:
            return [_to_turn(r) for r in session.scalars(query)]

    def list_user_turns(
        self,
        user_id: str,
        statuses: Iterable[TurnStatus] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Turn]:
        query = _filtered(
            select(TurnRecord).where(TurnRecord.user_id == user_id), statuses, start, end
        )
        with session_scope(self._session_factory) as session:
            return [_to_turn(r) for r in session.scalars(query)]

    def find_stale_turns(self, cutoff: datetime) -> list[Turn]:
        query = (
            select(TurnRecord)
            .where(
                TurnRecord.status == TurnStatus.ACTIVE.value,
                TurnRecord.started_at < cutoff,
            )
            .order_by(TurnRecord.started_at, TurnRecord.id)
        )
        with session_scope(self._session_factory) as session:
            return [_to_turn(r) for r in session.scalars(query)]
