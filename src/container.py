"""Wiring of repositories, strategies and services from settings."""

from dataclasses import dataclass

from src.config import Settings, settings
from src.domains.analytics.config import AnalyticsConfig
from src.domains.analytics.service import TurnAnalyticsService
from src.domains.turns.config import LifecycleConfig
from src.domains.turns.coordinator import TurnAssignmentCoordinator
from src.domains.turns.lifecycle import TurnLifecycleManager
from src.domains.turns.membership import MembershipService
from src.domains.turns.repository import TurnRepository
from src.shared.cache import AnalyticsCache, get_cache


@dataclass
class Services:
    repository: TurnRepository
    coordinator: TurnAssignmentCoordinator
    lifecycle: TurnLifecycleManager
    membership: MembershipService
    analytics: TurnAnalyticsService


def build_services(
    repository: TurnRepository | None = None,
    cache: AnalyticsCache | None = None,
    config: Settings = settings,
) -> Services:
    """Assemble the service graph. Defaults to the SQL repository."""
    if repository is None:
        from src.db.database import get_session_factory
        from src.db.repository import SqlTurnRepository

        repository = SqlTurnRepository(get_session_factory())
    if cache is None:
        cache = get_cache(config.analytics_cache_backend, config.redis_url)

    coordinator = TurnAssignmentCoordinator(repository, default_strategy=config.default_turn_strategy)
    lifecycle = TurnLifecycleManager(
        repository,
        coordinator,
        LifecycleConfig(
            expiry_hours=config.turn_expiry_hours,
            history_limit=config.turn_history_limit,
        ),
    )
    return Services(
        repository=repository,
        coordinator=coordinator,
        lifecycle=lifecycle,
        membership=MembershipService(repository, coordinator),
        analytics=TurnAnalyticsService(repository, cache, AnalyticsConfig.from_env()),
    )
