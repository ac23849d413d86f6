"""Turn assignment and lifecycle configuration with sensible defaults.

Strategy options arrive as loose mappings (group settings, API payloads) and
are validated into frozen dataclasses before a strategy runs, so a bad value
fails fast with ``InvalidConfiguration`` instead of surfacing as a strategy
runtime error.
"""

import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from typing import Any, Self

from .errors import InvalidConfiguration


def _check_keys(cls: type, options: Mapping[str, Any]) -> None:
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(options) - known)
    if unknown:
        raise InvalidConfiguration(
            f"Unknown option(s) for {cls.__name__}: {', '.join(unknown)}"
        )


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise InvalidConfiguration(f"'{name}' must be a boolean, got {value!r}")


def _as_non_negative(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise InvalidConfiguration(f"'{name}' must be a number, got {value!r}")
    if value < 0:
        raise InvalidConfiguration(f"'{name}' must be non-negative, got {value}")
    return float(value)


@dataclass(frozen=True)
class RandomStrategyConfig:
    """Random selection among eligible members.

    ``seed`` makes the draw reproducible for a given eligible set. It is meant
    for tests and demos, not for production fairness.
    """

    seed: int | None = None
    exclude_current_user: bool = True

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> Self:
        _check_keys(cls, options)
        seed = options.get("seed")
        if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int)):
            raise InvalidConfiguration(f"'seed' must be an integer or null, got {seed!r}")
        return cls(
            seed=seed,
            exclude_current_user=_as_bool(
                "exclude_current_user", options.get("exclude_current_user", True)
            ),
        )

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RoundRobinStrategyConfig:
    reset_on_cycle_complete: bool = True

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> Self:
        _check_keys(cls, options)
        return cls(
            reset_on_cycle_complete=_as_bool(
                "reset_on_cycle_complete", options.get("reset_on_cycle_complete", True)
            ),
        )

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class WeightedStrategyConfig:
    """Multi-factor weighting.

    The three factor weights should sum to roughly 1.0; this is not enforced
    so operators can deliberately over- or under-weight a factor.
    """

    time_weight: float = 0.4  # hours since last turn, normalized over 24h
    completion_weight: float = 0.3  # completed / (completed + skipped)
    skip_weight: float = 0.3  # 1 - skipped / (completed + skipped)
    min_hours_since_turn: float = 1.0  # below this the time factor is 0

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> Self:
        _check_keys(cls, options)
        defaults = cls()
        return cls(
            **{
                f.name: _as_non_negative(f.name, options.get(f.name, getattr(defaults, f.name)))
                for f in fields(cls)
            }
        )

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class LifecycleConfig:
    """Turn lifecycle tunables."""

    # Active turns older than this are force-expired by the periodic sweep
    expiry_hours: int = 24
    # Capacity of the per-group turn history ring buffer
    history_limit: int = 100

    def __post_init__(self) -> None:
        if self.expiry_hours <= 0:
            raise InvalidConfiguration(
                f"expiry_hours must be positive, got {self.expiry_hours}"
            )
        if self.history_limit <= 0:
            raise InvalidConfiguration(
                f"history_limit must be positive, got {self.history_limit}"
            )

    @property
    def auto_expire_note(self) -> str:
        return f"Automatically expired after {self.expiry_hours} hours"

    @classmethod
    def from_env(cls) -> "LifecycleConfig":
        """Load config with environment variable overrides (TURNS_ prefix)."""
        config = cls()

        if v := os.getenv("TURNS_EXPIRY_HOURS"):
            config.expiry_hours = int(v)
        if v := os.getenv("TURNS_HISTORY_LIMIT"):
            config.history_limit = int(v)

        config.__post_init__()
        return config


default_config = LifecycleConfig()
