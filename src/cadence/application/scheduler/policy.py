"""Tunable scheduling constants, bundled as one immutable value."""

from dataclasses import dataclass, field
from datetime import timedelta

from cadence.application.config import AppConfig
from cadence.domain import constants as C


def _minutes(values: list[int]) -> tuple[timedelta, ...]:
    return tuple(timedelta(minutes=m) for m in values)


@dataclass(frozen=True)
class SchedulingPolicy:
    """
    Step sequences, graduation interval and ease-factor bounds.

    Attributes:
        learning_steps: Delays a new pair passes through before graduating.
        relearning_steps: Delays a lapsed review pair passes through before returning.
        graduate_interval_days: Interval assigned on (re)graduation to ``review``.
        default_ease_factor: Starting ease, also the backfill for legacy rows.
        min_ease_factor / max_ease_factor: Closed bounds every stored ease lies in.
        ease_factor_up: Added on a correct review.
        ease_factor_down: Subtracted on a lapse.
    """

    learning_steps: tuple[timedelta, ...] = field(
        default_factory=lambda: _minutes(C.LEARNING_STEPS_MINUTES)
    )
    relearning_steps: tuple[timedelta, ...] = field(
        default_factory=lambda: _minutes(C.RELEARNING_STEPS_MINUTES)
    )
    graduate_interval_days: int = C.GRADUATE_INTERVAL_DAYS
    default_ease_factor: float = C.DEFAULT_EASE_FACTOR
    min_ease_factor: float = C.MIN_EASE_FACTOR
    max_ease_factor: float = C.MAX_EASE_FACTOR
    ease_factor_up: float = C.EASE_FACTOR_UP
    ease_factor_down: float = C.EASE_FACTOR_DOWN

    def __post_init__(self):
        if not self.learning_steps or not self.relearning_steps:
            raise ValueError("learning and relearning step lists must be non-empty")
        if any(step <= timedelta(0) for step in (*self.learning_steps, *self.relearning_steps)):
            raise ValueError("step delays must be positive")
        if self.graduate_interval_days < 1:
            raise ValueError("graduate_interval_days must be at least 1")
        if not 0 < self.min_ease_factor <= self.max_ease_factor:
            raise ValueError("ease factor bounds must satisfy 0 < min <= max")
        if not self.min_ease_factor <= self.default_ease_factor <= self.max_ease_factor:
            raise ValueError("default_ease_factor must lie within the ease bounds")
        if self.ease_factor_up < 0 or self.ease_factor_down < 0:
            raise ValueError("ease factor deltas must be non-negative")

    @classmethod
    def from_config(cls, config: AppConfig) -> "SchedulingPolicy":
        return cls(
            learning_steps=_minutes(config.learning_steps_minutes),
            relearning_steps=_minutes(config.relearning_steps_minutes),
            graduate_interval_days=config.graduate_interval_days,
            default_ease_factor=config.default_ease_factor,
            min_ease_factor=config.min_ease_factor,
            max_ease_factor=config.max_ease_factor,
            ease_factor_up=config.ease_factor_up,
            ease_factor_down=config.ease_factor_down,
        )

    @property
    def graduate_interval(self) -> timedelta:
        return timedelta(days=self.graduate_interval_days)

    def steps_for(self, state: str) -> tuple[timedelta, ...]:
        """Step sequence of a cramming state; empty for ``review``/``new``."""
        if state == "learning":
            return self.learning_steps
        if state == "relearning":
            return self.relearning_steps
        return ()

    def clamp_ease(self, ease: float) -> float:
        return min(self.max_ease_factor, max(self.min_ease_factor, ease))
