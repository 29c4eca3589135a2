"""
Circuit Breaker for relationship risk management.

One breaker per tracked relationship. Trips when the statistical model looks
broken, so a decaying hedge is not traded on.

Rules:
- Correlation below threshold, persisting for a configured duration
- Residual explosion (|z| far beyond any plausible mispricing)
- Too many consecutive trips -> stays open until manual reset
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import structlog

from config.settings import settings
from syntharb.models.schemas import BreakerState, Opportunity

logger = structlog.get_logger()


@dataclass
class BreakerConfig:
    """Circuit breaker thresholds."""
    correlation_drop_threshold: float = 0.6
    correlation_drop_duration_seconds: float = 30.0
    cooldown_seconds: float = 300.0
    residual_explosion_multiplier: float = 6.0
    max_consecutive_rejects: int = 5

    @classmethod
    def from_settings(cls) -> "BreakerConfig":
        cfg = settings.circuit_breaker
        return cls(
            correlation_drop_threshold=cfg.correlation_drop_threshold,
            correlation_drop_duration_seconds=cfg.correlation_drop_duration_seconds,
            cooldown_seconds=cfg.cooldown_seconds,
            residual_explosion_multiplier=cfg.residual_explosion_multiplier,
            max_consecutive_rejects=cfg.max_consecutive_rejects,
        )


@dataclass
class CircuitBreakerState:
    """Current state of a relationship breaker."""
    state: BreakerState = BreakerState.CLOSED
    trip_time: Optional[float] = None
    trip_reason: str = ""
    consecutive_failures: int = 0
    trips: int = 0
    violation_started: dict = field(default_factory=dict)


class RelationshipCircuitBreaker:
    """
    Per-relationship breaker.

    CLOSED -> OPEN on a violation; OPEN -> HALF_OPEN after the cooldown; a
    clean evaluation in HALF_OPEN closes it again.
    """

    def __init__(
        self,
        relationship_key: tuple[str, str],
        config: Optional[BreakerConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.relationship_key = relationship_key
        self.config = config or BreakerConfig.from_settings()
        self._clock = clock

        self.state = CircuitBreakerState()
        self.logger = logger.bind(
            component="circuit_breaker",
            relationship="->".join(relationship_key),
        )

    @property
    def is_open(self) -> bool:
        return self.state.state == BreakerState.OPEN

    @property
    def requires_manual_reset(self) -> bool:
        return self.state.consecutive_failures >= self.config.max_consecutive_rejects

    def _check_rules(self, opportunity: Opportunity) -> list[str]:
        violations = []
        now = self._clock()

        # Correlation drop with persistence check
        if abs(opportunity.correlation) < self.config.correlation_drop_threshold:
            started = self.state.violation_started.setdefault("correlation_drop", now)
            elapsed = now - started
            if elapsed >= self.config.correlation_drop_duration_seconds:
                violations.append(
                    f"correlation_drop:{opportunity.correlation:.3f}:persisted_{elapsed:.0f}s"
                )
        else:
            self.state.violation_started.pop("correlation_drop", None)

        if abs(opportunity.mispricing) > self.config.residual_explosion_multiplier:
            violations.append(f"residual_explosion:{opportunity.mispricing:.2f}sigma")

        return violations

    def _trip(self, reasons: list[str]) -> None:
        if self.state.state != BreakerState.OPEN:
            self.state.consecutive_failures += 1

        self.state.state = BreakerState.OPEN
        self.state.trip_time = self._clock()
        self.state.trip_reason = reasons[0]
        self.state.trips += 1

        self.logger.warning(
            "Circuit breaker tripped",
            reasons=reasons,
            consecutive_failures=self.state.consecutive_failures,
        )

        if self.requires_manual_reset:
            self.logger.critical(
                "Max consecutive rejects reached - manual reset required",
                consecutive_failures=self.state.consecutive_failures,
            )

    def _record_success(self) -> None:
        # Pending violations keep their start time so persistence accumulates
        self.state.consecutive_failures = 0

    def _attempt_reset(self) -> bool:
        if self.state.trip_time is not None:
            elapsed = self._clock() - self.state.trip_time
            if elapsed < self.config.cooldown_seconds:
                return False

        if self.requires_manual_reset:
            return False

        self.state.state = BreakerState.HALF_OPEN
        self.logger.info("Circuit breaker half-open")
        return True

    def evaluate(self, opportunity: Opportunity) -> bool:
        """
        Check an opportunity against the breaker.

        Returns:
            True if trading on this relationship is allowed
        """
        if self.state.state == BreakerState.OPEN and not self._attempt_reset():
            return False

        violations = self._check_rules(opportunity)
        if violations:
            self._trip(violations)
            return False

        if self.state.state == BreakerState.HALF_OPEN:
            self.state.state = BreakerState.CLOSED
            self.logger.info("Circuit breaker closed")

        self._record_success()
        return True

    def manual_reset(self) -> None:
        """Manually reset the breaker."""
        self.state = CircuitBreakerState()
        self.logger.info("Circuit breaker manually reset")

    def get_status(self) -> dict:
        """Get current breaker status."""
        remaining_cooldown = 0.0
        if self.is_open and self.state.trip_time is not None:
            elapsed = self._clock() - self.state.trip_time
            remaining_cooldown = max(0.0, self.config.cooldown_seconds - elapsed)

        return {
            "relationship": "->".join(self.relationship_key),
            "state": self.state.state.value,
            "trip_reason": self.state.trip_reason,
            "consecutive_failures": self.state.consecutive_failures,
            "trips": self.state.trips,
            "requires_manual_reset": self.requires_manual_reset,
            "remaining_cooldown_seconds": remaining_cooldown,
        }
