"""
Logging setup and opportunity audit logs.
"""

import logging
from datetime import date
from pathlib import Path
from typing import Optional, TextIO

import numpy as np
import structlog
from structlog.processors import JSONRenderer, TimeStamper

from syntharb.models.schemas import OpportunityLog, StalePairLog


def setup_logging(
    log_level: str = "INFO",
    log_dir: str = "logs",
    json_logs: bool = True,
) -> None:
    """
    Configure structlog for the engine.

    Args:
        log_level: Minimum level name (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for opportunity logs, created if missing
        json_logs: JSON lines when True, colored console output otherwise
    """
    Path(log_dir).mkdir(parents=True, exist_ok=True)

    level = getattr(logging, log_level.upper(), logging.INFO)
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        processors += [structlog.processors.format_exc_info, JSONRenderer()]
    else:
        processors += [structlog.dev.set_exc_info, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


class OpportunityLogger:
    """
    Appends one JSON line per opportunity decision (and per dropped stale
    pair) to ``opportunities_YYYY-MM-DD.jsonl`` in ``log_dir``. A new file is
    opened when the local date changes.
    """

    def __init__(self, log_dir: str = "logs"):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.logger = structlog.get_logger("opportunity_logger")

        self._day: Optional[str] = None
        self._path: Optional[Path] = None
        self._handle: Optional[TextIO] = None
        self._records = 0

    @property
    def records(self) -> int:
        return self._records

    @property
    def current_file(self) -> Optional[Path]:
        return self._path

    def _write_line(self, line: str) -> None:
        day = date.today().isoformat()
        if day != self._day or self._handle is None:
            self.close()
            self._day = day
            self._path = self.log_dir / f"opportunities_{day}.jsonl"
            self._handle = self._path.open("a")

        self._handle.write(line + "\n")
        self._handle.flush()
        self._records += 1

    def log_opportunity(self, record: OpportunityLog) -> None:
        """Append an opportunity decision."""
        self._write_line(record.model_dump_json())

        self.logger.debug(
            "opportunity_logged",
            opportunity_id=record.opportunity_id,
            decision=record.decision,
            reason=record.rejection_reason,
        )

    def log_stale_pair(self, record: StalePairLog) -> None:
        """Append a tick pair dropped for latency skew."""
        self._write_line(record.model_dump_json())

    def close(self) -> None:
        """Close the current file, if any."""
        if self._handle is not None:
            self._handle.close()
            self._handle = None


class PerformanceTracker:
    """Decision counts, simulated PnL and per-pair processing latency."""

    def __init__(self):
        self._decisions: dict[str, int] = {}
        self._rejections: dict[str, int] = {}
        self._latencies: list[float] = []
        self._simulated_pnl = 0.0

    def record_decision(self, decision: str, reason: str = "") -> None:
        self._decisions[decision] = self._decisions.get(decision, 0) + 1
        if reason:
            self._rejections[reason] = self._rejections.get(reason, 0) + 1

    def record_pnl(self, pnl: float) -> None:
        self._simulated_pnl += pnl

    def record_latency(self, latency_ms: float) -> None:
        self._latencies.append(latency_ms)

    def get_latency_stats(self) -> dict:
        """Count, mean and 95th percentile of pair latency in ms."""
        if not self._latencies:
            return {"count": 0, "mean": 0.0, "p95": 0.0}

        data = np.asarray(self._latencies, dtype=float)
        return {
            "count": int(data.size),
            "mean": float(np.mean(data)),
            "p95": float(np.percentile(data, 95)),
        }

    def get_summary(self) -> dict:
        return {
            "decisions": dict(self._decisions),
            "rejections": dict(self._rejections),
            "simulated_pnl": self._simulated_pnl,
            "latency": self.get_latency_stats(),
        }

    def reset(self) -> None:
        self._decisions.clear()
        self._rejections.clear()
        self._latencies.clear()
        self._simulated_pnl = 0.0
