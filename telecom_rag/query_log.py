"""
Per-query operation tracing.

Each query gets a QueryLog with timed steps (embedding, cache check,
retrieval, rerank, ...). The most recent logs are kept in memory, newest
first, for the /api/logs endpoints.
"""
import secrets
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from telecom_rag.logging_config import get_logger

logger = get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class OperationStep:
    name: str
    start_time: int
    end_time: int | None = None
    duration: int | None = None  # ms
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class QueryLog:
    query_id: str
    original_query: str
    start_time: int
    refined_query: str | None = None
    end_time: int | None = None
    total_duration: int | None = None  # ms
    steps: list[OperationStep] = field(default_factory=list)
    cache_hit: bool = False
    result_count: int = 0

    def start_step(self, name: str, details: dict[str, Any] | None = None) -> OperationStep:
        step = OperationStep(name=name, start_time=_now_ms(), details=dict(details or {}))
        self.steps.append(step)
        logger.debug(f"[{self.query_id}] step_start | step={name}")
        return step

    def end_step(self, step: OperationStep, details: dict[str, Any] | None = None) -> None:
        step.end_time = _now_ms()
        step.duration = step.end_time - step.start_time
        if details:
            step.details.update(details)
        logger.debug(f"[{self.query_id}] step_end | step={step.name} | duration={step.duration}ms | details={step.details}")

    @contextmanager
    def step(self, name: str, details: dict[str, Any] | None = None) -> Iterator[OperationStep]:
        """Time a block as one step; the step is closed even if the block raises."""
        current = self.start_step(name, details)
        try:
            yield current
        finally:
            self.end_step(current)

    def mark_cache_hit(self) -> None:
        self.cache_hit = True
        logger.info(f"[{self.query_id}] cache_hit")

    def set_refined_query(self, refined_query: str) -> None:
        self.refined_query = refined_query

    def finalize(self, result_count: int) -> None:
        self.end_time = _now_ms()
        self.total_duration = self.end_time - self.start_time
        self.result_count = result_count

        breakdown = ", ".join(
            f"{s.name}={s.duration if s.duration is not None else 'ongoing'}ms" for s in self.steps
        )
        logger.info(
            f"[{self.query_id}] query_complete | total={self.total_duration}ms | "
            f"cache_hit={self.cache_hit} | results={self.result_count} | steps=[{breakdown}]"
        )

    @property
    def is_complete(self) -> bool:
        return self.total_duration is not None

    def summary(self) -> dict[str, Any]:
        """Compact view returned alongside answers."""
        return {
            "query_id": self.query_id,
            "total_duration": self.total_duration or 0,
            "cache_hit": self.cache_hit,
            "steps": [{"name": s.name, "duration": s.duration or 0} for s in self.steps],
        }


def new_query_id() -> str:
    return f"q_{_now_ms()}_{secrets.token_hex(5)[:9]}"


class QueryLogStore:
    """Bounded ring buffer of recent query logs, newest first."""

    def __init__(self, capacity: int = 100):
        self._logs: deque[QueryLog] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._logs)

    def create(self, query: str) -> QueryLog:
        log = QueryLog(query_id=new_query_id(), original_query=query, start_time=_now_ms())
        # appendleft on a full deque drops the oldest (rightmost) entry
        self._logs.appendleft(log)
        logger.info(f"[{log.query_id}] query_start | query={query!r}")
        return log

    def get_recent(self, limit: int = 10) -> list[QueryLog]:
        return list(self._logs)[:max(limit, 0)]

    def get(self, query_id: str) -> QueryLog | None:
        for log in self._logs:
            if log.query_id == query_id:
                return log
        return None

    def timing_stats(self) -> dict[str, Any]:
        """Average total and per-step durations (ms) and cache hit rate over completed logs."""
        completed = [log for log in self._logs if log.is_complete]
        if not completed:
            return {"avg_total_duration": 0, "avg_step_durations": {}, "cache_hit_rate": 0.0}

        avg_total = sum(log.total_duration for log in completed) / len(completed)

        step_durations: dict[str, list[int]] = {}
        for log in completed:
            for step in log.steps:
                if step.duration is not None:
                    step_durations.setdefault(step.name, []).append(step.duration)

        hit_rate = sum(1 for log in completed if log.cache_hit) / len(completed)

        return {
            "avg_total_duration": round(avg_total),
            "avg_step_durations": {
                name: round(sum(durations) / len(durations))
                for name, durations in step_durations.items()
            },
            "cache_hit_rate": round(hit_rate, 2),
        }
