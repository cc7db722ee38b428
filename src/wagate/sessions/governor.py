"""
Resource governor: bounds memory growth and the number of live sessions.

Runs a periodic evaluation that trims message logs and closes idle
sessions when process memory climbs, and answers admission checks for new
sessions.
"""

import asyncio
import gc
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

import psutil
from pydantic import BaseModel, Field, ValidationError, model_validator

from wagate.logger import get_logger
from wagate.sessions.errors import CapacityError
from wagate.sessions.lifecycle import SessionLifecycle
from wagate.sessions.models import utcnow
from wagate.sessions.store import SessionStore

logger = get_logger(__name__)

STATUS_NORMAL = "normal"
STATUS_WARNING = "warning"
STATUS_CRITICAL = "critical"

# Rough per-message footprint used for the memory impact estimate.
BYTES_PER_MESSAGE = 1024


class ResourceLimits(BaseModel):
    max_messages_per_session: int = Field(1000, gt=0)
    max_total_sessions: int = Field(50, gt=0)
    memory_warning_mb: float = Field(512, gt=0)
    memory_critical_mb: float = Field(1024, gt=0)
    session_timeout_hours: float = Field(24, ge=0)
    cleanup_interval_minutes: float = Field(30, gt=0)

    @model_validator(mode="after")
    def _critical_above_warning(self):
        if self.memory_critical_mb <= self.memory_warning_mb:
            raise ValueError("memory_critical_mb must be greater than memory_warning_mb")
        return self


@dataclass
class MemorySnapshot:
    rss_mb: float
    vms_mb: float
    percent: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "rss_mb": round(self.rss_mb, 2),
            "vms_mb": round(self.vms_mb, 2),
            "percent": round(self.percent, 2),
        }


@dataclass
class Evaluation:
    memory: MemorySnapshot
    session_count: int
    status: str = STATUS_NORMAL
    actions: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "memory": self.memory.to_dict(),
            "session_count": self.session_count,
            "status": self.status,
            "actions": list(self.actions),
            "timestamp": self.timestamp.isoformat(),
        }


def process_memory() -> MemorySnapshot:
    """Sample the current process memory with psutil."""
    process = psutil.Process()
    info = process.memory_info()
    return MemorySnapshot(
        rss_mb=info.rss / (1024 * 1024),
        vms_mb=info.vms / (1024 * 1024),
        percent=process.memory_percent(),
    )


class ResourceGovernor:
    """
    Periodic resource control for the session registry.

    Args:
        store: Shared session registry.
        lifecycle: Used to destroy idle sessions.
        limits: Initial limits; defaults apply when omitted.
        memory_probe: Returns a MemorySnapshot; psutil-backed by default.
    """

    def __init__(
        self,
        store: SessionStore,
        lifecycle: SessionLifecycle,
        limits: Optional[ResourceLimits] = None,
        memory_probe: Callable[[], MemorySnapshot] = process_memory,
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.limits = limits or ResourceLimits()
        self.memory_probe = memory_probe

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._last_run_at: Optional[datetime] = None
        self._last_evaluation: Optional[Evaluation] = None
        self._last_error: Optional[str] = None

    # -- Limits --------------------------------------------------------------

    async def update_limits(self, **changes: Any) -> ResourceLimits:
        """
        Merge changes into the current limits.

        The merged limits are validated as a whole before anything is
        assigned. The timer restarts when the interval changes.

        Raises:
            ValueError: Unknown field or invalid merged limits.
        """
        unknown = set(changes) - set(ResourceLimits.model_fields)
        if unknown:
            raise ValueError(f"Unknown limit(s): {', '.join(sorted(unknown))}")

        merged = {**self.limits.model_dump(), **changes}
        try:
            new_limits = ResourceLimits.model_validate(merged)
        except ValidationError as e:
            raise ValueError(str(e)) from e

        interval_changed = (
            new_limits.cleanup_interval_minutes != self.limits.cleanup_interval_minutes
        )
        self.limits = new_limits
        logger.info(f"Resource limits updated: {changes}")

        if interval_changed and self._running:
            await self.stop()
            await self.start()

        return self.limits

    # -- Measurements --------------------------------------------------------

    def memory_usage(self) -> MemorySnapshot:
        return self.memory_probe()

    # -- Actions -------------------------------------------------------------

    def trim_messages(self, session_id: str) -> int:
        """Keep only the most recent messages of one session."""
        session = self.store.get(session_id)
        if session is None:
            return 0
        excess = len(session.messages) - self.limits.max_messages_per_session
        if excess <= 0:
            return 0
        del session.messages[:excess]
        logger.debug(f"[{session_id}] Trimmed {excess} old message(s)")
        return excess

    def trim_all(self) -> int:
        removed = sum(self.trim_messages(sid) for sid in self.store.ids())
        if removed:
            logger.info(f"Trimmed {removed} message(s) across all sessions")
        return removed

    async def sweep_inactive(self) -> int:
        """Close sessions idle for longer than the timeout, keeping disk data."""
        timeout_seconds = self.limits.session_timeout_hours * 3600
        now = utcnow()
        closed = 0

        for session in self.store.sessions():
            idle = (now - session.last_activity).total_seconds()
            if idle <= timeout_seconds:
                continue
            if not self.store.is_current(session):
                continue
            logger.info(
                f"[{session.session_id}] Closing inactive session "
                f"(idle {idle / 3600:.1f}h)"
            )
            try:
                await self.lifecycle.destroy(session.session_id, preserve_disk_data=True)
                closed += 1
            except Exception as e:
                logger.error(f"[{session.session_id}] Failed to close inactive session: {e}")

        return closed

    async def evaluate(self) -> Evaluation:
        """Sample memory and apply the warning/critical policy."""
        memory = self.memory_usage()
        evaluation = Evaluation(memory=memory, session_count=self.store.count)

        if memory.rss_mb >= self.limits.memory_critical_mb:
            evaluation.status = STATUS_CRITICAL
            logger.warning(f"Memory critical: {memory.rss_mb:.1f} MB")
            trimmed = self.trim_all()
            evaluation.actions.append(f"trimmed {trimmed} message(s)")
            closed = await self.sweep_inactive()
            evaluation.actions.append(f"closed {closed} inactive session(s)")
            gc.collect()
            evaluation.actions.append("forced garbage collection")
        elif memory.rss_mb >= self.limits.memory_warning_mb:
            evaluation.status = STATUS_WARNING
            logger.info(f"Memory warning: {memory.rss_mb:.1f} MB")
            trimmed = self.trim_all()
            evaluation.actions.append(f"trimmed {trimmed} message(s)")

        if evaluation.session_count > self.limits.max_total_sessions:
            evaluation.actions.append(
                f"session count {evaluation.session_count} exceeds "
                f"limit {self.limits.max_total_sessions}"
            )
            logger.warning(
                f"Too many sessions: {evaluation.session_count}/"
                f"{self.limits.max_total_sessions}"
            )

        self._last_evaluation = evaluation
        return evaluation

    def check_admission(self) -> None:
        """
        Refuse a new session when at capacity.

        Raises:
            CapacityError: Session cap reached or memory at the critical level.
        """
        count = self.store.count
        if count >= self.limits.max_total_sessions:
            raise CapacityError(
                "Session limit reached",
                reason="max_sessions",
                current=count,
                limit=self.limits.max_total_sessions,
            )

        memory = self.memory_usage()
        if memory.rss_mb >= self.limits.memory_critical_mb:
            raise CapacityError(
                "Memory usage is critical",
                reason="memory",
                current=f"{memory.rss_mb:.1f}MB",
                limit=f"{self.limits.memory_critical_mb:g}MB",
            )

    # -- Reporting -----------------------------------------------------------

    def detailed_stats(self) -> dict[str, Any]:
        memory = self.memory_usage()
        sessions = []
        total_messages = 0
        for session in self.store.sessions():
            count = len(session.messages)
            total_messages += count
            sessions.append(
                {
                    "session_id": session.session_id,
                    "status": session.status.value,
                    "message_count": count,
                    "memory_impact_kb": round(count * BYTES_PER_MESSAGE / 1024, 1),
                    "last_activity": session.last_activity.isoformat(),
                }
            )

        return {
            "memory": memory.to_dict(),
            "session_count": self.store.count,
            "total_messages": total_messages,
            "sessions": sessions,
            "limits": self.limits.model_dump(),
            "recommendations": self._recommendations(memory, total_messages),
        }

    def _recommendations(self, memory: MemorySnapshot, total_messages: int) -> list[str]:
        recommendations = []
        if memory.rss_mb >= self.limits.memory_critical_mb:
            recommendations.append("Memory is critical: restart the server or close sessions")
        elif memory.rss_mb >= self.limits.memory_warning_mb:
            recommendations.append("Memory is high: consider closing inactive sessions")

        if self.store.count >= self.limits.max_total_sessions * 0.8:
            recommendations.append("Approaching the session limit")

        if total_messages > self.limits.max_messages_per_session * max(self.store.count, 1) * 0.8:
            recommendations.append("Message logs are large: consider trimming")

        if not recommendations:
            recommendations.append("System is operating normally")
        return recommendations

    # -- Timer ---------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            f"ResourceGovernor started (every {self.limits.cleanup_interval_minutes:g}m)"
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("ResourceGovernor stopped.")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.limits.cleanup_interval_minutes * 60)
            except asyncio.CancelledError:
                break

            try:
                await self._tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Resource check failed: {e}")
                self._last_error = str(e)

    async def _tick(self) -> Evaluation:
        self._last_run_at = utcnow()
        evaluation = await self.evaluate()
        self._last_error = None
        if evaluation.actions:
            logger.info(f"Resource check ({evaluation.status}): {evaluation.actions}")
        return evaluation

    async def trigger_now(self) -> Evaluation:
        """Run one evaluation immediately."""
        return await self._tick()

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "interval_minutes": self.limits.cleanup_interval_minutes,
            "last_run_at": self._last_run_at.isoformat() if self._last_run_at else None,
            "last_evaluation": (
                self._last_evaluation.to_dict() if self._last_evaluation else None
            ),
            "last_error": self._last_error,
        }
