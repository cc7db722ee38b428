"""
Disk recovery: rebuild sessions from persisted browser profiles.

Each session keeps its authentication material in ``{sessions_root}/{id}``.
After a restart, directories that look like real profiles are turned back
into live sessions through the normal lifecycle ``create`` path, so a
recovered session goes through the same state machine as a new one.
"""

import asyncio
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from wagate.logger import get_logger
from wagate.sessions.errors import InvalidSessionDataError
from wagate.sessions.lifecycle import SessionLifecycle
from wagate.sessions.store import SessionStore

logger = get_logger(__name__)

DEFAULT_RECOVERY_DELAY = 1.0

REASON_RECOVERED = "recovered"
REASON_ALREADY_ACTIVE = "already_active"
REASON_INVALID_DATA = "invalid_data"
REASON_RECOVERY_ERROR = "recovery_error"

STATUS_ACTIVE = "active"
STATUS_RECOVERABLE = "recoverable"
STATUS_INVALID = "invalid"


def is_marker_name(name: str) -> bool:
    """True for file or folder names that only a real browser profile produces."""
    return (
        "Default" in name
        or "session" in name
        or name.endswith(".json")
        or name == "SingletonLock"
    )


@dataclass
class RecoveryResult:
    session_id: str
    success: bool
    reason: str
    status: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "session_id": self.session_id,
            "success": self.success,
            "reason": self.reason,
        }
        if self.status is not None:
            data["status"] = self.status
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class RecoveryReport:
    total: int = 0
    recovered: int = 0
    skipped: int = 0
    failed: int = 0
    sessions: list[RecoveryResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "recovered": self.recovered,
            "skipped": self.skipped,
            "failed": self.failed,
            "sessions": [r.to_dict() for r in self.sessions],
        }


class DiskRecovery:
    """
    Finds persisted session directories and restores them.

    Args:
        store: Shared session registry, consulted for "already active".
        lifecycle: Used to create recovered sessions.
        sessions_root: Directory holding one folder per session.
        delay: Pause between consecutive recovery attempts, in seconds.
    """

    def __init__(
        self,
        store: SessionStore,
        lifecycle: SessionLifecycle,
        sessions_root: Path,
        delay: float = DEFAULT_RECOVERY_DELAY,
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.sessions_root = Path(sessions_root)
        self.delay = delay

    def scan(self) -> set[str]:
        """Return the names of all session directories under the root."""
        try:
            if not self.sessions_root.exists():
                self.sessions_root.mkdir(parents=True, exist_ok=True)
                logger.info(f"Created sessions directory at {self.sessions_root}")
                return set()
            return {p.name for p in self.sessions_root.iterdir() if p.is_dir()}
        except OSError as e:
            logger.error(f"Failed to scan sessions directory {self.sessions_root}: {e}")
            return set()

    def is_valid(self, session_id: str) -> bool:
        """
        True if the session directory holds recognizable profile data.

        At least one regular file (or symlink) must sit somewhere below the
        directory with a marker in its own name or in one of its parent
        folder names.
        """
        session_dir = self.sessions_root / session_id
        if not session_dir.is_dir():
            return False

        try:
            for dirpath, _dirnames, filenames in os.walk(session_dir):
                if not filenames:
                    continue
                relative = Path(dirpath).relative_to(session_dir)
                folder_marked = any(is_marker_name(part) for part in relative.parts)
                for filename in filenames:
                    path = Path(dirpath) / filename
                    # Chromium's SingletonLock is a dangling symlink.
                    if not (path.is_symlink() or path.is_file()):
                        continue
                    if folder_marked or is_marker_name(filename):
                        return True
        except OSError as e:
            logger.warning(f"[{session_id}] Failed to inspect session data: {e}")
            return False

        return False

    def needs_recovery(self, session_id: str) -> bool:
        return self.is_valid(session_id) and not self.store.contains(session_id)

    async def recover_one(self, session_id: str) -> RecoveryResult:
        """Recover a single session from disk."""
        if self.store.contains(session_id):
            logger.debug(f"[{session_id}] Already active, skipping recovery")
            return RecoveryResult(session_id, True, REASON_ALREADY_ACTIVE)

        if not self.is_valid(session_id):
            error = InvalidSessionDataError(session_id)
            logger.warning(f"[{session_id}] {error.message}")
            return RecoveryResult(session_id, False, REASON_INVALID_DATA, error=error.message)

        # A concurrent create may have landed while the disk was inspected.
        if self.store.contains(session_id):
            return RecoveryResult(session_id, True, REASON_ALREADY_ACTIVE)

        try:
            logger.info(f"[{session_id}] Recovering session from disk")
            session = await self.lifecycle.create(session_id)
        except Exception as e:
            logger.error(f"[{session_id}] Recovery failed: {e}")
            return RecoveryResult(session_id, False, REASON_RECOVERY_ERROR, error=str(e))

        return RecoveryResult(
            session_id, True, REASON_RECOVERED, status=session.status.value
        )

    async def recover_all(self) -> RecoveryReport:
        """
        Recover every directory that needs it, one at a time.

        Every scanned directory appears in the report; skipped ones carry the
        reason they were skipped.
        """
        candidates = sorted(self.scan())
        report = RecoveryReport(total=len(candidates))

        if not candidates:
            logger.info("No persisted sessions found")
            return report

        logger.info(f"Found {len(candidates)} persisted session(s), starting recovery")

        attempted = 0
        for session_id in candidates:
            if self.store.contains(session_id):
                report.skipped += 1
                report.sessions.append(
                    RecoveryResult(session_id, True, REASON_ALREADY_ACTIVE)
                )
                continue
            if not self.is_valid(session_id):
                report.skipped += 1
                report.sessions.append(
                    RecoveryResult(session_id, False, REASON_INVALID_DATA)
                )
                continue

            if attempted and self.delay > 0:
                await asyncio.sleep(self.delay)
            attempted += 1

            result = await self.recover_one(session_id)
            report.sessions.append(result)
            if result.reason == REASON_RECOVERED:
                report.recovered += 1
            elif result.success:
                report.skipped += 1
            else:
                report.failed += 1

        logger.info(
            f"Recovery finished: {report.recovered} recovered, "
            f"{report.skipped} skipped, {report.failed} failed"
        )
        return report

    def clean_invalid(self) -> int:
        """Delete invalid directories that do not back an active session."""
        removed = 0
        for session_id in sorted(self.scan()):
            if self.store.contains(session_id) or self.is_valid(session_id):
                continue
            path = self.sessions_root / session_id
            try:
                shutil.rmtree(path)
                removed += 1
                logger.info(f"[{session_id}] Removed invalid session directory")
            except OSError as e:
                logger.error(f"[{session_id}] Failed to remove {path}: {e}")
        return removed

    def stats(self) -> dict[str, Any]:
        sessions = []
        valid = invalid = active = need_recovery = 0

        for session_id in sorted(self.scan()):
            is_active = self.store.contains(session_id)
            is_valid = self.is_valid(session_id)
            if is_active:
                status = STATUS_ACTIVE
                active += 1
            elif is_valid:
                status = STATUS_RECOVERABLE
                need_recovery += 1
            else:
                status = STATUS_INVALID
            if is_valid:
                valid += 1
            else:
                invalid += 1
            sessions.append({"session_id": session_id, "status": status, "valid": is_valid})

        return {
            "total": len(sessions),
            "valid": valid,
            "invalid": invalid,
            "active": active,
            "need_recovery": need_recovery,
            "sessions": sessions,
        }
