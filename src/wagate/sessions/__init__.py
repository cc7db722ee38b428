"""
Session subsystem for wagate.

- store: In-memory registry of live sessions
- lifecycle: Create/send/destroy and client event translation
- recovery: Rebuild sessions from persisted browser profiles
- governor: Memory and session-count limits
- shutdown: Bounded-time drain on process termination
"""

from wagate.sessions.errors import (
    CapacityError,
    ExternalClientError,
    InvalidSessionDataError,
    OperationTimeoutError,
    SessionAlreadyExistsError,
    SessionError,
    SessionNotConnectedError,
    SessionNotFoundError,
)
from wagate.sessions.governor import ResourceGovernor, ResourceLimits
from wagate.sessions.lifecycle import QrWaitResult, SessionLifecycle
from wagate.sessions.models import MessageRecord, Session, SessionStatus
from wagate.sessions.recovery import DiskRecovery, RecoveryReport, RecoveryResult
from wagate.sessions.shutdown import DrainReport, ShutdownCoordinator
from wagate.sessions.store import SessionStore

__all__ = [
    "CapacityError",
    "DiskRecovery",
    "DrainReport",
    "ExternalClientError",
    "InvalidSessionDataError",
    "MessageRecord",
    "OperationTimeoutError",
    "QrWaitResult",
    "RecoveryReport",
    "RecoveryResult",
    "ResourceGovernor",
    "ResourceLimits",
    "Session",
    "SessionAlreadyExistsError",
    "SessionError",
    "SessionLifecycle",
    "SessionNotConnectedError",
    "SessionNotFoundError",
    "SessionStatus",
    "SessionStore",
    "ShutdownCoordinator",
]
