"""
Session status machine and the single-writer guard.

    initial -> planning_complete -> orchestrating -> coding_complete
                                         ^                 |
                                         +-----------------+

planning_complete can be re-entered from a resting state when the plan is
re-initialized. Nothing else is legal.

A session stays `orchestrating` while a cycle runs. Another worker may only
take it over once the cycle lease (time since the interim save) has run out.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Iterator, Optional, Set

from data_class import Session, SessionStatus
from errors import IllegalTransitionError, SessionBusyError

logger = logging.getLogger(__name__)

S = SessionStatus

TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    S.INITIAL: frozenset({S.PLANNING_COMPLETE}),
    S.PLANNING_COMPLETE: frozenset({S.ORCHESTRATING, S.PLANNING_COMPLETE}),
    S.ORCHESTRATING: frozenset({S.CODING_COMPLETE}),
    S.CODING_COMPLETE: frozenset({S.ORCHESTRATING, S.PLANNING_COMPLETE}),
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in TRANSITIONS[current]


def transition(session: Session, target: SessionStatus, *, recovering: bool = False) -> Session:
    """
    Return `session` moved to `target`, or raise IllegalTransitionError.

    `recovering` allows orchestrating -> orchestrating for a session whose
    previous cycle aborted after the orchestration step; the caller must hold
    the session's lock and have checked the cycle lease.
    """
    current = session.status
    if can_transition(current, target):
        return session.with_changes(status=target)
    if recovering and current is S.ORCHESTRATING and target is S.ORCHESTRATING:
        logger.warning("Session %s was left orchestrating by an aborted cycle; resuming", session.id)
        return session
    raise IllegalTransitionError(f"Cannot move session {session.id} from {current.value} to {target.value}")


def ensure_cycle_allowed(session: Session) -> None:
    if session.status is S.INITIAL or session.plan is None:
        raise IllegalTransitionError(
            f"Session {session.id} has no game plan yet; create a plan before requesting code",
        )


class SessionLocks:
    """
    In-process guard for the at-most-one-writer-per-session rule. A second
    cycle for a busy session is rejected, not queued.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._held: Set[str] = set()

    def is_held(self, session_id: str) -> bool:
        with self._guard:
            return session_id in self._held

    @contextmanager
    def hold(self, session_id: str) -> Iterator[None]:
        with self._guard:
            if session_id in self._held:
                raise SessionBusyError(f"Session {session_id} already has a change in progress")
            self._held.add(session_id)
        try:
            yield
        finally:
            with self._guard:
                self._held.discard(session_id)


def _parse_timestamp(value: str) -> Optional[datetime]:
    try:
        stamp = datetime.fromisoformat(value)
    except ValueError:
        logger.warning("Unreadable updated_at %r; treating the cycle lease as expired", value)
        return None
    return stamp if stamp.tzinfo else stamp.replace(tzinfo=timezone.utc)


def lease_expired(session: Session, now: datetime, lease_seconds: float) -> bool:
    """
    True when an `orchestrating` session was last written more than
    `lease_seconds` ago, i.e. the cycle that set it is no longer running.
    Sessions without a timestamp count as expired.
    """
    stamp = _parse_timestamp(session.updated_at) if session.updated_at else None
    if stamp is None:
        return True
    return (now - stamp).total_seconds() > lease_seconds


def ensure_not_in_flight(session: Session, now: datetime, lease_seconds: float) -> None:
    """Reject a cycle while another worker's cycle still holds the session."""
    if session.status is S.ORCHESTRATING and not lease_expired(session, now, lease_seconds):
        raise SessionBusyError(f"Session {session.id} already has a change in progress")
