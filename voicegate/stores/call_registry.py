"""Call registry: the single writer for call session state.

Every bridged leg, status webhook and response pipeline reads and mutates
call state through this registry. Sessions are keyed by the telephony
call id and hold the stream id, the resolved agent, the lifecycle status
and a bounded conversation log.

All methods are synchronous and guarded by one coarse lock, so the
registry may also be called from worker threads.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field

from loguru import logger

from voicegate.core.events import CallStatus

DEFAULT_MAX_TURNS = 20


@dataclass
class ConversationTurn:
    """One utterance in a call's conversation log."""

    role: str  # "user" or "assistant"
    text: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class CallSession:
    """State for a single call, owned exclusively by the registry."""

    call_id: str
    stream_id: str = ""
    agent_id: str | None = None
    status: CallStatus | None = None
    conversation: deque[ConversationTurn] = field(default_factory=deque)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def touch(self) -> None:
        self.updated_at = time.time()


class CallRegistry:
    """Thread-safe table of call sessions.

    Args:
        max_turns: Conversation log cap per call; oldest turns drop first.
    """

    def __init__(self, max_turns: int = DEFAULT_MAX_TURNS) -> None:
        self._max_turns = max_turns
        self._sessions: dict[str, CallSession] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def record_call_start(self, call_id: str, agent_id: str | None = None) -> None:
        """Create the session if missing; never clears a known agent id."""
        if not call_id:
            return
        with self._lock:
            session = self._get_or_create(call_id)
            if agent_id:
                session.agent_id = agent_id
            session.touch()

    def record_stream_id(self, call_id: str, stream_id: str) -> None:
        if not call_id:
            return
        with self._lock:
            session = self._get_or_create(call_id)
            if stream_id:
                session.stream_id = stream_id
            session.touch()

    def update_status(self, call_id: str, status: str | CallStatus) -> CallStatus | None:
        """Apply a lifecycle status reported by any source.

        Any string is accepted; unrecognized values become
        ``CallStatus.UNKNOWN``. Statuses only move forward: a terminal call
        is never resurrected and a late ``ringing`` cannot demote an
        in-progress call.

        Returns:
            The status held after the update, or None when call_id is empty.
        """
        if not call_id:
            return None
        new_status = CallStatus.parse(status)
        with self._lock:
            session = self._get_or_create(call_id)
            current = session.status
            if current is not None and current != new_status:
                if current.is_terminal or new_status.rank < current.rank:
                    logger.debug(
                        f"Ignoring status {new_status.value} for call {call_id} "
                        f"(already {current.value})"
                    )
                    return current
            session.status = new_status
            session.touch()
            return new_status

    def append_turn(self, call_id: str, role: str, text: str) -> None:
        """Append to the conversation log. Silently no-ops on empty input."""
        if not call_id or not text:
            return
        with self._lock:
            session = self._get_or_create(call_id)
            session.conversation.append(ConversationTurn(role=role, text=text))
            while len(session.conversation) > self._max_turns:
                session.conversation.popleft()
            session.touch()

    def reap(self, older_than_seconds: float, idle_after_seconds: float | None = None) -> int:
        """Drop sessions that can no longer matter.

        Terminal sessions go once they have not been updated within
        ``older_than_seconds``. Sessions that never reached a terminal status
        (no status callback configured, webhook lost) go after
        ``idle_after_seconds`` without any update; None keeps them.

        Returns:
            Number of sessions removed.
        """
        now = time.time()
        cutoff = now - older_than_seconds
        idle_cutoff = now - idle_after_seconds if idle_after_seconds is not None else None
        with self._lock:
            stale = [
                call_id
                for call_id, session in self._sessions.items()
                if (
                    session.status is not None
                    and session.status.is_terminal
                    and session.updated_at <= cutoff
                )
                or (idle_cutoff is not None and session.updated_at <= idle_cutoff)
            ]
            for call_id in stale:
                del self._sessions[call_id]
        if stale:
            logger.info(f"Reaped {len(stale)} stale call(s) from registry")
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def lookup_agent_id(self, call_id: str) -> str | None:
        with self._lock:
            session = self._sessions.get(call_id)
            return session.agent_id if session else None

    def lookup_status(self, call_id: str) -> CallStatus | None:
        with self._lock:
            session = self._sessions.get(call_id)
            return session.status if session else None

    def is_active(self, call_id: str) -> bool:
        """True iff the call is currently in progress."""
        return self.lookup_status(call_id) == CallStatus.IN_PROGRESS

    def get_conversation(self, call_id: str) -> list[dict[str, str]]:
        """Conversation log in order, timestamps stripped."""
        with self._lock:
            session = self._sessions.get(call_id)
            if not session:
                return []
            return [{"role": t.role, "text": t.text} for t in session.conversation]

    def __contains__(self, call_id: object) -> bool:
        with self._lock:
            return call_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    @property
    def active_count(self) -> int:
        with self._lock:
            return sum(
                1 for s in self._sessions.values()
                if s.status == CallStatus.IN_PROGRESS
            )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _get_or_create(self, call_id: str) -> CallSession:
        """Fetch a session; caller must hold the lock."""
        session = self._sessions.get(call_id)
        if session is None:
            session = CallSession(call_id=call_id)
            self._sessions[call_id] = session
            logger.debug(f"Registered call {call_id}")
        return session
