"""Chat interaction state, kept apart from ledger state.

A handle has at most one open interaction (a manual expense entry, an amount
choice after a receipt scan, or a pending vote reply). Every state carries an
expiry; reads ignore expired entries and a scheduled sweep drops them.
"""

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable

from planpal.ledger import normalize_handle

logger = logging.getLogger("planpal")


class InteractionStep(str, Enum):
    AWAITING_AMOUNT = "awaiting_amount"
    AWAITING_AMOUNT_SELECTION = "awaiting_amount_selection"
    AWAITING_DESCRIPTION = "awaiting_description"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    AWAITING_EXPENSE_VOTE = "awaiting_expense_vote"


@dataclass(frozen=True)
class InteractionState:
    handle: str
    step: InteractionStep
    event_id: int
    expires_at: float
    mentions: tuple[str, ...] = ()
    amount: int | None = None
    description: str | None = None
    expense_id: int | None = None
    candidates: tuple[int, ...] = field(default=())


class SessionStore:
    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._states: dict[str, InteractionState] = {}

    def begin(self, handle: str, step: InteractionStep, event_id: int, **fields) -> InteractionState:
        handle = normalize_handle(handle)
        state = InteractionState(
            handle=handle,
            step=step,
            event_id=event_id,
            expires_at=self._clock() + self.ttl_seconds,
            **fields,
        )
        with self._lock:
            self._states[handle] = state
        logger.info(
            "Interaction started",
            extra={"extra_data": {"handle": handle, "step": step.value, "event_id": event_id}},
        )
        return state

    def get(self, handle: str) -> InteractionState | None:
        handle = normalize_handle(handle)
        with self._lock:
            state = self._states.get(handle)
            if state and state.expires_at <= self._clock():
                del self._states[handle]
                return None
            return state

    def update(self, handle: str, **changes) -> InteractionState | None:
        """Apply changes and push the expiry out again."""
        handle = normalize_handle(handle)
        with self._lock:
            state = self._states.get(handle)
            if not state or state.expires_at <= self._clock():
                self._states.pop(handle, None)
                return None
            state = replace(state, expires_at=self._clock() + self.ttl_seconds, **changes)
            self._states[handle] = state
            return state

    def pop(self, handle: str) -> InteractionState | None:
        handle = normalize_handle(handle)
        with self._lock:
            state = self._states.pop(handle, None)
        if state and state.expires_at <= self._clock():
            return None
        return state

    def discard(self, handle: str) -> None:
        with self._lock:
            self._states.pop(normalize_handle(handle), None)

    def end_votes_for(self, expense_id: int, handles) -> int:
        """Close the vote prompts of a resolved expense. Returns how many were open."""
        ended = 0
        with self._lock:
            for handle in handles:
                handle = normalize_handle(handle)
                state = self._states.get(handle)
                if (
                    state
                    and state.step is InteractionStep.AWAITING_EXPENSE_VOTE
                    and state.expense_id == expense_id
                ):
                    del self._states[handle]
                    ended += 1
        return ended

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [h for h, s in self._states.items() if s.expires_at <= now]
            for handle in expired:
                del self._states[handle]
        if expired:
            logger.info("Expired interactions swept", extra={"extra_data": {"count": len(expired)}})
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
