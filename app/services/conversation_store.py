import asyncio
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, List
from app.schemas.conversation_schemas import ConversationState
from app.schemas.order_schemas import utc_now
from configs.logger import logger

# Users whose lock the current task already holds.
_held_users: ContextVar[FrozenSet[str]] = ContextVar("held_users", default=frozenset())


class ConversationStore:
    """Per-user conversation state with one lock per user.

    Callers read-modify-write the whole state: `get` hands out a copy and
    `set` replaces the stored value. Handling for one user runs inside
    `locked(user_id)`, so two events of the same user never interleave while
    distinct users proceed in parallel.
    """

    def __init__(self):
        self._states: Dict[str, ConversationState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    def get(self, user_id: str) -> ConversationState:
        state = self._states.get(user_id)
        if state is None:
            return ConversationState()
        return state.model_copy(deep=True)

    def set(self, user_id: str, state: ConversationState) -> None:
        self._states[user_id] = state.model_copy(deep=True)

    def exists(self, user_id: str) -> bool:
        return user_id in self._states

    def count(self) -> int:
        return len(self._states)

    def snapshot(self) -> List[Dict]:
        return [
            {"user_id": user_id, "step": state.step, "initialized": state.initialized}
            for user_id, state in self._states.items()
        ]

    @asynccontextmanager
    async def locked(self, user_id: str):
        held = _held_users.get()
        if user_id in held:
            # Re-entry from the same task, e.g. a pharmacy that is also the customer.
            yield
            return

        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._waiters[user_id] = self._waiters.get(user_id, 0) + 1
        token = None
        try:
            async with lock:
                token = _held_users.set(held | {user_id})
                try:
                    yield
                finally:
                    _held_users.reset(token)
        finally:
            self._waiters[user_id] -= 1
            if self._waiters[user_id] == 0:
                del self._waiters[user_id]
                self._locks.pop(user_id, None)

    def evict_idle(self, ttl_seconds: float, now: datetime | None = None) -> int:
        """Drop states idle for longer than the TTL, skipping users being handled."""
        cutoff = (now or utc_now()) - timedelta(seconds=ttl_seconds)
        stale = [
            user_id
            for user_id, state in self._states.items()
            if state.last_activity < cutoff and user_id not in self._locks
        ]
        for user_id in stale:
            del self._states[user_id]
        if stale:
            logger.info(f"Evicted {len(stale)} idle conversations")
        return len(stale)
