import asyncio
from datetime import timedelta

from app.schemas.conversation_schemas import ConversationState, Step
from app.schemas.order_schemas import utc_now
from app.services.conversation_store import ConversationStore


class TestStateCopies:
    def test_unknown_user_gets_default_state(self):
        store = ConversationStore()
        state = store.get("u1")
        assert state.step == Step.MENU
        assert not store.exists("u1")

    def test_get_returns_a_copy(self):
        store = ConversationStore()
        store.set("u1", ConversationState(pharmacy_id="ph_cosmos"))
        state = store.get("u1")
        state.pharmacy_id = "ph_port"
        assert store.get("u1").pharmacy_id == "ph_cosmos"

    def test_history_is_bounded(self):
        state = ConversationState()
        for number in range(30):
            state.remember("user", f"message {number}")
        assert len(state.history) == 20
        assert state.history[-1].message == "message 29"


class TestLocking:
    async def test_same_user_is_serialised(self):
        store = ConversationStore()
        order = []

        async def handle(label):
            async with store.locked("u1"):
                order.append(f"{label}-start")
                await asyncio.sleep(0.01)
                order.append(f"{label}-end")

        await asyncio.gather(handle("a"), handle("b"))
        assert order in (
            ["a-start", "a-end", "b-start", "b-end"],
            ["b-start", "b-end", "a-start", "a-end"],
        )

    async def test_distinct_users_run_in_parallel(self):
        store = ConversationStore()
        inside = []

        async def handle(user_id):
            async with store.locked(user_id):
                inside.append(user_id)
                await asyncio.sleep(0.01)
                assert len(inside) == 2

        await asyncio.gather(handle("u1"), handle("u2"))

    async def test_lock_is_reentrant_within_a_task(self):
        store = ConversationStore()
        async with store.locked("u1"):
            async with store.locked("u1"):
                store.set("u1", ConversationState(initialized=True))
        assert store.get("u1").initialized

    async def test_locks_are_released_after_use(self):
        store = ConversationStore()
        async with store.locked("u1"):
            pass
        assert store._locks == {}


class TestEviction:
    async def test_idle_states_are_evicted_but_not_while_locked(self):
        store = ConversationStore()
        old = ConversationState(last_activity=utc_now() - timedelta(hours=2))
        store.set("idle", old)
        store.set("busy", old)
        store.set("fresh", ConversationState())

        async with store.locked("busy"):
            evicted = store.evict_idle(3600)

        assert evicted == 1
        assert not store.exists("idle")
        assert store.exists("busy")
        assert store.exists("fresh")
