"""
Tests for the in-memory document store.

The conditional order update is the primitive every race in the order
workflow relies on, so its matching rules are covered here.
"""

import pytest

from app.schemas.order_schemas import CourierAttempt, Order, OrderStatus
from app.services.errors import InvalidTransition


def make_order(**overrides) -> Order:
    fields = dict(id="CMD00000001", customer_id="225070", pharmacy_id="ph_cosmos")
    fields.update(overrides)
    return Order(**fields)


class TestCompareAndSet:
    async def test_write_applies_when_expected_fields_match(self, store):
        await store.insert_order(make_order())
        updated = await store.compare_and_set_order(
            "CMD00000001", {"status": OrderStatus.DRAFT}, {"fee": 400}
        )
        assert updated.fee == 400
        assert (await store.get_order("CMD00000001")).fee == 400

    async def test_stale_expectation_returns_none_and_writes_nothing(self, store):
        await store.insert_order(make_order())
        updated = await store.compare_and_set_order(
            "CMD00000001", {"status": OrderStatus.PENDING_COURIER}, {"fee": 400}
        )
        assert updated is None
        assert (await store.get_order("CMD00000001")).fee == 0

    async def test_list_expectation_matches_any_value(self, store):
        await store.insert_order(make_order())
        updated = await store.compare_and_set_order(
            "CMD00000001",
            {"status": [OrderStatus.DRAFT, OrderStatus.PRESCRIPTION_APPROVED]},
            {"subtotal": 1000},
        )
        assert updated is not None

    async def test_dotted_paths_reach_into_attempts(self, store):
        await store.insert_order(make_order(status=OrderStatus.PENDING_COURIER))
        offered = await store.compare_and_set_order(
            "CMD00000001",
            {"courier_attempts.0.status": None},
            {"offered_courier_id": "courier_1"},
            push_attempt=CourierAttempt(courier_id="courier_1"),
        )
        assert offered.courier_attempts[0].status == "OFFERED"

        closed = await store.compare_and_set_order(
            "CMD00000001",
            {"courier_attempts.0.status": "OFFERED"},
            {"courier_attempts.0.status": "REFUSED"},
        )
        assert closed.courier_attempts[0].status == "REFUSED"

        again = await store.compare_and_set_order(
            "CMD00000001",
            {"courier_attempts.0.status": "OFFERED"},
            {"courier_attempts.0.status": "TIMED_OUT"},
        )
        assert again is None

    async def test_unknown_order_returns_none(self, store):
        assert await store.compare_and_set_order("CMD404", {}, {"fee": 1}) is None

    async def test_returned_order_is_detached_from_storage(self, store):
        await store.insert_order(make_order())
        order = await store.get_order("CMD00000001")
        order.items.clear()
        order.fee = 999
        assert (await store.get_order("CMD00000001")).fee == 0


class TestTransitionOrder:
    async def test_forbidden_transition_raises(self, store):
        await store.insert_order(make_order())
        with pytest.raises(InvalidTransition):
            await store.transition_order("CMD00000001", OrderStatus.DRAFT, OrderStatus.DELIVERED)

    async def test_terminal_status_has_no_exit(self, store):
        await store.insert_order(make_order(status=OrderStatus.UNASSIGNABLE))
        with pytest.raises(InvalidTransition):
            await store.transition_order("CMD00000001", OrderStatus.UNASSIGNABLE, OrderStatus.PENDING_COURIER)

    async def test_transition_from_wrong_current_status_is_a_no_op(self, store):
        await store.insert_order(make_order(status=OrderStatus.PENDING_PRESCRIPTION))
        result = await store.transition_order(
            "CMD00000001", OrderStatus.DRAFT, OrderStatus.PENDING_COURIER
        )
        assert result is None
        assert (await store.get_order("CMD00000001")).status == OrderStatus.PENDING_PRESCRIPTION.value

    async def test_retry_edge_is_allowed(self, store):
        await store.insert_order(make_order(status=OrderStatus.PENDING_COURIER))
        result = await store.transition_order(
            "CMD00000001", OrderStatus.PENDING_COURIER, OrderStatus.PENDING_COURIER
        )
        assert result.status == OrderStatus.PENDING_COURIER.value


class TestCatalogue:
    async def test_search_ignores_accents_case_and_empty_stock(self, store):
        found = await store.search_medicines("PARACETAMOL")
        assert {medicine.id for medicine in found} == {"med_para_500", "med_para_1000"}
        assert await store.search_medicines("vitamine") == []

    async def test_decrement_stock_is_conditional(self, store):
        assert await store.decrement_stock("med_para_1000", 5)
        assert not await store.decrement_stock("med_para_1000", 1)
        await store.increment_stock("med_para_1000", 2)
        assert (await store.get_medicine("med_para_1000")).stock == 2

    async def test_courier_lookup_by_phone_ignores_formatting(self, store):
        courier = await store.get_courier_by_phone("+225 07 00 00 00 11")
        assert courier.id == "courier_1"

    async def test_on_duty_requires_open_and_on_duty(self, store):
        pharmacies = await store.list_on_duty_pharmacies()
        assert [pharmacy.id for pharmacy in pharmacies] == ["ph_cosmos"]
