"""
Tests for cart rules and order construction.
"""

from datetime import datetime, UTC

import pytest

from app.schemas.conversation_schemas import ConversationState, Step
from app.schemas.order_schemas import DeliveryLocation, Medicine, OrderStatus
from app.services.cart_service import CartService, new_order_id
from app.services.errors import (
    EmptyCart,
    InsufficientStock,
    InvalidQuantity,
    OutsideServiceZone,
    PharmacyMismatch,
    PrescriptionRequired,
    UnknownMedicine,
)
from conftest import CUSTOMER, NOON

IN_TOWN = DeliveryLocation(latitude=4.75, longitude=-6.64, address="Bardot")
ABIDJAN = DeliveryLocation(latitude=5.34, longitude=-4.02)


@pytest.fixture
def cart(store, settings) -> CartService:
    return CartService(store, settings, clock=lambda: NOON)


class TestAddItem:
    """Adding items enforces quantity, prescription, pharmacy and stock rules."""

    async def test_item_is_added_with_price_snapshot(self, cart):
        state = ConversationState()
        line = await cart.try_add_item(state, "med_para_500", 2)

        assert line.unit_price == 500
        assert line.line_total == 1000
        assert state.pharmacy_id == "ph_cosmos"
        assert state.pharmacy_name == "Pharmacie Cosmos"

    async def test_same_medicine_merges_into_one_line(self, cart):
        state = ConversationState()
        await cart.try_add_item(state, "med_para_500", 2)
        await cart.try_add_item(state, "med_para_500", 3)

        assert len(state.cart) == 1
        assert state.cart[0].quantity == 5

    @pytest.mark.parametrize("quantity", [0, -1, 11])
    async def test_quantity_out_of_range(self, cart, quantity):
        with pytest.raises(InvalidQuantity):
            await cart.try_add_item(ConversationState(), "med_para_500", quantity)

    async def test_unknown_medicine(self, cart):
        with pytest.raises(UnknownMedicine):
            await cart.try_add_item(ConversationState(), "med_missing", 1)

    async def test_second_pharmacy_is_refused(self, cart):
        state = ConversationState()
        await cart.try_add_item(state, "med_para_500", 1)

        with pytest.raises(PharmacyMismatch) as excinfo:
            await cart.try_add_item(state, "med_para_1000", 1)

        assert excinfo.value.cart_pharmacy == "Pharmacie Cosmos"
        assert excinfo.value.requested_pharmacy == "Pharmacie du Port"
        assert [item.medicine_id for item in state.cart] == ["med_para_500"]

    async def test_stock_check_counts_what_is_already_in_cart(self, cart):
        state = ConversationState()
        await cart.try_add_item(state, "med_para_1000", 4)

        with pytest.raises(InsufficientStock) as excinfo:
            await cart.try_add_item(state, "med_para_1000", 2)

        assert excinfo.value.available == 1
        assert state.cart[0].quantity == 4

    async def test_prescription_item_needs_approval(self, cart):
        state = ConversationState()
        with pytest.raises(PrescriptionRequired) as excinfo:
            await cart.try_add_item(state, "med_amox", 1)

        assert "Amoxicilline" in excinfo.value.instructions
        assert state.cart == []

    async def test_approval_is_consumed_by_one_gated_add(self, cart):
        state = ConversationState(prescription_approved=True)
        await cart.try_add_item(state, "med_amox", 1)

        assert not state.prescription_approved
        with pytest.raises(PrescriptionRequired):
            await cart.try_add_item(state, "med_amox", 1)

    async def test_approval_is_kept_by_ordinary_items(self, cart):
        state = ConversationState(prescription_approved=True)
        await cart.try_add_item(state, "med_para_500", 1)
        assert state.prescription_approved


class TestPrescriptionDraft:
    async def test_draft_order_waits_for_photo(self, cart, store):
        state = ConversationState()
        order = await cart.open_prescription_order(state, CUSTOMER, "med_amox", 2, "Awa")

        stored = await store.get_order(order.id)
        assert stored.status == OrderStatus.DRAFT.value
        assert stored.subtotal == 5000
        assert stored.delivery is None
        assert state.active_order_id == order.id
        assert state.pending_item.medicine_id == "med_amox"
        assert state.pending_item.quantity == 2
        assert state.step == Step.AWAITING_PRESCRIPTION_PHOTO
        assert state.awaiting_photo

    async def test_draft_is_refused_without_stock(self, cart):
        with pytest.raises(InsufficientStock):
            await cart.open_prescription_order(ConversationState(), CUSTOMER, "med_para_1000", 6)


class TestCheckout:
    async def test_empty_cart(self, cart):
        with pytest.raises(EmptyCart):
            await cart.checkout(ConversationState(), CUSTOMER, IN_TOWN)

    async def test_location_outside_town(self, cart):
        state = ConversationState()
        await cart.try_add_item(state, "med_para_500", 1)

        with pytest.raises(OutsideServiceZone):
            await cart.checkout(state, CUSTOMER, ABIDJAN)
        assert len(state.cart) == 1

    async def test_order_totals_and_cart_cleared(self, cart, store):
        state = ConversationState()
        await cart.try_add_item(state, "med_para_500", 2)

        order = await cart.checkout(state, CUSTOMER, IN_TOWN)

        assert order.status == OrderStatus.DRAFT.value
        assert order.subtotal == 1000
        assert order.fee == 400
        assert order.total == 1400
        assert order.delivery.latitude == 4.75
        assert state.cart == []
        assert state.pharmacy_id is None
        assert state.active_order_id == order.id
        assert (await store.get_order(order.id)).total == 1400

    async def test_night_fee_uses_local_time(self, store, settings):
        late = CartService(store, settings, clock=lambda: datetime(2026, 10, 19, 23, 30, tzinfo=UTC))
        assert late.current_fee() == 600

    async def test_unapproved_prescription_cart_waits_for_review(self, cart):
        state = ConversationState(prescription_approved=True)
        await cart.try_add_item(state, "med_amox", 1)

        order = await cart.checkout(state, CUSTOMER, IN_TOWN)
        assert order.status == OrderStatus.PENDING_PRESCRIPTION.value

    async def test_approved_order_is_reused(self, cart, store):
        state = ConversationState()
        draft = await cart.open_prescription_order(state, CUSTOMER, "med_amox", 1)
        await store.transition_order(draft.id, OrderStatus.DRAFT, OrderStatus.PENDING_PRESCRIPTION)
        await store.transition_order(draft.id, OrderStatus.PENDING_PRESCRIPTION, OrderStatus.PRESCRIPTION_APPROVED)
        state.prescription_approved = True
        await cart.try_add_item(state, "med_amox", 1)
        await cart.try_add_item(state, "med_para_500", 2)

        order = await cart.checkout(state, CUSTOMER, IN_TOWN)

        assert order.id == draft.id
        assert order.status == OrderStatus.PRESCRIPTION_APPROVED.value
        assert order.subtotal == 3500
        assert len(store.orders) == 1


class TestCommit:
    async def test_commit_takes_stock(self, cart, store):
        state = ConversationState()
        await cart.try_add_item(state, "med_para_500", 3)
        order = await cart.checkout(state, CUSTOMER, IN_TOWN)

        committed = await cart.commit(order.id)

        assert committed.status == OrderStatus.PENDING_COURIER.value
        assert (await store.get_medicine("med_para_500")).stock == 17

    async def test_shortage_rolls_back_every_line(self, cart, store):
        store.add_medicine(Medicine(id="med_ibu", name="Ibuprofène 400mg", pharmacy_id="ph_cosmos", price=700, stock=5))
        state = ConversationState()
        await cart.try_add_item(state, "med_para_500", 2)
        await cart.try_add_item(state, "med_ibu", 2)
        order = await cart.checkout(state, CUSTOMER, IN_TOWN)
        store.medicines["med_ibu"]["stock"] = 1

        with pytest.raises(InsufficientStock):
            await cart.commit(order.id)

        assert (await store.get_medicine("med_para_500")).stock == 20
        assert (await store.get_medicine("med_ibu")).stock == 1
        assert (await store.get_order(order.id)).status == OrderStatus.DRAFT.value

    async def test_order_waiting_for_prescription_is_not_committed(self, cart, store):
        state = ConversationState(prescription_approved=True)
        await cart.try_add_item(state, "med_amox", 1)
        order = await cart.checkout(state, CUSTOMER, IN_TOWN)

        assert await cart.commit(order.id) is None
        assert (await store.get_medicine("med_amox")).stock == 10

    async def test_unknown_order(self, cart):
        assert await cart.commit("CMD404") is None


def test_order_ids_are_prefixed():
    order_id = new_order_id()
    assert order_id.startswith("CMD")
    assert len(order_id) == 11
