"""
Tests for prescription review: photo submission, pharmacy decision and the
review deadline.
"""

import asyncio

import pytest

from app.schemas.conversation_schemas import ConversationState, Step
from app.schemas.order_schemas import DeliveryLocation, OrderStatus
from app.services.errors import NoPendingPrescription, NotAuthorized
from conftest import (
    COURIER_PHONES,
    CUSTOMER,
    PHARMACY_COSMOS_PHONE,
    PHARMACY_PORT_PHONE,
    SUPPORT_PHONE,
    sent_buttons,
    sent_texts,
)

IN_TOWN = DeliveryLocation(latitude=4.75, longitude=-6.64)


async def submitted(container, media_id: str = "media-1") -> str:
    """Customer asked for amoxicillin and sent the photo."""
    state = ConversationState(initialized=True)
    order = await container.cart.open_prescription_order(state, CUSTOMER, "med_amox", 1)
    await container.prescriptions.submit_photo(state, media_id)
    container.conversations.set(CUSTOMER, state)
    return order.id


class TestSubmitPhoto:
    async def test_photo_goes_to_the_pharmacy(self, container, messenger, ocr, store):
        ocr.process_image.return_value = "Amoxicilline 500mg 3x/jour"
        order_id = await submitted(container)

        order = await store.get_order(order_id)
        assert order.status == OrderStatus.PENDING_PRESCRIPTION.value
        assert order.prescription_photo == "media-1"
        assert order.prescription_text == "Amoxicilline 500mg 3x/jour"
        messenger.send_image.assert_awaited_once()
        assert messenger.send_image.await_args.args[:2] == (PHARMACY_COSMOS_PHONE, "media-1")
        assert sent_buttons(messenger, PHARMACY_COSMOS_PHONE) == [
            [f"rx_accept:{order_id}", f"rx_reject:{order_id}"]
        ]
        assert container.scheduler.pending() == 1

        state = container.conversations.get(CUSTOMER)
        assert state.step == Step.MENU
        assert not state.awaiting_photo

    async def test_photo_without_order(self, container):
        with pytest.raises(NoPendingPrescription):
            await container.prescriptions.submit_photo(ConversationState(), "media-1")

    async def test_pharmacy_without_phone_is_reviewed_by_support(self, container, messenger, store):
        store.pharmacies["ph_cosmos"]["phone"] = None
        order_id = await submitted(container)

        assert sent_buttons(messenger, SUPPORT_PHONE) == [[f"rx_accept:{order_id}", f"rx_reject:{order_id}"]]
        assert await container.prescriptions.approve(order_id, SUPPORT_PHONE) is not None


class TestDecision:
    async def test_approval_adds_the_pending_item(self, container, messenger, store):
        order_id = await submitted(container)

        order = await container.prescriptions.approve(order_id, PHARMACY_COSMOS_PHONE)

        assert order.status == OrderStatus.PRESCRIPTION_APPROVED.value
        state = container.conversations.get(CUSTOMER)
        assert [item.medicine_id for item in state.cart] == ["med_amox"]
        assert state.pending_item is None
        assert not state.prescription_approved
        assert any("ajouté au panier" in text for text in sent_texts(messenger, CUSTOMER))
        assert container.scheduler.pending() == 0

    async def test_second_decision_is_stale(self, container):
        order_id = await submitted(container)
        await container.prescriptions.approve(order_id, PHARMACY_COSMOS_PHONE)

        assert await container.prescriptions.approve(order_id, PHARMACY_COSMOS_PHONE) is None
        assert await container.prescriptions.reject(order_id, PHARMACY_COSMOS_PHONE) is None

    async def test_other_pharmacy_cannot_decide(self, container, store):
        order_id = await submitted(container)

        with pytest.raises(NotAuthorized):
            await container.prescriptions.approve(order_id, PHARMACY_PORT_PHONE)
        assert (await store.get_order(order_id)).status == OrderStatus.PENDING_PRESCRIPTION.value

    async def test_rejection_resets_the_customer(self, container, messenger, store):
        order_id = await submitted(container)

        order = await container.prescriptions.reject(order_id, PHARMACY_COSMOS_PHONE)

        assert order.status == OrderStatus.PRESCRIPTION_REJECTED.value
        assert order.rejection_reason == "pharmacy"
        state = container.conversations.get(CUSTOMER)
        assert state.active_order_id is None
        assert state.pending_item is None
        assert any("refusée" in text for text in sent_texts(messenger, CUSTOMER))
        assert all(not sent_buttons(messenger, phone) for phone in COURIER_PHONES)

    async def test_approval_after_checkout_dispatches(self, container, messenger, store):
        state = ConversationState(initialized=True, prescription_approved=True)
        await container.cart.try_add_item(state, "med_amox", 1)
        order = await container.cart.checkout(state, CUSTOMER, IN_TOWN)
        await container.prescriptions.submit_photo(state, "media-2")
        container.conversations.set(CUSTOMER, state)

        await container.prescriptions.approve(order.id, PHARMACY_COSMOS_PHONE)

        dispatched = await store.get_order(order.id)
        assert dispatched.status == OrderStatus.PENDING_COURIER.value
        assert dispatched.offered_courier_id == "courier_1"
        assert (await store.get_medicine("med_amox")).stock == 9
        assert sent_buttons(messenger, COURIER_PHONES[0])


class TestReviewDeadline:
    async def test_expiry_rejects_with_timeout_reason(self, container, messenger, store):
        order_id = await submitted(container)

        order = await container.prescriptions.expire(order_id)

        assert order.status == OrderStatus.PRESCRIPTION_REJECTED.value
        assert order.rejection_reason == "timeout"
        assert any("délai" in text for text in sent_texts(messenger, PHARMACY_COSMOS_PHONE))
        assert any(order_id in text for text in sent_texts(messenger, SUPPORT_PHONE))
        assert store.support_notifications[-1]["order_id"] == order_id

    async def test_deadline_fires_without_a_decision(self, container, store):
        container.settings.PRESCRIPTION_REVIEW_TIMEOUT_SECONDS = 0.01
        order_id = await submitted(container)

        for _ in range(50):
            await asyncio.sleep(0.01)
            if (await store.get_order(order_id)).status != OrderStatus.PENDING_PRESCRIPTION.value:
                break

        order = await store.get_order(order_id)
        assert order.status == OrderStatus.PRESCRIPTION_REJECTED.value
        assert order.rejection_reason == "timeout"

    async def test_expiry_after_approval_is_ignored(self, container, store):
        order_id = await submitted(container)
        await container.prescriptions.approve(order_id, PHARMACY_COSMOS_PHONE)

        assert await container.prescriptions.expire(order_id) is None
        assert (await store.get_order(order_id)).status == OrderStatus.PRESCRIPTION_APPROVED.value
