from typing import Optional, Tuple
from app.core.document_store import DocumentStore
from app.core.image_processor import ImageProcessor
from app.core.whatsapp_client import MessagingError, WhatsAppClient
from app.prompts import messages
from app.schemas.conversation_schemas import ConversationState, Step
from app.schemas.order_schemas import Order, OrderStatus, Pharmacy
from app.schemas.whatsapp_schemas import Button, normalize_phone
from app.services.cart_service import CartService
from app.services.conversation_store import ConversationStore
from app.services.courier_service import CourierAssignmentService
from app.services.deadline_scheduler import DeadlineScheduler
from app.services.errors import NoPendingPrescription, NotAuthorized, OrderRuleViolation
from configs.settings import Settings
from configs.logger import logger

TIMEOUT_REASON = "timeout"


class PrescriptionValidationService:
    """Routes a prescription photo to the order's pharmacy and applies its decision."""

    def __init__(
        self,
        store: DocumentStore,
        messenger: WhatsAppClient,
        ocr: ImageProcessor,
        scheduler: DeadlineScheduler,
        conversations: ConversationStore,
        cart: CartService,
        couriers: CourierAssignmentService,
        settings: Settings,
    ):
        self.store = store
        self.messenger = messenger
        self.ocr = ocr
        self.scheduler = scheduler
        self.conversations = conversations
        self.cart = cart
        self.couriers = couriers
        self.settings = settings

    @staticmethod
    def review_key(order_id: str) -> Tuple[str, str]:
        return ("prescription", order_id)

    def reviewer_phone(self, pharmacy: Optional[Pharmacy]) -> str:
        # Pharmacies without a WhatsApp number are reviewed by support.
        if pharmacy and pharmacy.phone:
            return normalize_phone(pharmacy.phone)
        return normalize_phone(self.settings.SUPPORT_PHONE)

    async def submit_photo(self, state: ConversationState, media_id: str) -> Order:
        if not state.active_order_id:
            raise NoPendingPrescription("no order waiting for a prescription")
        order = await self.store.get_order(state.active_order_id)
        if order is None:
            raise NoPendingPrescription("no order waiting for a prescription")

        text = await self.ocr.process_image(media_id)
        changes = {"prescription_photo": media_id, "prescription_text": text}
        if order.status == OrderStatus.DRAFT.value:
            updated = await self.store.transition_order(
                order.id, OrderStatus.DRAFT, OrderStatus.PENDING_PRESCRIPTION, changes=changes
            )
        elif order.status == OrderStatus.PENDING_PRESCRIPTION.value:
            updated = await self.store.compare_and_set_order(
                order.id, {"status": OrderStatus.PENDING_PRESCRIPTION}, changes
            )
        else:
            updated = None
        if updated is None:
            raise NoPendingPrescription(f"order {order.id} is not waiting for a prescription")

        pharmacy = await self.store.get_pharmacy(updated.pharmacy_id)
        reviewer = self.reviewer_phone(pharmacy)
        await self.messenger.send_image(reviewer, media_id, caption=f"Ordonnance {updated.id}")
        await self.messenger.send_buttons(
            reviewer,
            messages.prescription_review_request(updated),
            [
                Button(id=f"rx_accept:{updated.id}", title="Valider"),
                Button(id=f"rx_reject:{updated.id}", title="Refuser"),
            ],
        )
        self.scheduler.schedule(
            self.review_key(updated.id),
            self.settings.PRESCRIPTION_REVIEW_TIMEOUT_SECONDS,
            lambda: self.expire(updated.id),
        )

        state.awaiting_photo = False
        state.step = Step.MENU
        logger.info(f"Prescription for order {updated.id} sent to pharmacy {updated.pharmacy_id}")
        return updated

    async def _authorize(self, order_id: str, sender: str) -> Order:
        order = await self.store.get_order(order_id)
        if order is None:
            raise NoPendingPrescription(f"unknown order {order_id}")
        pharmacy = await self.store.get_pharmacy(order.pharmacy_id)
        if normalize_phone(sender) != self.reviewer_phone(pharmacy):
            raise NotAuthorized(sender, order_id)
        return order

    async def approve(self, order_id: str, sender: str) -> Optional[Order]:
        await self._authorize(order_id, sender)
        order = await self.store.transition_order(
            order_id, OrderStatus.PENDING_PRESCRIPTION, OrderStatus.PRESCRIPTION_APPROVED
        )
        if order is None:
            return None
        self.scheduler.cancel(self.review_key(order_id))
        logger.info(f"Prescription for order {order_id} approved")

        added = None
        failure: Optional[OrderRuleViolation] = None
        async with self.conversations.locked(order.customer_id):
            state = self.conversations.get(order.customer_id)
            state.awaiting_photo = False
            if state.step == Step.AWAITING_PRESCRIPTION_PHOTO:
                state.step = Step.MENU
            if order.delivery is None:
                state.prescription_approved = True
                if state.pending_item:
                    pending, state.pending_item = state.pending_item, None
                    try:
                        added = await self.cart.try_add_item(state, pending.medicine_id, pending.quantity)
                    except OrderRuleViolation as e:
                        failure = e
            self.conversations.set(order.customer_id, state)

        await self.messenger.send_text(order.customer_id, messages.prescription_approved(order, added))
        if failure is not None:
            await self.messenger.send_text(
                order.customer_id, messages.rule_violation(failure, self.settings.SUPPORT_PHONE)
            )
        if order.delivery is not None:
            # Checkout already happened, the order only waited for this decision.
            try:
                await self.couriers.dispatch(order.id)
            except OrderRuleViolation as e:
                await self.messenger.send_text(
                    order.customer_id, messages.rule_violation(e, self.settings.SUPPORT_PHONE)
                )
        return order

    async def reject(self, order_id: str, sender: str) -> Optional[Order]:
        await self._authorize(order_id, sender)
        order = await self._close(order_id, "pharmacy")
        if order is not None:
            await self.messenger.send_text(
                order.customer_id, messages.prescription_rejected(order.id, self.settings.SUPPORT_PHONE)
            )
        return order

    async def expire(self, order_id: str) -> Optional[Order]:
        order = await self._close(order_id, TIMEOUT_REASON)
        if order is None:
            return None
        pharmacy = await self.store.get_pharmacy(order.pharmacy_id)
        await self.messenger.send_text(
            order.customer_id, messages.prescription_timeout_customer(order.id, self.settings.SUPPORT_PHONE)
        )
        try:
            await self.messenger.send_text(self.reviewer_phone(pharmacy), messages.prescription_timeout_pharmacy(order.id))
        except MessagingError as e:
            logger.error(f"Could not tell pharmacy about expired review of {order_id}: {str(e)}")
        await self.couriers.notify_support(order, messages.support_prescription_timeout(order))
        return order

    async def _close(self, order_id: str, reason: str) -> Optional[Order]:
        order = await self.store.transition_order(
            order_id,
            OrderStatus.PENDING_PRESCRIPTION,
            OrderStatus.PRESCRIPTION_REJECTED,
            changes={"rejection_reason": reason},
        )
        if order is None:
            return None
        if reason != TIMEOUT_REASON:
            self.scheduler.cancel(self.review_key(order_id))
        logger.info(f"Prescription for order {order_id} rejected ({reason})")

        async with self.conversations.locked(order.customer_id):
            state = self.conversations.get(order.customer_id)
            if state.active_order_id == order.id:
                state.active_order_id = None
                state.pending_item = None
                state.prescription_approved = False
                state.awaiting_photo = False
                if state.step == Step.AWAITING_PRESCRIPTION_PHOTO:
                    state.step = Step.MENU
                self.conversations.set(order.customer_id, state)
        return order
