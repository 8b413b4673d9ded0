from typing import Optional, Tuple
from app.core.document_store import DocumentStore
from app.core.whatsapp_client import MessagingError, WhatsAppClient
from app.prompts import messages
from app.schemas.order_schemas import AttemptStatus, Courier, CourierAttempt, Order, OrderStatus, utc_now
from app.schemas.whatsapp_schemas import Button
from app.services.cart_service import CartService
from app.services.conversation_store import ConversationStore
from app.services.deadline_scheduler import DeadlineScheduler
from app.services.errors import NoCourierAvailable, NotAuthorized
from configs.settings import Settings
from configs.logger import logger


class CourierAssignmentService:
    """Offers a committed order to couriers one at a time.

    Every courier response and every offer expiry goes through the same
    conditional update: the order must still be PENDING_COURIER, offered to
    the responding courier, with that attempt still OFFERED. Whichever of
    accept, refuse or timeout lands first wins; the others become no-ops.
    """

    def __init__(
        self,
        store: DocumentStore,
        messenger: WhatsAppClient,
        scheduler: DeadlineScheduler,
        conversations: ConversationStore,
        cart: CartService,
        settings: Settings,
    ):
        self.store = store
        self.messenger = messenger
        self.scheduler = scheduler
        self.conversations = conversations
        self.cart = cart
        self.settings = settings

    @staticmethod
    def offer_key(order_id: str, attempt_no: int) -> Tuple[str, str, int]:
        return ("offer", order_id, attempt_no)

    async def dispatch(self, order_id: str) -> Optional[Order]:
        """Commit a ready order and start looking for a courier."""
        committed = await self.cart.commit(order_id)
        if committed is None:
            return None
        await self.messenger.send_text(committed.customer_id, messages.order_confirmed(committed))
        await self.notify_support(committed, messages.support_new_order(committed))
        return await self.assign(order_id)

    @staticmethod
    def retry_key(order_id: str) -> Tuple[str, str]:
        return ("assign", order_id)

    async def assign(self, order_id: str, retries_left: Optional[int] = None) -> Optional[Order]:
        """Offer the order to the first available courier.

        With nobody available the order stays PENDING_COURIER and a retry is
        scheduled; NoCourierAvailable is raised either way so the caller can
        tell the customer.
        """
        if retries_left is None:
            retries_left = self.settings.COURIER_ASSIGN_RETRIES
        couriers = await self.store.list_available_couriers(limit=self.settings.COURIER_CANDIDATE_LIMIT)
        if not couriers:
            logger.warning(f"No courier available for order {order_id}, {retries_left} retries left")
            if retries_left > 0:
                self.scheduler.schedule(
                    self.retry_key(order_id),
                    self.settings.COURIER_RETRY_SECONDS,
                    lambda: self.retry_assign(order_id, retries_left - 1),
                )
            raise NoCourierAvailable(order_id)
        order = await self.store.compare_and_set_order(
            order_id,
            {"status": OrderStatus.PENDING_COURIER, "offered_courier_id": None},
            {"candidate_courier_ids": [courier.id for courier in couriers]},
        )
        if order is None:
            logger.info(f"Order {order_id} is no longer waiting for a courier")
            return None
        return await self._offer_next(order)

    async def retry_assign(self, order_id: str, retries_left: int) -> Optional[Order]:
        order = await self.store.get_order(order_id)
        if order is None or order.status != OrderStatus.PENDING_COURIER or order.offered_courier_id:
            return None
        try:
            return await self.assign(order_id, retries_left)
        except NoCourierAvailable:
            if retries_left > 0:
                return None
        return await self._give_up(order)

    async def _offer_next(self, order: Order) -> Optional[Order]:
        tried = {attempt.courier_id for attempt in order.courier_attempts}
        candidate: Optional[Courier] = None
        for courier_id in order.candidate_courier_ids:
            if courier_id in tried:
                continue
            candidate = await self.store.get_courier(courier_id)
            if candidate is not None:
                break

        if candidate is None:
            return await self._give_up(order)

        attempt_no = len(order.courier_attempts)
        offered = await self.store.transition_order(
            order.id,
            OrderStatus.PENDING_COURIER,
            OrderStatus.PENDING_COURIER,
            expected={"offered_courier_id": None, f"courier_attempts.{attempt_no}.status": None},
            changes={"offered_courier_id": candidate.id},
            push_attempt=CourierAttempt(courier_id=candidate.id),
        )
        if offered is None:
            return None

        self.scheduler.schedule(
            self.offer_key(order.id, attempt_no),
            self.settings.COURIER_OFFER_TIMEOUT_SECONDS,
            lambda: self.expire_offer(order.id, attempt_no, candidate.id),
        )
        logger.info(f"Order {order.id} offered to courier {candidate.id} (attempt {attempt_no + 1})")
        pharmacy = await self.store.get_pharmacy(offered.pharmacy_id)
        try:
            await self.messenger.send_buttons(
                candidate.phone,
                messages.courier_offer(offered, pharmacy, self.settings.COURIER_OFFER_TIMEOUT_SECONDS),
                [
                    Button(id=f"courier_accept:{order.id}", title="Accepter"),
                    Button(id=f"courier_refuse:{order.id}", title="Refuser"),
                ],
            )
        except MessagingError as e:
            # The offer stays open; its deadline moves the order on.
            logger.error(f"Could not reach courier {candidate.id} for order {order.id}: {str(e)}")
        return offered

    async def _give_up(self, order: Order) -> Optional[Order]:
        failed = await self.store.transition_order(
            order.id,
            OrderStatus.PENDING_COURIER,
            OrderStatus.UNASSIGNABLE,
            expected={"offered_courier_id": None},
        )
        if failed is None:
            return None
        logger.warning(f"Order {order.id} unassignable after {len(failed.courier_attempts)} attempts")
        await self.cart.restore_stock(failed.items)
        await self._release_customer(failed)
        await self.messenger.send_text(
            failed.customer_id, messages.order_unassignable(failed.id, self.settings.SUPPORT_PHONE)
        )
        await self.notify_support(failed, messages.support_unassignable(failed))
        return failed

    async def _close_attempt(
        self, order_id: str, courier_id: str, outcome: AttemptStatus, attempt_no: Optional[int] = None
    ) -> Optional[Order]:
        order = await self.store.get_order(order_id)
        if order is None:
            return None
        if attempt_no is None:
            attempt_no = next(
                (
                    index
                    for index in range(len(order.courier_attempts) - 1, -1, -1)
                    if order.courier_attempts[index].courier_id == courier_id
                ),
                None,
            )
            if attempt_no is None:
                return None

        target = OrderStatus.COURIER_ASSIGNED if outcome == AttemptStatus.ACCEPTED else OrderStatus.PENDING_COURIER
        changes = {
            "offered_courier_id": None,
            f"courier_attempts.{attempt_no}.status": outcome,
            f"courier_attempts.{attempt_no}.responded_at": utc_now(),
        }
        if outcome == AttemptStatus.ACCEPTED:
            changes["courier_id"] = courier_id
        updated = await self.store.transition_order(
            order_id,
            OrderStatus.PENDING_COURIER,
            target,
            expected={
                "offered_courier_id": courier_id,
                f"courier_attempts.{attempt_no}.status": AttemptStatus.OFFERED,
            },
            changes=changes,
        )
        if updated is not None and outcome != AttemptStatus.TIMED_OUT:
            self.scheduler.cancel(self.offer_key(order_id, attempt_no))
        return updated

    async def _courier_for(self, phone: str, order_id: str) -> Courier:
        courier = await self.store.get_courier_by_phone(phone)
        if courier is None:
            raise NotAuthorized(phone, order_id)
        return courier

    async def accept(self, order_id: str, courier_phone: str) -> Optional[Order]:
        """Assign the order to the responding courier; None when the offer is no longer open."""
        courier = await self._courier_for(courier_phone, order_id)
        order = await self._close_attempt(order_id, courier.id, AttemptStatus.ACCEPTED)
        if order is None:
            logger.info(f"Late acceptance of order {order_id} by courier {courier.id}")
            return None

        logger.info(f"Order {order_id} assigned to courier {courier.id}")
        pharmacy = await self.store.get_pharmacy(order.pharmacy_id)
        await self.messenger.send_buttons(
            courier.phone,
            messages.courier_assignment(order, pharmacy),
            [Button(id=f"courier_pickup:{order.id}", title="Colis récupéré")],
        )
        await self.messenger.send_text(order.customer_id, messages.courier_assigned_customer(order, courier))
        if pharmacy and pharmacy.phone:
            await self.messenger.send_text(pharmacy.phone, messages.courier_assigned_pharmacy(order, courier))
        return order

    async def refuse(self, order_id: str, courier_phone: str) -> Optional[Order]:
        courier = await self._courier_for(courier_phone, order_id)
        order = await self._close_attempt(order_id, courier.id, AttemptStatus.REFUSED)
        if order is None:
            return None
        logger.info(f"Courier {courier.id} refused order {order_id}")
        await self._offer_next(order)
        return order

    async def expire_offer(self, order_id: str, attempt_no: int, courier_id: str) -> Optional[Order]:
        order = await self._close_attempt(order_id, courier_id, AttemptStatus.TIMED_OUT, attempt_no)
        if order is None:
            return None
        logger.info(f"Offer of order {order_id} to courier {courier_id} timed out")
        courier = await self.store.get_courier(courier_id)
        if courier:
            try:
                await self.messenger.send_text(courier.phone, messages.courier_offer_expired(order_id))
            except MessagingError as e:
                logger.error(f"Could not tell courier {courier_id} about expiry: {str(e)}")
        await self._offer_next(order)
        return order

    async def mark_picked_up(self, order_id: str, courier_phone: str) -> Optional[Order]:
        courier = await self._courier_for(courier_phone, order_id)
        order = await self.store.transition_order(
            order_id,
            OrderStatus.COURIER_ASSIGNED,
            OrderStatus.EN_ROUTE,
            expected={"courier_id": courier.id},
        )
        if order is None:
            return None
        await self.messenger.send_buttons(
            courier.phone,
            messages.courier_en_route(order),
            [Button(id=f"courier_delivered:{order.id}", title="Livré")],
        )
        await self.messenger.send_text(order.customer_id, messages.order_en_route(order, courier))
        return order

    async def mark_delivered(self, order_id: str, courier_phone: str) -> Optional[Order]:
        courier = await self._courier_for(courier_phone, order_id)
        order = await self.store.transition_order(
            order_id,
            OrderStatus.EN_ROUTE,
            OrderStatus.DELIVERED,
            expected={"courier_id": courier.id},
        )
        if order is None:
            return None
        logger.info(f"Order {order_id} delivered by courier {courier.id}")
        await self._release_customer(order)
        await self.messenger.send_text(courier.phone, messages.courier_delivery_recorded(order))
        await self.messenger.send_text(order.customer_id, messages.order_delivered(order))
        return order

    async def _release_customer(self, order: Order) -> None:
        async with self.conversations.locked(order.customer_id):
            state = self.conversations.get(order.customer_id)
            if state.active_order_id == order.id:
                state.active_order_id = None
                self.conversations.set(order.customer_id, state)

    async def notify_support(self, order: Order, text: str) -> None:
        await self.store.insert_support_notification({"order_id": order.id, "status": order.status, "message": text})
        try:
            await self.messenger.send_text(self.settings.SUPPORT_PHONE, text)
        except MessagingError as e:
            logger.error(f"Could not reach support about order {order.id}: {str(e)}")
