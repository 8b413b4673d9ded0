import uuid
from datetime import datetime
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo
from app.core.document_store import DocumentStore
from app.prompts import messages
from app.schemas.conversation_schemas import ConversationState, PendingItem, Step
from app.schemas.order_schemas import (
    CartItem,
    DeliveryLocation,
    Medicine,
    Order,
    OrderStatus,
    utc_now,
)
from app.services.errors import (
    EmptyCart,
    InsufficientStock,
    InvalidQuantity,
    OutsideServiceZone,
    PharmacyMismatch,
    PrescriptionRequired,
    UnknownMedicine,
)
from app.services.fee_calculator import ServiceZone, Tariff, delivery_fee, in_service_zone
from configs.settings import Settings
from configs.logger import logger

MIN_QUANTITY = 1
MAX_QUANTITY = 10
COMMITTABLE = (OrderStatus.DRAFT.value, OrderStatus.PRESCRIPTION_APPROVED.value)


def new_order_id() -> str:
    return f"CMD{uuid.uuid4().hex[:8].upper()}"


class CartService:
    """Cart invariants and order construction.

    A cart holds items of a single pharmacy. Prescription items need the
    approval flag, which one gated add consumes. Stock is checked when adding
    and only decremented by `commit`.
    """

    def __init__(self, store: DocumentStore, settings: Settings, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.settings = settings
        self.clock = clock
        self.tariff = Tariff(day=settings.DAY_FEE, night=settings.NIGHT_FEE)
        self.zone = ServiceZone(
            min_lat=settings.ZONE_MIN_LAT,
            max_lat=settings.ZONE_MAX_LAT,
            min_lng=settings.ZONE_MIN_LNG,
            max_lng=settings.ZONE_MAX_LNG,
        )
        self.timezone = ZoneInfo(settings.TIMEZONE)

    def current_fee(self) -> int:
        return delivery_fee(self.clock().astimezone(self.timezone), self.tariff)

    async def _load(self, medicine_id: str, quantity: int) -> Medicine:
        if not MIN_QUANTITY <= quantity <= MAX_QUANTITY:
            raise InvalidQuantity(quantity)
        medicine = await self.store.get_medicine(medicine_id)
        if medicine is None:
            raise UnknownMedicine(medicine_id)
        return medicine

    async def _pharmacy_name(self, pharmacy_id: str) -> str:
        pharmacy = await self.store.get_pharmacy(pharmacy_id)
        return pharmacy.name if pharmacy else pharmacy_id

    @staticmethod
    def _line(medicine: Medicine, pharmacy_name: str, quantity: int) -> CartItem:
        return CartItem(
            medicine_id=medicine.id,
            medicine_name=medicine.name,
            pharmacy_id=medicine.pharmacy_id,
            pharmacy_name=pharmacy_name,
            quantity=quantity,
            unit_price=medicine.price,
            requires_prescription=medicine.requires_prescription,
            dosage=medicine.dosage,
            form=medicine.form,
        )

    async def try_add_item(self, state: ConversationState, medicine_id: str, quantity: int) -> CartItem:
        medicine = await self._load(medicine_id, quantity)
        pharmacy_name = await self._pharmacy_name(medicine.pharmacy_id)

        if medicine.requires_prescription and not state.prescription_approved:
            raise PrescriptionRequired(
                medicine.id,
                medicine.name,
                messages.prescription_instructions(medicine.name, self.settings.SUPPORT_PHONE),
            )
        if state.cart and state.pharmacy_id != medicine.pharmacy_id:
            raise PharmacyMismatch(state.pharmacy_name, pharmacy_name)

        in_cart = sum(item.quantity for item in state.cart if item.medicine_id == medicine.id)
        if in_cart + quantity > medicine.stock:
            raise InsufficientStock(medicine.name, max(medicine.stock - in_cart, 0), quantity)

        if medicine.requires_prescription:
            state.prescription_approved = False

        existing = next((item for item in state.cart if item.medicine_id == medicine.id), None)
        if existing:
            existing.quantity += quantity
            line = existing
        else:
            line = self._line(medicine, pharmacy_name, quantity)
            state.cart.append(line)
        state.pharmacy_id = medicine.pharmacy_id
        state.pharmacy_name = pharmacy_name
        logger.info(f"Added {quantity} x {medicine.name} to cart ({len(state.cart)} lines)")
        return line

    async def open_prescription_order(
        self,
        state: ConversationState,
        customer_id: str,
        medicine_id: str,
        quantity: int,
        customer_name: Optional[str] = None,
    ) -> Order:
        """Create the draft order a prescription photo gets attached to."""
        medicine = await self._load(medicine_id, quantity)
        if quantity > medicine.stock:
            raise InsufficientStock(medicine.name, medicine.stock, quantity)
        pharmacy_name = await self._pharmacy_name(medicine.pharmacy_id)
        line = self._line(medicine, pharmacy_name, quantity)
        order = Order(
            id=new_order_id(),
            customer_id=customer_id,
            customer_name=customer_name,
            pharmacy_id=medicine.pharmacy_id,
            pharmacy_name=pharmacy_name,
            items=[line],
            subtotal=line.line_total,
        )
        await self.store.insert_order(order)

        state.active_order_id = order.id
        state.pending_item = PendingItem(medicine_id=medicine.id, quantity=quantity)
        state.step = Step.AWAITING_PRESCRIPTION_PHOTO
        state.awaiting_photo = True
        logger.info(f"Opened prescription order {order.id} for {customer_id}")
        return order

    async def checkout(
        self,
        state: ConversationState,
        customer_id: str,
        location: DeliveryLocation,
        customer_name: Optional[str] = None,
    ) -> Order:
        if not state.cart:
            raise EmptyCart("cart is empty")
        if not in_service_zone(location.latitude, location.longitude, self.zone):
            raise OutsideServiceZone(location.latitude, location.longitude)

        items: List[CartItem] = [item.model_copy() for item in state.cart]
        subtotal = sum(item.line_total for item in items)
        fee = self.current_fee()
        details = {
            "items": items,
            "delivery": location,
            "subtotal": subtotal,
            "fee": fee,
            "total": subtotal + fee,
        }

        order = await self._fill_approved_order(state, details)
        if order is None:
            order = Order(
                id=new_order_id(),
                customer_id=customer_id,
                customer_name=customer_name,
                pharmacy_id=state.pharmacy_id,
                pharmacy_name=state.pharmacy_name,
                **details,
            )
            await self.store.insert_order(order)
            if order.requires_prescription:
                order = await self.store.transition_order(
                    order.id, OrderStatus.DRAFT, OrderStatus.PENDING_PRESCRIPTION
                )

        state.clear_cart()
        state.active_order_id = order.id
        state.location = location
        logger.info(f"Checkout for {customer_id}: order {order.id} ({order.status}), total {order.total}")
        return order

    async def _fill_approved_order(self, state: ConversationState, details: dict) -> Optional[Order]:
        if not state.active_order_id:
            return None
        active = await self.store.get_order(state.active_order_id)
        if (
            active is None
            or active.status != OrderStatus.PRESCRIPTION_APPROVED.value
            or active.pharmacy_id != state.pharmacy_id
        ):
            return None
        return await self.store.compare_and_set_order(
            active.id, {"status": OrderStatus.PRESCRIPTION_APPROVED}, details
        )

    async def commit(self, order_id: str) -> Optional[Order]:
        """Move an order to PENDING_COURIER, taking its items out of stock."""
        order = await self.store.get_order(order_id)
        if order is None or order.status not in COMMITTABLE:
            logger.info(f"Order {order_id} cannot be committed in its current status")
            return None

        taken: List[CartItem] = []
        for item in order.items:
            if not await self.store.decrement_stock(item.medicine_id, item.quantity):
                await self.restore_stock(taken)
                medicine = await self.store.get_medicine(item.medicine_id)
                raise InsufficientStock(item.medicine_name, medicine.stock if medicine else 0, item.quantity)
            taken.append(item)

        committed = await self.store.transition_order(order_id, order.status, OrderStatus.PENDING_COURIER)
        if committed is None:
            await self.restore_stock(taken)
            return None
        logger.info(f"Order {order_id} committed")
        return committed

    async def restore_stock(self, items: List[CartItem]) -> None:
        for item in items:
            await self.store.increment_stock(item.medicine_id, item.quantity)
