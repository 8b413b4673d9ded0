import time
from typing import Awaitable, Callable, Dict, Optional, Tuple
from app.core.advice_client import AdviceClient
from app.core.document_store import DocumentStore
from app.core.image_processor import ImageProcessor
from app.core.whatsapp_client import MessagingError, WhatsAppClient
from app.prompts import messages
from app.schemas.conversation_schemas import ConversationState, SearchResult, Step
from app.schemas.order_schemas import DeliveryLocation, OrderStatus, utc_now
from app.schemas.whatsapp_schemas import Button, EventKind, InboundEvent
from app.services.appointment_service import AppointmentService
from app.services.cart_service import CartService
from app.services.conversation_store import ConversationStore
from app.services.courier_service import CourierAssignmentService
from app.services.errors import OrderRuleViolation, PrescriptionRequired, UnknownMedicine
from app.services.intent_classifier import Intent, IntentResult, KeywordIntentClassifier
from app.services.prescription_service import PrescriptionValidationService
from configs.settings import Settings
from configs.logger import logger

DUPLICATE_WINDOW_SECONDS = 300
MIN_SEARCH_LENGTH = 3
SEARCH_LIMIT = 10

TextHandler = Callable[[InboundEvent, ConversationState, IntentResult], Awaitable[None]]
RoleHandler = Callable[[InboundEvent, str], Awaitable[None]]

WELCOME_BUTTONS = [
    Button(id="menu:search", title="Médicament"),
    Button(id="menu:on_duty", title="Pharmacie de garde"),
    Button(id="menu:appointment", title="Rendez-vous"),
]


class Dispatcher:
    """Routes one inbound event to its handler under the sender's lock.

    Text goes through the routing tables in order: (step, intent), the
    step's free-text handler, (any step, intent), then advice. Button ids
    are `prefix:argument`; pharmacy and courier buttons act on orders and
    never read the sender's own conversation.
    """

    def __init__(
        self,
        conversations: ConversationStore,
        store: DocumentStore,
        messenger: WhatsAppClient,
        cart: CartService,
        prescriptions: PrescriptionValidationService,
        couriers: CourierAssignmentService,
        appointments: AppointmentService,
        advice: AdviceClient,
        ocr: ImageProcessor,
        settings: Settings,
        classifier=None,
    ):
        self.conversations = conversations
        self.store = store
        self.messenger = messenger
        self.cart = cart
        self.prescriptions = prescriptions
        self.couriers = couriers
        self.appointments = appointments
        self.advice = advice
        self.ocr = ocr
        self.settings = settings
        self.classifier = classifier or KeywordIntentClassifier()
        self._seen: Dict[str, float] = {}

        self.text_routes: Dict[Tuple[Step, Intent], TextHandler] = {
            (Step.AWAITING_PRESCRIPTION_PHOTO, Intent.ADVICE): self._remind_photo,
            (Step.AWAITING_DELIVERY_LOCATION, Intent.ADVICE): self._remind_location,
        }
        self.step_handlers: Dict[Step, TextHandler] = {
            Step.AWAITING_MEDICINE_SEARCH: self._search_free_text,
            Step.AWAITING_APPOINTMENT_SPECIALTY: self._appointment_specialty,
            Step.AWAITING_DOCTOR_SELECTION: self._appointment_clinic,
            Step.AWAITING_APPOINTMENT_DATE: self._appointment_date,
            Step.AWAITING_APPOINTMENT_TIME: self._appointment_time,
        }
        # Free-text steps still honour "annuler".
        for step in self.step_handlers:
            self.text_routes[(step, Intent.CANCEL)] = self._cancel
        self.text_routes.update({
            (Step.AWAITING_MEDICINE_SEARCH, Intent.ORDER_ITEM): self._order_item,
            (Step.AWAITING_MEDICINE_SEARCH, Intent.VIEW_CART): self._view_cart,
            (Step.AWAITING_MEDICINE_SEARCH, Intent.CLEAR_CART): self._clear_cart,
            (Step.AWAITING_MEDICINE_SEARCH, Intent.CHECKOUT): self._checkout,
        })
        self.global_routes: Dict[Intent, TextHandler] = {
            Intent.SEARCH_MEDICINE: self._search_intent,
            Intent.ON_DUTY_PHARMACY: self._on_duty,
            Intent.APPOINTMENT: self._appointment_start,
            Intent.LIST_CLINICS: self._list_clinics,
            Intent.ORDER_ITEM: self._order_item,
            Intent.VIEW_CART: self._view_cart,
            Intent.CLEAR_CART: self._clear_cart,
            Intent.CHECKOUT: self._checkout,
            Intent.CONTINUE: self._continue,
            Intent.CANCEL: self._cancel,
            Intent.GREETING: self._greeting,
            Intent.THANKS: self._thanks,
            Intent.SUPPORT: self._support,
            Intent.ADVICE: self._advice,
        }
        self.role_buttons: Dict[str, RoleHandler] = {
            "rx_accept": self._rx_accept,
            "rx_reject": self._rx_reject,
            "courier_accept": self._courier_accept,
            "courier_refuse": self._courier_refuse,
            "courier_pickup": self._courier_pickup,
            "courier_delivered": self._courier_delivered,
        }
        self.menu_buttons: Dict[str, Callable[[InboundEvent, ConversationState], Awaitable[None]]] = {
            "search": self._menu_search,
            "on_duty": self._menu_on_duty,
            "appointment": self._menu_appointment,
        }

    def is_duplicate(self, message_id: str) -> bool:
        now = time.monotonic()
        for seen_id, seen_at in list(self._seen.items()):
            if now - seen_at > DUPLICATE_WINDOW_SECONDS:
                del self._seen[seen_id]
        if message_id in self._seen:
            return True
        self._seen[message_id] = now
        return False

    @staticmethod
    def split_button(button_id: Optional[str]) -> Tuple[str, str]:
        prefix, _, argument = (button_id or "").partition(":")
        return prefix, argument

    async def handle(self, event: InboundEvent) -> None:
        if event.kind in (EventKind.AUDIO, EventKind.VOICE):
            logger.info(f"Dropping {event.kind} message from {event.user_id}")
            return
        if self.is_duplicate(event.message_id):
            logger.info(f"Duplicate message {event.message_id} ignored")
            return

        user_id = event.user_id
        async with self.conversations.locked(user_id):
            state = self.conversations.get(user_id)
            prefix, argument = self.split_button(event.button_id)
            role_action = event.kind == EventKind.BUTTON and prefix in self.role_buttons
            try:
                if role_action:
                    await self.role_buttons[prefix](event, argument)
                else:
                    if not state.initialized:
                        await self._welcome(event, state)
                    await self._route(event, state)
            except OrderRuleViolation as e:
                logger.info(f"Rule violation for {user_id}: {str(e)}")
                if role_action:
                    state = self.conversations.get(user_id)
                await self._safe_reply(user_id, state, messages.rule_violation(e, self.settings.SUPPORT_PHONE))
            except Exception as e:
                logger.exception(f"Error handling {event.kind} event from {user_id}: {str(e)}")
                await self._safe_reply(user_id, None, messages.generic_apology(self.settings.SUPPORT_PHONE))
                return
            if role_action:
                # The coordinators may have written this user's state meanwhile.
                state = self.conversations.get(user_id)
            state.last_activity = utc_now()
            self.conversations.set(user_id, state)

    async def _route(self, event: InboundEvent, state: ConversationState) -> None:
        if event.kind == EventKind.TEXT:
            await self._route_text(event, state)
        elif event.kind == EventKind.IMAGE:
            await self._on_image(event, state)
        elif event.kind == EventKind.LOCATION:
            await self._on_location(event, state)
        elif event.kind == EventKind.BUTTON:
            await self._on_menu_button(event, state)

    async def _route_text(self, event: InboundEvent, state: ConversationState) -> None:
        text = event.text or ""
        state.remember("user", text)
        result = await self.classifier.classify(text)
        step = Step(state.step)
        handler = (
            self.text_routes.get((step, result.intent))
            or self.step_handlers.get(step)
            or self.global_routes.get(result.intent)
            or self._advice
        )
        await handler(event, state, result)

    async def _reply(self, user_id: str, state: Optional[ConversationState], text: str) -> None:
        await self.messenger.send_text(user_id, text)
        if state is not None:
            state.remember("assistant", text)

    async def _safe_reply(self, user_id: str, state: Optional[ConversationState], text: str) -> None:
        try:
            await self._reply(user_id, state, text)
        except MessagingError as e:
            logger.error(f"Could not reply to {user_id}: {str(e)}")

    async def _welcome(self, event: InboundEvent, state: ConversationState) -> None:
        await self._reply(event.user_id, state, messages.welcome(self.settings.SUPPORT_PHONE))
        await self.messenger.send_buttons(event.user_id, messages.menu_prompt(), WELCOME_BUTTONS)
        state.initialized = True
        state.profile.name = state.profile.name or event.profile_name
        logger.info(f"New conversation with {event.user_id}")

    # Medicine search and cart

    async def search(self, event: InboundEvent, state: ConversationState, term: str) -> None:
        term = (term or "").strip()
        if len(term) < MIN_SEARCH_LENGTH:
            await self._reply(event.user_id, state, messages.search_too_short())
            return
        medicines = await self.store.search_medicines(term, limit=SEARCH_LIMIT)
        if not medicines:
            state.step = Step.MENU
            await self._reply(event.user_id, state, messages.search_not_found(term, self.settings.SUPPORT_PHONE))
            return

        pharmacy_names: Dict[str, str] = {}
        results = []
        for number, medicine in enumerate(medicines, start=1):
            if medicine.pharmacy_id not in pharmacy_names:
                pharmacy = await self.store.get_pharmacy(medicine.pharmacy_id)
                pharmacy_names[medicine.pharmacy_id] = pharmacy.name if pharmacy else medicine.pharmacy_id
            results.append(SearchResult(
                index=number,
                medicine_id=medicine.id,
                name=medicine.name,
                pharmacy_id=medicine.pharmacy_id,
                pharmacy_name=pharmacy_names[medicine.pharmacy_id],
                price=medicine.price,
                stock=medicine.stock,
                requires_prescription=medicine.requires_prescription,
                dosage=medicine.dosage,
                form=medicine.form,
            ))
        state.search_results = results
        state.step = Step.AWAITING_FILTERED_ORDER_SELECTION
        await self._reply(event.user_id, state, messages.search_results(term, results, len(state.cart)))

    async def _search_intent(self, event, state, result):
        await self.search(event, state, result.medicine_name or event.text)

    async def _search_free_text(self, event, state, result):
        await self.search(event, state, event.text)

    async def _order_item(self, event, state, result):
        if not state.search_results:
            await self._reply(event.user_id, state, messages.no_search_results_yet())
            return
        found = state.find_result(result.index)
        if found is None:
            raise UnknownMedicine(str(result.index))
        try:
            item = await self.cart.try_add_item(state, found.medicine_id, result.quantity)
        except PrescriptionRequired as e:
            await self.cart.open_prescription_order(
                state, event.user_id, found.medicine_id, result.quantity, state.profile.name
            )
            await self._reply(event.user_id, state, e.instructions)
            return
        await self._reply(event.user_id, state, messages.item_added(item, state.cart))

    async def _view_cart(self, event, state, result):
        await self._reply(
            event.user_id, state, messages.cart_summary(state.cart, state.pharmacy_name, self.cart.current_fee())
        )

    async def _clear_cart(self, event, state, result):
        state.clear_cart()
        await self._reply(event.user_id, state, messages.cart_cleared())

    async def _checkout(self, event, state, result):
        if not state.cart:
            await self._reply(event.user_id, state, messages.cart_empty())
            return
        state.step = Step.AWAITING_DELIVERY_LOCATION
        await self._reply(event.user_id, state, messages.ask_delivery_location(state.cart, self.cart.current_fee()))

    async def _continue(self, event, state, result):
        state.step = Step.AWAITING_MEDICINE_SEARCH
        await self._reply(event.user_id, state, messages.continue_shopping())

    async def _cancel(self, event, state, result):
        if state.awaiting_photo:
            state.pending_item = None
        state.reset_to_menu()
        await self._reply(event.user_id, state, messages.cancelled())

    async def _remind_photo(self, event, state, result):
        await self._reply(event.user_id, state, messages.photo_reminder())

    async def _remind_location(self, event, state, result):
        await self._reply(event.user_id, state, messages.location_reminder())

    async def _on_location(self, event: InboundEvent, state: ConversationState) -> None:
        location = DeliveryLocation(latitude=event.latitude, longitude=event.longitude, address=event.address)
        if state.step != Step.AWAITING_DELIVERY_LOCATION:
            state.location = location
            await self._reply(event.user_id, state, messages.location_saved())
            return

        order = await self.cart.checkout(state, event.user_id, location, state.profile.name)
        state.step = Step.MENU
        if order.status == OrderStatus.PENDING_PRESCRIPTION.value:
            state.step = Step.AWAITING_PRESCRIPTION_PHOTO
            state.awaiting_photo = True
            await self._reply(event.user_id, state, messages.prescription_needed_at_checkout(order.id))
            return
        dispatched = await self.couriers.dispatch(order.id)
        if dispatched is None:
            await self._reply(event.user_id, state, messages.stale_action())
        elif dispatched.status == OrderStatus.UNASSIGNABLE.value and state.active_order_id == dispatched.id:
            # Released in the store while this copy was held; keep them in step.
            state.active_order_id = None

    async def _on_image(self, event: InboundEvent, state: ConversationState) -> None:
        if state.awaiting_photo or state.step == Step.AWAITING_PRESCRIPTION_PHOTO:
            order = await self.prescriptions.submit_photo(state, event.media_id)
            await self._reply(event.user_id, state, messages.prescription_received(order.id))
            return

        text = await self.ocr.process_image(event.media_id)
        term = (text or "").strip().splitlines()[0] if text and text.strip() else event.caption
        if term:
            await self.search(event, state, term)
            return
        state.step = Step.AWAITING_MEDICINE_SEARCH
        await self._reply(event.user_id, state, messages.image_search_prompt())

    # Pharmacies, clinics, appointments and small talk

    async def _on_duty(self, event, state, result):
        pharmacies = await self.store.list_on_duty_pharmacies(limit=5)
        if not pharmacies:
            await self._reply(event.user_id, state, messages.on_duty_empty(self.settings.SUPPORT_PHONE))
            return
        await self._reply(event.user_id, state, messages.on_duty_list(pharmacies, self.settings.SUPPORT_PHONE))

    async def _list_clinics(self, event, state, result):
        clinics = await self.store.list_verified_clinics(limit=5)
        if not clinics:
            await self._reply(event.user_id, state, messages.clinics_empty(self.settings.SUPPORT_PHONE))
            return
        await self._reply(event.user_id, state, messages.clinics_list(clinics, self.settings.SUPPORT_PHONE))

    async def _appointment_start(self, event, state, result):
        if result.specialty:
            reply = await self.appointments.choose_specialty(state, result.specialty)
        else:
            reply = self.appointments.start(state)
        await self._reply(event.user_id, state, reply)

    async def _appointment_specialty(self, event, state, result):
        await self._reply(event.user_id, state, await self.appointments.choose_specialty(state, event.text))

    async def _appointment_clinic(self, event, state, result):
        await self._reply(event.user_id, state, self.appointments.choose_clinic(state, event.text))

    async def _appointment_date(self, event, state, result):
        await self._reply(event.user_id, state, self.appointments.choose_date(state, event.text))

    async def _appointment_time(self, event, state, result):
        await self._reply(event.user_id, state, await self.appointments.book(state, event.user_id, event.text))

    async def _greeting(self, event, state, result):
        await self._reply(event.user_id, state, messages.greeting())

    async def _thanks(self, event, state, result):
        await self._reply(event.user_id, state, messages.thanks())

    async def _support(self, event, state, result):
        await self._reply(event.user_id, state, messages.support_contact(self.settings.SUPPORT_PHONE))

    async def _advice(self, event, state, result):
        await self._reply(event.user_id, state, await self.advice.advise(event.text or "", state))

    # Buttons

    async def _on_menu_button(self, event: InboundEvent, state: ConversationState) -> None:
        prefix, argument = self.split_button(event.button_id)
        handler = self.menu_buttons.get(argument) if prefix == "menu" else None
        if handler is None:
            logger.info(f"Unknown button {event.button_id} from {event.user_id}")
            state.reset_to_menu()
            await self._reply(event.user_id, state, messages.unknown_button())
            return
        await handler(event, state)

    async def _menu_search(self, event, state):
        state.step = Step.AWAITING_MEDICINE_SEARCH
        await self._reply(event.user_id, state, messages.ask_medicine_name())

    async def _menu_on_duty(self, event, state):
        await self._on_duty(event, state, None)

    async def _menu_appointment(self, event, state):
        await self._reply(event.user_id, state, self.appointments.start(state))

    async def _rx_accept(self, event: InboundEvent, order_id: str) -> None:
        order = await self.prescriptions.approve(order_id, event.user_id)
        text = messages.review_recorded(order_id, True) if order else messages.stale_action()
        await self._reply(event.user_id, None, text)

    async def _rx_reject(self, event: InboundEvent, order_id: str) -> None:
        order = await self.prescriptions.reject(order_id, event.user_id)
        text = messages.review_recorded(order_id, False) if order else messages.stale_action()
        await self._reply(event.user_id, None, text)

    async def _courier_accept(self, event: InboundEvent, order_id: str) -> None:
        order = await self.couriers.accept(order_id, event.user_id)
        if order is None:
            await self._reply(event.user_id, None, messages.stale_action())

    async def _courier_refuse(self, event: InboundEvent, order_id: str) -> None:
        order = await self.couriers.refuse(order_id, event.user_id)
        text = messages.courier_refusal_recorded(order_id) if order else messages.stale_action()
        await self._reply(event.user_id, None, text)

    async def _courier_pickup(self, event: InboundEvent, order_id: str) -> None:
        if await self.couriers.mark_picked_up(order_id, event.user_id) is None:
            await self._reply(event.user_id, None, messages.stale_action())

    async def _courier_delivered(self, event: InboundEvent, order_id: str) -> None:
        if await self.couriers.mark_delivered(order_id, event.user_id) is None:
            await self._reply(event.user_id, None, messages.stale_action())
