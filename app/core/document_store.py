import copy
import re
import unicodedata
import uuid
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel
from pymongo import ReturnDocument
from app.schemas.order_schemas import (
    Appointment,
    Clinic,
    Courier,
    CourierAttempt,
    Medicine,
    Order,
    Pharmacy,
    can_transition,
    utc_now,
)
from app.schemas.whatsapp_schemas import normalize_phone
from app.services.errors import InvalidTransition
from configs.logger import logger


def _encode(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [_encode(item) for item in value]
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    return value


ACCENT_CLASSES = {
    "a": "[aàâä]",
    "c": "[cç]",
    "e": "[eéèêë]",
    "i": "[iîï]",
    "o": "[oôö]",
    "u": "[uùûü]",
}


def _accent_pattern(term: str) -> str:
    return "".join(ACCENT_CLASSES.get(ch, re.escape(ch)) for ch in _fold(term))


def _fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text or "")
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()


class DocumentStore(ABC):
    """Entity storage for the order workflow.

    Order mutations go through `compare_and_set_order`: the write only happens
    when every expected field still holds its expected value, and `None` is
    returned otherwise. That conditional write is what settles the races
    between duplicate button replies and offer timeouts.
    """

    @abstractmethod
    async def get_pharmacy(self, pharmacy_id: str) -> Optional[Pharmacy]: ...

    @abstractmethod
    async def list_on_duty_pharmacies(self, limit: int = 5) -> List[Pharmacy]: ...

    @abstractmethod
    async def get_medicine(self, medicine_id: str) -> Optional[Medicine]: ...

    @abstractmethod
    async def search_medicines(self, term: str, limit: int = 10) -> List[Medicine]: ...

    @abstractmethod
    async def decrement_stock(self, medicine_id: str, quantity: int) -> bool:
        """Take `quantity` units if at least that many are left."""

    @abstractmethod
    async def increment_stock(self, medicine_id: str, quantity: int) -> None: ...

    @abstractmethod
    async def list_available_couriers(self, limit: int = 5) -> List[Courier]: ...

    @abstractmethod
    async def get_courier(self, courier_id: str) -> Optional[Courier]: ...

    @abstractmethod
    async def get_courier_by_phone(self, phone: str) -> Optional[Courier]: ...

    @abstractmethod
    async def list_verified_clinics(self, limit: Optional[int] = None) -> List[Clinic]: ...

    @abstractmethod
    async def insert_order(self, order: Order) -> Order: ...

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[Order]: ...

    @abstractmethod
    async def _compare_and_set(
        self,
        order_id: str,
        expected: Dict[str, Any],
        changes: Dict[str, Any],
        push_attempt: Optional[Dict[str, Any]],
    ) -> Optional[Order]: ...

    @abstractmethod
    async def insert_appointment(self, appointment: Appointment) -> str: ...

    @abstractmethod
    async def insert_support_notification(self, notification: Dict[str, Any]) -> None: ...

    async def compare_and_set_order(
        self,
        order_id: str,
        expected: Dict[str, Any],
        changes: Dict[str, Any],
        push_attempt: Optional[CourierAttempt] = None,
    ) -> Optional[Order]:
        changes = {**_encode(changes), "updated_at": utc_now()}
        return await self._compare_and_set(
            order_id,
            _encode(expected),
            changes,
            _encode(push_attempt) if push_attempt else None,
        )

    async def transition_order(
        self,
        order_id: str,
        current: str,
        target: str,
        expected: Optional[Dict[str, Any]] = None,
        changes: Optional[Dict[str, Any]] = None,
        push_attempt: Optional[CourierAttempt] = None,
    ) -> Optional[Order]:
        """Move an order from `current` to `target`; None when the order is no longer in `current`."""
        if not can_transition(current, target):
            raise InvalidTransition(current, target)
        updated = await self.compare_and_set_order(
            order_id,
            {**(expected or {}), "status": current},
            {**(changes or {}), "status": target},
            push_attempt,
        )
        if updated is None:
            logger.info(f"Stale transition for order {order_id}: {current} -> {target} skipped")
        return updated


class MongoDocumentStore(DocumentStore):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    @staticmethod
    def _from_doc(doc: Optional[Dict]) -> Optional[Dict]:
        if doc is None:
            return None
        doc = dict(doc)
        doc["id"] = str(doc.pop("_id"))
        return doc

    @staticmethod
    def _to_doc(model: BaseModel) -> Dict:
        doc = model.model_dump()
        doc["_id"] = doc.pop("id")
        return doc

    async def get_pharmacy(self, pharmacy_id: str) -> Optional[Pharmacy]:
        doc = await self.db.pharmacies.find_one({"_id": pharmacy_id})
        return Pharmacy(**self._from_doc(doc)) if doc else None

    async def list_on_duty_pharmacies(self, limit: int = 5) -> List[Pharmacy]:
        cursor = self.db.pharmacies.find({"on_duty": True, "is_open": True}).limit(limit)
        return [Pharmacy(**self._from_doc(doc)) async for doc in cursor]

    async def get_medicine(self, medicine_id: str) -> Optional[Medicine]:
        doc = await self.db.medicines.find_one({"_id": medicine_id})
        return Medicine(**self._from_doc(doc)) if doc else None

    async def search_medicines(self, term: str, limit: int = 10) -> List[Medicine]:
        cursor = self.db.medicines.find({
            "stock": {"$gt": 0},
            "name": {"$regex": _accent_pattern(term.strip()), "$options": "i"},
        }).limit(limit)
        return [Medicine(**self._from_doc(doc)) async for doc in cursor]

    async def decrement_stock(self, medicine_id: str, quantity: int) -> bool:
        result = await self.db.medicines.update_one(
            {"_id": medicine_id, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}},
        )
        return result.modified_count == 1

    async def increment_stock(self, medicine_id: str, quantity: int) -> None:
        await self.db.medicines.update_one({"_id": medicine_id}, {"$inc": {"stock": quantity}})

    async def list_available_couriers(self, limit: int = 5) -> List[Courier]:
        cursor = self.db.couriers.find({"available": True, "verified": True}).limit(limit)
        return [Courier(**self._from_doc(doc)) async for doc in cursor]

    async def get_courier(self, courier_id: str) -> Optional[Courier]:
        doc = await self.db.couriers.find_one({"_id": courier_id})
        return Courier(**self._from_doc(doc)) if doc else None

    async def get_courier_by_phone(self, phone: str) -> Optional[Courier]:
        digits = normalize_phone(phone)
        doc = await self.db.couriers.find_one({"phone": {"$in": [digits, f"+{digits}"]}})
        return Courier(**self._from_doc(doc)) if doc else None

    async def list_verified_clinics(self, limit: Optional[int] = None) -> List[Clinic]:
        cursor = self.db.clinics.find({"verified": True})
        if limit:
            cursor = cursor.limit(limit)
        return [Clinic(**self._from_doc(doc)) async for doc in cursor]

    async def insert_order(self, order: Order) -> Order:
        await self.db.orders.insert_one(self._to_doc(order))
        logger.info(f"Order {order.id} saved")
        return order

    async def get_order(self, order_id: str) -> Optional[Order]:
        doc = await self.db.orders.find_one({"_id": order_id})
        return Order(**self._from_doc(doc)) if doc else None

    async def _compare_and_set(self, order_id, expected, changes, push_attempt):
        query: Dict[str, Any] = {"_id": order_id}
        for path, value in expected.items():
            query[path] = {"$in": value} if isinstance(value, list) else value
        update: Dict[str, Any] = {"$set": changes}
        if push_attempt:
            update["$push"] = {"courier_attempts": push_attempt}
        doc = await self.db.orders.find_one_and_update(
            query, update, return_document=ReturnDocument.AFTER
        )
        return Order(**self._from_doc(doc)) if doc else None

    async def insert_appointment(self, appointment: Appointment) -> str:
        doc = appointment.model_dump(exclude={"id"})
        doc["_id"] = appointment.id or uuid.uuid4().hex
        await self.db.appointments.insert_one(doc)
        return doc["_id"]

    async def insert_support_notification(self, notification: Dict[str, Any]) -> None:
        await self.db.support_notifications.insert_one({**notification, "created_at": utc_now()})


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store for local runs and tests.

    Every method completes without awaiting, so each call is atomic on the
    event loop, which gives `compare_and_set_order` the same guarantee as a
    conditional document update.
    """

    def __init__(self):
        self.pharmacies: Dict[str, Dict] = {}
        self.medicines: Dict[str, Dict] = {}
        self.couriers: Dict[str, Dict] = {}
        self.clinics: Dict[str, Dict] = {}
        self.orders: Dict[str, Dict] = {}
        self.appointments: Dict[str, Dict] = {}
        self.support_notifications: List[Dict] = []

    def add_pharmacy(self, pharmacy: Pharmacy) -> None:
        self.pharmacies[pharmacy.id] = pharmacy.model_dump()

    def add_medicine(self, medicine: Medicine) -> None:
        self.medicines[medicine.id] = medicine.model_dump()

    def add_courier(self, courier: Courier) -> None:
        self.couriers[courier.id] = courier.model_dump()

    def add_clinic(self, clinic: Clinic) -> None:
        self.clinics[clinic.id] = clinic.model_dump()

    @staticmethod
    def _resolve(doc: Any, path: str) -> Any:
        for part in path.split("."):
            if isinstance(doc, list):
                index = int(part)
                if index >= len(doc):
                    return None
                doc = doc[index]
            elif isinstance(doc, dict):
                doc = doc.get(part)
            else:
                return None
        return doc

    @staticmethod
    def _assign(doc: Any, path: str, value: Any) -> None:
        parts = path.split(".")
        for part in parts[:-1]:
            doc = doc[int(part)] if isinstance(doc, list) else doc.setdefault(part, {})
        last = parts[-1]
        if isinstance(doc, list):
            doc[int(last)] = value
        else:
            doc[last] = value

    async def get_pharmacy(self, pharmacy_id: str) -> Optional[Pharmacy]:
        doc = self.pharmacies.get(pharmacy_id)
        return Pharmacy(**doc) if doc else None

    async def list_on_duty_pharmacies(self, limit: int = 5) -> List[Pharmacy]:
        found = [Pharmacy(**doc) for doc in self.pharmacies.values() if doc["on_duty"] and doc["is_open"]]
        return found[:limit]

    async def get_medicine(self, medicine_id: str) -> Optional[Medicine]:
        doc = self.medicines.get(medicine_id)
        return Medicine(**doc) if doc else None

    async def search_medicines(self, term: str, limit: int = 10) -> List[Medicine]:
        needle = _fold(term.strip())
        found = [
            Medicine(**doc)
            for doc in self.medicines.values()
            if doc["stock"] > 0 and needle in _fold(doc["name"])
        ]
        return found[:limit]

    async def decrement_stock(self, medicine_id: str, quantity: int) -> bool:
        doc = self.medicines.get(medicine_id)
        if doc is None or doc["stock"] < quantity:
            return False
        doc["stock"] -= quantity
        return True

    async def increment_stock(self, medicine_id: str, quantity: int) -> None:
        if medicine_id in self.medicines:
            self.medicines[medicine_id]["stock"] += quantity

    async def list_available_couriers(self, limit: int = 5) -> List[Courier]:
        found = [Courier(**doc) for doc in self.couriers.values() if doc["available"] and doc["verified"]]
        return found[:limit]

    async def get_courier(self, courier_id: str) -> Optional[Courier]:
        doc = self.couriers.get(courier_id)
        return Courier(**doc) if doc else None

    async def get_courier_by_phone(self, phone: str) -> Optional[Courier]:
        digits = normalize_phone(phone)
        for doc in self.couriers.values():
            if normalize_phone(doc["phone"]) == digits:
                return Courier(**doc)
        return None

    async def list_verified_clinics(self, limit: Optional[int] = None) -> List[Clinic]:
        found = [Clinic(**doc) for doc in self.clinics.values() if doc["verified"]]
        return found[:limit] if limit else found

    async def insert_order(self, order: Order) -> Order:
        self.orders[order.id] = order.model_dump()
        return order

    async def get_order(self, order_id: str) -> Optional[Order]:
        doc = self.orders.get(order_id)
        return Order(**copy.deepcopy(doc)) if doc else None

    async def _compare_and_set(self, order_id, expected, changes, push_attempt):
        doc = self.orders.get(order_id)
        if doc is None:
            return None
        for path, value in expected.items():
            current = self._resolve(doc, path)
            if isinstance(value, list):
                if current not in value:
                    return None
            elif current != value:
                return None
        for path, value in changes.items():
            self._assign(doc, path, copy.deepcopy(value))
        if push_attempt:
            doc["courier_attempts"].append(copy.deepcopy(push_attempt))
        return Order(**copy.deepcopy(doc))

    async def insert_appointment(self, appointment: Appointment) -> str:
        appointment_id = appointment.id or uuid.uuid4().hex
        self.appointments[appointment_id] = {**appointment.model_dump(), "id": appointment_id}
        return appointment_id

    async def insert_support_notification(self, notification: Dict[str, Any]) -> None:
        self.support_notifications.append({**notification, "created_at": utc_now()})
