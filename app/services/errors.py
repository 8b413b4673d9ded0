from typing import Optional


class OrderRuleViolation(Exception):
    """Business rule violation; always answered to the user, never logged as a fault."""


class PrescriptionRequired(OrderRuleViolation):
    def __init__(self, medicine_id: str, medicine_name: str, instructions: str):
        self.medicine_id = medicine_id
        self.medicine_name = medicine_name
        self.instructions = instructions
        super().__init__(f"{medicine_name} requires an approved prescription")


class PharmacyMismatch(OrderRuleViolation):
    def __init__(self, cart_pharmacy: Optional[str], requested_pharmacy: Optional[str]):
        self.cart_pharmacy = cart_pharmacy
        self.requested_pharmacy = requested_pharmacy
        super().__init__(f"cart belongs to {cart_pharmacy}, requested item comes from {requested_pharmacy}")


class InsufficientStock(OrderRuleViolation):
    def __init__(self, medicine_name: str, available: int, requested: int):
        self.medicine_name = medicine_name
        self.available = available
        self.requested = requested
        super().__init__(f"{medicine_name}: requested {requested}, available {available}")


class InvalidQuantity(OrderRuleViolation):
    def __init__(self, quantity: int):
        self.quantity = quantity
        super().__init__(f"invalid quantity {quantity}")


class UnknownMedicine(OrderRuleViolation):
    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"unknown medicine {reference}")


class EmptyCart(OrderRuleViolation):
    pass


class OutsideServiceZone(OrderRuleViolation):
    def __init__(self, latitude: float, longitude: float):
        self.latitude = latitude
        self.longitude = longitude
        super().__init__(f"({latitude}, {longitude}) is outside the delivery zone")


class NoCourierAvailable(OrderRuleViolation):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"no courier available for order {order_id}")


class NoPendingPrescription(OrderRuleViolation):
    pass


class NotAuthorized(OrderRuleViolation):
    def __init__(self, sender: str, order_id: str):
        self.sender = sender
        self.order_id = order_id
        super().__init__(f"{sender} may not act on order {order_id}")


class InvalidTransition(Exception):
    """Attempted status change that the order status table forbids."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"order cannot move from {current} to {target}")
