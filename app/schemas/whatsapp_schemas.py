from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class EventKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    LOCATION = "location"
    BUTTON = "button"
    AUDIO = "audio"
    VOICE = "voice"


# Cloud API webhook envelope, only the parts this service reads.
class TextBody(BaseModel):
    body: str = ""


class MediaBody(BaseModel):
    id: str
    caption: Optional[str] = None
    mime_type: Optional[str] = None


class LocationBody(BaseModel):
    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None


class ButtonReply(BaseModel):
    id: str
    title: Optional[str] = None


class InteractiveBody(BaseModel):
    type: str
    button_reply: Optional[ButtonReply] = None
    list_reply: Optional[ButtonReply] = None


class QuickReplyBody(BaseModel):
    payload: Optional[str] = None
    text: Optional[str] = None


class WebhookMessage(BaseModel):
    id: str
    sender: str = Field(alias="from")
    type: str
    timestamp: Optional[str] = None
    text: Optional[TextBody] = None
    image: Optional[MediaBody] = None
    audio: Optional[MediaBody] = None
    voice: Optional[MediaBody] = None
    location: Optional[LocationBody] = None
    interactive: Optional[InteractiveBody] = None
    button: Optional[QuickReplyBody] = None


class ContactProfile(BaseModel):
    name: Optional[str] = None


class Contact(BaseModel):
    wa_id: Optional[str] = None
    profile: Optional[ContactProfile] = None


class ChangeValue(BaseModel):
    messaging_product: Optional[str] = None
    contacts: List[Contact] = Field(default_factory=list)
    messages: List[WebhookMessage] = Field(default_factory=list)


class Change(BaseModel):
    field: Optional[str] = None
    value: ChangeValue


class Entry(BaseModel):
    id: Optional[str] = None
    changes: List[Change] = Field(default_factory=list)


class WebhookPayload(BaseModel):
    object: Optional[str] = None
    entry: List[Entry] = Field(default_factory=list)


class InboundEvent(BaseModel):
    """Single inbound chat event, normalised from the webhook envelope."""
    message_id: str
    user_id: str
    kind: EventKind
    profile_name: Optional[str] = None
    text: Optional[str] = None
    media_id: Optional[str] = None
    caption: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    button_id: Optional[str] = None


class Button(BaseModel):
    id: str
    title: str = Field(max_length=20)


def normalize_phone(phone: Optional[str]) -> str:
    return "".join(ch for ch in (phone or "") if ch.isdigit())


def extract_event(payload: WebhookPayload) -> Optional[InboundEvent]:
    """Return the first supported event of the envelope, or None."""
    for entry in payload.entry:
        for change in entry.changes:
            value = change.value
            if not value.messages:
                continue
            message = value.messages[0]
            profile_name = None
            if value.contacts and value.contacts[0].profile:
                profile_name = value.contacts[0].profile.name
            base = {
                "message_id": message.id,
                "user_id": normalize_phone(message.sender),
                "profile_name": profile_name,
            }

            if message.type == "text" and message.text:
                return InboundEvent(kind=EventKind.TEXT, text=message.text.body.strip(), **base)
            if message.type == "image" and message.image:
                return InboundEvent(
                    kind=EventKind.IMAGE,
                    media_id=message.image.id,
                    caption=message.image.caption,
                    **base,
                )
            if message.type == "location" and message.location:
                return InboundEvent(
                    kind=EventKind.LOCATION,
                    latitude=message.location.latitude,
                    longitude=message.location.longitude,
                    address=message.location.address or message.location.name,
                    **base,
                )
            if message.type == "interactive" and message.interactive:
                reply = message.interactive.button_reply or message.interactive.list_reply
                if reply:
                    return InboundEvent(kind=EventKind.BUTTON, button_id=reply.id, text=reply.title, **base)
            if message.type == "button" and message.button:
                return InboundEvent(
                    kind=EventKind.BUTTON,
                    button_id=message.button.payload,
                    text=message.button.text,
                    **base,
                )
            if message.type in ("audio", "voice"):
                media = message.audio or message.voice
                return InboundEvent(
                    kind=EventKind(message.type),
                    media_id=media.id if media else None,
                    **base,
                )
            return None
    return None
