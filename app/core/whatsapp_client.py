from typing import Any, Dict, List, Optional
import aiohttp
from app.schemas.whatsapp_schemas import Button
from configs.settings import Settings
from configs.logger import logger

MAX_BUTTONS = 3


class MessagingError(Exception):
    """Raised when the WhatsApp Cloud API rejects or fails a call."""


class WhatsAppClient:
    def __init__(self, settings: Settings):
        self.base_url = f"https://graph.facebook.com/{settings.GRAPH_API_VERSION}"
        self.messages_url = f"{self.base_url}/{settings.PHONE_NUMBER_ID}/messages"
        self.headers = {
            "Authorization": f"Bearer {settings.WHATSAPP_TOKEN}",
            "Content-Type": "application/json",
        }

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(self.messages_url, headers=self.headers, json=payload) as response:
                    if response.status in (200, 201):
                        return await response.json()
                    error_text = await response.text()
                    logger.error(f"WhatsApp API error: Status {response.status}, Response: {error_text}")
                    raise MessagingError(f"WhatsApp API returned {response.status}: {error_text}")
        except aiohttp.ClientError as e:
            logger.error(f"HTTP error occurred while calling WhatsApp API: {str(e)}")
            raise MessagingError(f"HTTP error occurred: {str(e)}")

    async def send_text(self, to: str, text: str) -> Dict[str, Any]:
        logger.info(f"Sending text to {to}")
        return await self._post({
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": text},
        })

    async def send_image(self, to: str, image: str, caption: Optional[str] = None) -> Dict[str, Any]:
        """Send an image given either a public link or an uploaded media id."""
        body: Dict[str, Any] = {"link": image} if image.startswith("http") else {"id": image}
        if caption:
            body["caption"] = caption
        return await self._post({
            "messaging_product": "whatsapp",
            "to": to,
            "type": "image",
            "image": body,
        })

    async def send_buttons(self, to: str, text: str, buttons: List[Button]) -> Dict[str, Any]:
        if not buttons or len(buttons) > MAX_BUTTONS:
            raise ValueError(f"between 1 and {MAX_BUTTONS} buttons are allowed, got {len(buttons)}")
        return await self._post({
            "messaging_product": "whatsapp",
            "to": to,
            "type": "interactive",
            "interactive": {
                "type": "button",
                "body": {"text": text},
                "action": {
                    "buttons": [
                        {"type": "reply", "reply": {"id": button.id, "title": button.title}}
                        for button in buttons
                    ]
                },
            },
        })

    async def get_media_url(self, media_id: str) -> str:
        url = f"{self.base_url}/{media_id}"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(url, headers=self.headers) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise MessagingError(f"Media lookup failed for {media_id}: {response.status}, {error_text}")
                    data = await response.json()
                    return data["url"]
        except aiohttp.ClientError as e:
            raise MessagingError(f"HTTP error occurred: {str(e)}")

    async def download_media(self, media_id: str) -> bytes:
        """Media URLs are only readable with the bearer token, so the bytes are fetched here."""
        media_url = await self.get_media_url(media_id)
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(media_url, headers=self.headers) as response:
                    if response.status != 200:
                        raise MessagingError(f"Media download failed for {media_id}: {response.status}")
                    return await response.read()
        except aiohttp.ClientError as e:
            raise MessagingError(f"HTTP error occurred: {str(e)}")
