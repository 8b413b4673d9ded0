import base64
from typing import Optional
from langchain_openai import ChatOpenAI
from langchain_core.messages import HumanMessage
from app.core.whatsapp_client import WhatsAppClient
from configs.logger import logger

OCR_INSTRUCTIONS = (
    "Please read this image and do the following:\n\n"
    "1. If it's a prescription, write out the medicine names, dosages and instructions, one per line.\n"
    "2. If it's a medicine package, reply with the medicine name only.\n"
    "Reply with plain text and nothing else."
)


class ImageProcessor:
    """Text recognition over WhatsApp media through a vision chat model."""

    def __init__(self, llm: Optional[ChatOpenAI], messenger: WhatsAppClient):
        self.llm = llm
        self.messenger = messenger

    async def process_image(self, media_id: str) -> Optional[str]:
        """Return the recognised text, or None when recognition is unavailable or fails."""
        if self.llm is None:
            return None
        try:
            data = await self.messenger.download_media(media_id)
            image_url = f"data:image/jpeg;base64,{base64.b64encode(data).decode()}"
            message = HumanMessage(
                content=[
                    {"type": "text", "text": OCR_INSTRUCTIONS},
                    {"type": "image_url", "image_url": {"url": image_url}},
                ],
            )
            response = await self.llm.ainvoke([message])
            text = (response.content or "").strip()
            return text or None
        except Exception as e:
            logger.error(f"Image processing failed for media {media_id}: {str(e)}")
            return None
