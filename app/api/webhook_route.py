from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError
from typing import Annotated, Optional
from app.dependencies.depends import get_dispatcher, get_settings_dep
from app.schemas.whatsapp_schemas import WebhookPayload, extract_event
from app.services.dispatcher import Dispatcher
from configs.settings import Settings
from configs.logger import logger

router = APIRouter(tags=["WEBHOOK"], prefix="/api")


@router.get("/webhook", response_class=PlainTextResponse)
async def verify_webhook(
    settings: Annotated[Settings, Depends(get_settings_dep)],
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
):
    """Meta subscription handshake"""
    if mode == "subscribe" and token == settings.VERIFY_TOKEN:
        logger.info("Webhook verified")
        return PlainTextResponse(challenge or "")
    logger.warning("Webhook verification failed")
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/webhook", response_class=PlainTextResponse)
async def receive_webhook(
    body: dict,
    background_tasks: BackgroundTasks,
    dispatcher: Annotated[Dispatcher, Depends(get_dispatcher)],
):
    """Acknowledge immediately, process the event afterwards"""
    try:
        payload = WebhookPayload.model_validate(body)
    except ValidationError as e:
        logger.warning(f"Malformed webhook payload ignored: {str(e)}")
        return PlainTextResponse("EVENT_RECEIVED")

    event = extract_event(payload)
    if event is None:
        # Status callbacks and unsupported message types.
        return PlainTextResponse("EVENT_RECEIVED")

    logger.info(f"Received {event.kind} event {event.message_id} from {event.user_id}")
    background_tasks.add_task(dispatcher.handle, event)
    return PlainTextResponse("EVENT_RECEIVED")
