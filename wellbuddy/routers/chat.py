import logging
import re
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from ..agent.errors import StorageError
from ..agent.pipeline import process_message
from ..agent.services import AgentServices, get_services
from ..agent.utils.nanoid import link_code
from ..schemas.chat import MessengerEvent, MessengerReply, ProcessMessageRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

LINK_CODE_RE = re.compile(r"^[A-Z0-9]{8}$")

WELCOME_TEXT = (
    "Welcome to WellBuddy! To get started, please enter the 8-character unique code from your profile in the app."
)
INVALID_CODE_TEXT = "That code doesn't seem to be valid. Please check your profile in the app and try again."
LINKED_TEXT = "Welcome {name}! Your account has been successfully linked. I'm your AI wellness coach. How can I help you today?"


@router.post("/link-code/{user_id}")
async def issue_link_code(user_id: str, services: AgentServices = Depends(get_services)) -> Dict[str, Any]:
    profile = await services.store.get_profile(user_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="user not found")
    code = profile.link_code
    if not code:
        code = link_code()
        await services.store.patch_profile(user_id, {"link_code": code})
    return {"userId": user_id, "linkCode": code}


@router.post("/message")
async def message(body: ProcessMessageRequest, services: AgentServices = Depends(get_services)) -> Dict[str, Any]:
    if not body.message.strip():
        raise HTTPException(status_code=400, detail="message is required")
    result = await process_message(services, body.user_id, body.message, body.timestamp)
    return result.model_dump(by_alias=True, exclude_none=True)


async def _link_sender(services: AgentServices, event: MessengerEvent) -> MessengerReply:
    code = event.text.strip().upper()
    if not LINK_CODE_RE.match(code):
        return MessengerReply(recipient_id=event.sender_id, text=WELCOME_TEXT)
    profile = await services.store.find_profile_by_link_code(code)
    if profile is None:
        return MessengerReply(recipient_id=event.sender_id, text=INVALID_CODE_TEXT)
    try:
        await services.store.patch_profile(profile.id, {"messenger_sender_id": event.sender_id})
    except StorageError:
        logger.exception("Could not link messenger sender %s to user %s", event.sender_id, profile.id)
        raise HTTPException(status_code=503, detail="storage unavailable")
    logger.info("Linked messenger sender %s to user %s", event.sender_id, profile.id)
    return MessengerReply(recipient_id=event.sender_id, text=LINKED_TEXT.format(name=profile.display_name), linked=True)


@router.post("/messenger")
async def messenger(event: MessengerEvent, services: AgentServices = Depends(get_services)) -> Dict[str, Any]:
    profile = await services.store.find_profile_by_sender(event.sender_id)
    if profile is None:
        reply = await _link_sender(services, event)
    else:
        result = await process_message(services, profile.id, event.text, event.timestamp, source="messenger")
        reply = MessengerReply(recipient_id=event.sender_id, text=result.response_text)
    try:
        await services.sender.send(reply.recipient_id, reply.text)
    except Exception:  # pylint: disable=broad-except
        logger.exception("Messenger delivery to %s failed", reply.recipient_id)
    return reply.model_dump(by_alias=True)
