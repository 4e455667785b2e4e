"""Message REST endpoints.

HTTP-originated sends run through the same persist-then-notify
pipeline as socket sends; the stored message is the sender's
confirmation.
"""

import logging

from fastapi import APIRouter, Depends

from src.api.dependencies import get_gateway, require_user_id
from src.api.models import MessageResponse, SendMessageRequest
from src.errors.validators import validate_user_id
from src.realtime.delivery import DeliveryReport
from src.realtime.gateway import RealtimeGateway

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/messages", tags=["Messages"])


def _to_response(report: DeliveryReport) -> MessageResponse:
    return MessageResponse(**report.message.to_dict(), recipients=sorted(report.recipients))


@router.post("/send/{receiver_id}", response_model=MessageResponse, status_code=201)
async def send_direct_message(
    receiver_id: str,
    body: SendMessageRequest,
    user_id: str = Depends(require_user_id),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    """Send a 1:1 message; both participants receive ``new_message``."""
    report = await gateway.send_message(
        user_id,
        text=body.text,
        receiver_id=validate_user_id(receiver_id, "receiver_id"),
        image_url=body.image_url,
        audio_url=body.audio_url,
    )
    return _to_response(report)


@router.post("/group/{chat_id}", response_model=MessageResponse, status_code=201)
async def send_group_message(
    chat_id: str,
    body: SendMessageRequest,
    user_id: str = Depends(require_user_id),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    """Send a group message; every other member receives ``new_message``."""
    report = await gateway.send_message(
        user_id,
        text=body.text,
        chat_id=validate_user_id(chat_id, "chat_id"),
        image_url=body.image_url,
        audio_url=body.audio_url,
    )
    return _to_response(report)
