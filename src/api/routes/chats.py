"""Chat and account change notifications.

The chat administration flows (clearing history, editing or deleting a
group, removing a member, deleting an account) call these endpoints
after they change state, so connected participants hear about it.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends

from src.api.dependencies import get_gateway, require_user_id
from src.api.models import GroupResponse, GroupUpdateRequest, NotifyResponse
from src.errors.validators import validate_user_id
from src.realtime.gateway import RealtimeGateway

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Chats"])


@router.post("/chats/clear/{peer_id}", response_model=NotifyResponse)
async def clear_direct_chat(
    peer_id: str,
    user_id: str = Depends(require_user_id),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    peer_id = validate_user_id(peer_id, "user_id")
    delivered = gateway.notify_chat_cleared([peer_id], user_id)
    return NotifyResponse(delivered=delivered)


@router.post("/chats/{chat_id}/clear", response_model=NotifyResponse)
async def clear_group_chat(
    chat_id: str,
    user_id: str = Depends(require_user_id),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    delivered = await gateway.notify_group_chat_cleared(validate_user_id(chat_id, "chat_id"), user_id)
    return NotifyResponse(delivered=delivered)


@router.post("/chats/{chat_id}/updated", response_model=GroupResponse)
async def group_updated(
    chat_id: str,
    body: GroupUpdateRequest,
    user_id: str = Depends(require_user_id),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    """Record the group's new state and tell every member."""
    chat_id = validate_user_id(chat_id, "chat_id")
    member_ids = [validate_user_id(m, "member_ids") for m in body.member_ids]
    group = await asyncio.to_thread(
        gateway.store.add_chat,
        chat_id,
        member_ids,
        creator_id=body.creator_id,
        name=body.name,
        description=body.description,
    )
    delivered = gateway.notify_group_updated(group)
    logger.info("Group %s updated by %s (%d members)", chat_id, user_id, len(group.member_ids))
    return GroupResponse(**group.to_dict(), delivered=delivered)


@router.post("/chats/{chat_id}/deleted", response_model=NotifyResponse)
async def group_deleted(
    chat_id: str,
    user_id: str = Depends(require_user_id),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    chat_id = validate_user_id(chat_id, "chat_id")
    membership = await gateway.store.get_chat_members(chat_id)
    await asyncio.to_thread(gateway.store.delete_chat, chat_id)
    delivered = gateway.notify_group_deleted(chat_id, membership.member_ids)
    logger.info("Group %s deleted by %s", chat_id, user_id)
    return NotifyResponse(delivered=delivered)


@router.post("/chats/{chat_id}/members/{member_id}/removed", response_model=GroupResponse)
async def member_removed(
    chat_id: str,
    member_id: str,
    user_id: str = Depends(require_user_id),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    """Drop a member; with nobody left the group is deleted."""
    chat_id = validate_user_id(chat_id, "chat_id")
    member_id = validate_user_id(member_id, "user_id")
    group = await asyncio.to_thread(gateway.store.remove_member, chat_id, member_id)
    delivered = gateway.notify_user_removed(chat_id, member_id, group.member_ids)
    if not group.member_ids:
        await asyncio.to_thread(gateway.store.delete_chat, chat_id)
        delivered += gateway.notify_group_deleted(chat_id, ())
    logger.info("User %s removed from %s by %s", member_id, chat_id, user_id)
    return GroupResponse(**group.to_dict(), delivered=delivered)


@router.post("/users/{deleted_id}/deleted", response_model=NotifyResponse)
async def user_deleted(
    deleted_id: str,
    user_id: str = Depends(require_user_id),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    deleted_id = validate_user_id(deleted_id, "user_id")
    delivered = gateway.notify_user_deleted(deleted_id)
    logger.info("User %s deleted (reported by %s)", deleted_id, user_id)
    return NotifyResponse(delivered=delivered)
