"""Presence snapshot endpoint."""

from fastapi import APIRouter, Depends

from src.api.dependencies import get_gateway
from src.api.models import OnlineUsersResponse
from src.realtime.gateway import RealtimeGateway

router = APIRouter(prefix="/presence", tags=["Presence"])


@router.get("/online", response_model=OnlineUsersResponse)
async def online_users(gateway: RealtimeGateway = Depends(get_gateway)):
    online = sorted(gateway.registry.all_online_user_ids())
    return OnlineUsersResponse(online_user_ids=online, count=len(online))
