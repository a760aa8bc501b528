"""
watchparty.api.rooms
~~~~~~~~~~~~~~~~~~~~

观影房间只读 REST 接口。

端点:
  - ``GET /rooms``            → 获取活跃房间列表
  - ``GET /rooms/{room_id}``  → 获取房间摘要
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from watchparty.api.deps import get_party_system
from watchparty.core.config import settings
from watchparty.core.rate_limit import limiter
from watchparty.schemas.api_response import ApiResponse
from watchparty.schemas.party import RoomSummaryData
from watchparty.services.party_system import PartySystem

router: APIRouter = APIRouter()


@router.get("/rooms", summary="获取活跃房间列表", response_model=ApiResponse[list[RoomSummaryData]])
@limiter.limit(settings.ROOM_LIST_RATE_LIMIT)
async def list_rooms(request: Request, system: PartySystem = Depends(get_party_system)):
    """返回所有活跃房间的摘要（人数、当前视频、剩余时间）。"""
    return ApiResponse.ok(data=system.list_rooms())


@router.get("/rooms/{room_id}", summary="获取房间摘要", response_model=ApiResponse[RoomSummaryData])
async def room_info(room_id: str, system: PartySystem = Depends(get_party_system)):
    """返回指定房间的摘要信息。

    Args:
        room_id: 房间唯一标识。
    """
    room = system.get_room(room_id)
    if room is None:
        return JSONResponse(
            status_code=404,
            content=ApiResponse.fail(msg="房间不存在或已销毁", code=404).model_dump(),
        )
    return ApiResponse.ok(data=room.info())
