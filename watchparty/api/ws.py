"""
watchparty.api.ws
~~~~~~~~~~~~~~~~~

WebSocket 实时交互接口 —— 观影房间。

提供 ``/ws`` 端点。每个连接对应一个 ``ConnectionSession``，
入站帧交给 ``EventRouter`` 处理，出站消息由独立写协程发送。

消息协议（双向相同）:
  - ``{"event": "join-room", "data": {...}}``
  - ``{"event": "play", "data": {"time": 12.5}}``
  - ...
"""
from __future__ import annotations

import asyncio
import json
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from watchparty.core.logging import get_logger
from watchparty.services.event_router import EventRouter
from watchparty.services.session import ConnectionSession

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.websocket("/ws")
async def websocket_party_endpoint(websocket: WebSocket) -> None:
    """WebSocket 观影端点。

    连接建立后客户端通过 ``create-room`` 或 ``join-room`` 进入房间；
    断开连接等同于离开房间。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    event_router: EventRouter = websocket.app.state.event_router
    session = ConnectionSession(connection_id=uuid.uuid4().hex, transport=websocket)

    await websocket.accept()
    logger.info("连接已建立 | conn=%s", session.connection_id)
    writer = asyncio.create_task(session.run_writer(), name=f"ws-writer:{session.connection_id}")

    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except json.JSONDecodeError:
                session.send("error-message", {"code": "malformed_event", "message": "Frame is not valid JSON"})
                continue
            await event_router.dispatch(session, frame)
    except WebSocketDisconnect:
        pass  # 正常断开
    except Exception as e:
        logger.error("WebSocket 接收异常 | conn=%s | %s", session.connection_id, e, exc_info=True)
    finally:
        await event_router.disconnect(session)
        session.close()
        await writer
        logger.info("连接已断开 | conn=%s", session.connection_id)
