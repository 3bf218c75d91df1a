"""Live channel: server-push of readings over a WebSocket."""

from __future__ import annotations

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from fastapi.websockets import WebSocketState

from services.hub import BroadcastHub, build_default_hub

router = APIRouter()


def get_hub() -> BroadcastHub:
    return build_default_hub()


async def _drain(websocket: WebSocket) -> None:
    # no client messages are defined; read only to notice the close
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/ws")
async def live_channel(websocket: WebSocket, hub: BroadcastHub = Depends(get_hub)) -> None:
    await websocket.accept()
    try:
        await hub.connect(websocket)
        await _drain(websocket)
    except WebSocketDisconnect:
        pass
    except Exception as exc:
        hub.on_error(websocket, exc)
        if websocket.application_state == WebSocketState.CONNECTED:
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    finally:
        hub.disconnect(websocket)
