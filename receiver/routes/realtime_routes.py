"""WebSocket push channel for transfer events."""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from receiver.registry import TransferRegistry

router = APIRouter(tags=["Realtime"])

logger = logging.getLogger(__name__)


@router.websocket("/ws")
async def ws_events_endpoint(websocket: WebSocket):
    """
    Send an INITIAL_STATE snapshot, then stream every event as JSON.
    """
    registry: TransferRegistry = websocket.app.state.registry

    await websocket.accept()
    subscription = registry.publisher.subscribe()
    logger.info(f"[WebSocket] Client connected: {websocket.client}")

    async def forward_events():
        async for event in subscription:
            await websocket.send_json(event.to_dict())

    async def wait_for_disconnect():
        while True:
            await websocket.receive_text()

    tasks = []
    try:
        await websocket.send_json({
            "type": "INITIAL_STATE",
            "files": await registry.list_artifacts(),
            "transfers": await registry.list_active_sessions(),
        })

        tasks = [
            asyncio.create_task(forward_events()),
            asyncio.create_task(wait_for_disconnect()),
        ]
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            error = None if task.cancelled() else task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.error(f"[WebSocket] Events stream error: {error}")
    except WebSocketDisconnect:
        pass
    finally:
        for task in tasks:
            task.cancel()
        subscription.close()
        logger.info(f"[WebSocket] Client disconnected: {websocket.client}")
