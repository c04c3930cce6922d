import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from comfyflow.deps import get_progress_hub
from comfyflow.services.progress import ProgressHub
from comfyflow.utils import new_client_id

logger = logging.getLogger(__name__)

router = APIRouter()


async def _wait_for_disconnect(websocket_browser: WebSocket):
    # the browser only listens; anything it sends is ignored
    while True:
        message = await websocket_browser.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/ws/")
async def websocket_endpoint(
    websocket_browser: WebSocket, hub: ProgressHub = Depends(get_progress_hub)
):
    await websocket_browser.accept()

    # El cliente envía este id al pedir la generación
    client_id = websocket_browser.query_params.get("clientId") or new_client_id()
    queue = hub.subscribe(client_id)
    disconnected = asyncio.create_task(_wait_for_disconnect(websocket_browser))
    next_snapshot = None
    try:
        await websocket_browser.send_json({"type": "connected", "client_id": client_id})
        while True:
            next_snapshot = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait(
                {next_snapshot, disconnected}, return_when=asyncio.FIRST_COMPLETED
            )
            if disconnected in done:
                break
            await websocket_browser.send_json(
                {"type": "progress", "data": next_snapshot.result().model_dump(mode="json")}
            )
        logger.info("WebSocket client %s disconnected", client_id)
    except WebSocketDisconnect:
        logger.info("WebSocket client %s disconnected", client_id)
    finally:
        disconnected.cancel()
        if next_snapshot is not None:
            next_snapshot.cancel()
        hub.unsubscribe(client_id, queue)


def get_router():
    return router
