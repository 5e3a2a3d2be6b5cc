"""
Live task updates over WebSocket.

Protocol (JSON text frames):

    client -> {"event": "join_task_room", "taskId": "..."}
    server <- {"event": "joined", "taskId": "..."}
    server <- {"event": "task_update", "data": {taskId, status, message, error, taskData}}
    client -> {"event": "leave_task_room", "taskId": "..."}
    server <- {"event": "left", "taskId": "..."}

Knowing a task id is enough to join its room. Updates are only pushed for
transitions that happen after the join; fetch GET /errands/{id}/status for
the current state.
"""

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])


@router.websocket("/ws")
async def task_updates_socket(websocket: WebSocket):
    notifier = websocket.app.state.services.notifier
    await websocket.accept()
    logger.debug("WebSocket connected")

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                await websocket.send_json({"event": "error", "message": "Invalid JSON"})
                continue

            event = message.get("event") if isinstance(message, dict) else None
            task_id = message.get("taskId") if isinstance(message, dict) else None

            if event in ("join_task_room", "leave_task_room") and not (isinstance(task_id, str) and task_id):
                await websocket.send_json({"event": "error", "message": "taskId must be a non-empty string"})
            elif event == "join_task_room":
                notifier.join(task_id, websocket)
                await websocket.send_json({"event": "joined", "taskId": task_id})
            elif event == "leave_task_room":
                notifier.leave(task_id, websocket)
                await websocket.send_json({"event": "left", "taskId": task_id})
            else:
                await websocket.send_json({"event": "error", "message": "Unknown event"})
    except WebSocketDisconnect:
        logger.debug("WebSocket disconnected")
    finally:
        notifier.leave_all(websocket)
