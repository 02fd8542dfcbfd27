"""
Push kanalı: /ws/notifications?token=JWT

İstemci {"event": "join_doctor_room", "doctor_id": X} gönderir; X token sahibiyle aynı olmalı.
Sonra analysis_completed / analysis_failed olayları {"event", "data"} olarak gelir.
"""
import json
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from app.core.security import user_id_from_token

log = logging.getLogger("medclinic")

router = APIRouter(tags=["notifications"])

EVENT_JOIN = "join_doctor_room"
EVENT_LEAVE = "leave_doctor_room"


async def _send_error(websocket: WebSocket, message: str) -> None:
    await websocket.send_json({"event": "error", "data": {"message": message}})


@router.websocket("/ws/notifications")
async def notifications_ws(websocket: WebSocket, token: str | None = Query(None)):
    user_id = user_id_from_token(token)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    notifier = websocket.app.state.notifier
    await websocket.accept()
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", status.WS_1000_NORMAL_CLOSURE))
            raw = frame.get("text")
            if raw is None:
                await _send_error(websocket, "Binary frames are not supported.")
                continue
            try:
                message = json.loads(raw)
            except ValueError:
                await _send_error(websocket, "Invalid JSON.")
                continue
            if not isinstance(message, dict):
                await _send_error(websocket, "Invalid message.")
                continue
            event = message.get("event")
            doctor_id = str(message.get("doctor_id", ""))
            if event not in (EVENT_JOIN, EVENT_LEAVE):
                await _send_error(websocket, f"Unknown event: {event}")
                continue
            # başka doktorun odasına katılma yok
            if doctor_id != str(user_id):
                await _send_error(websocket, "Not allowed to join this room.")
                continue
            if event == EVENT_JOIN:
                notifier.subscribe(doctor_id, websocket)
                await websocket.send_json({"event": "joined", "data": {"doctor_id": doctor_id}})
            else:
                notifier.unsubscribe(doctor_id, websocket)
                await websocket.send_json({"event": "left", "data": {"doctor_id": doctor_id}})
    except WebSocketDisconnect:
        log.debug("notifications ws disconnected user=%s", user_id)
    finally:
        notifier.unsubscribe_all(websocket)
