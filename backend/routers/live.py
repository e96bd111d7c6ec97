import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool

from database import SessionLocal
from event_lifecycle import load_event
from forum_service import can_access, post_message
from realtime import attendance_room, forum_room, manager
from schemas import ForumMessageResponse
from security import ROLE_ORGANIZER, identity_from_token

logger = logging.getLogger(__name__)

router = APIRouter()


async def _reject(websocket: WebSocket, reason: str) -> None:
    logger.info("Rejecting socket on %s: %s", websocket.url.path, reason)
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=reason)


def _authorize_forum(token: str, event_id: int) -> dict:
    """Resolve the caller and check forum access. Returns the fields the socket keeps."""
    db = SessionLocal()
    try:
        identity = identity_from_token(token, db)
        event = load_event(db, event_id)
        if not can_access(db, identity, event):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Must be registered to view forum")
        return {"name": identity.display_name, "role": identity.role}
    finally:
        db.close()


def _authorize_attendance(token: str, event_id: int) -> None:
    db = SessionLocal()
    try:
        identity = identity_from_token(token, db)
        event = load_event(db, event_id)
        if identity.role != ROLE_ORGANIZER or event.organizer_id != identity.organizer.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your event")
    finally:
        db.close()


def _post_from_socket(token: str, event_id: int, content: Optional[str], parent_id: Optional[int]) -> dict:
    # Each frame gets its own session so no transaction outlives the frame.
    db = SessionLocal()
    try:
        identity = identity_from_token(token, db)
        event = load_event(db, event_id)
        if not can_access(db, identity, event):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Must be registered to view forum")
        message = post_message(db, event, identity, content, parent_id=parent_id)
        return ForumMessageResponse.model_validate(message).model_dump()
    finally:
        db.close()


@router.websocket("/ws/forum/{event_id}")
async def forum_socket(websocket: WebSocket, event_id: int, token: str = ""):
    try:
        sender = await run_in_threadpool(_authorize_forum, token, event_id)
    except HTTPException as exc:
        await _reject(websocket, str(exc.detail))
        return

    room = forum_room(event_id)
    await manager.connect(room, websocket)
    try:
        while True:
            frame = await websocket.receive_json()
            kind = frame.get("event") if isinstance(frame, dict) else None
            data = (frame.get("data") or {}) if isinstance(frame, dict) else {}

            if kind == "send_message":
                try:
                    body = await run_in_threadpool(
                        _post_from_socket, token, event_id, data.get("content"), data.get("parent_id")
                    )
                except HTTPException as exc:
                    await websocket.send_json({"event": "error", "data": {"detail": exc.detail}})
                    continue
                await manager.broadcast(room, "new_message", body)
            elif kind in ("typing", "stop_typing"):
                await manager.broadcast(
                    room,
                    "user_typing" if kind == "typing" else "user_stop_typing",
                    sender,
                    exclude=websocket,
                )
            else:
                await websocket.send_json({"event": "error", "data": {"detail": "Unknown event"}})
    except WebSocketDisconnect:
        pass
    except ValueError:
        # Non-JSON frame.
        await _reject(websocket, "Invalid frame")
    finally:
        manager.disconnect(room, websocket)


@router.websocket("/ws/attendance/{event_id}")
async def attendance_socket(websocket: WebSocket, event_id: int, token: str = ""):
    try:
        await run_in_threadpool(_authorize_attendance, token, event_id)
    except HTTPException as exc:
        await _reject(websocket, str(exc.detail))
        return

    room = attendance_room(event_id)
    await manager.connect(room, websocket)
    try:
        while True:
            # Listen-only; inbound frames keep the connection alive.
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(room, websocket)
