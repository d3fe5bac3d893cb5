from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import get_actor, tracker_error_response
from app.core.auth import ANONYMOUS, decode_token
from app.core.database import get_db
from app.core.errors import TrackerError
from app.notifications.channel import manager
from app.notifications.schemas import ClearResult, MarkReadRequest, MarkReadResult, NotificationPage, ReadStatus
from app.notifications.service import notification_service
from app.platform.security import ActorContext

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=NotificationPage)
def list_notifications(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    read_status: ReadStatus | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> NotificationPage | JSONResponse:
    try:
        return notification_service.list_notifications(db, actor, page=page, limit=limit, read_status=read_status)
    except TrackerError as exc:
        return tracker_error_response(request, exc)


@router.post("/read", response_model=MarkReadResult)
def mark_notifications_read(
    request: Request,
    dto: MarkReadRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> MarkReadResult | JSONResponse:
    try:
        return MarkReadResult(updated=notification_service.mark_read(db, actor, dto.ids))
    except TrackerError as exc:
        return tracker_error_response(request, exc)


@router.delete("", response_model=ClearResult)
def clear_notifications(
    request: Request,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> ClearResult | JSONResponse:
    try:
        return ClearResult(deleted=notification_service.clear(db, actor))
    except TrackerError as exc:
        return tracker_error_response(request, exc)


@router.websocket("/ws")
async def notifications_socket(websocket: WebSocket, token: str | None = Query(default=None)) -> None:
    user = decode_token(token or "")
    try:
        user_id = uuid.UUID(user.sub) if user is not ANONYMOUS else None
    except ValueError:
        user_id = None
    if user_id is None:
        await websocket.close(code=4001, reason="Authentication required")
        return

    await manager.connect(websocket, user_id)
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(websocket, user_id)
