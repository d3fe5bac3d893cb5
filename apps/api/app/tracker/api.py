from __future__ import annotations

import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from app.api.deps import get_actor, get_dispatcher, tracker_error_response
from app.core.database import get_db
from app.core.errors import TrackerError
from app.notifications.dispatcher import NotificationDispatcher
from app.platform.security import ActorContext
from app.tracker.schemas import BulkCreateRequest, BulkCreateResult, EntryCreate, EntryRead, EntryStatus, EntryUpdate
from app.tracker.service import entry_service

router = APIRouter(prefix="/api/entries", tags=["tracker.entries"])


@router.post("", response_model=EntryRead, status_code=status.HTTP_201_CREATED)
def create_entry(
    request: Request,
    dto: EntryCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> EntryRead | JSONResponse:
    try:
        mutation = entry_service.create_entry(db, actor, dto)
    except TrackerError as exc:
        return tracker_error_response(request, exc)
    background_tasks.add_task(dispatcher.dispatch, mutation.intents)
    return mutation.entry


@router.get("", response_model=list[EntryRead])
def list_entries(
    request: Request,
    status_filter: EntryStatus | None = Query(default=None, alias="status"),
    q: str | None = Query(default=None),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> list[EntryRead] | JSONResponse:
    try:
        return entry_service.list_entries(db, actor, status=status_filter, q=q, cursor=cursor, limit=limit)
    except TrackerError as exc:
        return tracker_error_response(request, exc)


@router.post("/bulk", response_model=BulkCreateResult, status_code=status.HTTP_201_CREATED)
def bulk_create_entries(
    request: Request,
    dto: BulkCreateRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> BulkCreateResult | JSONResponse:
    try:
        mutation = entry_service.bulk_create(db, actor, dto.entries)
    except TrackerError as exc:
        return tracker_error_response(request, exc)
    background_tasks.add_task(dispatcher.dispatch, mutation.intents)
    return mutation.result


@router.get("/{entry_id}", response_model=EntryRead)
def get_entry(
    request: Request,
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> EntryRead | JSONResponse:
    try:
        return entry_service.get_entry(db, actor, entry_id)
    except TrackerError as exc:
        return tracker_error_response(request, exc)


@router.patch("/{entry_id}", response_model=EntryRead)
def edit_entry(
    request: Request,
    entry_id: uuid.UUID,
    dto: EntryUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> EntryRead | JSONResponse:
    try:
        mutation = entry_service.edit_entry(db, actor, entry_id, dto)
    except TrackerError as exc:
        return tracker_error_response(request, exc)
    background_tasks.add_task(dispatcher.dispatch, mutation.intents)
    return mutation.entry


@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_entry(
    request: Request,
    entry_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> Response:
    try:
        mutation = entry_service.delete_entry(db, actor, entry_id)
    except TrackerError as exc:
        return tracker_error_response(request, exc)
    background_tasks.add_task(dispatcher.dispatch, mutation.intents)
    return Response(status_code=status.HTTP_204_NO_CONTENT, background=background_tasks)
