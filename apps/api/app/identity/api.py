from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import get_actor, get_dispatcher, tracker_error_response
from app.core.database import get_db
from app.core.errors import TrackerError
from app.identity.schemas import (
    AssignmentRequest,
    AssignmentResult,
    RoleRead,
    TeamMemberRead,
    UserCreate,
    UserRead,
    UserSummary,
)
from app.identity.service import HierarchyMutation, hierarchy_service
from app.notifications.dispatcher import NotificationDispatcher
from app.platform.security import ActorContext

router = APIRouter(prefix="/api/users", tags=["identity.users"])


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def register_user(
    request: Request,
    dto: UserCreate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> UserRead | JSONResponse:
    try:
        return hierarchy_service.register_user(db, actor, dto)
    except TrackerError as exc:
        return tracker_error_response(request, exc)


@router.get("", response_model=list[UserRead])
def list_users(
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> list[UserRead]:
    return hierarchy_service.list_users(db, actor)


@router.get("/me", response_model=UserRead)
def current_user(
    request: Request,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> UserRead | JSONResponse:
    try:
        return hierarchy_service.get_current_user(db, actor)
    except TrackerError as exc:
        return tracker_error_response(request, exc)


@router.get("/role", response_model=RoleRead)
def current_role(actor: ActorContext = Depends(get_actor)) -> RoleRead:
    return hierarchy_service.get_role(actor)


@router.get("/tag", response_model=list[UserSummary])
def taggable_users(
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> list[UserSummary]:
    return hierarchy_service.list_taggable_users(db)


@router.get("/team", response_model=list[TeamMemberRead])
def team(
    request: Request,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> list[TeamMemberRead] | JSONResponse:
    try:
        return hierarchy_service.list_team(db, actor)
    except TrackerError as exc:
        return tracker_error_response(request, exc)


def _mutation_response(
    mutation: HierarchyMutation,
    background_tasks: BackgroundTasks,
    dispatcher: NotificationDispatcher,
) -> AssignmentResult:
    background_tasks.add_task(dispatcher.dispatch, mutation.intents)
    return mutation.result


@router.post("/assign", response_model=AssignmentResult)
def assign_user(
    request: Request,
    dto: AssignmentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> AssignmentResult | JSONResponse:
    try:
        mutation = hierarchy_service.assign(db, actor, dto.user_id, dto.admin_id)
    except TrackerError as exc:
        return tracker_error_response(request, exc)
    return _mutation_response(mutation, background_tasks, dispatcher)


@router.post("/unassign", response_model=AssignmentResult)
def unassign_user(
    request: Request,
    dto: AssignmentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> AssignmentResult | JSONResponse:
    try:
        mutation = hierarchy_service.unassign(db, actor, dto.user_id, dto.admin_id)
    except TrackerError as exc:
        return tracker_error_response(request, exc)
    return _mutation_response(mutation, background_tasks, dispatcher)
