from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app import audit, events
from app.core.errors import DependencyFailure, NotFoundError, ValidationFailure
from app.identity.models import User, UserAdminLink
from app.identity.repository import HierarchyRepository
from app.identity.schemas import AssignmentResult, RoleRead, TeamMemberRead, UserCreate, UserRead, UserSummary
from app.metrics import observe_authz_denied, observe_hierarchy_mutation
from app.notifications.intents import NotificationIntent
from app.otel import traced
from app.platform.security import (
    ROLE_ADMIN,
    ROLE_SUPERADMIN,
    ActorContext,
    AuthorizationError,
    hierarchy_locks,
    resolve_scope,
)


logger = logging.getLogger("app.identity")


@dataclass
class HierarchyMutation:
    result: AssignmentResult
    intents: list[NotificationIntent] = field(default_factory=list)


@dataclass
class HierarchyService:
    repository: HierarchyRepository = field(default_factory=HierarchyRepository)
    entity_type = "identity.user"

    def register_user(self, session: Session, actor: ActorContext, dto: UserCreate) -> UserRead:
        if not actor.is_superadmin:
            self._deny(actor, "register_user", "Only a superadmin can register users")
        if self.repository.get_by_username(session, dto.username) is not None:
            raise ValidationFailure("Username already exists", code="username_taken", details={"username": dto.username})

        user = User(username=dto.username, email=str(dto.email), role=dto.role)
        session.add(user)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ValidationFailure("Username already exists", code="username_taken", details={"username": dto.username})
        except SQLAlchemyError as exc:
            session.rollback()
            raise DependencyFailure("Could not store the user") from exc
        session.refresh(user)

        audit.record(
            actor_user_id=str(actor.user_id),
            entity_type=self.entity_type,
            entity_id=str(user.id),
            action="create",
            before=None,
            after={"username": user.username, "role": user.role},
            correlation_id=actor.correlation_id,
        )
        return self._to_read(user)

    def get_current_user(self, session: Session, actor: ActorContext) -> UserRead:
        user = self.repository.get_user(session, actor.user_id)
        if user is None:
            raise NotFoundError("Current user not found")
        return self._to_read(user)

    def get_role(self, actor: ActorContext) -> RoleRead:
        return RoleRead(
            user_id=actor.user_id,
            role=actor.role,
            is_admin=actor.role in {ROLE_ADMIN, ROLE_SUPERADMIN},
        )

    def list_users(self, session: Session, actor: ActorContext) -> list[UserRead]:
        scope = resolve_scope(session, actor)
        users = self.repository.list_users(session, None if scope.unrestricted else scope.user_ids)
        return [self._to_read(user) for user in users]

    def list_taggable_users(self, session: Session) -> list[UserSummary]:
        return [UserSummary.model_validate(user) for user in self.repository.list_users(session)]

    def list_team(self, session: Session, actor: ActorContext) -> list[TeamMemberRead]:
        if actor.is_superadmin:
            users = [user for user in self.repository.list_users(session) if user.id != actor.user_id]
        elif actor.role == ROLE_ADMIN:
            linked = self.repository.linked_user_ids(session)
            reports = set(self.repository.report_ids(session, actor.user_id))
            users = [
                user
                for user in self.repository.list_users(session)
                if user.id != actor.user_id
                and user.role != ROLE_SUPERADMIN
                and (user.id in reports or user.id not in linked)
            ]
        else:
            current = self.repository.get_user(session, actor.user_id)
            if current is None:
                raise NotFoundError("Current user not found")
            admin_ids = current.assigned_admin_ids
            users = self.repository.list_users(session, admin_ids) if admin_ids else [current]

        names = self.repository.usernames(
            session,
            {admin_id for user in users for admin_id in user.assigned_admin_ids},
        )
        rows: list[TeamMemberRead] = []
        for user in users:
            admin_names = [names[admin_id] for admin_id in user.assigned_admin_ids if admin_id in names]
            rows.append(
                TeamMemberRead(
                    id=user.id,
                    username=user.username,
                    email=user.email,
                    role=user.role,
                    assigned_admin_ids=user.assigned_admin_ids,
                    assigned_admin_usernames=", ".join(admin_names) or "Unassigned",
                )
            )
        return rows

    def assign(
        self,
        session: Session,
        actor: ActorContext,
        user_id: uuid.UUID,
        admin_id: uuid.UUID | None = None,
    ) -> HierarchyMutation:
        """Place ``user_id`` under an admin and carry the admin down the user's subtree.

        Admins always assign to themselves. A superadmin must name the admin,
        since superadmins never appear in the graph.
        """

        target_admin_id = self._resolve_target_admin(actor, admin_id, operation="assign")
        if user_id in {actor.user_id, target_admin_id}:
            raise ValidationFailure("Cannot assign a user to themselves", code="self_assignment")

        with hierarchy_locks.hold([target_admin_id, user_id]), traced(
            "app.identity", "hierarchy.assign", user_id=user_id, admin_id=target_admin_id
        ):
            user = self._load_assignable(session, user_id, operation="assign")
            target_admin = self._load_target_admin(session, actor, target_admin_id)
            if self.repository.get_link(session, user.id, target_admin.id) is not None:
                raise ValidationFailure("User is already assigned to this admin", code="already_assigned")

            intents: list[NotificationIntent] = []
            propagated: list[uuid.UUID] = []
            try:
                self.repository.add_link(
                    session,
                    user_id=user.id,
                    admin_id=target_admin.id,
                    established_by_id=actor.user_id,
                    established_by_role=actor.role,
                )
                if user.role == ROLE_ADMIN:
                    for report_id in self.repository.report_ids(session, user.id):
                        if report_id == target_admin.id:
                            continue
                        if self.repository.get_link(session, report_id, target_admin.id) is not None:
                            continue
                        self.repository.add_link(
                            session,
                            user_id=report_id,
                            admin_id=target_admin.id,
                            established_by_id=actor.user_id,
                            established_by_role=actor.role,
                        )
                        propagated.append(report_id)
                        intents.append(
                            NotificationIntent(
                                user_id=report_id,
                                message=f"Assigned to admin: {target_admin.username} via admin {user.username}",
                            )
                        )
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise DependencyFailure("Could not update the team hierarchy") from exc

        intents.append(NotificationIntent(user_id=user.id, message=f"Assigned to admin: {target_admin.username}"))
        session.refresh(user)
        observe_hierarchy_mutation("assign")
        self._record_change(actor, user, action="assign", admin_id=target_admin.id, affected=propagated)
        logger.info(
            "hierarchy.assigned",
            extra={
                "actor_id": str(actor.user_id),
                "user_id": str(user.id),
                "admin_id": str(target_admin.id),
                "recipients": len(intents),
            },
        )
        return HierarchyMutation(
            result=AssignmentResult(
                user=self._to_read(user),
                admin_id=target_admin.id,
                propagated_to=propagated,
            ),
            intents=intents,
        )

    def unassign(
        self,
        session: Session,
        actor: ActorContext,
        user_id: uuid.UUID,
        admin_id: uuid.UUID | None = None,
    ) -> HierarchyMutation:
        """Remove ``user_id`` from an admin and strip that admin from the user's subtree.

        A superadmin that names no admin force-unassigns: every link of the user
        goes, and an admin user is removed from each of its reports instead.
        """

        force = actor.is_superadmin and admin_id is None
        target_admin_id = None if force else self._resolve_target_admin(actor, admin_id, operation="unassign")

        lock_keys = [user_id] if target_admin_id is None else [target_admin_id, user_id]
        with hierarchy_locks.hold(lock_keys), traced(
            "app.identity", "hierarchy.unassign", user_id=user_id, admin_id=target_admin_id, force=force
        ):
            user = self._load_assignable(session, user_id, operation="unassign")
            links = self.repository.links_for_user(session, user.id)
            if not links:
                raise ValidationFailure("User is not assigned to any admin", code="not_assigned")

            if actor.role == ROLE_ADMIN:
                if not resolve_scope(session, actor).includes_user(user.id):
                    self._deny(actor, "unassign", "User is outside your team")
                self._check_superadmin_carve_out(actor, links)
            if actor.is_superadmin and target_admin_id is not None:
                if not any(link.admin_id == target_admin_id for link in links):
                    raise ValidationFailure("User is not assigned to this admin", code="not_assigned")

            if force:
                message_admin = actor.username
            else:
                names = self.repository.usernames(session, [target_admin_id])
                message_admin = names.get(target_admin_id, actor.username)
            message = f"Unassigned from admin: {message_admin}"

            affected: list[uuid.UUID] = []
            try:
                if force:
                    removed = self.repository.remove_all_links(session, user.id)
                else:
                    removed = self.repository.remove_link(session, user.id, target_admin_id)
                if user.role == ROLE_ADMIN:
                    stripped_admin = user.id if force else target_admin_id
                    for report_id in self.repository.report_ids(session, user.id):
                        if report_id == user.id:
                            continue
                        stripped = self.repository.remove_link(session, report_id, stripped_admin)
                        if stripped:
                            removed += stripped
                            affected.append(report_id)
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise DependencyFailure("Could not update the team hierarchy") from exc

        intents = [NotificationIntent(user_id=report_id, message=message) for report_id in affected]
        intents.append(NotificationIntent(user_id=user.id, message=message))
        session.refresh(user)
        observe_hierarchy_mutation("force_unassign" if force else "unassign")
        self._record_change(
            actor,
            user,
            action="force_unassign" if force else "unassign",
            admin_id=target_admin_id,
            affected=affected,
        )
        logger.info(
            "hierarchy.unassigned",
            extra={
                "actor_id": str(actor.user_id),
                "user_id": str(user.id),
                "admin_id": str(target_admin_id) if target_admin_id else None,
                "recipients": len(intents),
            },
        )
        return HierarchyMutation(
            result=AssignmentResult(
                user=self._to_read(user),
                admin_id=target_admin_id,
                propagated_to=affected,
                removed_links=removed,
            ),
            intents=intents,
        )

    def _resolve_target_admin(self, actor: ActorContext, admin_id: uuid.UUID | None, *, operation: str) -> uuid.UUID:
        if actor.is_superadmin:
            if admin_id is None:
                raise ValidationFailure("A superadmin must name the target admin", code="admin_required")
            return admin_id
        if actor.role != ROLE_ADMIN:
            self._deny(actor, operation, "Only admins can manage team membership")
        if admin_id is not None and admin_id != actor.user_id:
            self._deny(actor, operation, "Admins can only manage their own team")
        return actor.user_id

    def _load_assignable(self, session: Session, user_id: uuid.UUID, *, operation: str) -> User:
        user = self.repository.get_user(session, user_id)
        if user is None:
            raise NotFoundError("User not found", details={"user_id": str(user_id)})
        if user.role == ROLE_SUPERADMIN:
            raise ValidationFailure(f"Cannot {operation} a superadmin", code="superadmin_target")
        return user

    def _load_target_admin(self, session: Session, actor: ActorContext, admin_id: uuid.UUID) -> User:
        admin = self.repository.get_user(session, admin_id)
        if admin is None:
            raise NotFoundError("Admin not found", details={"admin_id": str(admin_id)})
        if admin.role != ROLE_ADMIN:
            raise ValidationFailure("Target user is not an admin", code="not_an_admin")
        return admin

    def _check_superadmin_carve_out(self, actor: ActorContext, links: list[UserAdminLink]) -> None:
        is_member = any(link.admin_id == actor.user_id for link in links)
        placed_by_superadmin = any(link.established_by_role == ROLE_SUPERADMIN for link in links)
        if placed_by_superadmin and not is_member:
            self._deny(actor, "unassign", "Cannot unassign a user assigned by a superadmin")

    def _deny(self, actor: ActorContext, operation: str, message: str) -> None:
        observe_authz_denied(operation)
        audit.record(
            actor_user_id=str(actor.user_id),
            entity_type=self.entity_type,
            entity_id=str(actor.user_id),
            action="authz_denied",
            before=None,
            after={"operation": operation, "reason": message},
            correlation_id=actor.correlation_id,
        )
        logger.warning("authz.denied", extra={"actor_id": str(actor.user_id), "operation": operation})
        raise AuthorizationError(message, operation=operation)

    def _record_change(
        self,
        actor: ActorContext,
        user: User,
        *,
        action: str,
        admin_id: uuid.UUID | None,
        affected: list[uuid.UUID],
    ) -> None:
        after = {
            "admin_id": str(admin_id) if admin_id else None,
            "assigned_admin_ids": [str(item) for item in user.assigned_admin_ids],
            "affected_user_ids": [str(item) for item in affected],
        }
        audit.record(
            actor_user_id=str(actor.user_id),
            entity_type=self.entity_type,
            entity_id=str(user.id),
            action=action,
            before=None,
            after=after,
            correlation_id=actor.correlation_id,
        )
        events.emit(
            f"identity.user.{action}",
            actor_user_id=str(actor.user_id),
            payload={"user_id": str(user.id), **after},
            correlation_id=actor.correlation_id,
        )

    def _to_read(self, user: User) -> UserRead:
        return UserRead(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            created_at=user.created_at,
            assigned_admin_ids=user.assigned_admin_ids,
        )


hierarchy_service = HierarchyService()
