"""
User account management for staff.

Visibility:
- coordinator: clients and themselves
- manager: clients, coordinators and themselves
- admin: everyone
Only admins grant the admin or manager role, and only admins delete accounts.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .auth import AuthContext, require_role, require_staff
from .config import Settings, get_settings
from .db.models import Case, User, UserRole
from .errors import Forbidden, NotFound, ValidationFailed
from .schemas import UserEdit

logger = logging.getLogger(__name__)

_VISIBLE_ROLES = {
    UserRole.COORDINATOR: (UserRole.CLIENT,),
    UserRole.MANAGER: (UserRole.CLIENT, UserRole.COORDINATOR),
}


def _can_manage(auth: AuthContext, user: User, include_self: bool = True) -> bool:
    if auth.is_admin:
        return True
    if include_self and user.id == auth.user_id:
        return True
    return user.role in _VISIBLE_ROLES.get(auth.role, ())


def _load_user(db: Session, user_id: str) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("User not found")
    return user


def list_users(
    db: Session,
    auth: AuthContext,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    page: int = 1,
    limit: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> Tuple[List[User], int]:
    require_staff(auth)
    settings = settings or get_settings()

    query = db.query(User)
    if role:
        try:
            query = query.filter(User.role == UserRole(role))
        except ValueError:
            raise ValidationFailed(f"Invalid role: {role}")
    if is_active is not None:
        query = query.filter(User.is_active.is_(bool(is_active)))
    if not auth.is_admin:
        query = query.filter(or_(User.role.in_(_VISIBLE_ROLES[auth.role]), User.id == auth.user_id))

    limit = min(max(int(limit or settings.default_page_limit), 1), settings.max_page_limit)
    page = max(int(page or 1), 1)

    total = query.count()
    users = (
        query.order_by(User.created_at.desc(), User.email)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return users, total


def get_user(db: Session, auth: AuthContext, user_id: str) -> User:
    require_staff(auth)
    user = _load_user(db, user_id)
    if not _can_manage(auth, user):
        raise Forbidden("Access denied")
    return user


def update_user(db: Session, auth: AuthContext, user_id: str, edit: Union[UserEdit, Dict[str, Any]]) -> User:
    """Update profile fields; role changes to admin/manager need an admin"""
    if not isinstance(edit, UserEdit):
        try:
            edit = UserEdit.model_validate(edit or {})
        except ValidationError as e:
            raise ValidationFailed(f"Invalid user update: {e.errors()[0].get('msg')}")

    user = get_user(db, auth, user_id)

    if edit.role in (UserRole.ADMIN, UserRole.MANAGER) and not auth.is_admin:
        raise Forbidden("Insufficient permissions to assign this role")

    for field in ("name", "email", "role", "is_active", "profile"):
        value = getattr(edit, field)
        if value is not None:
            setattr(user, field, value)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationFailed("Email already exists")
    logger.info(f"[users] {auth.user_id} updated user {user.id}")
    return user


def toggle_user_status(db: Session, auth: AuthContext, user_id: str) -> User:
    require_staff(auth)
    user = _load_user(db, user_id)
    if not _can_manage(auth, user, include_self=False):
        raise Forbidden("Access denied")
    if user.id == auth.user_id:
        raise ValidationFailed("Cannot deactivate your own account")

    user.is_active = not user.is_active
    db.commit()
    logger.info(f"[users] {auth.user_id} {'activated' if user.is_active else 'deactivated'} user {user.id}")
    return user


def delete_user(db: Session, auth: AuthContext, user_id: str) -> None:
    """
    Admin-only hard delete.

    A client who still has a case cannot be deleted. Deleting a staff member
    clears their case assignments.
    """
    require_role(auth, UserRole.ADMIN, message="Only admins can delete users")
    user = _load_user(db, user_id)
    if user.id == auth.user_id:
        raise ValidationFailed("Cannot delete your own account")

    if db.query(Case).filter(Case.client_id == user.id).first():
        raise ValidationFailed("Delete the client's case before deleting the client")

    assigned = db.query(Case).filter(
        or_(Case.assigned_coordinator_id == user.id, Case.assigned_manager_id == user.id)
    ).all()
    for case in assigned:
        if case.assigned_coordinator_id == user.id:
            case.assigned_coordinator_id = None
        if case.assigned_manager_id == user.id:
            case.assigned_manager_id = None
    db.delete(user)
    db.commit()
    logger.info(f"[users] {auth.user_id} deleted user {user_id}")
