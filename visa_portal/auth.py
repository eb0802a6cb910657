"""
Authorization Module (RBAC)
===========================

Role-Based Access Control for the immigration case portal.

Roles (one per user):
- client: owns exactly one case
- coordinator: works the cases assigned to them; sees unassigned cases in listings
- manager: oversees cases assigned to them as manager or as coordinator
- admin: full access

Authorization Flow:
1. Resolve the authenticated principal (user id) into an AuthContext
2. Single-case checks go through AccessEvaluator.can_access
3. Listings are narrowed with AccessEvaluator.scope_query
"""

import logging
from typing import Callable, Dict, List, Optional
from dataclasses import dataclass

from sqlalchemy import or_, true
from sqlalchemy.orm import Session

from .db.models import Case, User, UserRole, STAFF_ROLES
from .errors import Forbidden

logger = logging.getLogger(__name__)


# =============================================================================
# AUTH CONTEXT
# =============================================================================

@dataclass
class AuthContext:
    """Authorization context for a request"""
    user_id: str
    role: UserRole
    name: str = ""
    email: str = ""
    is_active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_client(self) -> bool:
        return self.role == UserRole.CLIENT

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @classmethod
    def from_user(cls, user: User) -> "AuthContext":
        return cls(
            user_id=user.id,
            role=user.role,
            name=user.name,
            email=user.email,
            is_active=user.is_active,
        )


def require_staff(auth: AuthContext, message: str = "Access denied") -> None:
    """Raise Forbidden unless the principal holds a staff role"""
    if not auth.is_staff:
        logger.warning(f"Permission denied: {auth.user_id} ({auth.role}) is not staff")
        raise Forbidden(message)


def require_role(auth: AuthContext, *roles: UserRole, message: str = "Access denied") -> None:
    """Raise Forbidden unless the principal holds one of the given roles"""
    if auth.role not in roles:
        logger.warning(f"Permission denied: {auth.user_id} ({auth.role}) not in {[r.value for r in roles]}")
        raise Forbidden(message)


def _coerce_role(role) -> Optional[UserRole]:
    try:
        return UserRole(role)
    except ValueError:
        return None


# =============================================================================
# ACCESS CONTROL EVALUATOR
# =============================================================================

def coordinators_under_manager(db: Optional[Session], manager_id: str) -> List[str]:
    """
    Coordinator ids reporting to a manager.

    There is no reports-to relation in the data model yet, so this is always empty.
    TODO: add a coordinator -> manager relation and resolve it here.
    """
    return []


class AccessEvaluator:
    """
    Decides case visibility per role.

    can_access answers for a single case; scope_query builds the filter used when
    enumerating cases. Both dispatch over the closed UserRole enum in one place.
    """

    def __init__(self, db: Optional[Session] = None):
        self.db = db

    # Single-case predicates
    _CASE_PREDICATES: Dict[UserRole, Callable[[AuthContext, Case], bool]] = {
        UserRole.CLIENT: lambda auth, case: case.client_id == auth.user_id,
        UserRole.COORDINATOR: lambda auth, case: case.assigned_coordinator_id == auth.user_id,
        UserRole.MANAGER: lambda auth, case: (
            case.assigned_manager_id == auth.user_id
            or case.assigned_coordinator_id == auth.user_id
        ),
        UserRole.ADMIN: lambda auth, case: True,
    }

    def can_access(self, auth: AuthContext, case: Case) -> bool:
        """Check if the principal may read or write a specific case"""
        role = _coerce_role(auth.role)
        if role is None:
            logger.warning(f"Access denied: {auth.user_id} has unknown role {auth.role!r}")
            return False
        allowed = bool(self._CASE_PREDICATES[role](auth, case))
        if not allowed:
            logger.warning(f"Resource access denied: {auth.user_id} cannot access case {case.id}")
        return allowed

    def scope_query(self, auth: AuthContext):
        """
        Filter expression for listing cases visible to the principal.

        Returns a SQLAlchemy boolean clause; admins get an always-true clause.
        Raises Forbidden for unknown roles.
        """
        role = _coerce_role(auth.role)

        if role == UserRole.CLIENT:
            return Case.client_id == auth.user_id

        if role == UserRole.COORDINATOR:
            # Unassigned work stays visible so coordinators can pick it up
            return or_(
                Case.assigned_coordinator_id == auth.user_id,
                Case.assigned_coordinator_id.is_(None),
            )

        if role == UserRole.MANAGER:
            return or_(
                Case.assigned_manager_id == auth.user_id,
                Case.assigned_coordinator_id.in_(coordinators_under_manager(self.db, auth.user_id)),
            )

        if role == UserRole.ADMIN:
            return true()

        logger.warning(f"Listing denied: {auth.user_id} has unknown role {auth.role!r}")
        raise Forbidden("Invalid user role")


# =============================================================================
# AUTH SERVICE (SQLAlchemy-based)
# =============================================================================

class AuthService:
    """Resolves principals and answers access questions using SQLAlchemy"""

    def __init__(self, db: Session):
        self.db = db
        self.evaluator = AccessEvaluator(db)

    def get_auth_context(self, user_id: str) -> Optional[AuthContext]:
        """
        Build auth context for a user.

        Args:
            user_id: User ID already authenticated upstream

        Returns:
            AuthContext if user exists and is active, None otherwise
        """
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user or not user.is_active:
            logger.warning(f"Auth failed: user {user_id} not found or inactive")
            return None
        return AuthContext.from_user(user)

    def can_access_case(self, auth: AuthContext, case_id: str) -> bool:
        """Check access by case id (unknown cases are not accessible)"""
        case = self.db.query(Case).filter(Case.id == case_id).first()
        if not case:
            return False
        return self.evaluator.can_access(auth, case)

    def get_accessible_case_ids(self, auth: AuthContext) -> List[str]:
        """List ids of the cases the principal can see in listings"""
        rows = self.db.query(Case.id).filter(self.evaluator.scope_query(auth)).all()
        return [r[0] for r in rows]


# =============================================================================
# FASTAPI DEPENDENCY HELPERS
# =============================================================================

def get_auth_service(db: Session) -> AuthService:
    """Get AuthService instance for a database session"""
    return AuthService(db)
