"""
Assignment Service
==================

Binds cases to a manager, and reports on coordinator capacity.

A coordinator who assigns a manager on a case without a coordinator also
becomes that case's coordinator.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .auth import AuthContext, require_role, require_staff
from .db.models import Case, CaseStatus, TimelineEntry, User, UserRole
from .errors import NotFound

logger = logging.getLogger(__name__)

# Statuses counted as open work for a coordinator
ACTIVE_WORK_STATUSES = (CaseStatus.DRAFT, CaseStatus.SUBMITTED, CaseStatus.UNDER_REVIEW)


def assign_manager(db: Session, auth: AuthContext, case_id: str, manager_id: Optional[str] = None) -> Case:
    """
    Set or clear the manager of a case.

    Args:
        case_id: Case to assign
        manager_id: Manager user id, or None to unassign

    Raises:
        Forbidden: caller is not staff
        NotFound: case missing, or manager_id is not a manager
    """
    require_staff(auth)

    case = db.query(Case).filter(Case.id == case_id).first()
    if not case:
        raise NotFound("Application not found")

    manager = None
    if manager_id:
        manager = db.query(User).filter(User.id == manager_id).first()
        if not manager or manager.role != UserRole.MANAGER:
            raise NotFound("Manager not found")

    if case.assigned_coordinator_id is None and auth.role == UserRole.COORDINATOR:
        case.assigned_coordinator_id = auth.user_id
        logger.info(f"[assignments] {auth.user_id} claimed case {case.id} as coordinator")

    case.assigned_manager_id = manager.id if manager else None

    if manager:
        case.timeline.append(TimelineEntry(
            status=case.status,
            updated_by_id=auth.user_id,
            note=f"Assigned to manager: {manager.name or manager.id}",
            timestamp=datetime.utcnow(),
        ))

    case.updated_at = datetime.utcnow()
    db.commit()
    logger.info(f"[assignments] Case {case.id} manager set to {case.assigned_manager_id} by {auth.user_id}")
    return case


def list_available_coordinators(db: Session, auth: AuthContext) -> List[User]:
    require_role(auth, UserRole.ADMIN, UserRole.MANAGER)
    return (
        db.query(User)
        .filter(User.role == UserRole.COORDINATOR, User.is_active.is_(True))
        .order_by(User.name)
        .all()
    )


def coordinator_workload(db: Session, auth: AuthContext) -> List[Dict[str, Any]]:
    """Open case count per active coordinator"""
    coordinators = list_available_coordinators(db, auth)

    counts = dict(
        db.query(Case.assigned_coordinator_id, func.count(Case.id))
        .filter(
            Case.assigned_coordinator_id.in_([c.id for c in coordinators]),
            Case.status.in_(ACTIVE_WORK_STATUSES),
        )
        .group_by(Case.assigned_coordinator_id)
        .all()
    )
    return [
        {"coordinator": coordinator, "assigned_cases": counts.get(coordinator.id, 0)}
        for coordinator in coordinators
    ]
