"""Dashboard statistics for staff."""

from typing import Any, Dict

from sqlalchemy import func
from sqlalchemy.orm import Session

from .auth import AuthContext, require_staff
from .db.models import Case, CaseStatus, User, UserRole

RECENT_CASES_LIMIT = 10


def dashboard_stats(db: Session, auth: AuthContext) -> Dict[str, Any]:
    """
    Case and user counts for the staff dashboard.

    Every status and role is present in the breakdowns, with zero when unused.
    """
    require_staff(auth)

    status_counts = {status.value: 0 for status in CaseStatus}
    for status, count in db.query(Case.status, func.count(Case.id)).group_by(Case.status).all():
        status_counts[CaseStatus(status).value] = count

    role_counts = {role.value: 0 for role in UserRole}
    for role, count in db.query(User.role, func.count(User.id)).group_by(User.role).all():
        role_counts[UserRole(role).value] = count

    recent_cases = (
        db.query(Case)
        .order_by(Case.created_at.desc(), Case.case_number.desc())
        .limit(RECENT_CASES_LIMIT)
        .all()
    )

    return {
        "cases": {
            "total": sum(status_counts.values()),
            "by_status": status_counts,
        },
        "users": {
            "total": sum(role_counts.values()),
            "active": db.query(User).filter(User.is_active.is_(True)).count(),
            "by_role": role_counts,
        },
        "recent_cases": recent_cases,
    }
