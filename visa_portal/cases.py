"""
Case Service
============

Case lifecycle for the immigration portal:
- create_case: opens a client's single case and assigns its case number
- change_status: the only place a status changes; appends the timeline entry
- update_case / request_status_change: per-role edits through the status gate
- get_case / get_my_case / list_cases: reads, filtered by the access evaluator
- add_note / delete_case

Status gate: moving a case into submitted, under_review, processing, approved
or completed requires every required document type to be present. A rejected
request persists nothing.
"""

import logging
import math
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from .auth import AccessEvaluator, AuthContext
from .automation import AutomationTrigger
from .config import Settings, get_settings
from .db.models import (
    Case, CaseNote, CaseEvent, CaseStatus, Priority, TimelineEntry, User, UserRole,
)
from .documents import discard_stored_file, missing_required_types
from .errors import Forbidden, NotFound, ValidationFailed
from .schemas import (
    ClientCaseEdit, CreateCaseRequest, StaffCaseEdit, STAFF_ONLY_FIELDS, dump_json,
)
from .storage import FileStorage

logger = logging.getLogger(__name__)


GATED_STATUSES = frozenset({
    CaseStatus.SUBMITTED,
    CaseStatus.UNDER_REVIEW,
    CaseStatus.PROCESSING,
    CaseStatus.APPROVED,
    CaseStatus.COMPLETED,
})

# Statuses from which a client may (re)request "submitted"
CLIENT_SUBMITTABLE_FROM = frozenset({CaseStatus.DRAFT, CaseStatus.SUBMITTED})


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid {location}: {first.get('msg')}" if location else first.get("msg", "Invalid input")


def _parse_status(value) -> Optional[CaseStatus]:
    if value is None:
        return None
    try:
        return CaseStatus(value)
    except ValueError:
        raise ValidationFailed(f"Invalid status: {value}")


def _fire(trigger: Optional[AutomationTrigger], event: CaseEvent, case: Case, context: Dict[str, Any]) -> None:
    if trigger is not None:
        trigger.on_case_event(event, case, context)


# =============================================================================
# FACTORIES
# =============================================================================

def generate_case_number(db: Session) -> str:
    """CASE-<epoch millis>-<existing count + 1, zero padded to 4>"""
    count = db.query(Case).count()
    return f"CASE-{int(time.time() * 1000)}-{count + 1:04d}"


def change_status(case: Case, new_status: CaseStatus, actor_id: Optional[str]) -> bool:
    """
    Set the case status and append one timeline entry.

    Returns False (and appends nothing) when the status is unchanged.
    Gating is the caller's job; see request_status_change.
    """
    new_status = CaseStatus(new_status)
    if case.status == new_status:
        return False
    case.status = new_status
    case.timeline.append(TimelineEntry(
        status=new_status,
        updated_by_id=actor_id,
        note=f"Status changed to {new_status.value}",
        timestamp=datetime.utcnow(),
    ))
    return True


def _fallback_intake(client: User) -> Dict[str, Any]:
    return {
        "general_information": {
            "full_legal_name": client.name or "Client",
            "email": client.email,
            "citizenship_countries": [],
            "address": {"city": "", "state": "", "zip": "", "country": ""},
        },
        "acknowledgment": {"agreed": False},
    }


def create_case(
    db: Session,
    auth: AuthContext,
    request: Union[CreateCaseRequest, Dict[str, Any]],
    trigger: Optional[AutomationTrigger] = None,
) -> Case:
    """
    Open a case. Clients open their own; admins may open one for a client.

    Raises:
        Forbidden: caller may not create a case for the target client
        NotFound: target client does not exist
        ValidationFailed: bad payload, target is not a client, or the client already has a case
    """
    if not isinstance(request, CreateCaseRequest):
        try:
            request = CreateCaseRequest.model_validate(request)
        except ValidationError as e:
            raise ValidationFailed(_validation_message(e))

    if auth.is_client:
        if request.client_id and request.client_id != auth.user_id:
            raise Forbidden("Cannot create case for another user")
        client_id = auth.user_id
    elif auth.is_admin:
        if not request.client_id:
            raise ValidationFailed("clientId is required")
        client_id = request.client_id
    else:
        raise Forbidden("Cannot create case for another user")

    client = db.query(User).filter(User.id == client_id).first()
    if not client:
        raise NotFound("Client not found")
    if client.role != UserRole.CLIENT:
        raise ValidationFailed("Cases can only be opened for client accounts")

    if db.query(Case).filter(Case.client_id == client_id).first():
        raise ValidationFailed(
            "You already have an application" if auth.is_client else "Client already has an application"
        )

    now = datetime.utcnow()
    case = Case(
        case_number=generate_case_number(db),
        client_id=client_id,
        visa_type=request.visa_type,
        status=CaseStatus.DRAFT,
        priority=request.priority,
        application_details=dump_json(request.application_details),
        intake_form=dump_json(request.intake_form) if request.intake_form else _fallback_intake(client),
        created_at=now,
        updated_at=now,
    )
    db.add(case)
    db.commit()
    logger.info(f"[cases] Created {case.case_number} for client {client_id} by {auth.user_id}")

    _fire(trigger, CaseEvent.CASE_CREATED, case, {"actor_id": auth.user_id})
    return case


# =============================================================================
# READS
# =============================================================================

def get_case(db: Session, auth: AuthContext, case_id: str) -> Case:
    case = db.query(Case).filter(Case.id == case_id).first()
    if not case:
        raise NotFound("Case not found")
    if not AccessEvaluator(db).can_access(auth, case):
        raise Forbidden("Access denied")
    return case


def get_my_case(db: Session, auth: AuthContext) -> Optional[Case]:
    """The caller's own case as a client, if any"""
    return db.query(Case).filter(Case.client_id == auth.user_id).first()


def list_cases(
    db: Session,
    auth: AuthContext,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    assigned_to: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> Tuple[List[Case], int]:
    """
    Cases visible to the caller, newest first.

    assigned_to="me" narrows coordinators and managers to their own assignments.
    Returns (page of cases, total matching).
    """
    settings = settings or get_settings()
    query = db.query(Case).filter(AccessEvaluator(db).scope_query(auth))

    if status:
        query = query.filter(Case.status == _parse_status(status))
    if priority:
        try:
            query = query.filter(Case.priority == Priority(priority))
        except ValueError:
            raise ValidationFailed(f"Invalid priority: {priority}")
    if assigned_to == "me":
        if auth.role == UserRole.COORDINATOR:
            query = query.filter(Case.assigned_coordinator_id == auth.user_id)
        elif auth.role == UserRole.MANAGER:
            query = query.filter(Case.assigned_manager_id == auth.user_id)

    limit = min(max(int(limit or settings.default_page_limit), 1), settings.max_page_limit)
    page = max(int(page or 1), 1)

    total = query.count()
    cases = (
        query.order_by(Case.created_at.desc(), Case.case_number.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return cases, total


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


# =============================================================================
# STATUS GATE
# =============================================================================

def build_case_edit(auth: AuthContext, payload: Dict[str, Any]) -> ClientCaseEdit:
    """
    Turn a raw payload into the edit command for the caller's role.

    Raises Forbidden when a client sends staff-only fields, ValidationFailed
    for unknown fields or invalid values.
    """
    payload = dict(payload or {})
    if auth.is_staff:
        model = StaffCaseEdit
    else:
        staff_fields = sorted(STAFF_ONLY_FIELDS.intersection(payload))
        if staff_fields:
            raise Forbidden(f"Only staff can change {', '.join(staff_fields)}")
        model = ClientCaseEdit
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise ValidationFailed(_validation_message(e))


def _resolve_assignee(db: Session, user_id: str, role: UserRole) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound(f"{role.value.capitalize()} not found")
    if user.role != role:
        raise ValidationFailed(f"User {user_id} is not a {role.value}")
    return user


def request_status_change(
    db: Session,
    auth: AuthContext,
    case: Case,
    requested_status=None,
    edit: Optional[ClientCaseEdit] = None,
    trigger: Optional[AutomationTrigger] = None,
) -> Case:
    """
    Apply field updates and an optional status change to an accessible case.

    Everything is validated before anything is applied:
    - the caller must pass the access evaluator for this case
    - clients edit fields only while the case is draft
    - clients may only request "submitted", and only while the case is draft or submitted
    - a requested status in GATED_STATUSES needs zero missing required documents
    - assignment targets must exist and hold the matching role

    The status_change automation fires after the commit, only if the status changed.
    """
    if not AccessEvaluator(db).can_access(auth, case):
        raise Forbidden("Access denied")

    edit = edit or ClientCaseEdit()
    new_status = _parse_status(requested_status)
    fields = edit.model_fields_set

    if auth.is_client:
        if isinstance(edit, StaffCaseEdit) and fields & {"assigned_coordinator_id", "assigned_manager_id"}:
            raise Forbidden("Only staff can change assignments")
        if fields - {"status"} and case.status != CaseStatus.DRAFT:
            raise Forbidden("Applications can only be edited while in draft")
        if new_status is not None and new_status != CaseStatus.SUBMITTED:
            raise Forbidden("Only staff can change the application status further.")
        if new_status is not None and case.status not in CLIENT_SUBMITTABLE_FROM:
            raise Forbidden("Only staff can change the application status further.")

    if new_status in GATED_STATUSES:
        missing = missing_required_types(case)
        if missing:
            raise ValidationFailed(
                "Upload all required documents before advancing the case status.",
                missing_documents=[t.value for t in missing],
            )

    assignments = {}
    if isinstance(edit, StaffCaseEdit):
        if "assigned_coordinator_id" in fields:
            assignments["assigned_coordinator_id"] = (
                _resolve_assignee(db, edit.assigned_coordinator_id, UserRole.COORDINATOR).id
                if edit.assigned_coordinator_id else None
            )
        if "assigned_manager_id" in fields:
            assignments["assigned_manager_id"] = (
                _resolve_assignee(db, edit.assigned_manager_id, UserRole.MANAGER).id
                if edit.assigned_manager_id else None
            )

    if edit.visa_type is not None:
        case.visa_type = edit.visa_type
    if edit.priority is not None:
        case.priority = edit.priority
    if edit.application_details is not None:
        case.application_details = dump_json(edit.application_details)
    if edit.intake_form is not None:
        case.intake_form = dump_json(edit.intake_form)
    for attr, value in assignments.items():
        setattr(case, attr, value)

    old_status = case.status
    changed = change_status(case, new_status, auth.user_id) if new_status is not None else False
    case.updated_at = datetime.utcnow()
    db.commit()

    if changed:
        logger.info(f"[cases] {case.case_number}: {old_status.value} -> {new_status.value} by {auth.user_id}")
        _fire(trigger, CaseEvent.STATUS_CHANGE, case, {
            "old_status": old_status.value,
            "new_status": new_status.value,
            "actor_id": auth.user_id,
        })
    return case


def update_case(
    db: Session,
    auth: AuthContext,
    case_id: str,
    payload: Union[ClientCaseEdit, Dict[str, Any]],
    trigger: Optional[AutomationTrigger] = None,
) -> Case:
    """Edit a case the caller can access; status changes go through the gate"""
    case = get_case(db, auth, case_id)
    edit = payload if isinstance(payload, ClientCaseEdit) else build_case_edit(auth, payload)
    return request_status_change(db, auth, case, edit.status, edit, trigger)


# =============================================================================
# NOTES / DELETION
# =============================================================================

def add_note(db: Session, auth: AuthContext, case_id: str, content: str) -> CaseNote:
    content = (content or "").strip()
    if not content:
        raise ValidationFailed("Note content is required")

    case = get_case(db, auth, case_id)
    note = CaseNote(content=content, created_by_id=auth.user_id, created_at=datetime.utcnow())
    case.notes.append(note)
    case.updated_at = datetime.utcnow()
    db.commit()
    return note


def delete_case(db: Session, auth: AuthContext, case_id: str, storage: Optional[FileStorage] = None) -> None:
    """Admin-only hard delete; stored files are removed best-effort"""
    case = db.query(Case).filter(Case.id == case_id).first()
    if not case:
        raise NotFound("Case not found")
    if not auth.is_admin:
        raise Forbidden("Only admins can delete cases")

    storage_ids = [doc.storage_id for doc in case.documents]
    case_number = case.case_number
    db.delete(case)
    db.commit()
    logger.info(f"[cases] Deleted {case_number} by {auth.user_id}")

    if storage is not None:
        for storage_id in storage_ids:
            discard_stored_file(storage, storage_id)
