"""Staff requests for a client to supply a document."""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from .auth import AccessEvaluator, AuthContext, require_staff
from .db.models import Case, DocumentRequest
from .documents import parse_document_type
from .errors import Forbidden, NotFound, ValidationFailed

logger = logging.getLogger(__name__)


def request_document(
    db: Session,
    auth: AuthContext,
    case_id: str,
    document_type: str,
    message: Optional[str] = None,
) -> DocumentRequest:
    require_staff(auth)
    doc_type = parse_document_type(document_type)

    case = db.query(Case).filter(Case.id == case_id).first()
    if not case:
        raise NotFound("Application not found")
    if not AccessEvaluator(db).can_access(auth, case):
        raise Forbidden("Access denied")

    request = DocumentRequest(
        document_type=doc_type,
        message=(message or "").strip() or None,
        requested_by_id=auth.user_id,
        created_at=datetime.utcnow(),
    )
    case.document_requests.append(request)
    db.commit()
    logger.info(f"[document_requests] {auth.user_id} requested {doc_type.value} on case {case.id}")
    return request


def list_document_requests(db: Session, auth: AuthContext, case_id: Optional[str] = None) -> List[DocumentRequest]:
    """
    Requests on one case, newest first.

    Clients always get their own case; staff must name the case. An unknown
    case yields an empty list.
    """
    query = db.query(Case)
    if auth.is_client:
        query = query.filter(Case.client_id == auth.user_id)
    elif case_id:
        query = query.filter(Case.id == case_id)
    else:
        raise ValidationFailed("Application ID required for staff")

    case = query.first()
    if not case:
        return []
    if not auth.is_client and not AccessEvaluator(db).can_access(auth, case):
        raise Forbidden("Access denied")

    return (
        db.query(DocumentRequest)
        .filter(DocumentRequest.case_id == case.id)
        .order_by(DocumentRequest.created_at.desc(), DocumentRequest.id)
        .all()
    )
